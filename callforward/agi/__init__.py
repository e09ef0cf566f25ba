"""FastAGI exchange and server."""

from .connection import AGIConnection, AGIRequest, AGIResponse

__all__ = ["AGIConnection", "AGIRequest", "AGIResponse"]
