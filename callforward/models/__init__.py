"""Data models module."""

from .telephony import Extension, Context
from .call_forward import CallForward, ForwardState

__all__ = ["Extension", "Context", "CallForward", "ForwardState"]
