"""Call forward rule store and FastAGI routing service."""

__version__ = "1.0.0"
