"""Route handlers module."""
