"""
Extension and Context value types.

Both are sourced from the static registry; an Extension may also describe an
external number the registry does not know about.
"""

from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class Extension:
    """
    A call endpoint.

    Equality and hashing use the extension id only, the display name is
    informational.
    """
    # Usually numeric, but not guaranteed
    extension_id: str
    display_name: Optional[str] = field(default=None, compare=False)

    def __post_init__(self):
        if not self.extension_id:
            raise ValueError("Extension id cannot be empty")

    def __str__(self) -> str:
        if self.display_name:
            return f"{self.display_name} ({self.extension_id})"
        return self.extension_id

    def to_dict(self) -> dict:
        return {"extension": self.extension_id, "name": self.display_name}


@dataclass(frozen=True, order=True)
class Context:
    """An operating scope in which a call arrives, e.g. from an internal line."""
    protocol_name: str
    display_name: str

    def __str__(self) -> str:
        return self.display_name

    def to_dict(self) -> dict:
        return {"asterisk_name": self.protocol_name, "display_name": self.display_name}
