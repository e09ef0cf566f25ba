"""
Call forward rule model.

A rule is either a draft (built from user input, no storage identity yet) or
persisted (id assigned by the store). Code that needs the id branches on
`CallForward.state`.
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import FrozenSet, Iterable, List, Optional

from callforward.models.telephony import Context, Extension
from callforward.utils.exceptions import ValidationException


class ForwardState(Enum):
    """Lifecycle state of a call forward."""
    DRAFT = "draft"
    PERSISTED = "persisted"


@dataclass(frozen=True)
class CallForward:
    """Forward calls to `from_extension` to `to_extension` in the given contexts."""
    from_extension: Extension
    to_extension: Extension
    contexts: FrozenSet[Context]
    fwd_id: Optional[int] = None

    def __post_init__(self):
        """Validate call forward."""
        if not isinstance(self.contexts, frozenset):
            object.__setattr__(self, "contexts", frozenset(self.contexts))
        if not self.contexts:
            raise ValidationException("A call forward needs at least one context")

    @classmethod
    def draft(
        cls,
        registry,
        from_extension: str,
        to_extension: str,
        context_names: Iterable[str],
    ) -> "CallForward":
        """
        Build an unpersisted call forward from raw names.

        Args:
            registry: Registry used to resolve extensions and contexts
            from_extension: Source extension id
            to_extension: Destination extension id (may be external)
            context_names: Asterisk names of the contexts

        Raises:
            UnknownContextException: If a context is not in the registry
            ValidationException: If no context was given
        """
        contexts = frozenset(registry.context(name) for name in context_names)
        return cls(
            from_extension=registry.extension(from_extension),
            to_extension=registry.extension(to_extension),
            contexts=contexts,
        )

    @property
    def state(self) -> ForwardState:
        if self.fwd_id is None:
            return ForwardState.DRAFT
        return ForwardState.PERSISTED

    def with_id(self, fwd_id: int) -> "CallForward":
        """Return the persisted copy of this rule."""
        return replace(self, fwd_id=fwd_id)

    def sorted_contexts(self) -> List[Context]:
        return sorted(self.contexts)

    def intersecting_contexts(self, other: "CallForward") -> List[Context]:
        """Contexts active in both rules, sorted by name."""
        return sorted(self.contexts & other.contexts)

    def overlaps(self, other: "CallForward") -> bool:
        """True if both rules start at the same extension in a shared context."""
        return (
            self.from_extension == other.from_extension
            and bool(self.contexts & other.contexts)
        )

    def applies_in(self, context_name: str) -> bool:
        return any(ctx.protocol_name == context_name for ctx in self.contexts)

    def to_dict(self) -> dict:
        """Convert to dictionary for logging/serialization."""
        return {
            "fwd_id": self.fwd_id,
            "from": self.from_extension.to_dict(),
            "to": self.to_extension.to_dict(),
            "contexts": [ctx.to_dict() for ctx in self.sorted_contexts()],
        }
