"""
Routing resolver: where should a call to an extension go in a given context.
"""

from callforward.models.telephony import Extension
from callforward.services.call_forward_store import CallForwardStore
from callforward.services.registry import Registry
from callforward.utils.logger import get_logger

logger = get_logger(__name__)


class RoutingResolver:
    """First matching call forward wins, no match keeps the original destination."""

    def __init__(self, store: CallForwardStore, registry: Registry):
        self.store = store
        self.registry = registry

    async def resolve(self, source: Extension, context_name: str) -> Extension:
        """
        Resolve the effective destination of a call.

        Args:
            source: Extension that was dialed
            context_name: Asterisk context the call arrived in

        Returns:
            Destination of the first call forward (ascending id) from `source`
            active in `context_name`, otherwise `source` itself

        Raises:
            UnknownContextException: If the context is not in the registry
            DatabaseException: If the store is unreachable
        """
        context = self.registry.context(context_name)

        for fwd in await self.store.list_from(source):
            if context in fwd.contexts:
                logger.debug(f"Call forward {fwd.fwd_id} matches {source} in {context_name}")
                return fwd.to_extension

        return source
