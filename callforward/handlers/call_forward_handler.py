"""
FastAGI handler for the `call_forward` route.

Dialplan usage:

    same => n,Set(AGI_DIGEST_SECRET=<secret>)
    same => n,AGI(agi://callforward:4573/call_forward,${EXTEN},${CONTEXT})
    same => n,Dial(PJSIP/${CALL_FORWARDED_TO})
"""

from callforward.agi.connection import AGIConnection, AGIRequest
from callforward.services.registry import Registry
from callforward.services.routing_resolver import RoutingResolver
from callforward.utils.exceptions import AGIProtocolException, MissingArgumentException
from callforward.utils.logger import get_logger

logger = get_logger(__name__)

REQUIRED_ARGUMENTS = 2


class CallForwardHandler:
    """Answers one routing query per authenticated connection."""

    def __init__(
        self,
        resolver: RoutingResolver,
        registry: Registry,
        result_variable: str = "CALL_FORWARDED_TO",
    ):
        """
        Initialize handler.

        Args:
            resolver: Routing resolver
            registry: Registry used to resolve the dialed extension
            result_variable: Channel variable receiving the destination
        """
        self.resolver = resolver
        self.registry = registry
        self.result_variable = result_variable

    async def handle(self, connection: AGIConnection, request: AGIRequest) -> None:
        """
        Resolve the destination for `agi_arg_1` (extension) in `agi_arg_2` (context).

        Raises:
            MissingArgumentException: If an argument is absent
            UnknownContextException: If the context is not in the registry
            DatabaseException: If the store is unreachable
            AGIProtocolException: If Asterisk rejects the SET VARIABLE
        """
        initial_dest = request.custom_arg(1)
        if not initial_dest:
            raise MissingArgumentException(0, REQUIRED_ARGUMENTS)
        context_name = request.custom_arg(2)
        if not context_name:
            raise MissingArgumentException(1, REQUIRED_ARGUMENTS)

        source = self.registry.extension(initial_dest)
        destination = await self.resolver.resolve(source, context_name)

        if destination == source:
            logger.info(f"Call to {source} in {context_name} did not need forwarding.")
        else:
            logger.info(f"Call to {source} in {context_name} forwarded to {destination}")

        response = await connection.set_variable(self.result_variable, destination.extension_id)
        if not response.is_success:
            raise AGIProtocolException(
                f"SET VARIABLE {self.result_variable} answered with status {response.code}",
                code=response.code,
                response=response,
            )
