"""
FastAGI TCP server.

Every connection runs as its own task: read the request, authenticate,
dispatch to the route handler, close. Failures end that connection only.
"""

import asyncio
from typing import Dict, Optional, Set

from callforward.agi.connection import AGIConnection
from callforward.auth.digest_authenticator import AuthState, DigestAuthenticator
from callforward.utils.exceptions import (
    AGIConnectionClosed,
    AGIException,
    AuthenticationException,
    CallForwardServiceException,
    DatabaseException,
    UnknownContextException,
)
from callforward.utils.logger import get_logger, set_call_context

logger = get_logger(__name__)


class AGIServer:
    """Serves authenticated FastAGI routes."""

    def __init__(
        self,
        host: str,
        port: int,
        authenticator: DigestAuthenticator,
        routes: Dict[str, object],
        idle_timeout: float = 10.0,
    ):
        """
        Initialize server.

        Args:
            host: Bind address
            port: Bind port (0 picks a free port)
            authenticator: Challenge run before any route
            routes: Script name to handler with `async handle(connection, request)`
            idle_timeout: Seconds a read may stall
        """
        self.host = host
        self.port = port
        self.authenticator = authenticator
        self.routes = routes
        self.idle_timeout = idle_timeout

        self.server: Optional[asyncio.AbstractServer] = None
        self._tasks: Set[asyncio.Task] = set()

    @property
    def bound_port(self) -> Optional[int]:
        if not self.server or not self.server.sockets:
            return None
        return self.server.sockets[0].getsockname()[1]

    async def start(self) -> None:
        """Start listening."""
        self.server = await asyncio.start_server(self._on_connect, self.host, self.port)
        logger.info(f"AGI Server started listening on {self.host}:{self.bound_port}")

    async def stop(self) -> None:
        """Stop listening and cancel running sessions."""
        logger.info("Stopping AGI server")
        if self.server:
            self.server.close()
            await self.server.wait_closed()
            self.server = None
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    def _on_connect(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        task = asyncio.create_task(self.handle_connection(reader, writer))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def handle_connection(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        """Run one FastAGI session. Never raises."""
        connection = AGIConnection(reader, writer, idle_timeout=self.idle_timeout)
        try:
            request = await connection.read_request()
            set_call_context(request.unique_id, request.caller_id)
            logger.debug(f"AGI request for '{request.script}' from {connection.peer}")

            await self.authenticator.authenticate(connection)
            if connection.auth_state is not AuthState.AUTHENTICATED:
                raise AuthenticationException("Connection is not authenticated")

            handler = self.routes.get(request.script)
            if handler is None:
                logger.warning(f"No AGI route for '{request.script}'")
                return

            await handler.handle(connection, request)

        except AuthenticationException as e:
            logger.warning(f"AGI authentication failed for {connection.peer}: {e}")
        except AGIConnectionClosed as e:
            logger.info(f"AGI connection from {connection.peer} ended early: {e}")
        except (AGIException, UnknownContextException) as e:
            logger.warning(f"AGI request from {connection.peer} rejected: {e}")
        except DatabaseException as e:
            logger.error(f"AGI request from {connection.peer} failed, no forward applied: {e}")
        except asyncio.TimeoutError:
            logger.warning(f"AGI connection from {connection.peer} idle for {self.idle_timeout}s, dropping")
        except CallForwardServiceException as e:
            logger.error(f"AGI request from {connection.peer} failed: {e}")
        except Exception as e:
            logger.exception(f"Unexpected error in AGI connection from {connection.peer}: {e}")
        finally:
            await connection.close()
