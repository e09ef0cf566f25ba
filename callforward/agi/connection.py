"""
FastAGI request parsing and command exchange over asyncio streams.

Only what the call forward route needs: reading the request environment,
sending a command line and reading its `<code> result=<r> [data]` reply.
"""

import asyncio
import re
from dataclasses import dataclass, field
from typing import Dict, Optional
from urllib.parse import urlparse

from callforward.utils.exceptions import AGIConnectionClosed, AGIProtocolException
from callforward.utils.logger import get_logger

logger = get_logger(__name__)

_RESPONSE_RE = re.compile(r"^(?P<code>\d{3})[ -](?:result=(?P<result>\S*))?\s*(?P<data>.*)$")


@dataclass
class AGIRequest:
    """Environment sent by Asterisk at the start of a FastAGI session."""
    variables: Dict[str, str] = field(default_factory=dict)
    custom_args: Dict[int, str] = field(default_factory=dict)

    @property
    def script(self) -> str:
        """Route name, e.g. `call_forward` for agi://host/call_forward."""
        script = self.variables.get("network_script")
        if not script:
            script = urlparse(self.variables.get("request", "")).path
        return script.strip("/")

    @property
    def unique_id(self) -> Optional[str]:
        return self.variables.get("uniqueid")

    @property
    def caller_id(self) -> Optional[str]:
        return self.variables.get("callerid")

    def custom_arg(self, position: int) -> Optional[str]:
        """Positional argument, 1-based like `agi_arg_1`."""
        return self.custom_args.get(position)


@dataclass
class AGIResponse:
    """Reply to a single AGI command."""
    code: int
    result: Optional[str] = None
    operational_data: Optional[str] = None

    @property
    def is_success(self) -> bool:
        return self.code == 200


def parse_request_lines(lines) -> AGIRequest:
    """Build an AGIRequest from `agi_<name>: <value>` lines."""
    request = AGIRequest()
    for line in lines:
        key, sep, value = line.partition(":")
        if not sep or not key.startswith("agi_"):
            logger.debug(f"Ignoring malformed AGI environment line: {line!r}")
            continue
        name = key[len("agi_"):]
        value = value.strip()
        if name.startswith("arg_"):
            try:
                request.custom_args[int(name[len("arg_"):])] = value
            except ValueError:
                logger.debug(f"Ignoring AGI argument with bad index: {key}")
            continue
        request.variables[name] = value
    return request


def parse_response_line(line: str) -> AGIResponse:
    """
    Parse `200 result=1 (value)` style replies.

    Raises:
        AGIProtocolException: If the line has no status code
    """
    match = _RESPONSE_RE.match(line.strip())
    if not match:
        raise AGIProtocolException(f"Unparseable AGI response: {line!r}")
    data = match.group("data") or None
    return AGIResponse(
        code=int(match.group("code")),
        result=match.group("result"),
        operational_data=data,
    )


def quote(value: str) -> str:
    """Quote an argument for an AGI command line."""
    escaped = value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", " ")
    return f'"{escaped}"'


class AGIConnection:
    """One FastAGI session with Asterisk."""

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        idle_timeout: float = 10.0,
    ):
        self.reader = reader
        self.writer = writer
        self.idle_timeout = idle_timeout
        self.hung_up = False
        # Set by the authenticator, see callforward.auth.digest_authenticator
        self.auth_state = None

    @property
    def peer(self) -> str:
        peername = self.writer.get_extra_info("peername")
        if isinstance(peername, tuple):
            return f"{peername[0]}:{peername[1]}"
        return str(peername)

    async def _read_line(self) -> str:
        """
        Read one line, bounded by the idle timeout.

        Raises:
            asyncio.TimeoutError: If the peer stalls
            AGIConnectionClosed: If the peer closed the connection
        """
        raw = await asyncio.wait_for(self.reader.readline(), timeout=self.idle_timeout)
        if not raw:
            raise AGIConnectionClosed("Connection closed by peer")
        return raw.decode("utf-8", errors="replace").rstrip("\r\n")

    async def read_request(self) -> AGIRequest:
        """Read the environment block terminated by an empty line."""
        lines = []
        while True:
            line = await self._read_line()
            if line == "":
                break
            lines.append(line)
        return parse_request_lines(lines)

    async def _read_response(self) -> AGIResponse:
        while True:
            line = await self._read_line()
            if line.strip() == "HANGUP":
                # Asterisk announces hangups in between replies
                self.hung_up = True
                continue
            if line.startswith("520-"):
                # Multi-line usage text, terminated by "520 End of proper usage."
                while not line.startswith("520 "):
                    line = await self._read_line()
                return AGIResponse(code=520, operational_data=line[4:])
            return parse_response_line(line)

    async def send_command(self, command: str) -> AGIResponse:
        """
        Send one command line and wait for its reply.

        Raises:
            AGIConnectionClosed: If the peer is gone
            AGIProtocolException: If the reply cannot be parsed
            asyncio.TimeoutError: If no reply arrives in time
        """
        logger.debug(f"AGI >> {command}")
        try:
            self.writer.write(command.encode("utf-8") + b"\n")
            await self.writer.drain()
        except (ConnectionError, OSError) as e:
            raise AGIConnectionClosed(f"Cannot send AGI command: {e}")
        response = await self._read_response()
        logger.debug(f"AGI << {response.code} result={response.result} {response.operational_data or ''}")
        return response

    async def get_full_variable(self, expression: str) -> AGIResponse:
        """Evaluate a dialplan expression such as `${SHA1(...)}` on the channel."""
        return await self.send_command(f"GET FULL VARIABLE {expression}")

    async def set_variable(self, name: str, value: str) -> AGIResponse:
        return await self.send_command(f"SET VARIABLE {name} {quote(value)}")

    async def verbose(self, message: str, level: int = 1) -> AGIResponse:
        return await self.send_command(f"VERBOSE {quote(message)} {level}")

    async def close(self) -> None:
        if self.writer.is_closing():
            return
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except (ConnectionError, OSError) as e:
            logger.debug(f"Error closing AGI connection to {self.peer}: {e}")
