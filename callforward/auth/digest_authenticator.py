"""
SHA1 challenge authentication for FastAGI connections.

Before any routing command runs, the server proves that Asterisk holds the
pre-shared secret:
- Nonce: 8 bytes unix seconds + 4 bytes milliseconds (little-endian) + 8 random bytes, hex encoded
- Asterisk evaluates ${SHA1(${<secret variable>}:<nonce>)} and returns it
- Expected digest: sha1(secret + ":" + nonce)
"""

import asyncio
import hmac
import re
import secrets
import struct
import time
from enum import Enum
from hashlib import sha1

from callforward.agi.connection import AGIConnection
from callforward.utils.exceptions import (
    AGIException,
    AGIProtocolException,
    AuthenticationFailedException,
    MalformedDigestException,
)
from callforward.utils.logger import get_logger

logger = get_logger(__name__)

NONCE_SIZE = 20
DIGEST_SIZE = sha1().digest_size

_HEX_DIGEST_RE = re.compile(rf"[0-9a-fA-F]{{{DIGEST_SIZE * 2}}}")


class AuthState(Enum):
    """Authentication state of one AGI connection."""
    START = "start"
    AWAITING_RESPONSE = "awaiting_response"
    AUTHENTICATED = "authenticated"
    REJECTED = "rejected"


def create_nonce() -> str:
    """
    Create a single-use challenge nonce.

    Returns:
        40 lowercase hex characters
    """
    now_ns = time.time_ns()
    seconds, remainder_ns = divmod(now_ns, 1_000_000_000)
    millis = remainder_ns // 1_000_000
    raw = struct.pack("<QI", seconds, millis) + secrets.token_bytes(8)
    return raw.hex()


def compute_digest(secret: str, nonce: str) -> bytes:
    """sha1(secret:nonce) as raw bytes."""
    return sha1(f"{secret}:{nonce}".encode("utf-8")).digest()


class DigestAuthenticator:
    """Challenges Asterisk to prove knowledge of the shared secret."""

    def __init__(self, secret: str, secret_variable: str = "AGI_DIGEST_SECRET"):
        """
        Initialize authenticator.

        Args:
            secret: Pre-shared secret, also set as a channel variable in the dialplan
            secret_variable: Name of that dialplan variable
        """
        if not secret:
            raise ValueError("Digest secret not configured")
        self.secret = secret
        self.secret_variable = secret_variable

    def challenge_expression(self, nonce: str) -> str:
        return f"${{SHA1(${{{self.secret_variable}}}:{nonce})}}"

    def verify(self, nonce: str, returned: str) -> None:
        """
        Check the digest Asterisk returned for `nonce`.

        Args:
            nonce: Hex nonce sent in the challenge
            returned: Operational data of the reply, e.g. "(3f2a...)"

        Raises:
            MalformedDigestException: If `returned` is not a hex SHA1 digest
            AuthenticationFailedException: If the digest does not match
        """
        digest_as_str = returned.strip().strip("()")
        # bytes.fromhex alone would accept embedded whitespace
        if not _HEX_DIGEST_RE.fullmatch(digest_as_str):
            raise MalformedDigestException(digest_as_str)
        received = bytes.fromhex(digest_as_str)

        expected = compute_digest(self.secret, nonce)
        if not hmac.compare_digest(expected, received):
            raise AuthenticationFailedException(expected.hex(), digest_as_str)

    async def authenticate(self, connection: AGIConnection) -> None:
        """
        Run the challenge on a fresh connection.

        Sets `connection.auth_state` to AUTHENTICATED on success and to
        REJECTED on any failure.

        Raises:
            AGIProtocolException: If Asterisk did not answer the challenge with data
            MalformedDigestException: If the answer is not a digest
            AuthenticationFailedException: If the digest is wrong
        """
        connection.auth_state = AuthState.START
        nonce = create_nonce()

        try:
            connection.auth_state = AuthState.AWAITING_RESPONSE
            response = await connection.get_full_variable(self.challenge_expression(nonce))

            if not response.is_success:
                raise AGIProtocolException(
                    f"Challenge answered with status {response.code}",
                    code=response.code,
                    response=response,
                )
            if not response.operational_data:
                raise AGIProtocolException(
                    "Challenge answered without a digest",
                    code=response.code,
                    response=response,
                )

            self.verify(nonce, response.operational_data)

        except AuthenticationFailedException as e:
            connection.auth_state = AuthState.REJECTED
            logger.warning(f"Expected digest {e.expected}, got {e.received} from {connection.peer}")
            await self._notify_rejection(connection)
            raise
        except MalformedDigestException as e:
            connection.auth_state = AuthState.REJECTED
            logger.warning(f"Undecodable digest {e.received!r} from {connection.peer}")
            raise
        except (AGIException, asyncio.TimeoutError):
            connection.auth_state = AuthState.REJECTED
            raise

        connection.auth_state = AuthState.AUTHENTICATED
        logger.debug(f"AGI connection from {connection.peer} authenticated")

    async def _notify_rejection(self, connection: AGIConnection) -> None:
        """Best effort: tell the Asterisk console why the call was rejected."""
        try:
            await connection.verbose("Unauthenticated: Wrong Digest.")
        except (AGIException, asyncio.TimeoutError, OSError) as e:
            logger.debug(f"Could not notify {connection.peer} about failed authentication: {e}")
