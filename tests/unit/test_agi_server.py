"""
End-to-end tests for AGIServer with a scripted Asterisk peer.
"""

import asyncio
import re
from hashlib import sha1

import pytest

from callforward.agi.server import AGIServer
from callforward.auth.digest_authenticator import DigestAuthenticator
from callforward.handlers.call_forward_handler import CallForwardHandler
from callforward.models.call_forward import CallForward

NONCE_RE = re.compile(r":([0-9a-f]{40})\)\}$")


@pytest.fixture
async def agi_server(resolver, registry, digest_secret):
    server = AGIServer(
        host="127.0.0.1",
        port=0,
        authenticator=DigestAuthenticator(digest_secret),
        routes={"call_forward": CallForwardHandler(resolver=resolver, registry=registry)},
        idle_timeout=2.0,
    )
    await server.start()
    yield server
    await server.stop()


async def open_session(server: AGIServer, script: str = "call_forward", args=("702", "from_internal")):
    reader, writer = await asyncio.open_connection("127.0.0.1", server.bound_port)
    env = [
        "agi_network: yes",
        f"agi_network_script: {script}",
        "agi_uniqueid: 1700000000.1",
        "agi_callerid: 0612345678",
    ]
    env += [f"agi_arg_{i + 1}: {value}" for i, value in enumerate(args)]
    writer.write(("\n".join(env) + "\n\n").encode())
    await writer.drain()
    return reader, writer


async def read_line(reader) -> str:
    return (await asyncio.wait_for(reader.readline(), timeout=2.0)).decode().rstrip("\n")


async def answer_challenge(reader, writer, secret: str) -> None:
    challenge = await read_line(reader)
    assert challenge.startswith("GET FULL VARIABLE ${SHA1(${AGI_DIGEST_SECRET}:")
    nonce = NONCE_RE.search(challenge).group(1)
    digest = sha1(f"{secret}:{nonce}".encode()).hexdigest()
    writer.write(f"200 result=1 ({digest})\n".encode())
    await writer.drain()


async def read_until_closed(reader) -> list:
    lines = []
    while True:
        raw = await asyncio.wait_for(reader.readline(), timeout=2.0)
        if not raw:
            return lines
        lines.append(raw.decode().rstrip("\n"))


@pytest.mark.asyncio
async def test_forwarded_call_end_to_end(agi_server, store, registry, digest_secret):
    await store.create(CallForward.draft(registry, "702", "999", ["from_internal"]))
    reader, writer = await open_session(agi_server)

    await answer_challenge(reader, writer, digest_secret)
    assert await read_line(reader) == 'SET VARIABLE CALL_FORWARDED_TO "999"'
    writer.write(b"200 result=1\n")
    await writer.drain()

    assert await read_until_closed(reader) == []
    writer.close()


@pytest.mark.asyncio
async def test_call_without_forward_end_to_end(agi_server, digest_secret):
    reader, writer = await open_session(agi_server, args=("702", "from_sales"))

    await answer_challenge(reader, writer, digest_secret)
    assert await read_line(reader) == 'SET VARIABLE CALL_FORWARDED_TO "702"'
    writer.write(b"200 result=1\n")
    await writer.drain()

    assert await read_until_closed(reader) == []
    writer.close()


@pytest.mark.asyncio
async def test_wrong_secret_gets_no_routing_command(agi_server, store, registry):
    await store.create(CallForward.draft(registry, "702", "999", ["from_internal"]))
    reader, writer = await open_session(agi_server)

    await answer_challenge(reader, writer, "not-the-secret")
    assert await read_line(reader) == 'VERBOSE "Unauthenticated: Wrong Digest." 1'
    writer.write(b"200 result=1\n")
    await writer.drain()

    remaining = await read_until_closed(reader)
    assert not any(line.startswith("SET VARIABLE") for line in remaining)
    writer.close()


@pytest.mark.asyncio
async def test_missing_argument_closes_without_result(agi_server, digest_secret):
    reader, writer = await open_session(agi_server, args=("702",))

    await answer_challenge(reader, writer, digest_secret)

    assert await read_until_closed(reader) == []
    writer.close()


@pytest.mark.asyncio
async def test_unknown_route_is_closed_after_authentication(agi_server, digest_secret):
    reader, writer = await open_session(agi_server, script="voicemail")

    await answer_challenge(reader, writer, digest_secret)

    assert await read_until_closed(reader) == []
    writer.close()


@pytest.mark.asyncio
async def test_stalled_peer_is_dropped(resolver, registry, digest_secret):
    server = AGIServer(
        host="127.0.0.1",
        port=0,
        authenticator=DigestAuthenticator(digest_secret),
        routes={"call_forward": CallForwardHandler(resolver=resolver, registry=registry)},
        idle_timeout=0.1,
    )
    await server.start()
    try:
        reader, writer = await open_session(server)
        challenge = await read_line(reader)
        assert challenge.startswith("GET FULL VARIABLE")

        # Never answer the challenge
        assert await read_until_closed(reader) == []
        writer.close()
    finally:
        await server.stop()


@pytest.mark.asyncio
async def test_connections_are_independent(agi_server, store, registry, digest_secret):
    await store.create(CallForward.draft(registry, "702", "999", ["from_internal"]))
    bad_reader, bad_writer = await open_session(agi_server)
    good_reader, good_writer = await open_session(agi_server)

    await answer_challenge(good_reader, good_writer, digest_secret)
    assert await read_line(good_reader) == 'SET VARIABLE CALL_FORWARDED_TO "999"'
    good_writer.write(b"200 result=1\n")
    await good_writer.drain()

    # The other peer disconnects mid-challenge
    await read_line(bad_reader)
    bad_writer.close()

    assert await read_until_closed(good_reader) == []
    good_writer.close()
