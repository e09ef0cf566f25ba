"""
Unit tests for RoutingResolver.
"""

import pytest
from unittest.mock import AsyncMock, Mock

from callforward.models.call_forward import CallForward
from callforward.models.telephony import Extension
from callforward.services.routing_resolver import RoutingResolver
from callforward.utils.exceptions import DatabaseException, UnknownContextException


@pytest.mark.asyncio
async def test_matching_context_forwards(store, resolver, registry):
    await store.create(CallForward.draft(registry, "702", "999", ["from_internal"]))

    destination = await resolver.resolve(registry.extension("702"), "from_internal")

    assert destination.extension_id == "999"


@pytest.mark.asyncio
async def test_no_matching_context_keeps_original_destination(store, resolver, registry):
    await store.create(CallForward.draft(registry, "702", "999", ["from_internal"]))

    source = registry.extension("702")
    destination = await resolver.resolve(source, "from_sales")

    assert destination == source
    assert destination.extension_id == "702"


@pytest.mark.asyncio
async def test_no_rules_at_all_keeps_original_destination(resolver):
    source = Extension("0612345678")

    assert await resolver.resolve(source, "from_external") == source


@pytest.mark.asyncio
async def test_forward_to_named_extension_carries_name(store, resolver, registry):
    await store.create(CallForward.draft(registry, "702", "704", ["from_external"]))

    destination = await resolver.resolve(registry.extension("702"), "from_external")

    assert destination.display_name == "Support desk"


@pytest.mark.asyncio
async def test_unknown_context_is_an_error(resolver, registry):
    with pytest.raises(UnknownContextException):
        await resolver.resolve(registry.extension("702"), "from_mars")


@pytest.mark.asyncio
async def test_first_match_in_store_order_wins(registry):
    """Even if overlapping rules exist, the lowest id decides."""
    ctx = registry.context("from_internal")
    source = registry.extension("702")
    store = Mock()
    store.list_from = AsyncMock(return_value=[
        CallForward(source, Extension("111"), frozenset({registry.context("from_sales")}), fwd_id=1),
        CallForward(source, Extension("222"), frozenset({ctx}), fwd_id=2),
        CallForward(source, Extension("333"), frozenset({ctx}), fwd_id=3),
    ])
    resolver = RoutingResolver(store=store, registry=registry)

    destination = await resolver.resolve(source, "from_internal")

    assert destination.extension_id == "222"
    store.list_from.assert_awaited_once_with(source)


@pytest.mark.asyncio
async def test_store_failure_propagates(registry):
    store = Mock()
    store.list_from = AsyncMock(side_effect=DatabaseException("down"))
    resolver = RoutingResolver(store=store, registry=registry)

    with pytest.raises(DatabaseException):
        await resolver.resolve(registry.extension("702"), "from_internal")
