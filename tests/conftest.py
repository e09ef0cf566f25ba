"""
Pytest configuration and fixtures for Call Forward Service tests.
"""

import os
import tempfile

# Set test environment variables BEFORE importing anything
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("AGI_DIGEST_SECRET", "test-digest-secret")
os.environ.setdefault("LOG_LEVEL", "DEBUG")
os.environ.setdefault("LOG_DIR", os.path.join(tempfile.gettempdir(), "callforward-test-logs"))

import pytest
from unittest.mock import AsyncMock, Mock

from callforward.agi.connection import AGIResponse
from callforward.models.telephony import Context, Extension
from callforward.services.call_forward_store import CallForwardStore
from callforward.services.database_service import DatabaseService
from callforward.services.registry import Registry
from callforward.services.routing_resolver import RoutingResolver


@pytest.fixture
def digest_secret():
    """Provide test digest secret."""
    return "test-digest-secret"


@pytest.fixture
def registry():
    """Registry with three named extensions and three contexts."""
    return Registry(
        extensions=[
            Extension("700", "Reception"),
            Extension("702", "Sales desk"),
            Extension("704", "Support desk"),
        ],
        contexts=[
            Context("from_internal", "Internal line"),
            Context("from_external", "External trunk"),
            Context("from_sales", "Sales queue"),
        ],
    )


@pytest.fixture
async def db_service(tmp_path):
    """File backed SQLite database, fresh for every test."""
    service = DatabaseService(f"sqlite+aiosqlite:///{tmp_path / 'callforward.db'}")
    await service.init()
    yield service
    await service.close()


@pytest.fixture
def store(db_service, registry):
    return CallForwardStore(db_service=db_service, registry=registry)


@pytest.fixture
def resolver(store, registry):
    return RoutingResolver(store=store, registry=registry)


@pytest.fixture
def mock_connection():
    """AGI connection double answering every command with 200 result=1."""
    connection = Mock()
    connection.peer = "127.0.0.1:40000"
    connection.auth_state = None
    connection.get_full_variable = AsyncMock(return_value=AGIResponse(code=200, result="1"))
    connection.set_variable = AsyncMock(return_value=AGIResponse(code=200, result="1"))
    connection.verbose = AsyncMock(return_value=AGIResponse(code=200, result="1"))
    connection.close = AsyncMock()
    return connection
