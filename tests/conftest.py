"""
Pytest Configuration and Fixtures

Provides fixtures for:
- Database sessions (async, in-memory SQLite)
- Fake external services (Redis, language model, media store)
- The admin bot and an HTTP client for the webhook
"""
from collections import deque
from typing import AsyncGenerator, Optional, Union
from unittest.mock import patch

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from autoleads.core.config import settings
from autoleads.core.exceptions import LLMServiceError, MediaDownloadError, MediaUnavailableError
from autoleads.core.locks import ConversationLock, KeyedLock
from autoleads.db import models  # noqa: F401
from autoleads.db.database import Base
from autoleads.domain.services.llm import BaseLLMProvider, reset_providers
from autoleads.domain.services.media_service import is_retrievable_url
from autoleads.state_machine.handlers import (
    AdminBotHandler,
    IncomingMessage,
    IntakeServices,
    MediaAttachment,
)

# Test database URL (SQLite in memory for fast tests)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

TENANT_ID = 1
ADMIN_HANDLE = "6281234567890"


@pytest.fixture(scope="function")
async def async_engine():
    """Create async test database engine"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
def session_factory(async_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False
    )


@pytest.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests"""
    async with session_factory() as session:
        yield session
        await session.rollback()


# ============================================================================
# Global state resets
# ============================================================================

@pytest.fixture(autouse=True)
def reset_circuit_breakers():
    """Reset circuit breakers between tests"""
    from autoleads.core.circuit_breaker import CircuitBreaker
    CircuitBreaker.reset_all()
    yield
    CircuitBreaker.reset_all()


@pytest.fixture(autouse=True)
def reset_llm_provider():
    reset_providers()
    yield
    reset_providers()


@pytest.fixture(autouse=True)
def no_retry_backoff():
    """Retries run back to back in tests"""
    with patch.object(settings, "LLM_RETRY_BACKOFF_SECONDS", 0.0):
        yield


# ============================================================================
# Fake external services
# ============================================================================

class FakeRedis:
    """In-memory stand-in for the Redis commands the conversation lease uses"""

    def __init__(self) -> None:
        self._store: dict[str, str] = {}
        self._ttls: dict[str, int] = {}

    async def ping(self) -> bool:
        return True

    async def get(self, key: str) -> str | None:
        return self._store.get(key)

    async def set(self, key: str, value: str, nx: bool = False, ex: int | None = None) -> bool | None:
        """SET with NX (only if absent) and EX (expiry in seconds)"""
        if nx and key in self._store:
            return None
        self._store[key] = value
        if ex is not None:
            self._ttls[key] = ex
        return True

    async def delete(self, *keys: str) -> None:
        for key in keys:
            self._store.pop(key, None)
            self._ttls.pop(key, None)

    async def aclose(self) -> None:
        self._store.clear()
        self._ttls.clear()


@pytest.fixture(autouse=True)
def fake_redis():
    """Replace get_redis with a FakeRedis for every test"""
    _fake = FakeRedis()

    async def _get_fake_redis():
        return _fake

    with patch("autoleads.core.redis_client.get_redis", _get_fake_redis), \
         patch("autoleads.core.locks.get_redis", _get_fake_redis):
        yield _fake


Scripted = Union[str, Exception]


class FakeLLMProvider(BaseLLMProvider):
    """Replays scripted responses and records every prompt it was given"""

    def __init__(
        self,
        responses: Optional[list[Scripted]] = None,
        vision_responses: Optional[list[Scripted]] = None,
    ) -> None:
        self.responses: deque[Scripted] = deque(responses or [])
        self.vision_responses: deque[Scripted] = deque(vision_responses or [])
        self.prompts: list[str] = []
        self.images: list[str] = []

    @property
    def provider_name(self) -> str:
        return "fake"

    @staticmethod
    def _next(queue: deque) -> str:
        if not queue:
            raise LLMServiceError("no scripted response left")
        item = queue.popleft()
        if isinstance(item, Exception):
            raise item
        return item

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        return self._next(self.responses)

    async def analyze_image(self, image_ref: str, prompt: str) -> str:
        self.images.append(image_ref)
        return self._next(self.vision_responses)


class FakeMediaStore:
    """Media store that never touches the network"""

    def __init__(self) -> None:
        self.saved: list[tuple[str, int, str]] = []
        self.failing_urls: set[str] = set()

    async def save(self, url: Optional[str], tenant_id: int, filename: str) -> str:
        if not is_retrievable_url(url):
            raise MediaUnavailableError(url)
        if url in self.failing_urls:
            raise MediaDownloadError(url, "status 404")
        self.saved.append((url, tenant_id, filename))
        return f"/uploads/tenant-{tenant_id}/{filename}"


@pytest.fixture
def fake_llm() -> FakeLLMProvider:
    return FakeLLMProvider()


@pytest.fixture
def media_store() -> FakeMediaStore:
    return FakeMediaStore()


@pytest.fixture
def intake_services(media_store) -> IntakeServices:
    """Services without a language model: parser extraction and template copy"""
    return IntakeServices(
        llm_provider=None,
        media_store=media_store,
        conversation_lock=ConversationLock(),
        code_locks=KeyedLock(),
    )


@pytest.fixture
def admin_bot(db_session, intake_services) -> AdminBotHandler:
    return AdminBotHandler(db_session, intake_services)


def make_message(
    text: str = "",
    *,
    media_url: Optional[str] = None,
    with_media: bool = False,
    tenant_id: int = TENANT_ID,
    user: str = ADMIN_HANDLE,
    catalog_domain: Optional[str] = None,
) -> IncomingMessage:
    media = MediaAttachment(url=media_url) if (with_media or media_url is not None) else None
    return IncomingMessage(
        tenant_id=tenant_id,
        user_handle=user,
        text=text,
        media=media,
        catalog_domain=catalog_domain,
    )


@pytest.fixture
def message_factory():
    return make_message


@pytest.fixture
def send(admin_bot):
    """Send one message to the admin bot and return the reply text"""
    async def _send(text: str = "", **kwargs) -> str:
        response = await admin_bot.handle_message(make_message(text, **kwargs))
        return response.text
    return _send


@pytest.fixture(scope="function")
async def test_client(session_factory, intake_services):
    """HTTP client for the app, wired to the test database and fake services"""
    from httpx import ASGITransport, AsyncClient

    from autoleads.main import create_app

    app = create_app(use_lifespan=False)
    app.state.session_factory = session_factory
    app.state.intake_services = intake_services

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
