"""
Fixtures and helpers for end-to-end conversation scenarios.

Provides:
- a send helper bound to a bot with a scripted language model
- database lookups for vehicles and the active conversation
- a walker that answers the step-by-step flow up to a given step
"""
from typing import Optional

import pytest
from sqlalchemy import select

from autoleads.core.locks import ConversationLock, KeyedLock
from autoleads.db.models.vehicle import Vehicle
from autoleads.state_machine.handlers import AdminBotHandler, IntakeServices
from autoleads.state_machine.manager import ActiveConversation, StateManager

TENANT_ID = 1
ADMIN_HANDLE = "6281234567890"

# answers for steps 1-6 of the step-by-step flow
GUIDED_ANSWERS = [
    "Toyota Avanza 1.3 G",
    "2020 Hitam Metalik",
    "Manual 45000",
    "185jt",
    "B 1234 XYZ",
    "velg racing, spoiler",
]


@pytest.fixture
def llm_send(db_session, fake_llm, media_store, message_factory):
    """Like ``send`` but the bot talks to the scripted fake language model"""
    services = IntakeServices(
        llm_provider=fake_llm,
        media_store=media_store,
        conversation_lock=ConversationLock(),
        code_locks=KeyedLock(),
    )
    bot = AdminBotHandler(db_session, services)

    async def _send(text: str = "", **kwargs) -> str:
        response = await bot.handle_message(message_factory(text, **kwargs))
        return response.text
    return _send


@pytest.fixture
def vehicles(db_session):
    """All vehicles of a tenant, oldest first"""
    async def _vehicles(tenant_id: int = TENANT_ID) -> list[Vehicle]:
        result = await db_session.execute(
            select(Vehicle).where(Vehicle.tenant_id == tenant_id).order_by(Vehicle.id)
        )
        return list(result.scalars().all())
    return _vehicles


@pytest.fixture
def conversation(db_session):
    """The admin's active conversation, or None"""
    async def _conversation(user: str = ADMIN_HANDLE, tenant_id: int = TENANT_ID) -> Optional[ActiveConversation]:
        return await StateManager(db_session).get(tenant_id, user)
    return _conversation


@pytest.fixture
def photo(send):
    """Send one photo with a downloadable URL"""
    counter = {"n": 0}

    async def _photo(text: str = "") -> str:
        counter["n"] += 1
        return await send(text, media_url=f"https://cdn.example.com/wa/{counter['n']}.jpg")
    return _photo


@pytest.fixture
def walk_guided(send):
    """Start the step-by-step flow and answer the first ``answered`` steps"""
    async def _walk(answered: int) -> str:
        reply = await send("/upload")
        for answer in GUIDED_ANSWERS[:answered]:
            reply = await send(answer)
        return reply
    return _walk
