"""
Scenario 6 - messages from one admin arriving at the same time

Each message is handled by its own bot and database session, as separate webhook
requests would be, sharing one set of services.

Covers:
- a burst of photos: none lost, none stored twice
- a photo racing "selesai": one step change, the photo is in the preview
- a double "selesai" and a double "ya": the step advances and the vehicle is saved once
"""
import asyncio
from typing import Optional

import pytest
from sqlalchemy import select

from autoleads.core.config import settings
from autoleads.core.locks import ConversationLock, KeyedLock
from autoleads.db.models.vehicle import Vehicle
from autoleads.state_machine import messages
from autoleads.state_machine.handlers import AdminBotHandler, IntakeServices
from autoleads.state_machine.manager import ActiveConversation, StateManager
from autoleads.state_machine.states import IntakeStep

TENANT_ID = 1
ADMIN_HANDLE = "6281234567890"
LISTING = "/upload honda jazz 2019 hitam matic harga 187jt km 88rb"


class SlowMediaStore:
    """Media store that yields to the event loop mid-download"""

    def __init__(self) -> None:
        self.saved: list[str] = []

    async def save(self, url: Optional[str], tenant_id: int, filename: str) -> str:
        await asyncio.sleep(0.01)
        self.saved.append(url)
        return f"/uploads/tenant-{tenant_id}/{filename}"


@pytest.fixture
def slow_store() -> SlowMediaStore:
    return SlowMediaStore()


@pytest.fixture
def shared_services(slow_store) -> IntakeServices:
    return IntakeServices(
        llm_provider=None,
        media_store=slow_store,
        conversation_lock=ConversationLock(),
        code_locks=KeyedLock(),
    )


@pytest.fixture
def deliver(session_factory, shared_services, message_factory):
    """Handle one message in a fresh session and return the reply text"""
    async def _deliver(text: str = "", **kwargs) -> str:
        async with session_factory() as session:
            bot = AdminBotHandler(session, shared_services)
            response = await bot.handle_message(message_factory(text, **kwargs))
            return response.text
    return _deliver


@pytest.fixture
def stored_state(session_factory):
    async def _state() -> Optional[ActiveConversation]:
        async with session_factory() as session:
            return await StateManager(session).get(TENANT_ID, ADMIN_HANDLE)
    return _state


@pytest.fixture
def stored_vehicles(session_factory):
    async def _vehicles() -> list[Vehicle]:
        async with session_factory() as session:
            result = await session.execute(select(Vehicle).where(Vehicle.tenant_id == TENANT_ID))
            return list(result.scalars().all())
    return _vehicles


@pytest.fixture
async def at_photos(deliver, stored_state):
    await deliver(LISTING)
    assert (await stored_state()).step == IntakeStep.PHOTOS


@pytest.mark.scenario
class TestConcurrentMessages:

    async def test_photo_burst_keeps_every_photo(self, at_photos, deliver, stored_state, slow_store):
        urls = [f"https://cdn.example.com/wa/{n}.jpg" for n in range(1, 4)]

        replies = await asyncio.gather(*(deliver(media_url=url) for url in urls))

        assert replies[0] == messages.first_photo_received(settings.MAX_PHOTOS_PER_VEHICLE)
        assert replies[1:] == ["", ""]
        assert sorted(slow_store.saved) == sorted(urls)

        state = await stored_state()
        assert state.step == IntakeStep.PHOTOS
        assert len(state.draft.photos) == 3
        assert len(set(state.draft.photos)) == 3

    async def test_photo_and_done_advance_once(self, at_photos, deliver, stored_state):
        photo_reply, preview = await asyncio.gather(
            deliver(media_url="https://cdn.example.com/wa/1.jpg"),
            deliver("selesai"),
        )

        assert photo_reply.startswith("✅ Foto pertama diterima!")
        assert preview.startswith("📋 *Preview Data Mobil:*")
        assert "📸 Foto: 1 foto" in preview

        state = await stored_state()
        assert state.step == IntakeStep.CONFIRM
        assert len(state.draft.photos) == 1

    async def test_double_done_advances_once(self, at_photos, deliver, stored_state):
        first, second = await asyncio.gather(deliver("selesai"), deliver("selesai"))

        assert first.startswith("📋 *Preview Data Mobil:*")
        assert second == messages.CONFIRM_REPROMPT
        assert (await stored_state()).step == IntakeStep.CONFIRM

    async def test_double_yes_saves_once(self, at_photos, deliver, stored_state, stored_vehicles):
        await deliver("skip")

        first, second = await asyncio.gather(deliver("ya"), deliver("ya"))

        assert first.startswith("✅ *Mobil Berhasil Diupload!*")
        assert second == messages.NO_ACTIVE_SESSION
        assert [v.display_code for v in await stored_vehicles()] == ["#H01"]
        assert await stored_state() is None
