"""
Tests for the conversation store
"""
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from autoleads.core.exceptions import InvalidStateTransitionError, SessionNotFoundError
from autoleads.db.models.conversation_state import ConversationState
from autoleads.domain.vehicle_draft import GuidedIntakeDraft, QuickIntakeDraft
from autoleads.state_machine.manager import StateManager
from autoleads.state_machine.states import (
    FLOW_STEPS,
    IntakeFlow,
    IntakeStep,
    is_valid_transition,
    next_step,
    step_at,
)

TENANT_ID = 1
USER = "6281234567890"


class TestFlowTables:

    @pytest.mark.unit
    def test_quick_flow(self):
        assert FLOW_STEPS[IntakeFlow.VEHICLE_INTAKE] == (IntakeStep.PHOTOS, IntakeStep.CONFIRM)
        assert next_step(IntakeFlow.VEHICLE_INTAKE, IntakeStep.PHOTOS) == IntakeStep.CONFIRM
        assert next_step(IntakeFlow.VEHICLE_INTAKE, IntakeStep.CONFIRM) is None

    @pytest.mark.unit
    def test_guided_flow_order(self):
        steps = FLOW_STEPS[IntakeFlow.VEHICLE_INTAKE_GUIDED]

        assert len(steps) == 8
        assert steps[0] == IntakeStep.BRAND_MODEL
        assert steps[-2:] == (IntakeStep.PHOTOS, IntakeStep.CONFIRM)
        for current, target in zip(steps, steps[1:]):
            assert is_valid_transition(IntakeFlow.VEHICLE_INTAKE_GUIDED, current, target)

    @pytest.mark.unit
    def test_no_skipping_steps(self):
        assert not is_valid_transition(
            IntakeFlow.VEHICLE_INTAKE_GUIDED, IntakeStep.BRAND_MODEL, IntakeStep.PRICE
        )

    @pytest.mark.unit
    def test_step_at_out_of_range(self):
        with pytest.raises(IndexError):
            step_at(IntakeFlow.VEHICLE_INTAKE, 2)


class TestStateManager:

    @pytest.mark.integration
    async def test_no_conversation(self, db_session):
        assert await StateManager(db_session).get(TENANT_ID, USER) is None

    @pytest.mark.integration
    async def test_start_and_get(self, db_session):
        manager = StateManager(db_session)
        draft = QuickIntakeDraft(brand="Honda", year=2019, price=187_000_000, confidence="high")

        started = await manager.start(TENANT_ID, USER, IntakeFlow.VEHICLE_INTAKE, draft)
        loaded = await manager.get(TENANT_ID, USER)

        assert started.step == IntakeStep.PHOTOS
        assert loaded.flow == IntakeFlow.VEHICLE_INTAKE
        assert isinstance(loaded.draft, QuickIntakeDraft)
        assert loaded.draft.brand == "Honda"
        assert loaded.draft.confidence == "high"
        assert loaded.expires_at > datetime.now(timezone.utc)

    @pytest.mark.integration
    async def test_advance_keeps_draft(self, db_session):
        manager = StateManager(db_session)
        draft = GuidedIntakeDraft()
        await manager.start(TENANT_ID, USER, IntakeFlow.VEHICLE_INTAKE_GUIDED, draft)

        updated = draft.model_copy(update={"brand": "Toyota", "model": "Avanza"})
        advanced = await manager.advance(TENANT_ID, USER, updated)

        assert advanced.step == IntakeStep.YEAR_COLOR
        reloaded = await manager.get(TENANT_ID, USER)
        assert reloaded.step == IntakeStep.YEAR_COLOR
        assert reloaded.draft.model == "Avanza"

    @pytest.mark.integration
    async def test_update_draft_keeps_step(self, db_session):
        manager = StateManager(db_session)
        draft = QuickIntakeDraft(brand="Honda", year=2019, price=1)
        await manager.start(TENANT_ID, USER, IntakeFlow.VEHICLE_INTAKE, draft)

        draft.photos.append("/uploads/tenant-1/a.jpg")
        await manager.update_draft(TENANT_ID, USER, draft)

        reloaded = await manager.get(TENANT_ID, USER)
        assert reloaded.step == IntakeStep.PHOTOS
        assert reloaded.draft.photos == ["/uploads/tenant-1/a.jpg"]

    @pytest.mark.integration
    async def test_advance_past_last_step(self, db_session):
        manager = StateManager(db_session)
        draft = QuickIntakeDraft(brand="Honda", year=2019, price=1)
        await manager.start(TENANT_ID, USER, IntakeFlow.VEHICLE_INTAKE, draft)
        await manager.advance(TENANT_ID, USER, draft)

        with pytest.raises(InvalidStateTransitionError):
            await manager.advance(TENANT_ID, USER, draft)

    @pytest.mark.integration
    async def test_advance_without_conversation(self, db_session):
        with pytest.raises(SessionNotFoundError):
            await StateManager(db_session).advance(TENANT_ID, USER, GuidedIntakeDraft())

    @pytest.mark.integration
    async def test_start_replaces_active_flow(self, db_session):
        manager = StateManager(db_session)
        await manager.start(TENANT_ID, USER, IntakeFlow.VEHICLE_INTAKE_GUIDED, GuidedIntakeDraft(brand="Toyota"))

        await manager.start(TENANT_ID, USER, IntakeFlow.VEHICLE_INTAKE, QuickIntakeDraft(brand="Honda"))

        loaded = await manager.get(TENANT_ID, USER)
        assert loaded.flow == IntakeFlow.VEHICLE_INTAKE
        assert loaded.draft.brand == "Honda"
        rows = (await db_session.execute(select(ConversationState))).scalars().all()
        assert len(rows) == 1

    @pytest.mark.integration
    async def test_draft_must_match_flow(self, db_session):
        with pytest.raises(ValueError):
            await StateManager(db_session).start(
                TENANT_ID, USER, IntakeFlow.VEHICLE_INTAKE, GuidedIntakeDraft()
            )

    @pytest.mark.integration
    async def test_clear(self, db_session):
        manager = StateManager(db_session)
        await manager.start(TENANT_ID, USER, IntakeFlow.VEHICLE_INTAKE_GUIDED, GuidedIntakeDraft())

        assert await manager.clear(TENANT_ID, USER) is True
        assert await manager.clear(TENANT_ID, USER) is False
        assert await manager.get(TENANT_ID, USER) is None

    @pytest.mark.integration
    async def test_conversations_are_per_tenant_and_user(self, db_session):
        manager = StateManager(db_session)
        await manager.start(TENANT_ID, USER, IntakeFlow.VEHICLE_INTAKE_GUIDED, GuidedIntakeDraft())

        assert await manager.get(2, USER) is None
        assert await manager.get(TENANT_ID, "6289999999999") is None

    @pytest.mark.integration
    async def test_expired_conversation_is_removed(self, db_session):
        manager = StateManager(db_session)
        await manager.start(TENANT_ID, USER, IntakeFlow.VEHICLE_INTAKE_GUIDED, GuidedIntakeDraft())
        row = (await db_session.execute(select(ConversationState))).scalar_one()
        row.expires_at = datetime.now(timezone.utc) - timedelta(minutes=1)
        await db_session.commit()

        assert await manager.get(TENANT_ID, USER) is None
        assert (await db_session.execute(select(ConversationState))).first() is None

    @pytest.mark.integration
    async def test_unreadable_state_is_discarded(self, db_session):
        db_session.add(ConversationState(
            tenant_id=TENANT_ID,
            user_handle=USER,
            flow_name="vehicle_intake",
            step_index=5,
            draft={"flow": "vehicle_intake"},
            scope="admin",
            expires_at=datetime.now(timezone.utc) + timedelta(minutes=5),
        ))
        await db_session.commit()

        assert await StateManager(db_session).get(TENANT_ID, USER) is None
        assert (await db_session.execute(select(ConversationState))).first() is None

    @pytest.mark.integration
    async def test_unknown_flow_is_discarded(self, db_session):
        db_session.add(ConversationState(
            tenant_id=TENANT_ID,
            user_handle=USER,
            flow_name="legacy_flow",
            step_index=0,
            draft={},
            scope="admin",
            expires_at=datetime.now(timezone.utc) + timedelta(minutes=5),
        ))
        await db_session.commit()

        assert await StateManager(db_session).get(TENANT_ID, USER) is None
