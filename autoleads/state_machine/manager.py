"""
State Manager - the conversation store for intake flows.

One row per (tenant, user). Every write commits and pushes the expiry forward; an
expired or unreadable row is deleted on read and reported as absent. Callers serialize
access per conversation (see autoleads.core.locks.ConversationLock).
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Union

from pydantic import ValidationError
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from autoleads.core.config import settings
from autoleads.core.exceptions import InvalidStateTransitionError, SessionNotFoundError
from autoleads.core.logging import get_logger
from autoleads.core.validation import mask_handle
from autoleads.db.models.conversation_state import ConversationState
from autoleads.domain.vehicle_draft import (
    GuidedIntakeDraft,
    QuickIntakeDraft,
    dump_draft,
    load_draft,
)
from autoleads.state_machine.states import (
    ConversationScope,
    IntakeFlow,
    IntakeStep,
    next_step,
    step_at,
    step_index,
)

logger = get_logger(__name__)

IntakeDraftModel = Union[QuickIntakeDraft, GuidedIntakeDraft]


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass
class ActiveConversation:
    tenant_id: int
    user_handle: str
    flow: IntakeFlow
    step: IntakeStep
    draft: IntakeDraftModel
    scope: ConversationScope
    expires_at: datetime


class StateManager:
    """Reads and writes the active intake conversation of a user"""

    def __init__(self, db: AsyncSession, expiry_minutes: Optional[int] = None):
        self.db = db
        self._expiry = timedelta(minutes=expiry_minutes or settings.CONVERSATION_EXPIRY_MINUTES)

    async def _load_row(self, tenant_id: int, user_handle: str) -> Optional[ConversationState]:
        result = await self.db.execute(
            select(ConversationState).where(
                ConversationState.tenant_id == tenant_id,
                ConversationState.user_handle == user_handle,
            )
            # always the latest committed step and draft, never an identity-map copy
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    def _to_active(self, row: ConversationState) -> ActiveConversation:
        flow = IntakeFlow(row.flow_name)
        return ActiveConversation(
            tenant_id=row.tenant_id,
            user_handle=row.user_handle,
            flow=flow,
            step=step_at(flow, row.step_index),
            draft=load_draft(row.draft or {}),
            scope=ConversationScope(row.scope),
            expires_at=_as_utc(row.expires_at),
        )

    async def get(self, tenant_id: int, user_handle: str) -> Optional[ActiveConversation]:
        """Active conversation, or None when there is none or it expired"""
        row = await self._load_row(tenant_id, user_handle)
        if row is None:
            return None

        if _as_utc(row.expires_at) <= datetime.now(timezone.utc):
            logger.info(
                "Conversation expired",
                extra_data={"tenant_id": tenant_id, "user": mask_handle(user_handle), "flow": row.flow_name},
            )
            await self._delete_row(row)
            return None

        try:
            return self._to_active(row)
        except (ValueError, IndexError, ValidationError) as exc:
            logger.warning(
                "Discarding unreadable conversation state",
                extra_data={
                    "tenant_id": tenant_id,
                    "user": mask_handle(user_handle),
                    "flow": row.flow_name,
                    "step_index": row.step_index,
                    "error": str(exc),
                },
            )
            await self._delete_row(row)
            return None

    async def start(
        self,
        tenant_id: int,
        user_handle: str,
        flow: IntakeFlow,
        draft: IntakeDraftModel,
        scope: ConversationScope = ConversationScope.ADMIN,
    ) -> ActiveConversation:
        """Begin a flow at its first step, replacing any flow the user was in"""
        if draft.flow != flow.value:
            raise ValueError(f"Draft for {draft.flow} cannot start {flow.value}")

        row = await self._load_row(tenant_id, user_handle)
        if row is None:
            row = ConversationState(tenant_id=tenant_id, user_handle=user_handle)
            self.db.add(row)
        elif row.flow_name:
            logger.info(
                "Replacing active conversation",
                extra_data={"tenant_id": tenant_id, "user": mask_handle(user_handle), "old_flow": row.flow_name},
            )

        row.flow_name = flow.value
        row.step_index = 0
        row.scope = scope.value
        row.draft = dump_draft(draft)
        row.expires_at = datetime.now(timezone.utc) + self._expiry
        await self.db.commit()
        return self._to_active(row)

    async def advance(
        self,
        tenant_id: int,
        user_handle: str,
        draft: IntakeDraftModel,
    ) -> ActiveConversation:
        """
        Move to the next step of the flow and store the draft.

        Raises:
            SessionNotFoundError: no conversation for this user.
            InvalidStateTransitionError: the current step is the last one.
        """
        row = await self._require_row(tenant_id, user_handle)
        flow = IntakeFlow(row.flow_name)
        current = step_at(flow, row.step_index)
        target = next_step(flow, current)
        if target is None:
            raise InvalidStateTransitionError(flow.value, current.value)

        row.step_index = step_index(flow, target)
        row.draft = dump_draft(draft)
        row.expires_at = datetime.now(timezone.utc) + self._expiry
        await self.db.commit()
        logger.debug(
            "Conversation advanced",
            extra_data={"tenant_id": tenant_id, "flow": flow.value, "from": current.value, "to": target.value},
        )
        return self._to_active(row)

    async def update_draft(
        self,
        tenant_id: int,
        user_handle: str,
        draft: IntakeDraftModel,
    ) -> ActiveConversation:
        """Store the draft without changing step"""
        row = await self._require_row(tenant_id, user_handle)
        # new dict so SQLAlchemy sees the JSON column change
        row.draft = dump_draft(draft)
        row.expires_at = datetime.now(timezone.utc) + self._expiry
        await self.db.commit()
        return self._to_active(row)

    async def clear(self, tenant_id: int, user_handle: str) -> bool:
        """Delete the conversation. Returns whether one existed."""
        result = await self.db.execute(
            delete(ConversationState).where(
                ConversationState.tenant_id == tenant_id,
                ConversationState.user_handle == user_handle,
            )
        )
        await self.db.commit()
        return bool(result.rowcount)

    async def _require_row(self, tenant_id: int, user_handle: str) -> ConversationState:
        row = await self._load_row(tenant_id, user_handle)
        if row is None:
            raise SessionNotFoundError(tenant_id, user_handle)
        return row

    async def _delete_row(self, row: ConversationState) -> None:
        await self.db.delete(row)
        await self.db.commit()
