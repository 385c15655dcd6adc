"""
Conversation State Model - one active intake flow per (tenant, user)
"""
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, Integer, String, UniqueConstraint

from autoleads.db.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConversationState(Base):
    """Which flow and step a user is in, plus the draft collected so far"""

    __tablename__ = "conversation_states"
    __table_args__ = (
        UniqueConstraint("tenant_id", "user_handle", name="uq_conversation_states_tenant_user"),
    )

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, nullable=False, index=True)
    user_handle = Column(String(64), nullable=False)

    flow_name = Column(String(50), nullable=False)
    step_index = Column(Integer, nullable=False, default=0)
    # serialized VehicleDraft, tagged with its flow
    draft = Column(JSON, default=dict)
    scope = Column(String(20), nullable=False, default="admin")

    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
    expires_at = Column(DateTime(timezone=True), nullable=False)
