"""
Vehicle Model - inventory record produced by the intake flow
"""
import enum
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    BigInteger,
    Column,
    DateTime,
    Enum as SQLEnum,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from autoleads.db.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class VehicleStatus(str, enum.Enum):
    AVAILABLE = "available"
    SOLD = "sold"
    BOOKING = "booking"
    DRAFT = "draft"
    DELETED = "deleted"


class Vehicle(Base):
    """A car in a tenant's inventory"""

    __tablename__ = "vehicles"
    __table_args__ = (
        # soft-deleted rows keep their code, so the constraint covers every status
        UniqueConstraint("tenant_id", "display_code", name="uq_vehicles_tenant_display_code"),
        UniqueConstraint("tenant_id", "slug", name="uq_vehicles_tenant_slug"),
    )

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, nullable=False, index=True)

    display_code = Column(String(10), nullable=False)
    public_name = Column(String(200), nullable=False)
    slug = Column(String(200), nullable=False)

    brand = Column(String(50), nullable=False)
    model = Column(String(100), nullable=False, default="")
    year = Column(Integer, nullable=False)
    color = Column(String(50), nullable=False)
    transmission = Column(String(20), nullable=False)
    km = Column(Integer, nullable=False, default=0)
    price = Column(BigInteger, nullable=False)
    fuel_type = Column(String(20), nullable=True)

    plate_number = Column(String(20), nullable=True)
    plate_number_clean = Column(String(20), nullable=True)
    stock_code = Column(String(20), nullable=True)

    key_features = Column(JSON, default=list)
    condition_notes = Column(Text, nullable=True)
    description = Column(Text, nullable=True)
    photos = Column(JSON, default=list)
    # attachments announced by the transport without a downloadable URL
    pending_photo_count = Column(Integer, nullable=False, default=0)

    status = Column(SQLEnum(VehicleStatus), default=VehicleStatus.AVAILABLE, index=True)
    created_by = Column(String(64), nullable=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
