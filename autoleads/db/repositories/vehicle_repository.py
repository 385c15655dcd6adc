"""
Vehicle Repository - the storage side of display code allocation and vehicle creation
"""
from typing import Optional

from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from autoleads.core.exceptions import DisplayCodeConflictError, VehiclePersistenceError
from autoleads.core.logging import get_logger
from autoleads.db.models.vehicle import Vehicle, VehicleStatus
from autoleads.domain.services.display_code_service import parse_code_number

logger = get_logger(__name__)


class VehicleCreate(BaseModel):
    """Everything needed to insert a vehicle produced by the intake flow"""

    tenant_id: int
    display_code: str
    public_name: str
    slug: str
    brand: str
    model: str = ""
    year: int
    color: str
    transmission: str
    km: int = 0
    price: int
    fuel_type: Optional[str] = None
    plate_number: Optional[str] = None
    plate_number_clean: Optional[str] = None
    stock_code: Optional[str] = None
    key_features: list[str] = Field(default_factory=list)
    condition_notes: Optional[str] = None
    description: Optional[str] = None
    photos: list[str] = Field(default_factory=list)
    pending_photo_count: int = 0
    status: VehicleStatus = VehicleStatus.AVAILABLE
    created_by: Optional[str] = None


class VehicleRepository:
    """Vehicle queries scoped by tenant"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_highest_code(self, tenant_id: int, prefix: str) -> Optional[str]:
        """
        Highest display code with this prefix, deleted vehicles included.

        Compared numerically so "#A100" ranks above "#A99".
        """
        result = await self.db.execute(
            select(Vehicle.display_code).where(
                Vehicle.tenant_id == tenant_id,
                Vehicle.display_code.like(f"#{prefix}%"),
            )
        )
        highest: Optional[str] = None
        highest_number = -1
        for code in result.scalars():
            number = parse_code_number(code)
            if number is not None and number > highest_number:
                highest, highest_number = code, number
        return highest

    async def exists_code(self, tenant_id: int, code: str) -> bool:
        """Exact match in any status"""
        result = await self.db.execute(
            select(Vehicle.id).where(
                Vehicle.tenant_id == tenant_id,
                Vehicle.display_code == code,
            ).limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def get_by_code(self, tenant_id: int, code: str) -> Optional[Vehicle]:
        result = await self.db.execute(
            select(Vehicle).where(
                Vehicle.tenant_id == tenant_id,
                Vehicle.display_code == code,
            )
        )
        return result.scalar_one_or_none()

    async def create(self, record: VehicleCreate) -> Vehicle:
        """
        Insert a vehicle.

        Raises:
            DisplayCodeConflictError: the code was inserted concurrently.
            VehiclePersistenceError: any other integrity failure.
        """
        vehicle = Vehicle(**record.model_dump())
        try:
            async with self.db.begin_nested():
                self.db.add(vehicle)
            await self.db.commit()
        except IntegrityError as exc:
            # the savepoint is already rolled back, the outer transaction is intact
            reason = str(exc.orig)
            if "display_code" in reason:
                raise DisplayCodeConflictError(record.tenant_id, record.display_code) from exc
            logger.error(
                "Vehicle insert violated a constraint",
                extra_data={"tenant_id": record.tenant_id, "code": record.display_code, "error": reason},
            )
            raise VehiclePersistenceError(record.tenant_id, "integrity error") from exc

        await self.db.refresh(vehicle)
        logger.info(
            "Vehicle created",
            extra_data={"tenant_id": record.tenant_id, "vehicle_id": vehicle.id, "code": vehicle.display_code},
        )
        return vehicle
