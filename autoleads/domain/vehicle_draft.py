"""
Vehicle draft types.

``VehicleFields`` is the field set shared by the parser, the LLM contract and the
persisted record. JSON uses camelCase names (``keyFeatures``, ``plateNumber``) so the
LLM contract mirrors the draft; Python code uses snake_case.

A draft is tagged with the flow that owns it (``QuickIntakeDraft`` or
``GuidedIntakeDraft``) and round-trips through the conversation store as JSON.
"""
import enum
import re
from dataclasses import dataclass, field
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic.alias_generators import to_camel

from autoleads.domain.units import parse_amount, parse_price_amount

YEAR_MIN = 2000
YEAR_MAX = 2025


class Transmission(str, enum.Enum):
    MANUAL = "Manual"
    MATIC = "Matic"  # automatic

    @classmethod
    def from_text(cls, value: Any) -> Optional["Transmission"]:
        if isinstance(value, cls):
            return value
        text = str(value or "").strip().lower()
        if text in ("matic", "automatic", "otomatis", "at", "a/t", "auto", "cvt"):
            return cls.MATIC
        if text in ("manual", "mt", "m/t"):
            return cls.MANUAL
        return None


class FuelType(str, enum.Enum):
    BENSIN = "Bensin"
    DIESEL = "Diesel"
    HYBRID = "Hybrid"
    LISTRIK = "Listrik"

    @classmethod
    def from_text(cls, value: Any) -> Optional["FuelType"]:
        if isinstance(value, cls):
            return value
        text = str(value or "").strip().lower()
        if text in ("bensin", "petrol", "gasoline"):
            return cls.BENSIN
        if text in ("diesel", "solar"):
            return cls.DIESEL
        if text == "hybrid":
            return cls.HYBRID
        if text in ("listrik", "electric", "ev"):
            return cls.LISTRIK
        return None


DEFAULT_COLOR = "Silver"
DEFAULT_TRANSMISSION = Transmission.MANUAL
DEFAULT_FUEL_TYPE = FuelType.BENSIN


class VehicleFields(BaseModel):
    """Vehicle attributes as extracted from chat. Every field is optional here."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        protected_namespaces=(),
    )

    brand: Optional[str] = None
    model: Optional[str] = None
    year: Optional[int] = None
    color: Optional[str] = None
    transmission: Optional[Transmission] = None
    km: Optional[int] = None
    price: Optional[int] = None
    fuel_type: Optional[FuelType] = None
    plate_number: Optional[str] = None
    plate_number_clean: Optional[str] = None
    stock_code: Optional[str] = None
    key_features: list[str] = Field(default_factory=list)
    notes: Optional[str] = None

    @field_validator("brand", "model", "color", "plate_number", "plate_number_clean",
                     "stock_code", "notes", mode="before")
    @classmethod
    def _blank_to_none(cls, v: Any) -> Any:
        if v is None:
            return None
        if isinstance(v, str):
            v = v.strip()
            return v or None
        return str(v)

    @field_validator("year", mode="before")
    @classmethod
    def _coerce_year(cls, v: Any) -> Any:
        if isinstance(v, str):
            match = re.search(r"\d{4}", v)
            return int(match.group(0)) if match else None
        return v

    @field_validator("price", mode="before")
    @classmethod
    def _coerce_price(cls, v: Any) -> Any:
        if isinstance(v, str):
            return parse_price_amount(v)
        if isinstance(v, float):
            return int(v)
        return v

    @field_validator("km", mode="before")
    @classmethod
    def _coerce_km(cls, v: Any) -> Any:
        if isinstance(v, str):
            amount, _ = parse_amount(v)
            return amount
        if isinstance(v, float):
            return int(v)
        return v

    @field_validator("transmission", mode="before")
    @classmethod
    def _coerce_transmission(cls, v: Any) -> Any:
        if v is None or v == "":
            return None
        return Transmission.from_text(v)

    @field_validator("fuel_type", mode="before")
    @classmethod
    def _coerce_fuel(cls, v: Any) -> Any:
        if v is None or v == "":
            return None
        return FuelType.from_text(v)

    @field_validator("key_features", mode="before")
    @classmethod
    def _coerce_features(cls, v: Any) -> list[str]:
        if v is None:
            return []
        if isinstance(v, str):
            v = v.split(",")
        if not isinstance(v, (list, tuple)):
            return []
        return [str(item).strip() for item in v if item is not None and str(item).strip()]


class EnhancedCopy(BaseModel):
    """Marketing copy produced for the confirmation step"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    public_name: str
    description: str
    condition_notes: str = ""
    # set when the copy came from the built-in template
    from_template: bool = False
    # colour seen on the first photo, for cross-checking the stated colour
    detected_color: Optional[str] = None


class VehicleDraft(VehicleFields):
    """Fields plus everything the photo and confirm steps accumulate"""

    photos: list[str] = Field(default_factory=list)
    # attachments that arrived without a retrievable URL
    pending_photo_count: int = 0
    pending_photo_notice_sent: bool = False
    photo_limit_notice_sent: bool = False
    enhanced: Optional[EnhancedCopy] = None


class QuickIntakeDraft(VehicleDraft):
    """Draft of the single-message flow: seeded by the extractor"""

    flow: Literal["vehicle_intake"] = "vehicle_intake"
    extraction_method: str = "parser"
    confidence: str = "low"


class GuidedIntakeDraft(VehicleDraft):
    """Draft of the step-by-step flow: filled one step at a time"""

    flow: Literal["vehicle_intake_guided"] = "vehicle_intake_guided"


IntakeDraft = Annotated[
    Union[QuickIntakeDraft, GuidedIntakeDraft],
    Field(discriminator="flow"),
]
_intake_draft_adapter: TypeAdapter[IntakeDraft] = TypeAdapter(IntakeDraft)


def load_draft(data: dict[str, Any]) -> Union[QuickIntakeDraft, GuidedIntakeDraft]:
    """Rebuild a typed draft from the conversation store"""
    return _intake_draft_adapter.validate_python(data)


def dump_draft(draft: VehicleDraft) -> dict[str, Any]:
    return draft.model_dump(mode="json", by_alias=True)


@dataclass(frozen=True)
class FieldError:
    field: str
    message: str


@dataclass
class ValidationResult:
    """Either a usable value or the list of field errors explaining why not"""

    value: Optional[VehicleFields] = None
    errors: list[FieldError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    @property
    def missing_fields(self) -> list[str]:
        return [error.field for error in self.errors]

    @property
    def messages(self) -> list[str]:
        return [error.message for error in self.errors]


def validate_required(fields: VehicleFields) -> ValidationResult:
    """Brand, a year in range and a positive price are needed before confirmation"""
    errors: list[FieldError] = []
    if not fields.brand:
        errors.append(FieldError("brand", "Brand is required"))
    if not fields.year or not (YEAR_MIN <= fields.year <= YEAR_MAX):
        errors.append(FieldError("year", f"Valid year ({YEAR_MIN}-{YEAR_MAX}) is required"))
    if not fields.price or fields.price <= 0:
        errors.append(FieldError("price", "Valid price is required"))
    if errors:
        return ValidationResult(errors=errors)
    return ValidationResult(value=fields)
