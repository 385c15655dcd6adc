"""
Natural language vehicle extraction.

One free-form admin message ("freed matic 2012 harga 145jt km 145rb") becomes a
validated, normalized VehicleFields. The language model is tried first; the rule-based
parser handles the message when the model is unavailable, times out, returns something
unparsable or misses a required field. extract() never raises.
"""
import enum
from dataclasses import dataclass, field
from typing import Optional

from pydantic import ValidationError

from autoleads.core.config import settings
from autoleads.core.exceptions import ExternalServiceException
from autoleads.core.logging import get_logger, log_async_operation
from autoleads.domain.services import parser
from autoleads.domain.services.llm.base_provider import BaseLLMProvider
from autoleads.domain.services.llm.json_response import extract_json_object
from autoleads.domain.vehicle_draft import (
    DEFAULT_COLOR,
    DEFAULT_FUEL_TYPE,
    DEFAULT_TRANSMISSION,
    YEAR_MAX,
    YEAR_MIN,
    VehicleFields,
    validate_required,
)

logger = get_logger(__name__)


class ExtractionMethod(str, enum.Enum):
    LLM = "llm"
    PARSER = "parser"
    FAILED = "failed"


class Confidence(str, enum.Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


HIGH_CONFIDENCE_SCORE = 15
MEDIUM_CONFIDENCE_SCORE = 10


@dataclass
class ExtractionResult:
    success: bool
    data: VehicleFields
    method: ExtractionMethod
    confidence: Confidence
    raw_input: str
    errors: list[str] = field(default_factory=list)
    missing_fields: list[str] = field(default_factory=list)


def confidence_score(data: VehicleFields) -> int:
    """
    Weighted completeness of normalized data.

    Required fields (brand, year, price) weigh 3, important ones (model, km > 0,
    transmission) 2, enrichment (non-default color, features, notes) 1.
    """
    score = 0
    if data.brand:
        score += 3
    if data.year:
        score += 3
    if data.price:
        score += 3

    if data.model:
        score += 2
    if data.km and data.km > 0:
        score += 2
    if data.transmission:
        score += 2

    if data.color and data.color != DEFAULT_COLOR:
        score += 1
    if data.key_features:
        score += 1
    if data.notes:
        score += 1
    return score


def calculate_confidence(data: VehicleFields) -> Confidence:
    score = confidence_score(data)
    if score >= HIGH_CONFIDENCE_SCORE:
        return Confidence.HIGH
    if score >= MEDIUM_CONFIDENCE_SCORE:
        return Confidence.MEDIUM
    return Confidence.LOW


def normalize_fields(data: VehicleFields) -> VehicleFields:
    """Trimmed strings, clean plate variant, non-empty feature list, deterministic defaults"""
    plate = data.plate_number.upper() if data.plate_number else None
    plate_clean = "".join(plate.split()) if plate else None
    return data.model_copy(update={
        "brand": parser.normalize_brand(data.brand) if data.brand else None,
        "model": data.model or "",
        "color": data.color or DEFAULT_COLOR,
        "transmission": data.transmission or DEFAULT_TRANSMISSION,
        "km": data.km or 0,
        "fuel_type": data.fuel_type or DEFAULT_FUEL_TYPE,
        "plate_number": plate,
        "plate_number_clean": plate_clean,
        "key_features": [feature for feature in data.key_features if feature.strip()],
    })


def build_extraction_prompt(text: str) -> str:
    return f"""You are a data extraction specialist for a used car dealership system.

Extract car information from this natural language message:
"{text}"

Extract the following fields (use null if not mentioned):
- brand: Car brand (Toyota, Honda, Daihatsu, Mitsubishi, Suzuki, Nissan, Mazda, Mercedes-Benz, BMW, etc.)
- model: Car model name (Avanza, Jazz, Freed, Xenia, etc.)
- year: Manufacturing year ({YEAR_MIN}-{YEAR_MAX})
- color: Car color (Hitam, Putih, Silver, Abu, Merah, Biru, etc.)
- transmission: "Manual" or "Matic"
- km: Odometer in kilometers (number only, no separators)
- price: Price in Rupiah (number only)
- plateNumber: License plate (format: B 1234 ABC)
- keyFeatures: Array of key features (velg racing, spoiler, sunroof, etc.)
- notes: Additional condition notes
- fuelType: "Bensin", "Diesel", "Hybrid", or "Listrik"

Rules:
1. Price: "145jt" = 145000000, "145juta" = 145000000
2. Km: "145rb" = 145000, "145k" = 145000
3. Brand names in proper case (Honda, not honda)
4. Transmission is only "Manual" or "Matic", never "MT" or "AT"
5. If the model is given without a brand (like "freed"), infer the brand (Honda)
6. Color defaults to "{DEFAULT_COLOR}" when not stated
7. Transmission defaults to "{DEFAULT_TRANSMISSION.value}" when not stated

Common brand-model associations:
- Freed, Jazz, City, Civic, CR-V, HR-V, Brio -> Honda
- Avanza, Innova, Fortuner, Rush, Calya, Yaris -> Toyota
- Xenia, Terios, Ayla, Sigra, Gran Max -> Daihatsu
- Pajero, Xpander, L300 -> Mitsubishi
- Ertiga, Baleno, Swift, Wagon R -> Suzuki

Return ONLY one JSON object, no explanation:
{{
  "brand": "Honda",
  "model": "Freed PSD",
  "year": 2012,
  "color": "Silver",
  "transmission": "Matic",
  "km": 145515,
  "price": 145000000,
  "plateNumber": null,
  "keyFeatures": ["Kondisi Bagus"],
  "notes": null,
  "fuelType": "Bensin"
}}"""


class NaturalLanguageExtractor:
    """LLM-first extraction with the rule-based parser as fallback"""

    def __init__(
        self,
        provider: Optional[BaseLLMProvider],
        *,
        max_attempts: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
    ) -> None:
        self._provider = provider
        self._max_attempts = max_attempts or settings.EXTRACTION_MAX_ATTEMPTS
        self._backoff_seconds = (
            settings.LLM_RETRY_BACKOFF_SECONDS if backoff_seconds is None else backoff_seconds
        )

    @log_async_operation("vehicle_extraction")
    async def extract(self, text: str) -> ExtractionResult:
        raw_input = text or ""

        if self._provider is not None:
            llm_result = await self._extract_with_llm(raw_input)
            if llm_result is not None and llm_result.success:
                return llm_result
            logger.info(
                "LLM extraction unusable, falling back to parser",
                extra_data={
                    "errors": llm_result.errors if llm_result else [],
                },
            )

        return self.extract_with_parser(raw_input)

    async def _extract_with_llm(self, text: str) -> Optional[ExtractionResult]:
        """None when the model could not be asked or gave no JSON"""
        try:
            response = await self._provider.generate_with_retry(
                build_extraction_prompt(text),
                max_attempts=self._max_attempts,
                backoff_seconds=self._backoff_seconds,
            )
        except ExternalServiceException as exc:
            logger.warning(
                "LLM extraction call failed",
                extra_data={"error": exc.message, "error_code": exc.error_code.value},
            )
            return None

        payload = extract_json_object(response)
        if payload is None:
            logger.warning(
                "LLM extraction returned no JSON object",
                extra_data={"response_preview": response[:200]},
            )
            return None

        try:
            data = VehicleFields.model_validate(payload)
        except ValidationError as exc:
            logger.warning(
                "LLM extraction JSON did not match the vehicle fields",
                extra_data={"error_count": exc.error_count()},
            )
            return None

        return self._finish(text, data, ExtractionMethod.LLM)

    def extract_with_parser(self, text: str) -> ExtractionResult:
        return self._finish(text, parser.parse_all_in_one(text), ExtractionMethod.PARSER)

    @staticmethod
    def _finish(text: str, data: VehicleFields, method: ExtractionMethod) -> ExtractionResult:
        validation = validate_required(data)
        if not validation.ok:
            return ExtractionResult(
                success=False,
                data=data,
                method=ExtractionMethod.FAILED,
                confidence=Confidence.LOW,
                raw_input=text,
                errors=validation.messages,
                missing_fields=validation.missing_fields,
            )

        normalized = normalize_fields(data)
        return ExtractionResult(
            success=True,
            data=normalized,
            method=method,
            confidence=calculate_confidence(normalized),
            raw_input=text,
        )
