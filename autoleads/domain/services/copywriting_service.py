"""
Listing copywriting for the confirmation step.

enhance() looks at the first photo (when there is one), picks a narrative style and a
benefit angle from a stable hash of the vehicle, and asks the model for a title,
description and condition notes. Any failure ends in the fixed template, so the
confirmation step always has copy to show.
"""
import hashlib
from dataclasses import dataclass
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from autoleads.core.exceptions import ExternalServiceException
from autoleads.core.formatting import format_km, format_price_short
from autoleads.core.logging import get_logger, log_async_operation
from autoleads.domain.services.llm.base_provider import BaseLLMProvider
from autoleads.domain.services.llm.json_response import extract_json_object
from autoleads.domain.vehicle_draft import (
    DEFAULT_COLOR,
    DEFAULT_TRANSMISSION,
    EnhancedCopy,
    VehicleDraft,
    VehicleFields,
)

logger = get_logger(__name__)

MAX_PUBLIC_NAME_LENGTH = 120
TEMPLATE_CONDITION_NOTES = "Kondisi terawat, siap pakai, surat-surat lengkap."


@dataclass(frozen=True)
class NarrativeStyle:
    key: str
    instruction: str


@dataclass(frozen=True)
class BenefitAngle:
    key: str
    instruction: str


NARRATIVE_STYLES: tuple[NarrativeStyle, ...] = (
    NarrativeStyle(
        "storytelling",
        "Tulis seperti bercerita: gambarkan momen pembeli memakai mobil ini sehari-hari.",
    ),
    NarrativeStyle(
        "professional",
        "Gunakan nada profesional dan ringkas seperti katalog showroom premium, fakta dulu lalu nilai tambah.",
    ),
    NarrativeStyle(
        "friendly",
        "Gunakan nada santai dan akrab seperti ngobrol dengan teman, tetap sopan.",
    ),
    NarrativeStyle(
        "urgency",
        "Tekankan bahwa unit seperti ini jarang dan cepat laku, tanpa berlebihan atau menjanjikan hal yang tidak ada.",
    ),
)

BENEFIT_ANGLES: tuple[BenefitAngle, ...] = (
    BenefitAngle("family", "Fokus pada kenyamanan dan keamanan untuk keluarga."),
    BenefitAngle("economy", "Fokus pada irit bahan bakar, biaya perawatan rendah dan harga yang masuk akal."),
    BenefitAngle("performance", "Fokus pada tenaga mesin, handling dan pengalaman berkendara."),
    BenefitAngle("value", "Fokus pada nilai jual kembali dan investasi yang aman."),
    BenefitAngle("lifestyle", "Fokus pada gaya hidup, tampilan dan kebanggaan pemilik."),
)


@dataclass(frozen=True)
class CopyVariation:
    style: NarrativeStyle
    angle: BenefitAngle


def variation_hash(brand: Optional[str], model: Optional[str], year: Optional[int], price: Optional[int]) -> int:
    """Unsigned 32-bit value from SHA-256 of "brand|model|year|price" (UTF-8)"""
    key = f"{brand or ''}|{model or ''}|{year or ''}|{price or ''}"
    return int.from_bytes(hashlib.sha256(key.encode("utf-8")).digest()[:4], "big")


def select_variation(fields: VehicleFields) -> CopyVariation:
    value = variation_hash(fields.brand, fields.model, fields.year, fields.price)
    return CopyVariation(
        style=NARRATIVE_STYLES[value % len(NARRATIVE_STYLES)],
        angle=BENEFIT_ANGLES[(value // len(NARRATIVE_STYLES)) % len(BENEFIT_ANGLES)],
    )


class VisionAnalysis(BaseModel):
    """What the vision model saw on the first photo"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    actual_color: Optional[str] = None
    variant: Optional[str] = None
    paint_condition: Optional[str] = None
    modifications: list[str] = Field(default_factory=list)
    visible_features: list[str] = Field(default_factory=list)
    overall_condition: Optional[str] = None
    selling_points: list[str] = Field(default_factory=list)

    @field_validator("modifications", "visible_features", "selling_points", mode="before")
    @classmethod
    def _as_list(cls, v):
        if v is None:
            return []
        if isinstance(v, str):
            return [part.strip() for part in v.split(",") if part.strip()]
        if not isinstance(v, (list, tuple)):
            return []
        return [str(item).strip() for item in v if item and str(item).strip()]


VISION_PROMPT = """Kamu adalah inspektur mobil bekas. Analisis foto mobil ini.

Kembalikan HANYA satu objek JSON:
{
  "actualColor": "warna mobil yang terlihat (contoh: Hitam, Putih, Silver)",
  "variant": "varian/tipe jika terlihat (contoh: RS, TRD, Veloz) atau null",
  "paintCondition": "kondisi cat singkat",
  "modifications": ["modifikasi yang terlihat"],
  "visibleFeatures": ["fitur yang terlihat, contoh: velg racing, foglamp"],
  "overallCondition": "kesan kondisi keseluruhan dalam satu kalimat",
  "sellingPoints": ["poin jual yang terlihat dari foto"]
}"""


def _vehicle_lines(draft: VehicleDraft) -> str:
    return "\n".join([
        f"- Brand: {draft.brand}",
        f"- Model: {draft.model or '-'}",
        f"- Tahun: {draft.year}",
        f"- Warna: {draft.color or DEFAULT_COLOR}",
        f"- Transmisi: {(draft.transmission or DEFAULT_TRANSMISSION).value}",
        f"- KM: {format_km(draft.km) if draft.km else 'N/A'}",
        f"- Harga: {format_price_short(draft.price)}",
        f"- Fitur: {', '.join(draft.key_features) if draft.key_features else 'Standard'}",
        f"- Catatan: {draft.notes or 'N/A'}",
    ])


def _vision_lines(vision: VisionAnalysis) -> str:
    lines = []
    if vision.actual_color:
        lines.append(f"- Warna terlihat di foto: {vision.actual_color}")
    if vision.variant:
        lines.append(f"- Varian terlihat: {vision.variant}")
    if vision.paint_condition:
        lines.append(f"- Kondisi cat: {vision.paint_condition}")
    if vision.modifications:
        lines.append(f"- Modifikasi: {', '.join(vision.modifications)}")
    if vision.visible_features:
        lines.append(f"- Fitur terlihat: {', '.join(vision.visible_features)}")
    if vision.overall_condition:
        lines.append(f"- Kondisi umum: {vision.overall_condition}")
    if vision.selling_points:
        lines.append(f"- Poin jual: {', '.join(vision.selling_points)}")
    return "\n".join(lines)


def build_copy_prompt(draft: VehicleDraft, variation: CopyVariation, vision: Optional[VisionAnalysis]) -> str:
    vision_block = ""
    if vision is not None:
        details = _vision_lines(vision)
        if details:
            vision_block = f"\nHasil analisis foto:\n{details}\n"

    return f"""Kamu adalah copywriter profesional untuk showroom mobil bekas berkualitas.

Data mobil:
{_vehicle_lines(draft)}
{vision_block}
Gaya penulisan: {variation.style.instruction}
Sudut manfaat: {variation.angle.instruction}

Buatkan:
1. publicName: Brand Model Tahun Warna (kode unit ditambahkan otomatis, jangan tulis kode)
2. description: 2-3 kalimat menarik, sesuai gaya dan sudut di atas
3. conditionNotes: 1-2 kalimat tentang kondisi dan kelengkapan

Kembalikan HANYA satu objek JSON:
{{
  "publicName": "...",
  "description": "...",
  "conditionNotes": "..."
}}

Gunakan bahasa Indonesia yang natural. Jangan mengarang fitur yang tidak disebutkan."""


def _clean_public_name(name: str) -> str:
    # the code is appended at save time
    name = " ".join(name.replace("#", " ").split())
    return name[:MAX_PUBLIC_NAME_LENGTH].strip()


def template_copy(draft: VehicleDraft, detected_color: Optional[str] = None) -> EnhancedCopy:
    """Copy assembled from the draft alone"""
    color = draft.color or DEFAULT_COLOR
    transmission = (draft.transmission or DEFAULT_TRANSMISSION).value
    title = " ".join(part for part in (draft.brand, draft.model, str(draft.year), color) if part)
    vehicle = " ".join(part for part in (draft.brand, draft.model) if part)
    description = (
        f"{vehicle} tahun {draft.year} dengan transmisi {transmission}, "
        f"kondisi terawat dan siap pakai. Harga {format_price_short(draft.price)} negotiable."
    )
    return EnhancedCopy(
        public_name=_clean_public_name(title),
        description=description,
        condition_notes=draft.notes or TEMPLATE_CONDITION_NOTES,
        from_template=True,
        detected_color=detected_color,
    )


class CopywritingEnhancer:
    """Vision check plus one generation call, with the template as the floor"""

    def __init__(self, provider: Optional[BaseLLMProvider]) -> None:
        self._provider = provider

    async def analyze_first_photo(self, draft: VehicleDraft) -> Optional[VisionAnalysis]:
        """Vision data for the first photo; None when there is no photo or the call fails"""
        if self._provider is None or not draft.photos:
            return None
        try:
            response = await self._provider.analyze_image(draft.photos[0], VISION_PROMPT)
        except ExternalServiceException as exc:
            logger.warning(
                "Vision analysis failed, continuing without it",
                extra_data={"error": exc.message, "error_code": exc.error_code.value},
            )
            return None

        payload = extract_json_object(response)
        if payload is None:
            logger.warning("Vision analysis returned no JSON object")
            return None
        try:
            return VisionAnalysis.model_validate(payload)
        except (ValueError, TypeError) as exc:
            logger.warning(
                "Vision analysis JSON did not match",
                extra_data={"error": str(exc)[:200]},
            )
            return None

    @log_async_operation("listing_copywriting")
    async def enhance(self, draft: VehicleDraft) -> EnhancedCopy:
        vision = await self.analyze_first_photo(draft)
        detected_color = vision.actual_color if vision else None

        if self._provider is None:
            return template_copy(draft, detected_color)

        variation = select_variation(draft)
        try:
            response = await self._provider.generate(build_copy_prompt(draft, variation, vision))
        except ExternalServiceException as exc:
            logger.warning(
                "Copy generation failed, using template",
                extra_data={"error": exc.message, "style": variation.style.key, "angle": variation.angle.key},
            )
            return template_copy(draft, detected_color)

        payload = extract_json_object(response)
        try:
            if payload is None:
                raise ValueError("no JSON object in response")
            generated = EnhancedCopy.model_validate(payload)
        except (ValueError, TypeError) as exc:
            logger.warning(
                "Copy generation returned unusable JSON, using template",
                extra_data={"error": str(exc)[:200]},
            )
            return template_copy(draft, detected_color)

        public_name = _clean_public_name(generated.public_name)
        if not public_name or not generated.description.strip():
            return template_copy(draft, detected_color)

        logger.info(
            "Listing copy generated",
            extra_data={
                "style": variation.style.key,
                "angle": variation.angle.key,
                "vision": vision is not None,
            },
        )
        return EnhancedCopy(
            public_name=public_name,
            description=generated.description.strip(),
            condition_notes=(generated.condition_notes or "").strip() or draft.notes or TEMPLATE_CONDITION_NOTES,
            detected_color=detected_color,
        )
