"""
Rule-based vehicle parser.

Pure functions over chat text: no I/O, no configuration, never raises. This is the
path the intake flow falls back to when the language model is unavailable, and the
only path the step-by-step flow uses.
"""
import re
from typing import Optional

from autoleads.domain.units import apply_unit, parse_price_amount
from autoleads.domain.vehicle_draft import (
    DEFAULT_COLOR,
    DEFAULT_TRANSMISSION,
    YEAR_MAX,
    YEAR_MIN,
    FuelType,
    Transmission,
    VehicleFields,
)

# Priority order: the first brand found in this list wins.
BRANDS = [
    "Toyota", "Honda", "Daihatsu", "Mitsubishi", "Suzuki", "Nissan",
    "Mazda", "Isuzu", "Ford", "Chevrolet", "Hyundai", "Kia", "BMW",
    "Mercedes-Benz", "Mercy", "Audi", "Volkswagen", "VW",
]
BRAND_ALIASES = {
    "mercy": "Mercedes-Benz",
    "mercedes": "Mercedes-Benz",
    "vw": "Volkswagen",
}
_CANONICAL_BRANDS = {brand.lower(): brand for brand in BRANDS}

# Model names common enough on the lot to imply the brand when it is omitted.
MODEL_BRAND_HINTS = {
    "freed": "Honda", "jazz": "Honda", "city": "Honda", "civic": "Honda",
    "cr-v": "Honda", "crv": "Honda", "hr-v": "Honda", "hrv": "Honda",
    "br-v": "Honda", "brv": "Honda", "brio": "Honda", "mobilio": "Honda",
    "avanza": "Toyota", "innova": "Toyota", "fortuner": "Toyota", "rush": "Toyota",
    "calya": "Toyota", "yaris": "Toyota", "agya": "Toyota", "veloz": "Toyota",
    "xenia": "Daihatsu", "terios": "Daihatsu", "ayla": "Daihatsu", "sigra": "Daihatsu",
    "gran max": "Daihatsu", "granmax": "Daihatsu",
    "pajero": "Mitsubishi", "xpander": "Mitsubishi", "l300": "Mitsubishi",
    "ertiga": "Suzuki", "baleno": "Suzuki", "swift": "Suzuki", "wagon r": "Suzuki",
    "karimun": "Suzuki",
    "livina": "Nissan", "march": "Nissan",
}

COLOR_KEYWORDS = [
    "hitam", "putih", "silver", "abu", "merah", "biru", "hijau", "kuning",
    "coklat", "orange", "ungu", "gold", "grey", "black", "white",
]
_COLOR_PATTERNS = [
    re.compile(rf"\b{color}(\s+(metalik|metallic|muda|tua))?\b", re.IGNORECASE)
    for color in COLOR_KEYWORDS
]

FEATURE_KEYWORDS = [
    "velg racing", "velg race", "velg",
    "spoiler", "bodykit", "modif", "custom",
    "interior", "jok kulit", "audio", "sound system",
    "sunroof", "parking sensor", "camera", "kamera",
    "tangan pertama", "tangan ke", "KM rendah", "low km",
    "service record", "pajak hidup", "pajak panjang",
    "full original", "kondisi istimewa", "terawat",
]
_FEATURE_PATTERNS = [
    (keyword, re.compile(rf"\b{re.escape(keyword)}\b", re.IGNORECASE))
    for keyword in FEATURE_KEYWORDS
]

NOTE_RULES = [
    (re.compile(r"tangan\s*(pertama|ke-?1\b|1\b)", re.IGNORECASE), "Tangan pertama dari baru"),
    (re.compile(r"service\s*record", re.IGNORECASE), "Service record lengkap"),
    (re.compile(r"pajak\s*(hidup|panjang)", re.IGNORECASE), "Pajak hidup panjang"),
    (re.compile(r"kondisi\s*istimewa", re.IGNORECASE), "Kondisi istimewa"),
]

# words that end the model name in a one-line listing
_MODEL_STOP_WORDS = {
    "harga", "km", "matic", "manual", "automatic", "otomatis", "at", "mt", "cvt",
    "tahun", "thn", "th", "warna", "plat", "nopol", "bensin", "diesel", "hybrid",
    "tangan", "pajak", "kondisi", "service", "full", "dijual", "jual", "rp",
    *COLOR_KEYWORDS,
}

_YEAR = re.compile(r"\b(20\d{2})\b")
_MATIC = re.compile(r"\b(matic|automatic|otomatis|at|cvt)\b", re.IGNORECASE)
_MANUAL = re.compile(r"\b(manual|mt)\b", re.IGNORECASE)
_KM_AFTER = re.compile(r"\bkm\s*[:.]?\s*(\d+(?:[.,]\d{3})*)\s*(ribu|rb|k)?\b", re.IGNORECASE)
_KM_BEFORE = re.compile(r"\b(\d+(?:[.,]\d{3})*)\s*(ribu|rb|k)?\s*km\b", re.IGNORECASE)
_PRICE_LABELLED = re.compile(
    r"\b(?:harga|hrg|rp\.?)\s*:?\s*(?:rp\.?\s*)?(\d+(?:[.,]\d+)*)\s*(juta|jt|miliar|milyar|m)?\b",
    re.IGNORECASE,
)
_PRICE_WITH_UNIT = re.compile(r"\b(\d+(?:[.,]\d+)*)\s*(juta|jt|miliar|milyar)\b", re.IGNORECASE)
# spaced ("B 1234 XYZ") or compact ("B1234XYZ"); mixed forms like "C200 AMG" are model names
_PLATE_SPACED = re.compile(r"\b([A-Z]{1,2})\s+(\d{1,4})\s+([A-Z]{1,3})\b")
_PLATE_COMPACT = re.compile(r"\b([A-Z]{1,2})(\d{1,4})([A-Z]{1,3})\b")
_PLATE_LOOSE = re.compile(r"\b([A-Z]{1,2})\s*(\d{1,4})\s*([A-Z]{1,3})\b")
_STOCK_CODE = re.compile(r"\bSTK-\d{3,}\b", re.IGNORECASE)
_MOBIL_WORD = re.compile(r"\bmobil\s+([a-z]+)", re.IGNORECASE)


def capitalize_words(text: str) -> str:
    return " ".join(word[:1].upper() + word[1:].lower() for word in text.split())


def normalize_brand(brand: str) -> str:
    lower = brand.strip().lower()
    if lower in BRAND_ALIASES:
        return BRAND_ALIASES[lower]
    return _CANONICAL_BRANDS.get(lower) or capitalize_words(brand)


def _find_brand(text: str) -> Optional[re.Match]:
    for brand in BRANDS:
        match = re.search(rf"\b({re.escape(brand)})\b", text, re.IGNORECASE)
        if match:
            return match
    return None


def _infer_brand_from_model(text: str) -> Optional[tuple[str, str]]:
    """(brand, model) when a well-known model name appears without its brand"""
    lowered = text.lower()
    best: Optional[tuple[int, str, str]] = None
    for model_name, brand in MODEL_BRAND_HINTS.items():
        match = re.search(rf"\b{re.escape(model_name)}\b", lowered)
        if match and (best is None or match.start() < best[0]):
            best = (match.start(), brand, model_name)
    if best is None:
        return None
    start, brand, model_name = best
    return brand, _model_from(text[start:])


def _model_from(text: str) -> str:
    """Leading words of text up to the first number or listing keyword"""
    words: list[str] = []
    for word in text.split():
        bare = word.strip(",.;:").lower()
        if not bare or bare[0].isdigit() or bare in _MODEL_STOP_WORDS:
            break
        if not words and bare == "mobil":
            continue
        words.append(word.strip(",.;:"))
    return capitalize_words(" ".join(words)) if words else ""


def parse_year(text: str) -> Optional[int]:
    for match in _YEAR.finditer(text or ""):
        year = int(match.group(1))
        if YEAR_MIN <= year <= YEAR_MAX:
            return year
    return None


def parse_color(text: str) -> Optional[str]:
    for pattern in _COLOR_PATTERNS:
        match = pattern.search(text or "")
        if match:
            return capitalize_words(match.group(0))
    return None


def parse_transmission(text: str) -> Optional[Transmission]:
    if _MATIC.search(text or ""):
        return Transmission.MATIC
    if _MANUAL.search(text or ""):
        return Transmission.MANUAL
    return None


def parse_km(text: str) -> Optional[int]:
    match = _KM_AFTER.search(text or "") or _KM_BEFORE.search(text or "")
    if not match:
        return None
    return apply_unit(match.group(1), match.group(2))


def parse_price(text: str) -> Optional[int]:
    """
    Price from a reply that is only a price.

    "185jt" -> 185000000, "185000000" -> 185000000, "185" -> 185000000
    """
    return parse_price_amount(text)


def _parse_listing_price(text: str) -> Optional[int]:
    match = _PRICE_LABELLED.search(text)
    if match:
        unit = match.group(2)
        amount = apply_unit(match.group(1), unit)
        if unit is None and 0 < amount < 1000:
            return amount * 1_000_000
        return amount
    match = _PRICE_WITH_UNIT.search(text)
    if match:
        return apply_unit(match.group(1), match.group(2))
    return None


def parse_plate_number(text: str, strict: bool = True) -> Optional[tuple[str, str]]:
    """
    Indonesian plate as ("B 1234 XYZ", "B1234XYZ").

    strict=True is for free text (case-sensitive, spaced or compact only);
    strict=False is for a reply that is only a plate.
    """
    if not text:
        return None
    if strict:
        match = _PLATE_SPACED.search(text) or _PLATE_COMPACT.search(text)
    else:
        match = _PLATE_LOOSE.search(text.strip().upper())
    if not match:
        return None
    region, number, suffix = match.groups()
    return f"{region} {number} {suffix}", f"{region}{number}{suffix}"


def parse_features(text: str) -> list[str]:
    """Comma-separated feature list: "velg racing, spoiler" -> ["Velg Racing", "Spoiler"]"""
    return [capitalize_words(part) for part in (text or "").split(",") if part.strip()]


def parse_fuel_type(text: str) -> Optional[FuelType]:
    lowered = (text or "").lower()
    for keyword in ("bensin", "gasoline", "diesel", "solar", "hybrid", "listrik", "electric"):
        if re.search(rf"\b{keyword}\b", lowered):
            return FuelType.from_text(keyword)
    return None


def parse_stock_code(text: str) -> Optional[str]:
    match = _STOCK_CODE.search(text or "")
    return match.group(0).upper() if match else None


def _parse_keyword_features(text: str) -> list[str]:
    found: list[str] = []
    for keyword, pattern in _FEATURE_PATTERNS:
        # "velg" adds nothing once "velg racing" matched
        if any(keyword.lower() in earlier.lower() for earlier in found):
            continue
        if pattern.search(text):
            found.append(keyword)
    return [capitalize_words(keyword) for keyword in found]


def _parse_notes(text: str) -> Optional[str]:
    notes = [note for pattern, note in NOTE_RULES if pattern.search(text)]
    return ", ".join(notes) if notes else None


def parse_brand_model(text: str) -> VehicleFields:
    """
    Brand and model from a reply like "Toyota Avanza 1.3 G".

    The model keeps everything after the brand.
    """
    normalized = (text or "").strip()
    for brand in BRANDS:
        match = re.match(rf"^({re.escape(brand)})\s+(.+)$", normalized, re.IGNORECASE)
        if match:
            return VehicleFields(brand=normalize_brand(match.group(1)), model=match.group(2).strip())
    first_word = normalized.split(" ", 1)[0].lower() if normalized else ""
    if first_word in MODEL_BRAND_HINTS:
        return VehicleFields(brand=MODEL_BRAND_HINTS[first_word], model=capitalize_words(normalized))
    return VehicleFields()


def parse_year_color(text: str) -> VehicleFields:
    """"2020 Hitam Metalik" -> year 2020, color "Hitam Metalik". No year means nothing."""
    normalized = (text or "").strip()
    year = parse_year(normalized)
    if year is None:
        return VehicleFields()
    color_part = re.sub(rf"\b{year}\b", "", normalized, count=1).strip(" ,-")
    return VehicleFields(year=year, color=capitalize_words(color_part) if color_part else None)


def parse_transmission_km(text: str) -> VehicleFields:
    """"Manual 45000" -> Manual, 45000 km. Either part may be missing."""
    normalized = (text or "").strip()
    transmission = parse_transmission(normalized)
    km = parse_km(normalized)
    if km is None:
        remainder = _MATIC.sub(" ", _MANUAL.sub(" ", normalized))
        match = re.search(r"(\d+(?:[.,]\d{3})*)\s*(ribu|rb|k)?\b", remainder, re.IGNORECASE)
        if match:
            km = apply_unit(match.group(1), match.group(2))
    return VehicleFields(transmission=transmission, km=km)


def parse_all_in_one(text: str) -> VehicleFields:
    """
    Every field recognisable in a one-line listing.

    "Honda Jazz 2019 hitam matic harga 187jt km 88000 tangan pertama" gives brand Honda,
    model Jazz, year 2019, color Hitam, Matic, 88000 km, 187000000 and
    key feature "Tangan Pertama". Color and transmission fall back to their defaults.
    """
    normalized = (text or "").strip()
    fields: dict = {}

    brand_match = _find_brand(normalized)
    if brand_match:
        fields["brand"] = normalize_brand(brand_match.group(1))
        fields["model"] = _model_from(normalized[brand_match.end():])
    else:
        mobil_match = _MOBIL_WORD.search(normalized)
        inferred = None if mobil_match else _infer_brand_from_model(normalized)
        if mobil_match:
            fields["brand"] = capitalize_words(mobil_match.group(1))
            fields["model"] = ""
        elif inferred:
            fields["brand"], fields["model"] = inferred

    fields["year"] = parse_year(normalized)
    fields["color"] = parse_color(normalized) or DEFAULT_COLOR
    fields["transmission"] = parse_transmission(normalized) or DEFAULT_TRANSMISSION
    fields["km"] = parse_km(normalized)
    fields["price"] = _parse_listing_price(normalized)
    fields["fuel_type"] = parse_fuel_type(normalized)
    fields["stock_code"] = parse_stock_code(normalized)

    plate = parse_plate_number(normalized)
    if plate:
        fields["plate_number"], fields["plate_number_clean"] = plate

    fields["key_features"] = _parse_keyword_features(normalized)
    fields["notes"] = _parse_notes(normalized)

    return VehicleFields(**fields)
