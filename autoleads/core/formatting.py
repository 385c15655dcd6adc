"""
Formatting helpers for chat replies and catalog URLs
"""
import re

_SLUG_INVALID = re.compile(r"[^a-z0-9-]")
_SLUG_DASHES = re.compile(r"-{2,}")


def generate_slug(text: str, max_length: int = 100) -> str:
    """
    URL slug: lowercase, whitespace to "-", anything outside [a-z0-9-] dropped.

    "Honda Jazz 2019 Hitam #H01" -> "honda-jazz-2019-hitam-h01"
    """
    slug = re.sub(r"\s+", "-", (text or "").strip().lower())
    slug = _SLUG_INVALID.sub("", slug)
    slug = _SLUG_DASHES.sub("-", slug).strip("-")
    return slug[:max_length].rstrip("-")


def vehicle_slug(title: str, display_code: str, max_length: int = 100) -> str:
    """
    Catalog slug for a saved vehicle. The title part is shortened first so the slug
    always ends with the display code, which keeps it unique per tenant.

    ("Honda Jazz 2019 Hitam", "#H01") -> "honda-jazz-2019-hitam-h01"
    """
    code_slug = generate_slug(display_code)
    title_slug = generate_slug(title, max_length - len(code_slug) - 1)
    return f"{title_slug}-{code_slug}" if title_slug else code_slug


def format_price(price: int | None) -> str:
    """Rupiah price for chat, e.g. 187000000 -> "Rp 187.000.000" """
    if not price:
        return "-"
    return "Rp " + f"{price:,}".replace(",", ".")


def format_price_short(price: int | None) -> str:
    """Compact price, e.g. 187000000 -> "187 jt", 1250000000 -> "1,25 M" """
    if not price:
        return "-"
    if price >= 1_000_000_000:
        value = f"{price / 1_000_000_000:.2f}".rstrip("0").rstrip(".")
        return f"{value.replace('.', ',')} M"
    if price >= 1_000_000:
        value = f"{price / 1_000_000:.1f}".rstrip("0").rstrip(".")
        return f"{value.replace('.', ',')} jt"
    return format_price(price)


def format_km(km: int | None) -> str:
    if not km:
        return "-"
    return f"{km:,}".replace(",", ".") + " km"
