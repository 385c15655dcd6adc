"""
Reply texts for the admin intake conversation (Indonesian, WhatsApp markdown)
"""
from typing import Optional

from autoleads.core.config import settings
from autoleads.core.formatting import format_km, format_price_short
from autoleads.domain.vehicle_draft import (
    DEFAULT_COLOR,
    DEFAULT_TRANSMISSION,
    EnhancedCopy,
    VehicleDraft,
    VehicleFields,
)

CANCELLED = "❌ Upload dibatalkan. Ketik /upload untuk mulai lagi."
CANCELLED_NO_SESSION = "❌ Proses dibatalkan. Ketik /help untuk lihat perintah lain."
NO_ACTIVE_SESSION = "⚠️ Tidak ada sesi upload aktif. Ketik /upload untuk mulai upload mobil."
GENERIC_ERROR = "❌ Terjadi kesalahan. Silakan coba lagi atau ketik /help untuk bantuan."
BUSY = "⏳ Pesan sebelumnya masih diproses. Silakan kirim ulang sebentar lagi."

CONFIRM_REPROMPT = '❌ Ketik *"ya"* untuk konfirmasi atau *"tidak"* untuk batal.'
PHOTOS_REPROMPT = '❌ Kirim foto atau ketik *"selesai"* untuk lanjut, atau *"skip"* untuk lewati.'
PHOTO_DOWNLOAD_FAILED = (
    '⚠️ Gagal mengunduh foto. Silakan coba kirim lagi atau ketik *"skip"* untuk lanjut tanpa foto.'
)
PHOTO_PENDING = (
    "📎 Foto diterima, tapi tidak bisa diunduh otomatis.\n"
    "Foto bisa ditambahkan nanti lewat dashboard admin.\n\n"
    'Kirim foto lain atau ketik *"selesai"* untuk lanjut.'
)

SAVE_FAILED = "❌ Gagal menyimpan mobil. Silakan coba lagi dengan /upload atau hubungi admin."
SAVE_FAILED_RETRY = (
    "❌ Gagal menyimpan mobil. Data masih tersimpan.\n"
    'Ketik *"ya"* untuk mencoba lagi atau *"tidak"* untuk batal.'
)

EXTRACTION_EXAMPLES = (
    "Contoh yang benar:\n"
    "• /upload freed matic 2012 harga 145jt km 145rb\n"
    "• /upload honda jazz 2019 hitam harga 187jt\n"
    "• /upload avanza 2020 dijual 185 juta km 45 ribu\n\n"
    "Minimal: brand/model, tahun, harga"
)

# guided flow prompts, one per step before photos
GUIDED_INTRO = (
    "🚗 *Upload Mobil Baru*\n\n"
    "Baik, saya akan bantu upload mobil baru. Proses ini sekitar 2 menit.\n\n"
)
STEP_BRAND_MODEL = "*Step 1/8: Brand & Model*\nContoh: Toyota Avanza 1.3 G\n\nKetik brand dan model mobil:"
STEP_YEAR_COLOR = "*Step 2/8: Tahun & Warna*\nContoh: 2020 Hitam Metalik\n\nKetik tahun dan warna:"
STEP_TRANSMISSION_KM = "*Step 3/8: Transmisi & KM*\nContoh: Manual 45000\n\nKetik transmisi dan kilometer:"
STEP_PRICE = "*Step 4/8: Harga*\nContoh: 185jt atau 185000000\n\nKetik harga:"
STEP_PLATE = '*Step 5/8: Plat Nomor (Opsional)*\nContoh: B 1234 XYZ\n\nKetik plat nomor atau "skip" untuk lewati:'
STEP_FEATURES = (
    "*Step 6/8: Fitur Unggulan (Opsional)*\n"
    "Contoh: Velg racing, Spoiler, Interior rapi\n\n"
    'Ketik fitur-fitur unggulan (pisahkan dengan koma) atau "skip":'
)

INVALID_BRAND_MODEL = "❌ Format tidak valid. Contoh yang benar:\n• Toyota Avanza 1.3 G\n• Honda BR-V Prestige\n\nCoba lagi:"
INVALID_YEAR_COLOR = "❌ Format tidak valid. Contoh yang benar:\n• 2020 Hitam Metalik\n• 2019 Putih\n\nCoba lagi:"
INVALID_TRANSMISSION_KM = "❌ Format tidak valid. Contoh yang benar:\n• Manual 45000\n• Matic 30000\n\nCoba lagi:"
INVALID_PRICE = "❌ Format tidak valid. Contoh yang benar:\n• 185jt\n• 185000000\n\nCoba lagi:"


def photos_instructions(max_photos: Optional[int] = None) -> str:
    limit = max_photos or settings.MAX_PHOTOS_PER_VEHICLE
    return (
        f"Kirim foto mobil (1-{limit} foto).\n"
        'Setelah semua foto terkirim, ketik *"selesai"* untuk lanjut.\n\n'
        'Atau ketik *"skip"* jika tidak ada foto (dapat ditambah nanti).'
    )


def step_photos() -> str:
    return f"*Step 7/8: Foto Mobil*\n\n{photos_instructions()}"


def extraction_failed(errors: list[str]) -> str:
    details = "\n".join(errors) if errors else "Unknown error"
    return (
        "❌ Tidak bisa memahami data mobil. Silakan coba lagi dengan format yang lebih jelas.\n\n"
        f"{details}\n\n{EXTRACTION_EXAMPLES}"
    )


def _spec_lines(fields: VehicleFields) -> list[str]:
    lines = [
        f"• Brand: {fields.brand}",
        f"• Model: {fields.model or '-'}",
        f"• Tahun: {fields.year}",
        f"• Warna: {fields.color or DEFAULT_COLOR}",
        f"• Transmisi: {(fields.transmission or DEFAULT_TRANSMISSION).value}",
    ]
    if fields.km:
        lines.append(f"• KM: {format_km(fields.km)}")
    return lines


def extraction_succeeded(fields: VehicleFields, method: str, confidence: str) -> str:
    method_label = "🤖 AI Natural Language" if method == "llm" else "📝 Pattern Matching"
    confidence_icon = {"high": "✨", "medium": "⭐"}.get(confidence, "🔸")

    lines = [
        "✅ *Data Mobil Berhasil Diproses!*",
        f"{method_label} {confidence_icon}",
        "",
        "📋 *Informasi Mobil:*",
        *_spec_lines(fields),
        f"• Harga: {format_price_short(fields.price)}",
    ]
    if fields.plate_number:
        lines.append(f"• Plat: {fields.plate_number}")
    if fields.key_features:
        lines.append(f"• Fitur: {', '.join(fields.key_features)}")
    if fields.notes:
        lines.append(f"• Catatan: {fields.notes}")
    lines += ["", "📸 *Langkah Selanjutnya:*", photos_instructions()]
    return "\n".join(lines)


def first_photo_received(max_photos: Optional[int] = None) -> str:
    limit = max_photos or settings.MAX_PHOTOS_PER_VEHICLE
    return (
        "✅ Foto pertama diterima!\n\n"
        f"📸 Kirim foto lainnya (maksimal {limit} foto).\n\n"
        'Setelah semua foto terkirim, ketik *"selesai"* untuk lanjut.'
    )


def photo_count(count: int, max_photos: Optional[int] = None) -> str:
    limit = max_photos or settings.MAX_PHOTOS_PER_VEHICLE
    return f'📸 Total foto: {count}/{limit}\n\nKirim foto lagi atau ketik *"selesai"* untuk lanjut.'


def photo_limit_reached(max_photos: Optional[int] = None) -> str:
    limit = max_photos or settings.MAX_PHOTOS_PER_VEHICLE
    return f'⚠️ Maksimal {limit} foto. Foto tambahan tidak disimpan.\nKetik *"selesai"* untuk lanjut.'


def colors_differ(stated: Optional[str], detected: Optional[str]) -> bool:
    if not stated or not detected:
        return False
    stated_words = set(stated.lower().split())
    detected_words = set(detected.lower().split())
    return not (stated_words & detected_words)


def confirmation(draft: VehicleDraft, copy: EnhancedCopy) -> str:
    lines = [
        "📋 *Preview Data Mobil:*",
        "",
        f"*{copy.public_name}*",
        "",
        f"💰 Harga: {format_price_short(draft.price)}",
        "",
        f"📝 *Deskripsi:*\n{copy.description}",
        "",
    ]
    if copy.condition_notes:
        lines += [f"✨ *Kondisi:*\n{copy.condition_notes}", ""]

    lines += ["📊 *Spesifikasi:*", *_spec_lines(draft)]
    if draft.plate_number:
        lines.append(f"• Plat: {draft.plate_number}")
    if draft.key_features:
        lines += ["", "🎯 *Fitur Unggulan:*", *(f"• {feature}" for feature in draft.key_features)]

    photo_line = f"📸 Foto: {len(draft.photos)} foto"
    if draft.pending_photo_count:
        photo_line += f" (+{draft.pending_photo_count} menunggu upload manual)"
    lines += ["", photo_line]

    if colors_differ(draft.color, copy.detected_color):
        lines += [
            "",
            f"⚠️ Warna di foto terlihat *{copy.detected_color}*, "
            f"sedangkan data tertulis *{draft.color}*. Ketik /cancel jika perlu diperbaiki.",
        ]

    lines += ["", 'Apakah data sudah benar?\nKetik *"ya"* untuk upload atau *"tidak"* untuk batal.']
    return "\n".join(lines)


def upload_succeeded(
    display_code: str,
    public_name: str,
    price: int,
    photo_count_value: int,
    slug: str,
    catalog_domain: Optional[str],
) -> str:
    lines = [
        "✅ *Mobil Berhasil Diupload!*",
        "",
        "📋 *Detail:*",
        f"• Kode: {display_code}",
        f"• Nama: {public_name}",
        f"• Harga: {format_price_short(price)}",
        f"• Foto: {photo_count_value} foto",
    ]
    if catalog_domain:
        lines += ["", "🔗 *Link Katalog:*", f"https://{catalog_domain}/cars/{slug}"]
    lines += [
        "",
        "🚀 Mobil sudah LIVE di website dan siap dilihat customer!",
        "",
        "Ketik /upload untuk upload lagi.",
    ]
    return "\n".join(lines)


def help_text() -> str:
    return "\n".join([
        "🤖 *Admin Bot Commands*",
        "",
        "📋 *Upload Mobil (Satu Pesan):*",
        "/upload [brand] [model] [tahun] harga [harga] km [km] [fitur]",
        "",
        "*Contoh:*",
        "• /upload Toyota Avanza 2020 harga 185jt km 45000 velg racing",
        "• /upload Honda Jazz 2019 hitam matic harga 187jt km 88000 tangan pertama",
        "",
        "📝 *Upload Langkah demi Langkah:*",
        "/upload (tanpa data) lalu ikuti 8 langkah",
        "",
        "📸 *Setelah data diproses:*",
        f"Bot akan minta foto (1-{settings.MAX_PHOTOS_PER_VEHICLE} foto)",
        'Ketik "selesai" untuk lanjut konfirmasi',
        "",
        "/cancel - Batalkan proses",
        "/help - Lihat menu ini",
    ])
