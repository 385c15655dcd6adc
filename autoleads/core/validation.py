"""
Input Validation Utilities

- WhatsApp handle normalization and masking (Indonesian numbering)
- Text sanitization for inbound chat text before it reaches the parser or a prompt
"""
import re


class PhoneNumberValidator:
    """WhatsApp handle normalization and masking"""

    # 08xx..., 628xx..., +628xx..., optional @c.us / @s.whatsapp.net suffix
    PHONE_INDONESIA = re.compile(r"^(?:\+?62|0)8\d{7,12}$")
    JID_SUFFIX = re.compile(r"@(?:c\.us|s\.whatsapp\.net|lid)$")

    @classmethod
    def normalize(cls, handle: str) -> str:
        """
        Normalize a WhatsApp handle to digits in 62xxx form.

        Handles that are not phone numbers (e.g. group or LID identifiers) are returned
        stripped of whitespace only.
        """
        if not handle:
            return ""
        handle = cls.JID_SUFFIX.sub("", handle.strip())
        cleaned = re.sub(r"[\s\-()]", "", handle)
        if not cls.PHONE_INDONESIA.match(cleaned):
            return handle
        cleaned = cleaned.lstrip("+")
        if cleaned.startswith("0"):
            cleaned = "62" + cleaned[1:]
        return cleaned

    @staticmethod
    def mask(handle: str) -> str:
        """Mask a handle for logging, e.g. 62812345****"""
        if not handle or len(handle) < 4:
            return "****"
        return handle[:-4] + "****"


def mask_handle(handle: str) -> str:
    return PhoneNumberValidator.mask(handle)


class TextSanitizer:
    """Text sanitization for chat input"""

    @staticmethod
    def sanitize(text: str | None, max_length: int = 2000) -> str:
        """
        Trim, cap length, drop null bytes and control characters, collapse runs of spaces.

        Newlines are kept: admins paste multi-line listings.
        """
        if not text:
            return ""

        sanitized = text.strip()[:max_length]
        sanitized = sanitized.replace("\x00", "")
        sanitized = TextSanitizer.remove_control_characters(sanitized)
        sanitized = re.sub(r"[ \t]+", " ", sanitized)
        return sanitized

    @staticmethod
    def remove_control_characters(text: str) -> str:
        if not text:
            return ""
        return "".join(
            char for char in text
            if char >= " " or char in "\n\r\t"
        )
