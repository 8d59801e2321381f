"""
Input Validation Utilities

Provides validation and sanitization for listing inputs:
- Phone number validation (Egyptian mobile format) and E.164 normalization
- Markup stripping for free text
- Attribute map and image list cleanup
- Slug generation with Arabic transliteration
"""
import re
import secrets
import string
import unicodedata
from typing import Any


class ValidationPatterns:
    """Regex patterns for validation"""

    # Egyptian mobile numbers: 01[0125]XXXXXXXX, optionally +20 / 0020 / 20 prefixed
    PHONE_EGYPT = re.compile(r"^(?:\+20|0020|20)?0?(1[0125]\d{8})$")

    # Markup removed from any free text before storage
    SCRIPT_BLOCK = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE)
    HTML_TAG = re.compile(r"<[^>]*>")
    JAVASCRIPT_URI = re.compile(r"javascript\s*:", re.IGNORECASE)
    EVENT_HANDLER = re.compile(r"\bon\w+\s*=", re.IGNORECASE)
    DATA_HTML_URI = re.compile(r"data\s*:\s*text/html", re.IGNORECASE)

    QUOTES = re.compile(r"[\"'`‘’“”]")


class PhoneNumberValidator:
    """Phone number validation and normalization"""

    @staticmethod
    def _clean(phone: str) -> str:
        return re.sub(r"[\s\-()]", "", phone)

    @staticmethod
    def validate(phone: str) -> bool:
        """
        Validate an Egyptian mobile number.

        Spaces, dashes and parentheses are ignored; +20 and 0020 prefixes are accepted.
        """
        if not phone:
            return False
        return bool(ValidationPatterns.PHONE_EGYPT.match(PhoneNumberValidator._clean(phone)))

    @staticmethod
    def normalize(phone: str) -> str:
        """
        Normalize to E.164: 010 1234 5678 -> +201012345678.

        Unrecognized input is returned with everything but digits and '+' removed.
        """
        cleaned = PhoneNumberValidator._clean(phone)
        match = ValidationPatterns.PHONE_EGYPT.match(cleaned)
        if match:
            return f"+20{match.group(1)}"
        return re.sub(r"[^\d+]", "", cleaned)

    @staticmethod
    def mask(phone: str) -> str:
        """Mask phone number for display in logs (+2010123****)"""
        if len(phone) < 4:
            return "****"
        return phone[:-4] + "****"


class TextSanitizer:
    """Text sanitization for security"""

    @staticmethod
    def strip_markup(text: str) -> str:
        """
        Remove script blocks, HTML tags, javascript: URIs, inline event
        handlers and data:text/html URIs, then trim.
        """
        if not text:
            return ""

        cleaned = ValidationPatterns.SCRIPT_BLOCK.sub("", text)
        cleaned = ValidationPatterns.HTML_TAG.sub("", cleaned)
        cleaned = ValidationPatterns.JAVASCRIPT_URI.sub("", cleaned)
        cleaned = ValidationPatterns.EVENT_HANDLER.sub("", cleaned)
        cleaned = ValidationPatterns.DATA_HTML_URI.sub("", cleaned)
        return cleaned.strip()

    @staticmethod
    def remove_control_characters(text: str) -> str:
        """Keep newlines and tabs, remove other control chars"""
        if not text:
            return ""
        return "".join(
            char for char in text
            if char >= " " or char in "\n\r\t"
        )

    @staticmethod
    def sanitize(text: str, max_length: int | None = None) -> str:
        """Full free-text cleanup: control chars, markup, null bytes"""
        if not text:
            return ""
        sanitized = TextSanitizer.remove_control_characters(text.replace("\x00", ""))
        sanitized = TextSanitizer.strip_markup(sanitized)
        if max_length is not None:
            sanitized = sanitized[:max_length]
        return sanitized

    @staticmethod
    def strip_quotes(text: str) -> str:
        """Remove quote characters from a free-text search term"""
        if not text:
            return ""
        return ValidationPatterns.QUOTES.sub("", text).strip()

    @staticmethod
    def sanitize_attributes(attributes: dict[str, Any] | None) -> dict[str, Any]:
        """
        Clean an attribute map: keys and string values are stripped of markup,
        booleans and numbers pass through, anything else is dropped.
        """
        if not attributes or not isinstance(attributes, dict):
            return {}

        cleaned: dict[str, Any] = {}
        for key, value in attributes.items():
            clean_key = TextSanitizer.strip_markup(str(key))
            if not clean_key:
                continue
            if isinstance(value, str):
                cleaned[clean_key] = TextSanitizer.strip_markup(value)
            elif isinstance(value, (bool, int, float)):
                cleaned[clean_key] = value
        return cleaned

    @staticmethod
    def sanitize_image_urls(urls: list[Any] | None, max_images: int = 10) -> list[str]:
        """Keep non-blank string URLs, at most max_images"""
        if not urls:
            return []
        return [
            url.strip() for url in urls
            if isinstance(url, str) and url.strip()
        ][:max_images]


# Fallback transliteration for Arabic titles
ARABIC_TRANSLITERATION = {
    "ا": "a", "ب": "b", "ت": "t", "ث": "th", "ج": "g", "ح": "h", "خ": "kh",
    "د": "d", "ذ": "th", "ر": "r", "ز": "z", "س": "s", "ش": "sh", "ص": "s",
    "ض": "d", "ط": "t", "ظ": "z", "ع": "a", "غ": "gh", "ف": "f", "ق": "q",
    "ك": "k", "ل": "l", "م": "m", "ن": "n", "ه": "h", "و": "w", "ي": "y",
    "ة": "h", "ى": "a", "أ": "a", "إ": "e", "آ": "a", "ؤ": "o", "ئ": "e",
}
_ARABIC_RANGE = re.compile(r"[؀-ۿ]")
_SLUG_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits


def transliterate(text: str) -> str:
    if not _ARABIC_RANGE.search(text):
        return text
    return "".join(ARABIC_TRANSLITERATION.get(char, char) for char in text)


def slugify(text: str, max_length: int = 80) -> str:
    """Lowercase ASCII kebab-case: 'سيارة Kia 2020' -> 'syarh-kia-2020'"""
    value = unicodedata.normalize("NFKD", transliterate(text or ""))
    value = value.encode("ascii", "ignore").decode("ascii").lower()
    value = re.sub(r"[^a-z0-9]+", "-", value).strip("-")
    return value[:max_length].rstrip("-")


def generate_slug(title: str, suffix_length: int = 8) -> str:
    """
    Slug for a new listing: slugified title plus a random suffix.

    Titles that slugify to nothing (emoji only, unknown scripts) fall back to 'item'.
    """
    base = slugify(title) or "item"
    suffix = "".join(secrets.choice(_SLUG_SUFFIX_ALPHABET) for _ in range(suffix_length))
    return f"{base}-{suffix}"
