"""
Input Validation Utilities

Provides validation and text helpers for:
- Bangladeshi mobile numbers
- Customer name / address / email fields
- Inbound chat text sanitization
- HTML escaping and HTML-to-plain-text conversion for webhook channels
"""
import re
import html


class ValidationPatterns:
    """Regex patterns for validation"""

    # Bangladeshi mobile: 01[3-9]XXXXXXXX or +8801[3-9]XXXXXXXX
    PHONE_BD_LOCAL = re.compile(r"^01[3-9]\d{8}$")
    PHONE_BD_INTERNATIONAL = re.compile(r"^\+?8801[3-9]\d{8}$")

    EMAIL = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

    HTML_TAG = re.compile(r"<[^>]+>")
    HTML_BREAK = re.compile(r"<br\s*/?>", re.IGNORECASE)


class PhoneNumberValidator:
    """Bangladeshi mobile number validation and normalization"""

    @staticmethod
    def validate(phone: str) -> bool:
        """
        Validate a Bangladeshi mobile number.

        Spaces and dashes are ignored, so "017-1234 5678" is accepted.
        """
        if not phone:
            return False
        cleaned = re.sub(r"[\s\-]", "", phone)
        return bool(
            ValidationPatterns.PHONE_BD_LOCAL.match(cleaned)
            or ValidationPatterns.PHONE_BD_INTERNATIONAL.match(cleaned)
        )

    @staticmethod
    def normalize(phone: str) -> str:
        """Strip separators; the local 01XXXXXXXXX form is kept as typed"""
        return re.sub(r"[^\d+]", "", phone or "")

    @staticmethod
    def mask(phone: str) -> str:
        """Mask phone number for logging (privacy)."""
        if len(phone) < 4:
            return "****"
        return phone[:-4] + "****"


class EmailValidator:
    """Email validation"""

    @staticmethod
    def validate(email: str | None) -> bool:
        return bool(email) and bool(ValidationPatterns.EMAIL.match(email.strip()))

    @staticmethod
    def clean(email: str | None) -> str:
        """Return the trimmed email when valid, otherwise an empty string"""
        if not EmailValidator.validate(email):
            return ""
        return email.strip()


class TextSanitizer:
    """Text sanitization for inbound chat text"""

    @staticmethod
    def sanitize(text: str | None, max_length: int = 1000) -> str:
        """
        Sanitize text input for safe storage.

        Trims whitespace, enforces the max length and removes null bytes and
        control characters. Does not HTML-escape; use escape_html at display time.
        """
        if not text:
            return ""
        sanitized = TextSanitizer.remove_control_characters(text).strip()
        return sanitized[:max_length]

    @staticmethod
    def escape_html(text: str | None) -> str:
        """Escape &, < and > (quotes are left alone for readable product names)"""
        if not text:
            return ""
        return html.escape(text, quote=False)

    @staticmethod
    def remove_control_characters(text: str) -> str:
        """Remove control characters, keeping newlines and tabs"""
        if not text:
            return ""
        return "".join(
            char for char in text
            if char >= " " or char in "\n\r\t"
        )


def html_to_plain_text(text: str | None) -> str:
    """
    Convert a bot reply (limited HTML) to plain text for webhook channels.

    <br> becomes a newline, other tags are dropped and HTML entities are decoded.
    """
    if not text:
        return ""
    result = ValidationPatterns.HTML_BREAK.sub("\n", text)
    result = ValidationPatterns.HTML_TAG.sub("", result)
    result = html.unescape(result)
    return result.strip()


def split_full_name(full_name: str | None) -> tuple[str, str]:
    """Split a full name into (first, last); the last part may be empty"""
    parts = (full_name or "").strip().split()
    if not parts:
        return "", ""
    return parts[0], " ".join(parts[1:])
