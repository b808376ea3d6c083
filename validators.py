import re
from datetime import date
from typing import Optional


class TextValidator:
    """Basic checks and clean-up for free text coming from forms and the CLI."""

    @staticmethod
    def normalize(text: Optional[str]) -> str:
        if text is None:
            return ""
        return " ".join(str(text).split())

    @staticmethod
    def validate_name(name: Optional[str]) -> bool:
        """A reader name must contain something besides whitespace."""
        return bool(TextValidator.normalize(name))

    @staticmethod
    def validate_title(title: Optional[str]) -> bool:
        return bool(TextValidator.normalize(title))

    @staticmethod
    def sanitize_text(text: Optional[str]) -> str:
        if text is None:
            return ""
        # strip HTML tags and javascript: urls
        cleaned = re.sub(r"<[^>]*>", "", text)
        cleaned = re.sub(r"(?i)javascript:", "", cleaned)
        return cleaned.strip()


class DateValidator:
    """ISO calendar date strings (YYYY-MM-DD)."""

    _PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")

    @staticmethod
    def is_iso_date(value: Optional[str]) -> bool:
        if not isinstance(value, str) or not DateValidator._PATTERN.match(value):
            return False
        try:
            date.fromisoformat(value)
        except ValueError:
            return False
        return True
