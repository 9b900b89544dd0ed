from typing import Any, Optional


class TextValidator:
    """Small text checks applied to incoming book fields."""

    @staticmethod
    def is_non_empty(text: Optional[str]) -> bool:
        return isinstance(text, str) and bool(text.strip())

    @staticmethod
    def clean_optional(text: Optional[str]) -> Optional[str]:
        """Trim optional text; blank values become None."""
        if text is None:
            return None
        t = str(text).strip()
        return t or None


class YearValidator:

    @staticmethod
    def is_valid_year(value: Any) -> bool:
        # bool is an int subclass but never a year
        return value is None or (isinstance(value, int) and not isinstance(value, bool))
