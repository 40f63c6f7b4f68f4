from .clock import Clock, as_utc, utcnow
from .sanitize import redact_secrets, redact_secrets_in_string
from .validation import FieldValidator, ValidationResult, normalize_text

__all__ = [
    "Clock",
    "FieldValidator",
    "ValidationResult",
    "as_utc",
    "normalize_text",
    "redact_secrets",
    "redact_secrets_in_string",
    "utcnow",
]
