"""
Input validation for ingestion requests and category names.
Validators return results instead of raising.
"""
import re
from typing import Any, Mapping

from core.logger import setup_logger
from core.schema import ValidationResult

logger = setup_logger(__name__)

UPLOAD_PREFIX = "uploads/"
UPLOAD_EXTENSION = ".pdf"

REQUIRED_FIELDS = ("user_id", "statement_id", "key", "issuer", "card_last4")

CARD_LAST4_PATTERN = re.compile(r"[0-9]{4}")
USER_ID_PATTERN = re.compile(r"[a-zA-Z0-9_-]+")
CATEGORY_NAME_PATTERN = re.compile(r"[A-Z_]+")


def validate_category_name(name: Any) -> bool:
    """Category names are uppercase tokens: letters and underscores only."""
    return isinstance(name, str) and bool(CATEGORY_NAME_PATTERN.fullmatch(name))


def is_transaction_key(key: Any) -> bool:
    """Check a transaction key has the DATE#...#TXN#... shape."""
    return isinstance(key, str) and key.startswith("DATE#") and "#TXN#" in key


def validate_ingest_request(
    data: Any,
    upload_prefix: str = UPLOAD_PREFIX,
    upload_extension: str = UPLOAD_EXTENSION,
) -> ValidationResult:
    """
    Validate an ingestion request before any external job is started.

    Args:
        data: Request mapping with user_id, statement_id, key, issuer, card_last4
        upload_prefix: Required prefix of the document key
        upload_extension: Required extension of the document key

    Returns:
        ValidationResult (valid, or invalid with a reason)
    """
    echo = dict(data) if isinstance(data, Mapping) else {}

    try:
        if not isinstance(data, Mapping):
            return ValidationResult(valid=False, error="request must be an object", input=echo)

        for field in REQUIRED_FIELDS:
            value = data.get(field)
            if not value or not isinstance(value, str):
                return ValidationResult(
                    valid=False,
                    error=f"{field} is required and must be a string",
                    input=echo,
                )

        if not CARD_LAST4_PATTERN.fullmatch(data["card_last4"]):
            return ValidationResult(valid=False, error="card_last4 must be exactly 4 digits", input=echo)

        key = data["key"]
        if (
            not key.startswith(upload_prefix)
            or not key.endswith(upload_extension)
            or ".." in key.split("/")
        ):
            return ValidationResult(
                valid=False,
                error=f"key must be a {upload_extension} file in the {upload_prefix} directory",
                input=echo,
            )

        if not USER_ID_PATTERN.fullmatch(data["user_id"]):
            return ValidationResult(
                valid=False,
                error="user_id can only contain alphanumeric characters, underscores, and hyphens",
                input=echo,
            )

        return ValidationResult(valid=True, input=echo)

    except Exception as e:
        logger.error(f"Error validating input: {e}", exc_info=True)
        return ValidationResult(valid=False, error="Internal validation error", input=echo)
