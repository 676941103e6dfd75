"""
Analytics sink for mirrored transaction changes.
Writes JSONL files partitioned by the calendar date embedded in the transaction key.
"""
import re
import uuid
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, List, Optional

import pandas as pd

from core.config import get_settings
from core.exceptions import ChangeFeedError
from core.logger import setup_logger

logger = setup_logger(__name__)

KEY_DATE_PATTERN = re.compile(r"DATE#(\d{4})-(\d{2})-(\d{2})")

MIRRORED_EVENTS = ("INSERT", "MODIFY")

RECORD_COLUMNS = [
    "event_name",
    "timestamp",
    "user_id",
    "sk",
    "statement_id",
    "issuer",
    "card_last4",
    "merchant_raw",
    "merchant_norm",
    "amount",
    "memo",
    "category",
    "confidence",
    "manually_updated",
    "created_at",
    "updated_at",
]


def format_amount(value: Any) -> str:
    """Render an amount as a decimal string so stored cents survive the mirror."""
    try:
        return str(Decimal(str(value)))
    except (InvalidOperation, ValueError):
        return "0"


def build_analytics_record(change: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Flatten one change-log entry into an analytics row.

    Args:
        change: Change record with event_name, sk, image and created_at

    Returns:
        Row dictionary, or None if the change is not mirrored
    """
    if change.get("event_name") not in MIRRORED_EVENTS:
        return None

    image = change.get("image") or {}
    sk = image.get("sk") or change.get("sk")
    if not sk or not KEY_DATE_PATTERN.search(sk):
        logger.debug(f"Skipping change without a dated key: {sk}")
        return None

    return {
        "event_name": change["event_name"],
        "timestamp": change.get("created_at"),
        "user_id": image.get("user_id") or change.get("user_id"),
        "sk": sk,
        "statement_id": image.get("statement_id"),
        "issuer": image.get("issuer"),
        "card_last4": image.get("card_last4"),
        "merchant_raw": image.get("merchant_raw"),
        "merchant_norm": image.get("merchant_norm"),
        "amount": format_amount(image.get("amount")),
        "memo": image.get("memo"),
        "category": image.get("category"),
        "confidence": float(image.get("confidence") or 0),
        "manually_updated": bool(image.get("manually_updated", False)),
        "created_at": image.get("created_at"),
        "updated_at": image.get("updated_at"),
    }


def partition_path(base_path: str, year: str, month: str, day: str) -> Path:
    """Directory holding one calendar day of mirrored records."""
    return Path(base_path) / "transactions" / f"year={year}" / f"month={month}" / f"day={day}"


class AnalyticsSink:
    """Append-only JSONL store partitioned by year/month/day."""

    def __init__(self, base_path: Optional[str] = None):
        self.base_path = base_path or get_settings().analytics_path

    def write_records(self, records: List[Dict[str, Any]]) -> List[str]:
        """
        Write rows as one new JSONL object per calendar day.

        Args:
            records: Rows built by build_analytics_record

        Returns:
            Paths of the files written

        Raises:
            ChangeFeedError: If any file cannot be written
        """
        if not records:
            return []

        df = pd.DataFrame(records, columns=RECORD_COLUMNS)
        dates = df["sk"].str.extract(KEY_DATE_PATTERN.pattern)
        df["year"], df["month"], df["day"] = dates[0], dates[1], dates[2]

        written = []
        for (year, month, day), group in df.groupby(["year", "month", "day"], sort=True):
            directory = partition_path(self.base_path, year, month, day)
            file_name = f"{uuid.uuid4()}.jsonl"
            output_file = directory / file_name
            temp_file = directory / f"{file_name}.tmp"

            try:
                directory.mkdir(parents=True, exist_ok=True)
                group[RECORD_COLUMNS].to_json(temp_file, orient="records", lines=True)
                temp_file.replace(output_file)
            except OSError as e:
                logger.error(f"Failed to write analytics partition {directory}: {e}")
                raise ChangeFeedError(
                    "Failed to write analytics partition",
                    details={"path": str(output_file), "error": str(e)}
                )

            logger.info(f"Wrote {len(group)} records to {output_file}")
            written.append(str(output_file))

        return written
