"""
Mirrors transaction inserts and updates to the analytics sink.

Delivery is at-least-once: change records are removed from the log only after
the sink write succeeds, and sink failures propagate so the caller retries.
"""
from typing import Optional

from core.db import Database, get_db
from core.exporters import AnalyticsSink, build_analytics_record
from core.logger import setup_logger

logger = setup_logger(__name__)


def mirror_pending_changes(
    db: Optional[Database] = None,
    sink: Optional[AnalyticsSink] = None,
    batch_size: int = 500,
) -> int:
    """
    Drain undelivered change records into the analytics sink.

    Args:
        db: Database holding the change log
        sink: Destination sink
        batch_size: Change records read per batch

    Returns:
        Number of rows written to the sink

    Raises:
        ChangeFeedError: If the sink cannot be written; the batch stays undelivered
    """
    db = db or get_db()
    sink = sink or AnalyticsSink()
    mirrored = 0

    while True:
        changes = db.pending_changes(limit=batch_size)
        if not changes:
            break

        records = [r for r in (build_analytics_record(c) for c in changes) if r is not None]
        sink.write_records(records)
        db.mark_changes_delivered([c["seq"] for c in changes])

        mirrored += len(records)
        skipped = len(changes) - len(records)
        if skipped:
            logger.info(f"Skipped {skipped} change records without a dated key")

    logger.info(f"Mirrored {mirrored} transaction changes")
    return mirrored
