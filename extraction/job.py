"""
Extraction job orchestration.
Submits the document, waits for the job, extracts line items and stores them.
"""
import time
from typing import Callable, List, Optional

from core.config import get_settings
from core.db import Database, build_transaction_key, get_db, now_iso
from core.exceptions import ExternalJobError, PersistenceError, StatementPipelineException
from core.line_items import extract_all_line_items
from core.logger import setup_logger
from core.schema import UNASSIGNED, ExtractionResult, IngestRequest, LineItem, Transaction
from extraction.client import ExtractionServiceClient
from extraction.polling import BackoffSchedule, collect_pages, poll_until_complete

logger = setup_logger(__name__)


def normalize_merchant(merchant: str) -> str:
    """Uppercase a merchant name and collapse internal whitespace."""
    return " ".join(merchant.upper().split())


class ExtractionJobOrchestrator:
    """Runs one extraction job end to end for a statement."""

    def __init__(
        self,
        client: Optional[ExtractionServiceClient] = None,
        db: Optional[Database] = None,
        schedule: Optional[BackoffSchedule] = None,
        bucket: Optional[str] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        settings = get_settings()
        self.client = client or ExtractionServiceClient()
        self.db = db or get_db()
        self.schedule = schedule or BackoffSchedule.from_settings(settings)
        self.bucket = bucket or settings.raw_statements_bucket
        self.sleep = sleep
        self.clock = clock

    def run(self, request: IngestRequest) -> ExtractionResult:
        """
        Extract and persist every line item of a statement.

        Args:
            request: Validated ingestion request

        Returns:
            ExtractionResult; failures are reported, not raised
        """
        logger.info(f"Starting extraction for statement {request.statement_id} ({request.key})")

        try:
            job_id = self.client.start_job(self.bucket, request.key)
            if not job_id:
                raise ExternalJobError(
                    "Extraction service did not return a job id",
                    details={"bucket": self.bucket, "key": request.key}
                )

            poll_until_complete(
                lambda: self.client.get_job(job_id),
                self.schedule,
                job_id,
                sleep=self.sleep,
                clock=self.clock,
            )
            documents = collect_pages(
                lambda token: self.client.get_job(job_id, next_token=token),
                job_id,
            )
            line_items = extract_all_line_items(documents)

        except StatementPipelineException as e:
            logger.error(f"Extraction failed for statement {request.statement_id}: {e.message}")
            return ExtractionResult(success=False, error=e.message)

        except Exception as e:
            logger.error(f"Unexpected extraction error for statement {request.statement_id}: {e}", exc_info=True)
            return ExtractionResult(success=False, error=str(e))

        persisted = 0
        try:
            persisted = self.persist_line_items(request, line_items)
        except PersistenceError as e:
            persisted = e.details.get("persisted_count", 0)
            logger.error(
                f"Stored {persisted}/{len(line_items)} line items of statement "
                f"{request.statement_id} before failing: {e.message}"
            )
            return ExtractionResult(
                success=False,
                line_items=line_items,
                persisted_count=persisted,
                error=e.message,
            )

        logger.info(f"Stored {persisted} transactions for statement {request.statement_id}")
        return ExtractionResult(success=True, line_items=line_items, persisted_count=persisted)

    def persist_line_items(self, request: IngestRequest, line_items: List[LineItem]) -> int:
        """
        Write one UNASSIGNED transaction per line item, in extraction order.

        Writes are independent; earlier writes stay in place if a later one fails.

        Returns:
            Number of transactions written

        Raises:
            PersistenceError: With persisted_count in details, on the first failed write
        """
        created_at = now_iso()
        for index, item in enumerate(line_items):
            txn = Transaction(
                user_id=request.user_id,
                sk=build_transaction_key(item.date, request.statement_id, index),
                statement_id=request.statement_id,
                issuer=request.issuer,
                card_last4=request.card_last4,
                merchant_raw=item.merchant,
                merchant_norm=normalize_merchant(item.merchant),
                amount=item.amount,
                memo=item.memo,
                category=UNASSIGNED,
                confidence=0.0,
                created_at=created_at,
            )
            try:
                self.db.put_transaction(txn)
            except PersistenceError as e:
                e.details["persisted_count"] = index
                e.details["failed_key"] = txn.sk
                raise
        return len(line_items)
