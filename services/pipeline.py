"""
Statement pipeline orchestration.

The workflow is an explicit state table:

    VALIDATE -> EXTRACT -> CLASSIFY -> FINALIZE_OK

with one shared FINALIZE_FAILED state reached from any of the first three on a
failed result or an exception. Both finalize states write the statement's
terminal status once. Nothing is retried automatically.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional

from pydantic import BaseModel, Field

from core.config import get_settings
from core.db import Database, get_db, now_iso
from core.exceptions import NotFoundError, ValidationError
from core.logger import setup_logger
from core.schema import (
    ExtractionResult,
    FinalizeResult,
    IngestRequest,
    Statement,
    StatementStatus,
)
from core.validation import validate_ingest_request
from extraction.job import ExtractionJobOrchestrator
from llm.classify import ClassificationEngine

logger = setup_logger(__name__)


class PipelineState(str, Enum):
    VALIDATE = "VALIDATE"
    EXTRACT = "EXTRACT"
    CLASSIFY = "CLASSIFY"
    FINALIZE_OK = "FINALIZE_OK"
    FINALIZE_FAILED = "FINALIZE_FAILED"


TERMINAL_STATES = (PipelineState.FINALIZE_OK, PipelineState.FINALIZE_FAILED)


class PipelineRun(BaseModel):
    """State carried from one pipeline stage to the next."""
    run_id: str
    statement_id: Optional[str] = None
    user_id: Optional[str] = None
    input: Dict[str, Any] = Field(default_factory=dict)
    state: PipelineState = PipelineState.VALIDATE
    history: List[PipelineState] = Field(default_factory=list)
    line_item_count: int = 0
    classified_count: int = 0
    status: Optional[StatementStatus] = None
    error: Optional[str] = None
    failed_state: Optional[PipelineState] = None
    started_at: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    finished_at: Optional[str] = None

    @property
    def request(self) -> IngestRequest:
        return IngestRequest(**{k: self.input[k] for k in IngestRequest.model_fields})


class StatementPipeline:
    """Runs one statement through the ingestion workflow."""

    def __init__(
        self,
        db: Optional[Database] = None,
        extractor: Optional[ExtractionJobOrchestrator] = None,
        classifier: Optional[ClassificationEngine] = None,
        reprocess_policy: Optional[str] = None,
    ):
        settings = get_settings()
        self.db = db or get_db()
        self._extractor = extractor
        self._classifier = classifier
        self.reprocess_policy = reprocess_policy or settings.reprocess_policy
        self.upload_prefix = settings.upload_prefix
        self.upload_extension = settings.upload_extension

        self.transitions: Dict[PipelineState, Callable[[PipelineRun], PipelineState]] = {
            PipelineState.VALIDATE: self._validate,
            PipelineState.EXTRACT: self._extract,
            PipelineState.CLASSIFY: self._classify,
            PipelineState.FINALIZE_OK: self._finalize_ok,
            PipelineState.FINALIZE_FAILED: self._finalize_failed,
        }

    @property
    def extractor(self) -> ExtractionJobOrchestrator:
        if self._extractor is None:
            self._extractor = ExtractionJobOrchestrator(db=self.db)
        return self._extractor

    @property
    def classifier(self) -> ClassificationEngine:
        if self._classifier is None:
            self._classifier = ClassificationEngine(db=self.db)
        return self._classifier

    def run(self, request: Mapping[str, Any], run_id: str) -> PipelineRun:
        """
        Drive a request through the state table until a terminal state.

        Args:
            request: Raw ingestion request (user_id, statement_id, key, issuer, card_last4)
            run_id: Identifier of this run

        Returns:
            The finished PipelineRun
        """
        data = dict(request) if isinstance(request, Mapping) else {}
        run = PipelineRun(
            run_id=run_id,
            statement_id=data.get("statement_id") if isinstance(data.get("statement_id"), str) else None,
            user_id=data.get("user_id") if isinstance(data.get("user_id"), str) else None,
            input=data,
        )
        logger.info(f"Run {run_id} started for statement {run.statement_id}")

        while True:
            state = run.state
            run.history.append(state)
            handler = self.transitions[state]

            if state in TERMINAL_STATES:
                handler(run)
                break

            try:
                run.state = handler(run)
            except Exception as e:
                logger.error(f"Run {run_id} raised in {state.value}: {e}", exc_info=True)
                run.state = self._fail(run, state, getattr(e, "message", None) or str(e))

        run.finished_at = datetime.now(timezone.utc).isoformat()
        logger.info(f"Run {run_id} finished: {' -> '.join(s.value for s in run.history)}")
        return run

    def resubmit(self, user_id: str, statement_id: str, run_id: str) -> PipelineRun:
        """
        Rerun a statement that previously FAILED, with its stored request fields.

        Raises:
            NotFoundError: If the statement does not exist
            ValidationError: If the statement is not in FAILED status
        """
        statement = self.db.get_statement(user_id, statement_id)
        if statement is None:
            raise NotFoundError(
                f"Statement {statement_id} not found",
                details={"user_id": user_id, "statement_id": statement_id}
            )
        if statement.status != StatementStatus.FAILED:
            raise ValidationError(
                f"Only FAILED statements can be resubmitted (status: {statement.status.value})",
                details={"statement_id": statement_id, "status": statement.status.value}
            )

        if self.reprocess_policy == "purge":
            removed = self.db.delete_statement_transactions(user_id, statement_id)
            logger.info(f"Purged {removed} transactions left by the failed run of {statement_id}")

        return self.run(
            {
                "user_id": statement.user_id,
                "statement_id": statement.statement_id,
                "key": statement.document_key,
                "issuer": statement.issuer,
                "card_last4": statement.card_last4,
            },
            run_id,
        )

    # ---- Stage handlers -----------------------------------------------------

    def _fail(self, run: PipelineRun, state: PipelineState, cause: str) -> PipelineState:
        """Shared failure transition for every non-terminal state."""
        logger.error(f"Run {run.run_id} failed in {state.value}: {cause}")
        run.error = cause
        run.failed_state = state
        return PipelineState.FINALIZE_FAILED

    def _validate(self, run: PipelineRun) -> PipelineState:
        result = validate_ingest_request(run.input, self.upload_prefix, self.upload_extension)
        if not result.valid:
            return self._fail(run, PipelineState.VALIDATE, result.error)

        request = run.request
        existing = self.db.get_statement(request.user_id, request.statement_id)
        timestamp = now_iso()
        self.db.put_statement(Statement(
            user_id=request.user_id,
            statement_id=request.statement_id,
            document_key=request.key,
            issuer=request.issuer,
            card_last4=request.card_last4,
            status=StatementStatus.PENDING,
            created_at=existing.created_at if existing else timestamp,
            updated_at=timestamp,
        ))
        return PipelineState.EXTRACT

    def _extract(self, run: PipelineRun) -> PipelineState:
        result: ExtractionResult = self.extractor.run(run.request)
        run.line_item_count = result.persisted_count
        if not result.success:
            return self._fail(run, PipelineState.EXTRACT, result.error or "Extraction failed")
        return PipelineState.CLASSIFY

    def _classify(self, run: PipelineRun) -> PipelineState:
        result = self.classifier.classify(run.user_id, run.statement_id)
        if not result.success:
            return self._fail(run, PipelineState.CLASSIFY, result.error or "Classification failed")
        run.classified_count = result.classified_count
        return PipelineState.FINALIZE_OK

    def _finalize_ok(self, run: PipelineRun) -> PipelineState:
        self._finalize(run, StatementStatus.PARSED)
        return PipelineState.FINALIZE_OK

    def _finalize_failed(self, run: PipelineRun) -> PipelineState:
        self._finalize(run, StatementStatus.FAILED)
        return PipelineState.FINALIZE_FAILED

    def _finalize(self, run: PipelineRun, status: StatementStatus) -> FinalizeResult:
        """Write the statement's terminal status; errors are recorded on the run."""
        run.status = status
        if not run.user_id or not run.statement_id:
            logger.warning(f"Run {run.run_id} has no statement to mark {status.value}")
            return FinalizeResult(success=False, status=status, error="No statement to finalize")

        try:
            if self.db.get_statement(run.user_id, run.statement_id) is None:
                # Validation failed before the PENDING record was written
                self.db.put_statement(self._statement_from_input(run, status))
            else:
                self.db.update_statement_status(
                    run.user_id,
                    run.statement_id,
                    status,
                    run.line_item_count,
                    run.error,
                )
        except Exception as e:
            logger.error(f"Failed to mark statement {run.statement_id} as {status.value}: {e}", exc_info=True)
            run.error = run.error or str(e)
            return FinalizeResult(success=False, status=status, error=str(e))

        logger.info(f"Statement {run.statement_id} marked as {status.value}")
        return FinalizeResult(success=True, status=status)

    def _statement_from_input(self, run: PipelineRun, status: StatementStatus) -> Statement:
        def text(field: str) -> str:
            value = run.input.get(field)
            return value if isinstance(value, str) else ""

        timestamp = now_iso()
        return Statement(
            user_id=run.user_id,
            statement_id=run.statement_id,
            document_key=text("key"),
            issuer=text("issuer"),
            card_last4=text("card_last4"),
            status=status,
            line_item_count=run.line_item_count,
            error=run.error,
            created_at=timestamp,
            updated_at=timestamp,
        )
