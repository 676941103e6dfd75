"""
FastAPI routes for statement ingestion, transaction overrides and categories.
Thin HTTP layer over the service modules.
"""
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from core.db import Database, get_db
from core.exceptions import NotFoundError, StatementPipelineException, ValidationError
from core.exporters import AnalyticsSink
from core.logger import setup_logger
from services.category_service import CategoryService
from services.change_feed import mirror_pending_changes
from services.pipeline import StatementPipeline
from services.transaction_service import TransactionService

logger = setup_logger(__name__)

app = FastAPI(
    title="Statement Pipeline",
    description="Extract, store and classify credit-card statement transactions",
    version="1.0.0"
)

# In-memory run storage (the statement table holds the durable status)
runs: Dict[str, Dict[str, Any]] = {}


class StatementUpload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: Optional[str] = Field(default=None, alias="userId")
    key: Optional[str] = None
    issuer: Optional[str] = None
    card_last4: Optional[str] = Field(default=None, alias="cardLast4")


class LabelUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: Optional[str] = Field(default=None, alias="userId")
    txn_id: Optional[str] = Field(default=None, alias="txnId")
    new_category: Optional[str] = Field(default=None, alias="newCategory")


class CategoryCreate(BaseModel):
    name: Optional[str] = None
    hints: Optional[List[str]] = None


class CategoryUpdate(BaseModel):
    name: Optional[str] = None
    active: Optional[bool] = None
    hints: Optional[List[str]] = None


# ---- Dependencies -----------------------------------------------------------

def get_database() -> Database:
    return get_db()


def get_pipeline(db: Database = Depends(get_database)) -> StatementPipeline:
    return StatementPipeline(db=db)


def get_sink() -> AnalyticsSink:
    return AnalyticsSink()


def to_http_error(error: StatementPipelineException) -> HTTPException:
    """Map domain errors onto HTTP status codes."""
    if isinstance(error, ValidationError):
        return HTTPException(status_code=400, detail=error.message)
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=404, detail=error.message)
    return HTTPException(status_code=500, detail=error.message)


# ---- Routes -----------------------------------------------------------------

@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": "statement_pipeline",
        "version": "1.0.0"
    }


def run_pipeline_background(
    pipeline: StatementPipeline,
    run_id: str,
    request: Dict[str, Any],
    resubmitted: bool = False,
) -> None:
    """
    Background task driving one pipeline run.

    Args:
        pipeline: Pipeline instance bound to the request's database
        run_id: Run identifier
        request: Ingestion fields, or user_id/statement_id for a resubmission
        resubmitted: Whether to rerun a FAILED statement
    """
    runs[run_id]["status"] = "running"
    try:
        if resubmitted:
            run = pipeline.resubmit(request["user_id"], request["statement_id"], run_id)
        else:
            run = pipeline.run(request, run_id)
    except StatementPipelineException as e:
        logger.error(f"Run {run_id} could not start: {e}")
        runs[run_id]["status"] = "failed"
        runs[run_id]["error"] = e.message
        runs[run_id]["error_details"] = e.details
        return
    except Exception as e:
        logger.error(f"Run {run_id} failed with unexpected error: {e}", exc_info=True)
        runs[run_id]["status"] = "failed"
        runs[run_id]["error"] = str(e)
        return

    runs[run_id].update({
        "status": "completed" if run.status and run.status.value == "PARSED" else "failed",
        "statement_status": run.status.value if run.status else None,
        "history": [s.value for s in run.history],
        "line_item_count": run.line_item_count,
        "classified_count": run.classified_count,
        "error": run.error,
        "failed_state": run.failed_state.value if run.failed_state else None,
        "finished_at": run.finished_at,
    })
    logger.info(f"Run {run_id} ended with status {runs[run_id]['status']}")


def _queue_run(
    background_tasks: BackgroundTasks,
    pipeline: StatementPipeline,
    request: Dict[str, Any],
    resubmitted: bool = False,
) -> str:
    run_id = str(uuid.uuid4())
    runs[run_id] = {
        "run_id": run_id,
        "statement_id": request["statement_id"],
        "user_id": request["user_id"],
        "status": "queued",
        "created_at": datetime.now(timezone.utc).isoformat(),
    }
    background_tasks.add_task(run_pipeline_background, pipeline, run_id, request, resubmitted)
    logger.info(f"Run {run_id} queued for statement {request['statement_id']}")
    return run_id


@app.post("/statements", status_code=202)
async def start_ingest(
    body: StatementUpload,
    background_tasks: BackgroundTasks,
    pipeline: StatementPipeline = Depends(get_pipeline),
):
    """
    Register an uploaded statement and start its pipeline run.

    Returns:
        202 Accepted with runId and the generated statementId
    """
    if not body.user_id or not body.key or not body.issuer or not body.card_last4:
        raise HTTPException(
            status_code=400,
            detail="Missing required fields: userId, key, issuer, cardLast4"
        )

    statement_id = str(uuid.uuid4())
    request = {
        "user_id": body.user_id,
        "statement_id": statement_id,
        "key": body.key,
        "issuer": body.issuer,
        "card_last4": body.card_last4,
    }
    run_id = _queue_run(background_tasks, pipeline, request)
    return {"runId": run_id, "statementId": statement_id}


@app.get("/runs/{run_id}")
async def get_run_status(run_id: str):
    """Status of a pipeline run."""
    if run_id not in runs:
        raise HTTPException(status_code=404, detail="Run not found")
    return runs[run_id]


@app.post("/users/{user_id}/statements/{statement_id}/resubmit", status_code=202)
async def resubmit_statement(
    user_id: str,
    statement_id: str,
    background_tasks: BackgroundTasks,
    db: Database = Depends(get_database),
    pipeline: StatementPipeline = Depends(get_pipeline),
):
    """Rerun a FAILED statement."""
    statement = db.get_statement(user_id, statement_id)
    if statement is None:
        raise HTTPException(status_code=404, detail="Statement not found")
    if statement.status.value != "FAILED":
        raise HTTPException(
            status_code=400,
            detail=f"Only FAILED statements can be resubmitted (status: {statement.status.value})"
        )

    run_id = _queue_run(
        background_tasks,
        pipeline,
        {"user_id": user_id, "statement_id": statement_id},
        resubmitted=True,
    )
    return {"runId": run_id, "statementId": statement_id}


@app.get("/users/{user_id}/statements/{statement_id}")
def get_statement(user_id: str, statement_id: str, db: Database = Depends(get_database)):
    try:
        statement = TransactionService(db).get_statement(user_id, statement_id)
    except StatementPipelineException as e:
        raise to_http_error(e)
    return statement.model_dump(mode="json")


@app.get("/users/{user_id}/statements/{statement_id}/transactions")
def list_statement_transactions(user_id: str, statement_id: str, db: Database = Depends(get_database)):
    try:
        service = TransactionService(db)
        service.get_statement(user_id, statement_id)
        transactions = service.list_statement_transactions(user_id, statement_id)
    except StatementPipelineException as e:
        raise to_http_error(e)
    return {"items": [t.model_dump(mode="json") for t in transactions]}


@app.put("/transactions/label")
def update_label(body: LabelUpdate, db: Database = Depends(get_database)):
    """
    Manually set a transaction's category.

    Returns:
        The updated transaction (confidence 1.0, manually_updated true)
    """
    try:
        txn = TransactionService(db).update_label(body.user_id, body.txn_id, body.new_category)
    except StatementPipelineException as e:
        raise to_http_error(e)
    return {"ok": True, "item": txn.model_dump(mode="json")}


@app.get("/users/{user_id}/categories")
def list_categories(user_id: str, db: Database = Depends(get_database)):
    categories = CategoryService(db).list_categories(user_id)
    return {"items": [c.model_dump(mode="json") for c in categories]}


@app.post("/users/{user_id}/categories", status_code=201)
def create_category(user_id: str, body: CategoryCreate, db: Database = Depends(get_database)):
    try:
        category = CategoryService(db).create_category(user_id, body.name, body.hints)
    except StatementPipelineException as e:
        raise to_http_error(e)
    return category.model_dump(mode="json")


@app.put("/users/{user_id}/categories")
def update_category(user_id: str, body: CategoryUpdate, db: Database = Depends(get_database)):
    try:
        category = CategoryService(db).update_category(user_id, body.name, body.active, body.hints)
    except StatementPipelineException as e:
        raise to_http_error(e)
    return category.model_dump(mode="json")


@app.post("/users/{user_id}/categories/seed", status_code=201)
def seed_categories(user_id: str, db: Database = Depends(get_database)):
    """Seed the default category vocabulary for a user."""
    try:
        names = CategoryService(db).seed_defaults(user_id)
    except StatementPipelineException as e:
        raise to_http_error(e)
    return {"seeded": len(names), "categories": names}


@app.post("/changes/mirror")
def mirror_changes(db: Database = Depends(get_database), sink: AnalyticsSink = Depends(get_sink)):
    """Drain the transaction change log into the analytics sink."""
    try:
        mirrored = mirror_pending_changes(db, sink)
    except StatementPipelineException as e:
        raise to_http_error(e)
    return {"mirrored": mirrored}
