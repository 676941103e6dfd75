"""
Pydantic schemas for pipeline records, stage results and model output.
"""
import math
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Dict, List, Optional

from pydantic import BaseModel, BeforeValidator, Field, model_validator

UNASSIGNED = "UNASSIGNED"


class StatementStatus(str, Enum):
    """Lifecycle status of an uploaded statement."""
    PENDING = "PENDING"
    PARSED = "PARSED"
    FAILED = "FAILED"


def clamp_confidence(v):
    """Clamp model confidence into [0, 1]; models occasionally return 1.2 or -0.1."""
    if v is None:
        return 0.0
    try:
        value = float(v)
    except (TypeError, ValueError):
        return v
    if not math.isfinite(value):
        return 0.0
    return max(0.0, min(1.0, value))


def normalize_category_label(v):
    """Upper-case the label the model returned and join words with underscores."""
    if isinstance(v, str):
        return "_".join(v.strip().upper().split())
    return v


# ---- Extraction service payloads --------------------------------------------


class ExpenseField(BaseModel):
    """One typed (type-tag, text) pair detected on a line item."""
    type: Optional[str] = None
    text: str = ""

    @model_validator(mode="before")
    @classmethod
    def flatten_detection(cls, data: Any) -> Any:
        """Accept the nested Type/ValueDetection shape the extraction service emits."""
        if isinstance(data, dict) and ("Type" in data or "ValueDetection" in data):
            return {
                "type": (data.get("Type") or {}).get("Text"),
                "text": (data.get("ValueDetection") or {}).get("Text") or "",
            }
        return data


class LineItemFields(BaseModel):
    """Raw field collection for one detected line item."""
    fields: List[ExpenseField] = Field(default_factory=list, alias="LineItemExpenseFields")

    model_config = {"populate_by_name": True}


class LineItemGroup(BaseModel):
    line_items: List[LineItemFields] = Field(default_factory=list, alias="LineItems")

    model_config = {"populate_by_name": True}


class ExpenseDocument(BaseModel):
    """One document group returned by the extraction job."""
    line_item_groups: List[LineItemGroup] = Field(default_factory=list, alias="LineItemGroups")

    model_config = {"populate_by_name": True}


class JobPage(BaseModel):
    """Status and one page of results for an extraction job."""
    job_status: str = Field(default="IN_PROGRESS", alias="JobStatus")
    status_message: str = Field(default="", alias="StatusMessage")
    expense_documents: List[ExpenseDocument] = Field(default_factory=list, alias="ExpenseDocuments")
    next_token: Optional[str] = Field(default=None, alias="NextToken")

    model_config = {"populate_by_name": True}


# ---- Domain records ---------------------------------------------------------


class LineItem(BaseModel):
    """A structured line item extracted from a statement."""
    date: str
    merchant: str
    amount: Decimal
    memo: str = ""


class IngestRequest(BaseModel):
    """Validated pipeline input for one statement."""
    user_id: str
    statement_id: str
    key: str
    issuer: str
    card_last4: str


class Statement(BaseModel):
    """One uploaded financial document and its processing lifecycle."""
    user_id: str
    statement_id: str
    document_key: str
    issuer: str
    card_last4: str
    status: StatementStatus = StatementStatus.PENDING
    line_item_count: int = 0
    error: Optional[str] = None
    created_at: str
    updated_at: str


class Transaction(BaseModel):
    """One extracted line item with an assigned or pending category."""
    user_id: str
    sk: str
    statement_id: str
    issuer: str = ""
    card_last4: str = ""
    merchant_raw: str
    merchant_norm: str
    amount: Decimal
    memo: str = ""
    category: str = UNASSIGNED
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    manually_updated: bool = False
    created_at: str
    updated_at: Optional[str] = None


class Category(BaseModel):
    """A user-scoped classification target."""
    user_id: str
    name: str
    active: bool = True
    hints: List[str] = Field(default_factory=list)
    created_at: str
    updated_at: str


# ---- Model output -----------------------------------------------------------


class ClassificationItem(BaseModel):
    """One entry of the model's classification output."""
    index: int
    category: Annotated[str, BeforeValidator(normalize_category_label)]
    confidence: Annotated[float, BeforeValidator(clamp_confidence)] = 0.0


class ClassificationResponse(BaseModel):
    """The fixed JSON shape the model is instructed to emit."""
    items: List[ClassificationItem]


# ---- Stage results ----------------------------------------------------------


class ValidationResult(BaseModel):
    """Outcome of input validation."""
    valid: bool
    error: Optional[str] = None
    input: Dict[str, Any] = Field(default_factory=dict)


class ExtractionResult(BaseModel):
    """Outcome of the extraction stage."""
    success: bool
    line_items: List[LineItem] = Field(default_factory=list)
    persisted_count: int = 0
    error: Optional[str] = None


class ClassificationResult(BaseModel):
    """Outcome of the classification stage."""
    success: bool
    classified_count: int = 0
    error: Optional[str] = None


class FinalizeResult(BaseModel):
    """Outcome of writing a statement's terminal status."""
    success: bool
    status: StatementStatus
    error: Optional[str] = None
