"""
Line-item extraction from raw document field collections.
Maps typed (type-tag, text) pairs to structured line items.
"""
import re
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Iterable, List, Optional, Sequence

from core.dates import normalize_date
from core.logger import setup_logger
from core.schema import ExpenseDocument, ExpenseField, LineItem

logger = setup_logger(__name__)

MERCHANT_TYPES = {"ITEM", "VENDOR", "RECEIVER_NAME"}
AMOUNT_TYPES = {"PRICE", "AMOUNT", "TOTAL"}
DATE_TYPES = {"DATE", "TRANSACTION_DATE"}
MEMO_TYPES = {"DESCRIPTION"}

_NON_AMOUNT_CHARS = re.compile(r"[^0-9.\-]")


def parse_amount(text: Optional[str]) -> Optional[Decimal]:
    """
    Parse a printed amount such as '$1,204.50' or '-12.00 CR'.

    Args:
        text: Raw amount text

    Returns:
        Signed Decimal, or None if nothing parseable remains
    """
    if not text:
        return None
    cleaned = _NON_AMOUNT_CHARS.sub("", text)
    if not cleaned:
        return None
    try:
        value = Decimal(cleaned)
    except InvalidOperation:
        logger.debug(f"Ignoring unparseable amount: '{text}'")
        return None
    if not value.is_finite():
        return None
    return value


def extract_line_item(fields: Sequence[ExpenseField]) -> Optional[LineItem]:
    """
    Build a line item from one detected row of typed fields.

    The first non-empty value seen for each role wins. Rows without a
    merchant or with a zero amount are dropped; on statements these are
    almost always header or footer noise.

    Args:
        fields: Ordered field pairs for one line item

    Returns:
        LineItem, or None if the row is rejected
    """
    merchant = ""
    amount: Optional[Decimal] = None
    item_date = ""
    memo = ""

    for field in fields:
        field_type = (field.type or "").upper()
        text = field.text or ""

        if field_type in MERCHANT_TYPES:
            if not merchant and text.strip():
                merchant = text
        elif field_type in AMOUNT_TYPES:
            if amount is None:
                amount = parse_amount(text)
        elif field_type in DATE_TYPES:
            if not item_date and text.strip():
                item_date = normalize_date(text)
        elif field_type in MEMO_TYPES:
            if not memo and text.strip():
                memo = text

    # Fall back to the first field carrying any text
    if not merchant:
        for field in fields:
            if (field.text or "").strip():
                merchant = field.text
                break

    if not merchant.strip() or not amount:
        return None

    return LineItem(
        date=item_date or date.today().isoformat(),
        merchant=merchant.strip(),
        amount=amount,
        memo=memo.strip(),
    )


def extract_all_line_items(documents: Iterable[ExpenseDocument]) -> List[LineItem]:
    """
    Flatten document groups into line items, preserving extraction order.

    Args:
        documents: Every document group returned by the extraction job

    Returns:
        Surviving line items in order
    """
    results: List[LineItem] = []
    candidates = 0

    for document in documents:
        for group in document.line_item_groups:
            for line_item in group.line_items:
                candidates += 1
                extracted = extract_line_item(line_item.fields)
                if extracted:
                    results.append(extracted)

    logger.info(f"Extracted {len(results)} line items from {candidates} candidates")
    return results
