"""
Prompt construction for batch transaction classification.
Pure functions: the same vocabulary and transactions always give the same prompt.
"""
from typing import Sequence

from core.schema import UNASSIGNED, Transaction

OUTPUT_SCHEMA = '{ "items": [ { "index": 0, "category": "CATEG", "confidence": 0.0 } ] }'


def format_line_item(index: int, txn: Transaction) -> str:
    """One prompt row: position, normalized merchant and two-decimal amount."""
    return f"{index} | {txn.merchant_norm} | ${txn.amount:.2f}"


def build_classification_prompt(
    transactions: Sequence[Transaction],
    categories: Sequence[str],
) -> str:
    """
    Build the single prompt that classifies a whole statement.

    Args:
        transactions: Unclassified transactions in query order
        categories: Active category names

    Returns:
        Prompt string
    """
    categories_list = "\n".join(f"- {name}" for name in categories)
    line_items = "\n".join(format_line_item(i, txn) for i, txn in enumerate(transactions))

    return f"""You are a budgeting assistant. Categorize each transaction using ONLY the provided categories.
Return valid JSON. If unsure, select "{UNASSIGNED}". No extra text.

CATEGORIES:
{categories_list}

TASK:
For each line item, choose the best category.

OUTPUT SCHEMA:
{OUTPUT_SCHEMA}

LINE ITEMS:
{line_items}"""
