# Overview: Pure quality-control rules; status normalisation and result aggregation.

from __future__ import annotations

from collections import Counter
from typing import Iterable

ITEM_STATUSES = frozenset({"pending", "passed", "failed"})

# Older clients reported the inspection outcome as a reason code in the
# status field. "received_correctly" means passed; every other code failed.
LEGACY_ITEM_STATUSES = frozenset({
    "received_correctly",
    "damaged_packaging",
    "damaged_product",
    "expired",
    "near_expiry",
    "wrong_product",
    "wrong_quantity",
    "missing_documents",
    "temperature_issue",
    "contaminated",
    "defective",
    "rejected",
})

QC_REASONS = (
    "received_correctly",
    "damaged_packaging",
    "damaged_product",
    "expired",
    "near_expiry",
    "wrong_product",
    "quantity_mismatch",
    "quality_issue",
    "labeling_issue",
    "other",
)

# stability_testing has no standard equivalent and is stored as given
QC_TYPES = frozenset({"standard", "urgent", "special", "stability_testing"})
LEGACY_QC_TYPES = {
    "incoming_inspection": "standard",
    "batch_testing": "standard",
    "random_sampling": "standard",
    "full_inspection": "special",
}

PRIORITIES = frozenset({"low", "medium", "high", "urgent"})
LIGHT_CONDITIONS = frozenset({"normal", "bright", "dim"})


def normalize_item_status(status: str) -> str:
    """Map legacy status codes onto pending / passed / failed."""
    if status in ITEM_STATUSES:
        return status
    if status == "received_correctly":
        return "passed"
    if status in LEGACY_ITEM_STATUSES:
        return "failed"
    raise ValueError(f"Unknown QC item status: {status}")


def normalize_qc_type(qc_type: str) -> str:
    if qc_type in QC_TYPES:
        return qc_type
    if qc_type in LEGACY_QC_TYPES:
        return LEGACY_QC_TYPES[qc_type]
    raise ValueError(f"Unknown QC type: {qc_type}")


def product_result(statuses: Iterable[str]) -> str:
    """
    Aggregate item statuses into a product result.

    pending while any item is pending; otherwise passed iff every item
    passed, failed iff every item failed, else partial_pass.
    """
    statuses = list(statuses)
    if not statuses or "pending" in statuses:
        return "pending"
    if all(s == "passed" for s in statuses):
        return "passed"
    if all(s == "failed" for s in statuses):
        return "failed"
    return "partial_pass"


def overall_result(product_results: Iterable[str]) -> str:
    """Same rule one level up, over resolved product results."""
    results = list(product_results)
    if not results or "pending" in results:
        return "pending"
    if all(r == "passed" for r in results):
        return "passed"
    if all(r == "failed" for r in results):
        return "failed"
    return "partial_pass"


def item_quantities(received_qty: int, max_items: int) -> list[int]:
    """
    Split a received quantity into inspection items.

    One item per unit up to max_items; beyond that, max_items sub-batches
    whose sizes differ by at most one.
    """
    if received_qty <= 0:
        raise ValueError("received_qty must be positive")
    if received_qty <= max_items:
        return [1] * received_qty
    base, extra = divmod(received_qty, max_items)
    return [base + 1 if i < extra else base for i in range(max_items)]


def reason_summary(items: Iterable[tuple[str, int, list[str]]]) -> dict[str, int]:
    """
    Units affected per reason code, from (status, quantity, reasons) triples.

    Passed items with no reason count as received_correctly.
    """
    counts: Counter = Counter()
    for status, quantity, reasons in items:
        if status == "pending":
            continue
        codes = list(reasons or [])
        if not codes and status == "passed":
            codes = ["received_correctly"]
        for code in codes:
            counts[code] += quantity
    return dict(counts)
