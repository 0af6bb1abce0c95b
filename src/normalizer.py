# normalizer.py
# Raw rows (CSV or ERP export) → CanonicalRecord:
# - column aliases resolved from the first row (one header per upload),
# - amounts and dates through parsers, payment/void flags,
# - a per-side synthetic index used to track which rows were paired.
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from parsers import DEFAULT_DATE_FORMAT, parse_amount, parse_date

__all__ = [
    "FIELD_ALIASES",
    "CanonicalRecord",
    "normalize_field_names",
    "normalize_record",
    "normalize_data",
    "coalesce",
    "safe_bool",
]

RawRecord = Dict[str, Any]

# canonical key -> aliases, checked in order against the first row only
FIELD_ALIASES: Dict[str, Tuple[str, ...]] = {
    "transaction_number": ("transactionNumber", "id", "invoice_number"),
    "issue_date": ("date", "invoiceDate"),
    "due_date": ("dueDate",),
    "transaction_type": ("type",),
}

_TRUE_TEXT = {"1", "true", "t", "yes", "y", "sim"}


# ---------------- Utils ----------------
def is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and value != value:
        return True
    return isinstance(value, str) and value.strip() == ""


def coalesce(*values):
    for v in values:
        if not is_blank(v):
            return v
    return None


def safe_bool(val) -> bool:
    if isinstance(val, bool):
        return val
    if val is None:
        return False
    if isinstance(val, (int, float)):
        return val == val and val != 0
    return str(val).strip().lower() in _TRUE_TEXT


def to_text(value: Any) -> str:
    if is_blank(value):
        return ""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


# ---------------- Model ----------------
@dataclass(frozen=True)
class CanonicalRecord:
    index: int
    transaction_number: str = ""
    type: str = ""
    amount: float = 0.0
    date: Optional[str] = None
    due_date: Optional[str] = None
    status: str = ""
    reference: str = ""
    payment_date: Optional[str] = None
    void_date: Optional[str] = None
    is_paid: bool = False
    is_voided: bool = False
    is_partially_paid: bool = False
    original_amount: float = 0.0
    amount_paid: float = 0.0

    def as_dict(self) -> Dict[str, Any]:
        return {
            "transactionNumber": self.transaction_number,
            "type": self.type,
            "amount": self.amount,
            "date": self.date,
            "dueDate": self.due_date,
            "status": self.status,
            "reference": self.reference,
            "payment_date": self.payment_date,
            "void_date": self.void_date,
            "is_paid": self.is_paid,
            "is_voided": self.is_voided,
            "is_partially_paid": self.is_partially_paid,
            "original_amount": self.original_amount,
            "amount_paid": self.amount_paid,
        }


# ---------------- Field aliases ----------------
def normalize_field_names(records: Sequence[RawRecord]) -> List[RawRecord]:
    """Copy aliased columns onto their canonical keys.

    Only the first row is inspected: a single upload is assumed to share one
    header. The input rows are left untouched; shallow copies are returned.
    """

    rows = [dict(record) for record in records]
    if not rows:
        return rows

    sample = rows[0]
    for canonical, aliases in FIELD_ALIASES.items():
        if not is_blank(sample.get(canonical)):
            continue
        for alias in aliases:
            if is_blank(sample.get(alias)):
                continue
            for row in rows:
                row[canonical] = row.get(alias)
            break
    return rows


# ---------------- Records ----------------
def normalize_record(record: RawRecord, index: int, date_format: str = DEFAULT_DATE_FORMAT) -> CanonicalRecord:
    transaction_number = coalesce(
        record.get("transaction_number"),
        record.get("transactionNumber"),
        record.get("invoice_number"),
    )
    tx_type = coalesce(record.get("transaction_type"), record.get("type"))
    issue_date = coalesce(record.get("issue_date"), record.get("date"), record.get("Date"))
    due_date = coalesce(record.get("due_date"), record.get("dueDate"), record.get("DueDate"))
    status = to_text(coalesce(record.get("status"), record.get("Status")))
    reference = to_text(coalesce(record.get("reference"), record.get("Reference")))

    amount = parse_amount(coalesce(record.get("amount"), record.get("Total")))
    original_raw = record.get("original_amount")
    original_amount = amount if is_blank(original_raw) else parse_amount(original_raw)

    return CanonicalRecord(
        index=index,
        transaction_number=to_text(transaction_number),
        type=to_text(tx_type),
        amount=amount,
        date=parse_date(issue_date, date_format),
        due_date=parse_date(due_date, date_format),
        status=status,
        reference=reference,
        payment_date=parse_date(record.get("payment_date"), date_format),
        void_date=parse_date(record.get("void_date"), date_format),
        is_paid=safe_bool(record.get("is_paid")) or status == "PAID",
        is_voided=safe_bool(record.get("is_voided")) or status == "VOIDED",
        is_partially_paid=safe_bool(record.get("is_partially_paid")),
        original_amount=original_amount,
        amount_paid=parse_amount(record.get("amount_paid")),
    )


def normalize_data(records: Iterable[RawRecord], date_format: str = DEFAULT_DATE_FORMAT) -> List[CanonicalRecord]:
    rows = normalize_field_names(list(records))
    return [normalize_record(row, idx, date_format) for idx, row in enumerate(rows)]
