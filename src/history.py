# history.py
# Unmatched AP items × historical AR ledger: finds earlier records sharing a
# transaction number or reference and explains why the item may be missing
# from the counterparty side (paid, partially paid, voided, draft).
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from functools import cmp_to_key
from typing import Any, Dict, List, Optional, Sequence

from matcher import same_reference, same_transaction_number
from normalizer import CanonicalRecord
from parsers import format_currency


@dataclass(frozen=True)
class Insight:
    type: str
    message: str
    severity: str = "info"

    def as_dict(self) -> Dict[str, str]:
        return {"type": self.type, "message": self.message, "severity": self.severity}


@dataclass(frozen=True)
class HistoricalInsight:
    ap_item: CanonicalRecord
    historical_match: CanonicalRecord
    insight: Insight

    def as_dict(self) -> Dict[str, Any]:
        return {
            "apItem": self.ap_item.as_dict(),
            "historicalMatch": self.historical_match.as_dict(),
            "insight": self.insight.as_dict(),
        }


def display_date(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    try:
        return datetime.strptime(value[:10], "%Y-%m-%d").strftime("%d/%m/%Y")
    except ValueError:
        return None


def find_historical_matches(ap_item: CanonicalRecord, historical: Sequence[CanonicalRecord]) -> List[CanonicalRecord]:
    return [
        hist for hist in historical
        if same_transaction_number(ap_item, hist) or same_reference(ap_item, hist)
    ]


def _compare(a: CanonicalRecord, b: CanonicalRecord) -> int:
    if a.is_paid and not b.is_paid:
        return -1
    if b.is_paid and not a.is_paid:
        return 1
    if a.date and b.date and a.date != b.date:
        return -1 if a.date > b.date else 1
    return 0


def rank_historical_matches(matches: Sequence[CanonicalRecord]) -> List[CanonicalRecord]:
    """Paid records first, then the most recent; ties keep input order."""

    return sorted(matches, key=cmp_to_key(_compare))


def determine_historical_insight(ap_item: CanonicalRecord, hist: CanonicalRecord) -> Insight:
    label = f"Invoice {ap_item.transaction_number or 'unknown'}"

    if hist.is_paid:
        paid_on = display_date(hist.payment_date) or "an unknown date"
        return Insight("already_paid", f"{label} appears to have been paid on {paid_on}", "warning")

    if hist.is_partially_paid:
        return Insight(
            "partially_paid",
            f"{label} is partially paid in AR system. "
            f"Original amount: {format_currency(hist.original_amount)}, "
            f"Paid: {format_currency(hist.amount_paid)}, "
            f"Outstanding: {format_currency(hist.amount)}",
            "warning",
        )

    if hist.is_voided:
        voided_on = display_date(hist.void_date)
        suffix = f" on {voided_on}" if voided_on else ""
        return Insight("voided", f"{label} was voided in the AR system{suffix}", "error")

    if hist.status == "DRAFT":
        created_on = display_date(hist.date)
        suffix = f" created on {created_on}" if created_on else ""
        return Insight("draft", f"{label} exists as a draft in the AR system{suffix}", "info")

    details = ""
    seen_on = display_date(hist.date)
    if seen_on:
        details += f" from {seen_on}"
    if hist.amount:
        details += f", amount: {format_currency(hist.amount)}"
    return Insight("found_in_history", f"{label} found in AR history with status: {hist.status}{details}", "info")


def resolve_historical_insights(
    unmatched_ap: Sequence[CanonicalRecord],
    historical: Sequence[CanonicalRecord],
) -> List[HistoricalInsight]:
    insights: List[HistoricalInsight] = []
    if not historical:
        return insights
    for ap_item in unmatched_ap:
        matches = find_historical_matches(ap_item, historical)
        if not matches:
            continue
        best = rank_historical_matches(matches)[0]
        insights.append(HistoricalInsight(ap_item, best, determine_historical_insight(ap_item, best)))
    return insights
