"""Flattened report rows and summary statistics for a reconciliation result.

Every function here works on the serialised result (``ReconciliationResult.as_dict()``
or a ``match_result.json`` loaded back from disk) so exporters and the HTTP API
share one shape.
"""
from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional

Row = Dict[str, Any]


def _first(*values: Any, default: Any = "") -> Any:
    for value in values:
        if value:
            return value
    return default


def _side(pair: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    return pair.get(key) or {}


def _amount(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def calculate_statistics(result: Mapping[str, Any], processing_time: float = 0) -> Dict[str, Any]:
    perfect = len(result.get("perfectMatches") or [])
    mismatches = len(result.get("mismatches") or [])
    unmatched = result.get("unmatchedItems") or {}
    unmatched1 = len(unmatched.get("company1") or [])
    unmatched2 = len(unmatched.get("company2") or [])

    total1 = perfect + mismatches + unmatched1
    total2 = perfect + mismatches + unmatched2
    denominator = max(total1, total2)
    match_rate = (perfect / denominator) * 100 if denominator else 0.0

    return {
        "perfectMatchCount": perfect,
        "mismatchCount": mismatches,
        "unmatchedCompany1Count": unmatched1,
        "unmatchedCompany2Count": unmatched2,
        "dateMismatchCount": len(result.get("dateMismatches") or []),
        "historicalInsightCount": len(result.get("historicalInsights") or []),
        "matchRate": round(match_rate, 2),
        "processingTime": processing_time,
    }


def prepare_perfect_matches(matches: Optional[List[Mapping[str, Any]]]) -> List[Row]:
    rows: List[Row] = []
    for match in matches or []:
        c1, c2 = _side(match, "company1"), _side(match, "company2")
        partially_paid = bool(c1.get("is_partially_paid") or c2.get("is_partially_paid"))
        if partially_paid:
            amount_paid = _first(c1.get("amount_paid"), c2.get("amount_paid"), default=0)
            original_amount = _first(c1.get("original_amount"), c2.get("original_amount"), default=0)
        else:
            amount_paid = 0
            original_amount = _first(c1.get("amount"), c2.get("amount"), default=0)
        rows.append(
            {
                "transactionNumber": _first(c1.get("transactionNumber"), c2.get("transactionNumber")),
                "type": _first(c1.get("type"), c2.get("type")),
                "amount": c1.get("amount") or 0,
                "date": _first(c1.get("date"), c2.get("date")),
                "dueDate": _first(c1.get("dueDate"), c2.get("dueDate")),
                "status": _first(c1.get("status"), c2.get("status")),
                "partiallyPaid": partially_paid,
                "amountPaid": amount_paid,
                "originalAmount": original_amount,
            }
        )
    return rows


def prepare_mismatches(mismatches: Optional[List[Mapping[str, Any]]]) -> List[Row]:
    rows: List[Row] = []
    for mismatch in mismatches or []:
        c1, c2 = _side(mismatch, "company1"), _side(mismatch, "company2")
        receivable = abs(_amount(c1.get("amount")))
        payable = abs(_amount(c2.get("amount")))
        rows.append(
            {
                "transactionNumber": _first(c1.get("transactionNumber"), c2.get("transactionNumber")),
                "type": _first(c1.get("type"), c2.get("type")),
                "receivableAmount": c1.get("amount") or 0,
                "payableAmount": c2.get("amount") or 0,
                "difference": abs(receivable - payable),
                "date": _first(c1.get("date"), c2.get("date")),
                "status": _first(c1.get("status"), c2.get("status")),
                "partiallyPaid": bool(c1.get("is_partially_paid") or c2.get("is_partially_paid")),
                "paymentDate": _first(c1.get("payment_date"), c2.get("payment_date")),
            }
        )
    return rows


def _unmatched_row(item: Mapping[str, Any]) -> Row:
    return {
        "transactionNumber": item.get("transactionNumber") or "",
        "type": item.get("type") or "",
        "amount": item.get("amount") or 0,
        "date": item.get("date") or "",
        "dueDate": item.get("dueDate") or "",
        "status": item.get("status") or "",
        "partiallyPaid": bool(item.get("is_partially_paid")),
        "amountPaid": item.get("amount_paid") or 0,
        "originalAmount": _first(item.get("original_amount"), item.get("amount"), default=0),
    }


def prepare_unmatched_items(unmatched: Optional[Mapping[str, Any]]) -> Dict[str, List[Row]]:
    unmatched = unmatched or {}
    return {
        "company1": [_unmatched_row(item) for item in unmatched.get("company1") or []],
        "company2": [_unmatched_row(item) for item in unmatched.get("company2") or []],
    }


def prepare_historical_insights(insights: Optional[List[Mapping[str, Any]]]) -> List[Row]:
    rows: List[Row] = []
    for entry in insights or []:
        ap = entry.get("apItem") or {}
        hist = entry.get("historicalMatch") or {}
        insight = entry.get("insight") or {}
        rows.append(
            {
                "apTransactionNumber": ap.get("transactionNumber") or "",
                "apAmount": ap.get("amount") or 0,
                "apDate": ap.get("date") or "",
                "apStatus": ap.get("status") or "",
                "arTransactionNumber": hist.get("transactionNumber") or "",
                "arOriginalAmount": hist.get("original_amount") or 0,
                "arCurrentAmount": hist.get("amount") or 0,
                "arAmountPaid": hist.get("amount_paid") or 0,
                "arDate": hist.get("date") or "",
                "arStatus": hist.get("status") or "",
                "arPaymentDate": hist.get("payment_date") or "",
                "insightType": insight.get("type") or "",
                "insightMessage": insight.get("message") or "",
                "insightSeverity": insight.get("severity") or "",
            }
        )
    return rows


def prepare_date_mismatches(mismatches: Optional[List[Mapping[str, Any]]]) -> List[Row]:
    rows: List[Row] = []
    for mismatch in mismatches or []:
        c1, c2 = _side(mismatch, "company1"), _side(mismatch, "company2")
        rows.append(
            {
                "transactionNumber": _first(c1.get("transactionNumber"), c2.get("transactionNumber")),
                "mismatchType": mismatch.get("mismatchType") or "",
                "company1Date": mismatch.get("company1Date") or "",
                "company2Date": mismatch.get("company2Date") or "",
                "daysDifference": mismatch.get("daysDifference") or 0,
                "amount": c1.get("amount") or 0,
            }
        )
    return rows


def build_report(result: Mapping[str, Any], processing_time: float = 0) -> Dict[str, Any]:
    unmatched = prepare_unmatched_items(result.get("unmatchedItems"))
    return {
        "statistics": calculate_statistics(result, processing_time),
        "totals": dict(result.get("totals") or {}),
        "perfectMatches": prepare_perfect_matches(result.get("perfectMatches")),
        "mismatches": prepare_mismatches(result.get("mismatches")),
        "unmatchedCompany1": unmatched["company1"],
        "unmatchedCompany2": unmatched["company2"],
        "historicalInsights": prepare_historical_insights(result.get("historicalInsights")),
        "dateMismatches": prepare_date_mismatches(result.get("dateMismatches")),
    }
