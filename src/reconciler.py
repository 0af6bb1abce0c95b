# reconciler.py
# Full reconciliation pass: normalises both ledgers, pairs company1 rows with
# company2 candidates (perfect match / mismatch / unmatched), annotates date
# drift in perfect matches, looks up leftover AP rows in AR history and
# computes totals and variance. Pure: callers persist the result.
from __future__ import annotations

import argparse
import json
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

from history import HistoricalInsight, resolve_historical_insights
from matcher import (
    DateMismatch,
    MatchConfig,
    find_best_match,
    find_date_mismatch,
    find_perfect_match_among_candidates,
    find_potential_matches,
    is_credit_note,
    is_exact_match,
)
from normalizer import CanonicalRecord, normalize_data
from parsers import DEFAULT_DATE_FORMAT

RawRecord = Dict[str, Any]


class MatchingError(Exception):
    """Raised when a reconciliation pass fails; no partial result exists."""


# ---------------------------------------------------------------------------
# Result model
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MatchPair:
    company1: CanonicalRecord
    company2: CanonicalRecord

    def as_dict(self) -> Dict[str, Any]:
        return {"company1": self.company1.as_dict(), "company2": self.company2.as_dict()}


@dataclass(frozen=True)
class Totals:
    company1_total: float
    company2_total: float
    variance: float

    def as_dict(self) -> Dict[str, float]:
        return {
            "company1Total": self.company1_total,
            "company2Total": self.company2_total,
            "variance": self.variance,
        }


@dataclass
class ReconciliationResult:
    perfect_matches: List[MatchPair]
    mismatches: List[MatchPair]
    unmatched_company1: List[CanonicalRecord]
    unmatched_company2: List[CanonicalRecord]
    historical_insights: List[HistoricalInsight]
    date_mismatches: List[DateMismatch]
    totals: Totals
    logs: List[Dict[str, object]] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "perfectMatches": [pair.as_dict() for pair in self.perfect_matches],
            "mismatches": [pair.as_dict() for pair in self.mismatches],
            "unmatchedItems": {
                "company1": [item.as_dict() for item in self.unmatched_company1],
                "company2": [item.as_dict() for item in self.unmatched_company2],
            },
            "historicalInsights": [insight.as_dict() for insight in self.historical_insights],
            "dateMismatches": [mismatch.as_dict() for mismatch in self.date_mismatches],
            "totals": self.totals.as_dict(),
        }


# ---------------------------------------------------------------------------
# Totals
# ---------------------------------------------------------------------------


def calculate_total(records: Iterable[CanonicalRecord]) -> float:
    return sum((record.amount for record in records), 0.0)


def calculate_variance(total1: float, total2: float) -> float:
    # receivables are positive and payables negative, so only side 2 is folded
    return abs(total1 - abs(total2))


# ---------------------------------------------------------------------------
# Matching loop
# ---------------------------------------------------------------------------


def _pair_log(
    item: CanonicalRecord,
    candidates: Sequence[CanonicalRecord],
    outcome: str,
    via: Optional[str],
    partner: Optional[CanonicalRecord],
    cfg: Optional[MatchConfig],
) -> Dict[str, object]:
    return {
        "event": "pair",
        "company1_index": item.index,
        "transactionNumber": item.transaction_number,
        "candidates": len(candidates),
        "outcome": outcome,
        "via": via,
        "company2_index": partner.index if partner is not None else None,
        "credit_note": is_credit_note(item, cfg),
    }


def _reconcile(
    data1: Sequence[RawRecord],
    data2: Sequence[RawRecord],
    date_format1: str,
    date_format2: str,
    historical_data: Sequence[RawRecord],
    cfg: Optional[MatchConfig],
) -> ReconciliationResult:
    company1 = normalize_data(data1, date_format1)
    company2 = normalize_data(data2, date_format2)
    historical = normalize_data(historical_data, date_format1) if historical_data else []

    perfect: List[MatchPair] = []
    mismatches: List[MatchPair] = []
    date_mismatches: List[DateMismatch] = []
    logs: List[Dict[str, object]] = []
    paired1: set[int] = set()
    paired2: set[int] = set()

    def accept_perfect(item: CanonicalRecord, match: CanonicalRecord) -> None:
        perfect.append(MatchPair(item, match))
        drift = find_date_mismatch(item, match, cfg)
        if drift is not None:
            date_mismatches.append(drift)

    for item in company1:
        candidates = find_potential_matches(item, company2, cfg)
        if not candidates:
            logs.append(_pair_log(item, candidates, "unmatched", None, None, cfg))
            continue

        if len(candidates) == 1:
            partner = candidates[0]
            via = "single"
            if is_exact_match(item, partner, cfg):
                outcome = "perfect"
                accept_perfect(item, partner)
            else:
                outcome = "mismatch"
                mismatches.append(MatchPair(item, partner))
        else:
            chosen = find_perfect_match_among_candidates(item, candidates, cfg)
            if chosen is not None:
                partner, via, outcome = chosen, "disambiguated", "perfect"
                accept_perfect(item, partner)
            else:
                partner, via, outcome = find_best_match(item, candidates, cfg), "best_score", "mismatch"
                mismatches.append(MatchPair(item, partner))

        paired1.add(item.index)
        paired2.add(partner.index)
        logs.append(_pair_log(item, candidates, outcome, via, partner, cfg))

    unmatched1 = [item for item in company1 if item.index not in paired1]
    unmatched2 = [item for item in company2 if item.index not in paired2]

    insights = resolve_historical_insights(unmatched2, historical)
    for insight in insights:
        logs.append(
            {
                "event": "historical_insight",
                "company2_index": insight.ap_item.index,
                "transactionNumber": insight.ap_item.transaction_number,
                "type": insight.insight.type,
                "severity": insight.insight.severity,
            }
        )

    total1 = calculate_total(company1)
    total2 = calculate_total(company2)

    logs.append(
        {
            "event": "summary",
            "company1": len(company1),
            "company2": len(company2),
            "historical": len(historical),
            "perfect_matches": len(perfect),
            "mismatches": len(mismatches),
            "unmatched_company1": len(unmatched1),
            "unmatched_company2": len(unmatched2),
            "date_mismatches": len(date_mismatches),
            "historical_insights": len(insights),
        }
    )

    return ReconciliationResult(
        perfect_matches=perfect,
        mismatches=mismatches,
        unmatched_company1=unmatched1,
        unmatched_company2=unmatched2,
        historical_insights=insights,
        date_mismatches=date_mismatches,
        totals=Totals(total1, total2, calculate_variance(total1, total2)),
        logs=logs,
    )


def match_records(
    data1: Sequence[RawRecord],
    data2: Sequence[RawRecord],
    date_format1: str = DEFAULT_DATE_FORMAT,
    date_format2: str = DEFAULT_DATE_FORMAT,
    historical_data: Optional[Sequence[RawRecord]] = None,
    cfg: Optional[MatchConfig] = None,
) -> ReconciliationResult:
    """Reconcile company1 (AR) rows against company2 (AP) rows.

    Any failure aborts the whole pass and surfaces as :class:`MatchingError`.
    """

    try:
        return _reconcile(
            data1,
            data2,
            date_format1 or DEFAULT_DATE_FORMAT,
            date_format2 or DEFAULT_DATE_FORMAT,
            historical_data or [],
            cfg,
        )
    except Exception as exc:
        raise MatchingError(f"Matching error: {exc}") from exc


# ---------------------------------------------------------------------------
# IO helpers
# ---------------------------------------------------------------------------


def ensure_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def save_result(result: ReconciliationResult, out_dir: Path) -> Dict[str, str]:
    ensure_dir(out_dir)
    result_path = out_dir / "match_result.json"
    result_path.write_text(json.dumps(result.as_dict(), ensure_ascii=False, indent=2), encoding="utf-8")
    return {"result": str(result_path)}


def write_match_log(path: Path, logs: List[Dict[str, object]]) -> None:
    ensure_dir(path.parent)
    with path.open("w", encoding="utf-8") as handle:
        for row in logs:
            handle.write(json.dumps(row, ensure_ascii=False) + "\n")


# ---------------------------------------------------------------------------
# CLI orchestration
# ---------------------------------------------------------------------------


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Reconcile two ledgers (company1 AR vs company2 AP)")
    parser.add_argument("--company1", required=True, help="CSV or JSON rows for company1")
    parser.add_argument("--company2", required=True, help="CSV or JSON rows for company2")
    parser.add_argument("--historical", help="Optional CSV or JSON with historical AR rows")
    parser.add_argument("--date-format1", default=DEFAULT_DATE_FORMAT)
    parser.add_argument("--date-format2", default=DEFAULT_DATE_FORMAT)
    parser.add_argument("--cfg", help="Path to matching.yml (defaults are used when omitted)")
    parser.add_argument("--delimiter", default=",")
    parser.add_argument("--out", required=True, help="Directory for match_result.json")
    parser.add_argument("--log", default="out/match/match_log.jsonl")
    return parser.parse_args(argv)


def run_reconciler(args: argparse.Namespace) -> Dict[str, object]:
    from loader import read_records

    cfg = MatchConfig.load(Path(args.cfg)) if args.cfg else None
    data1 = read_records(Path(args.company1), delimiter=args.delimiter)
    data2 = read_records(Path(args.company2), delimiter=args.delimiter)
    historical = read_records(Path(args.historical), delimiter=args.delimiter) if args.historical else []

    result = match_records(data1, data2, args.date_format1, args.date_format2, historical, cfg)
    outputs = save_result(result, Path(args.out))
    write_match_log(Path(args.log), result.logs)

    return {
        "perfect_matches": len(result.perfect_matches),
        "mismatches": len(result.mismatches),
        "unmatched_company1": len(result.unmatched_company1),
        "unmatched_company2": len(result.unmatched_company2),
        "date_mismatches": len(result.date_mismatches),
        "historical_insights": len(result.historical_insights),
        **result.totals.as_dict(),
        **outputs,
    }


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    try:
        summary = run_reconciler(args)
    except MatchingError as exc:
        sys.stderr.write(f"{exc}\n")
        return 1
    except (FileNotFoundError, ValueError) as exc:
        sys.stderr.write(f"{exc}\n")
        return 2
    sys.stdout.write(json.dumps(summary, ensure_ascii=False, indent=2) + "\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
