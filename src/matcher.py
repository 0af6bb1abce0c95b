from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import yaml

from normalizer import CanonicalRecord
from parsers import days_between

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


DEFAULT_TOLERANCES: Dict[str, float] = {
    "amount_abs": 0.01,
    "date_mismatch_days": 1,
    "score_window_days": 5,
}

DEFAULT_WEIGHTS: Dict[str, float] = {
    "amount": 3,
    "transaction_number": 5,
    "credit_note_reference": 4,
    "reference": 2,
    "same_date": 1,
    "near_date": 0.5,
}

DEFAULT_CREDIT_NOTE_TYPES = ["ACCRECCREDIT", "ACCPAYCREDIT"]


@dataclass
class MatchConfig:
    tolerances: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_TOLERANCES))
    weights: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_WEIGHTS))
    credit_note_types: List[str] = field(default_factory=lambda: list(DEFAULT_CREDIT_NOTE_TYPES))

    @classmethod
    def load(cls, path: Path) -> "MatchConfig":
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Invalid matching configuration in {path}: document must be a mapping.")

        tolerances = data.get("tolerances", {})
        weights = data.get("weights", {})
        cfg = cls(
            tolerances={**DEFAULT_TOLERANCES, **tolerances} if isinstance(tolerances, dict) else tolerances,
            weights={**DEFAULT_WEIGHTS, **weights} if isinstance(weights, dict) else weights,
            credit_note_types=data.get("credit_note_types", list(DEFAULT_CREDIT_NOTE_TYPES)),
        )
        cfg.validate(source=path)
        return cfg

    def validate(self, *, source: Optional[Path | str] = None) -> None:
        problems: List[str] = []
        label = f" ({source})" if source else ""

        def _ensure_mapping(obj: Any, name: str) -> Dict[str, Any]:
            if isinstance(obj, dict):
                return obj
            problems.append(f"{name} must be a mapping.")
            return {}

        def _ensure_number(value: Any, name: str, *, minimum: float = 0.0) -> None:
            if isinstance(value, bool):
                problems.append(f"{name} must be numeric (got {value!r}).")
                return
            try:
                number = float(value)
            except (TypeError, ValueError):
                problems.append(f"{name} must be numeric (got {value!r}).")
                return
            if number < minimum:
                problems.append(f"{name} must be >= {minimum:g} (got {value!r}).")

        tolerances = _ensure_mapping(self.tolerances, "tolerances")
        for key in DEFAULT_TOLERANCES:
            _ensure_number(tolerances.get(key), f"tolerances.{key}")
        for key in tolerances:
            if key not in DEFAULT_TOLERANCES:
                problems.append(f"tolerances.{key} is not a known tolerance.")

        weights = _ensure_mapping(self.weights, "weights")
        for key, value in weights.items():
            if key not in DEFAULT_WEIGHTS:
                problems.append(f"weights.{key} is not a known weight.")
                continue
            _ensure_number(value, f"weights.{key}", minimum=float("-inf"))

        if not isinstance(self.credit_note_types, list) or not all(
            isinstance(item, str) and item.strip() for item in self.credit_note_types
        ):
            problems.append("credit_note_types must be a list of non-empty strings.")

        if problems:
            raise ValueError(f"Invalid matching configuration{label}: " + "; ".join(problems))

    def amount_tolerance(self) -> float:
        return float(self.tolerances.get("amount_abs", DEFAULT_TOLERANCES["amount_abs"]))

    def date_mismatch_days(self) -> int:
        return int(self.tolerances.get("date_mismatch_days", DEFAULT_TOLERANCES["date_mismatch_days"]))

    def score_window_days(self) -> int:
        return int(self.tolerances.get("score_window_days", DEFAULT_TOLERANCES["score_window_days"]))

    def weight(self, name: str) -> float:
        return float(self.weights.get(name, DEFAULT_WEIGHTS[name]))

    def credit_codes(self) -> List[str]:
        return [code.strip().upper() for code in self.credit_note_types]


DEFAULT_CONFIG = MatchConfig()


def _cfg(cfg: Optional[MatchConfig]) -> MatchConfig:
    return DEFAULT_CONFIG if cfg is None else cfg


# ---------------------------------------------------------------------------
# Predicates
# ---------------------------------------------------------------------------


def is_credit_note(record: CanonicalRecord, cfg: Optional[MatchConfig] = None) -> bool:
    tx_type = (record.type or "").upper()
    if tx_type and ("CREDIT" in tx_type or tx_type in _cfg(cfg).credit_codes()):
        return True
    return record.amount < 0


def same_transaction_number(a: CanonicalRecord, b: CanonicalRecord) -> bool:
    return bool(a.transaction_number and b.transaction_number and a.transaction_number == b.transaction_number)


def same_reference(a: CanonicalRecord, b: CanonicalRecord) -> bool:
    return bool(a.reference and b.reference and a.reference == b.reference)


def amounts_match(a: CanonicalRecord, b: CanonicalRecord, cfg: Optional[MatchConfig] = None) -> bool:
    return abs(abs(a.amount) - abs(b.amount)) < _cfg(cfg).amount_tolerance()


def partially_paid(*records: CanonicalRecord) -> bool:
    return any(record.is_partially_paid for record in records)


def is_exact_match(item: CanonicalRecord, candidate: CanonicalRecord, cfg: Optional[MatchConfig] = None) -> bool:
    # transaction number or reference, for invoices and credit notes alike
    id_match = same_transaction_number(item, candidate) or same_reference(item, candidate)
    if not id_match:
        return False
    if partially_paid(item, candidate):
        return False
    return amounts_match(item, candidate, cfg)


# ---------------------------------------------------------------------------
# Candidate search
# ---------------------------------------------------------------------------


def find_potential_matches(
    item: CanonicalRecord,
    candidates: Sequence[CanonicalRecord],
    cfg: Optional[MatchConfig] = None,
) -> List[CanonicalRecord]:
    by_number = [c for c in candidates if same_transaction_number(item, c)]
    if by_number:
        return by_number

    if item.reference and is_credit_note(item, cfg):
        credit_refs = [c for c in candidates if is_credit_note(c, cfg) and same_reference(item, c)]
        if credit_refs:
            return credit_refs

    return [c for c in candidates if same_reference(item, c)]


def find_perfect_match_among_candidates(
    item: CanonicalRecord,
    candidates: Sequence[CanonicalRecord],
    cfg: Optional[MatchConfig] = None,
) -> Optional[CanonicalRecord]:
    for candidate in candidates:
        if (
            same_transaction_number(item, candidate)
            and amounts_match(item, candidate, cfg)
            and not partially_paid(item, candidate)
        ):
            return candidate

    if is_credit_note(item, cfg):
        pool = [c for c in candidates if is_credit_note(c, cfg)]
    else:
        pool = list(candidates)

    reference_hits = [c for c in pool if same_reference(item, c) and amounts_match(item, c, cfg)]
    # two or more equally valid reference hits stay ambiguous and go to scoring
    if len(reference_hits) == 1 and not partially_paid(item, reference_hits[0]):
        return reference_hits[0]
    return None


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------


def calculate_match_score(item: CanonicalRecord, candidate: CanonicalRecord, cfg: Optional[MatchConfig] = None) -> float:
    cfg = _cfg(cfg)
    score = 0.0

    if amounts_match(item, candidate, cfg):
        score += cfg.weight("amount")

    if same_transaction_number(item, candidate):
        score += cfg.weight("transaction_number")

    if same_reference(item, candidate):
        if is_credit_note(item, cfg) and is_credit_note(candidate, cfg):
            score += cfg.weight("credit_note_reference")
        else:
            score += cfg.weight("reference")

    delta = days_between(item.date, candidate.date)
    if delta is not None:
        if delta == 0:
            score += cfg.weight("same_date")
        elif delta <= cfg.score_window_days():
            score += cfg.weight("near_date")

    return score


def find_best_match(
    item: CanonicalRecord,
    candidates: Sequence[CanonicalRecord],
    cfg: Optional[MatchConfig] = None,
) -> Optional[CanonicalRecord]:
    best: Optional[CanonicalRecord] = None
    best_score = float("-inf")
    for candidate in candidates:
        score = calculate_match_score(item, candidate, cfg)
        if score > best_score:
            best, best_score = candidate, score
    return best


# ---------------------------------------------------------------------------
# Date mismatches
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DateMismatch:
    company1: CanonicalRecord
    company2: CanonicalRecord
    mismatch_type: str
    company1_date: str
    company2_date: str
    days_difference: int

    def as_dict(self) -> Dict[str, Any]:
        return {
            "company1": self.company1.as_dict(),
            "company2": self.company2.as_dict(),
            "mismatchType": self.mismatch_type,
            "company1Date": self.company1_date,
            "company2Date": self.company2_date,
            "daysDifference": self.days_difference,
        }


def find_date_mismatch(
    item1: CanonicalRecord,
    item2: CanonicalRecord,
    cfg: Optional[MatchConfig] = None,
) -> Optional[DateMismatch]:
    threshold = _cfg(cfg).date_mismatch_days()
    checks = (
        ("transaction_date", item1.date, item2.date),
        ("due_date", item1.due_date, item2.due_date),
    )
    for mismatch_type, first, second in checks:
        delta = days_between(first, second)
        if delta is not None and delta > threshold:
            return DateMismatch(
                company1=item1,
                company2=item2,
                mismatch_type=mismatch_type,
                company1_date=first,
                company2_date=second,
                days_difference=delta,
            )
    return None
