import json
from pathlib import Path

import pytest

import reconciler
from reconciler import MatchingError, calculate_variance, match_records, save_result, write_match_log


def test_single_exact_pair_is_perfect_match():
    data1 = [{"transactionNumber": "INV001", "amount": 100, "date": "01/01/2024"}]
    data2 = [{"transactionNumber": "INV001", "amount": -100, "date": "01/01/2024"}]

    result = match_records(data1, data2, "DD/MM/YYYY", "DD/MM/YYYY")

    assert len(result.perfect_matches) == 1
    assert result.mismatches == []
    assert result.unmatched_company1 == []
    assert result.unmatched_company2 == []
    assert result.date_mismatches == []
    assert result.totals.variance == 0


def test_perfect_match_with_shifted_date_is_annotated():
    data1 = [{"transactionNumber": "INV001", "amount": 100, "date": "01/01/2024"}]
    data2 = [{"transactionNumber": "INV001", "amount": -100, "date": "03/01/2024"}]

    result = match_records(data1, data2, "DD/MM/YYYY", "DD/MM/YYYY")

    assert len(result.perfect_matches) == 1
    assert len(result.date_mismatches) == 1
    mismatch = result.as_dict()["dateMismatches"][0]
    assert mismatch["mismatchType"] == "transaction_date"
    assert mismatch["daysDifference"] == 2


def test_side_without_counterpart_stays_unmatched():
    result = match_records([{"transactionNumber": "INV002", "amount": 200}], [])

    assert result.perfect_matches == []
    assert len(result.unmatched_company1) == 1
    assert result.unmatched_company2 == []
    assert result.totals.company1_total == 200
    assert result.totals.variance == 200


def test_credit_note_links_through_reference():
    data1 = [{"transactionNumber": "CN-001", "type": "ACCRECCREDIT", "amount": -50, "reference": "INV-010"}]
    data2 = [{"transactionNumber": "INV-010", "type": "ACCPAYCREDIT", "amount": 50, "reference": "INV-010"}]

    result = match_records(data1, data2)

    assert len(result.perfect_matches) == 1
    pair = result.perfect_matches[0]
    assert pair.company1.transaction_number == "CN-001"
    assert pair.company2.transaction_number == "INV-010"


def test_amount_difference_becomes_mismatch():
    data1 = [{"transactionNumber": "INV-5", "amount": 100}]
    data2 = [{"transactionNumber": "INV-5", "amount": -90}]

    result = match_records(data1, data2)

    assert result.perfect_matches == []
    assert len(result.mismatches) == 1
    assert result.unmatched_company1 == []
    assert result.unmatched_company2 == []


def test_partial_payment_blocks_perfect_match():
    data1 = [{"transactionNumber": "INV-6", "amount": 100, "is_partially_paid": "true"}]
    data2 = [{"transactionNumber": "INV-6", "amount": -100}]

    result = match_records(data1, data2)

    assert len(result.mismatches) == 1


def test_ambiguous_candidates_fall_back_to_best_score():
    data1 = [{"transactionNumber": "A-1", "reference": "PO-7", "amount": 100, "date": "2024-01-10"}]
    data2 = [
        {"transactionNumber": "B-1", "reference": "PO-7", "amount": -100, "date": "2024-03-01"},
        {"transactionNumber": "B-2", "reference": "PO-7", "amount": -100, "date": "2024-01-10"},
    ]

    result = match_records(data1, data2)

    assert result.perfect_matches == []
    assert len(result.mismatches) == 1
    assert result.mismatches[0].company2.transaction_number == "B-2"
    assert [item.transaction_number for item in result.unmatched_company2] == ["B-1"]


def test_identical_rows_are_tracked_independently():
    data1 = [{"transactionNumber": "INV-7", "amount": 100}]
    data2 = [
        {"transactionNumber": "INV-7", "amount": -100},
        {"transactionNumber": "INV-7", "amount": -100},
    ]

    result = match_records(data1, data2)

    assert len(result.perfect_matches) == 1
    assert len(result.unmatched_company2) == 1
    assert result.unmatched_company2[0].index == 1


def test_partition_is_complete():
    data1 = [
        {"transactionNumber": "P-1", "amount": 10},
        {"transactionNumber": "M-1", "amount": 20},
        {"transactionNumber": "U-1", "amount": 30},
    ]
    data2 = [
        {"transactionNumber": "P-1", "amount": -10},
        {"transactionNumber": "M-1", "amount": -25},
        {"transactionNumber": "U-2", "amount": -40},
    ]

    result = match_records(data1, data2)

    paired = {pair.company1.index for pair in result.perfect_matches + result.mismatches}
    unmatched = {item.index for item in result.unmatched_company1}
    assert paired.isdisjoint(unmatched)
    assert paired | unmatched == {0, 1, 2}
    assert [item.transaction_number for item in result.unmatched_company2] == ["U-2"]


def test_repeated_runs_are_identical():
    data1 = [{"transactionNumber": "INV-1", "amount": "1,000.00", "date": "05/01/2024"}]
    data2 = [{"id": "INV-1", "amount": "-1000", "date": "06/01/2024"}]

    first = match_records(data1, data2)
    second = match_records(data1, data2)

    assert first.as_dict() == second.as_dict()
    assert "transaction_number" not in data2[0]


def test_historical_insights_for_leftover_ap_rows():
    data1 = []
    data2 = [{"transactionNumber": "INV-9", "amount": -80}]
    historical = [{"transactionNumber": "INV-9", "amount": 80, "status": "PAID", "payment_date": "20/02/2024"}]

    result = match_records(data1, data2, historical_data=historical)

    assert len(result.historical_insights) == 1
    insight = result.historical_insights[0].insight
    assert insight.type == "already_paid"
    assert "20/02/2024" in insight.message


def test_totals_and_variance_keep_sign_convention():
    data1 = [{"transactionNumber": "A", "amount": 150}, {"transactionNumber": "B", "amount": 50}]
    data2 = [{"transactionNumber": "A", "amount": -150}]

    result = match_records(data1, data2)

    assert result.totals.company1_total == 200
    assert result.totals.company2_total == -150
    assert result.totals.variance == 50
    assert calculate_variance(-10, 5) == 15


def test_logs_record_each_company1_row():
    data1 = [
        {"transactionNumber": "INV001", "amount": 100},
        {"transactionNumber": "NONE", "amount": 5},
    ]
    data2 = [{"transactionNumber": "INV001", "amount": -100}]

    result = match_records(data1, data2)

    pairs = [log for log in result.logs if log["event"] == "pair"]
    assert [log["outcome"] for log in pairs] == ["perfect", "unmatched"]
    assert pairs[0]["via"] == "single"
    assert pairs[0]["company2_index"] == 0
    assert pairs[1]["candidates"] == 0
    assert result.logs[-1]["event"] == "summary"
    assert "logs" not in result.as_dict()


def test_internal_failure_is_wrapped(monkeypatch):
    def explode(*_args, **_kwargs):
        raise RuntimeError("boom")

    monkeypatch.setattr(reconciler, "find_potential_matches", explode)

    with pytest.raises(MatchingError) as excinfo:
        match_records([{"transactionNumber": "X", "amount": 1}], [])

    assert str(excinfo.value) == "Matching error: boom"
    assert isinstance(excinfo.value.__cause__, RuntimeError)


def test_save_result_and_match_log(tmp_path: Path):
    result = match_records(
        [{"transactionNumber": "INV001", "amount": 100}],
        [{"transactionNumber": "INV001", "amount": -100}],
    )

    outputs = save_result(result, tmp_path / "match")
    write_match_log(tmp_path / "match" / "match_log.jsonl", result.logs)

    payload = json.loads(Path(outputs["result"]).read_text(encoding="utf-8"))
    assert len(payload["perfectMatches"]) == 1
    assert payload["totals"]["variance"] == 0
    lines = (tmp_path / "match" / "match_log.jsonl").read_text(encoding="utf-8").splitlines()
    assert len(lines) == len(result.logs)


def test_cli_main(tmp_path: Path, capsys):
    company1 = tmp_path / "ar.csv"
    company2 = tmp_path / "ap.json"
    company1.write_text("transactionNumber,amount,date\nINV001,100.00,01/01/2024\n", encoding="utf-8")
    company2.write_text(json.dumps([{"transactionNumber": "INV001", "amount": -100}]), encoding="utf-8")

    exit_code = reconciler.main(
        [
            "--company1",
            str(company1),
            "--company2",
            str(company2),
            "--out",
            str(tmp_path / "out"),
            "--log",
            str(tmp_path / "out" / "match_log.jsonl"),
        ]
    )

    assert exit_code == 0
    summary = json.loads(capsys.readouterr().out)
    assert summary["perfect_matches"] == 1
    assert (tmp_path / "out" / "match_result.json").exists()


def test_cli_main_missing_input(tmp_path: Path):
    exit_code = reconciler.main(
        ["--company1", str(tmp_path / "nope.csv"), "--company2", str(tmp_path / "nope.csv"), "--out", str(tmp_path)]
    )
    assert exit_code == 2
