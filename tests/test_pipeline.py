import json
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from run_pipeline import StepContext, export_metrics, iter_jsonl, main as run_pipeline_main, reconciler_metrics

CFG = ROOT / "cfg"


def write_inputs(tmp_path: Path) -> dict:
    dados = tmp_path / "dados"
    dados.mkdir()
    company1 = dados / "ar.csv"
    company1.write_text(
        "transactionNumber,type,amount,date,reference\n"
        "INV-1,ACCREC,100.00,01/01/2024,\n"
        "INV-2,ACCREC,250.00,02/01/2024,\n"
        "CN-1,ACCRECCREDIT,-50.00,03/01/2024,INV-10\n"
        "INV-3,ACCREC,75.00,04/01/2024,\n",
        encoding="utf-8",
    )
    company2 = dados / "ap.csv"
    company2.write_text(
        "transactionNumber,type,amount,date,reference\n"
        "INV-1,ACCPAY,-100.00,05/01/2024,\n"
        "INV-2,ACCPAY,-200.00,02/01/2024,\n"
        "INV-10,ACCPAYCREDIT,50.00,03/01/2024,INV-10\n"
        "INV-9,ACCPAY,-30.00,06/01/2024,\n",
        encoding="utf-8",
    )
    historical = dados / "history.csv"
    historical.write_text(
        "transactionNumber,amount,status,payment_date,is_paid\n"
        "INV-9,30.00,PAID,10/01/2024,true\n",
        encoding="utf-8",
    )
    return {"company1": company1, "company2": company2, "historical": historical}


def test_full_pipeline(tmp_path: Path, capsys):
    inputs = write_inputs(tmp_path)
    out_dir = tmp_path / "out"

    exit_code = run_pipeline_main(
        [
            "--company1",
            str(inputs["company1"]),
            "--company2",
            str(inputs["company2"]),
            "--historical",
            str(inputs["historical"]),
            "--matching-config",
            str(CFG / "matching.yml"),
            "--out-dir",
            str(out_dir),
        ]
    )

    assert exit_code == 0
    stdout = capsys.readouterr().out
    assert "[pipeline] Running reconciler..." in stdout
    assert "[pipeline] All steps completed successfully." in stdout

    result = json.loads((out_dir / "match" / "match_result.json").read_text(encoding="utf-8"))
    assert len(result["perfectMatches"]) == 2
    assert len(result["mismatches"]) == 1
    assert [item["transactionNumber"] for item in result["unmatchedItems"]["company1"]] == ["INV-3"]
    assert result["historicalInsights"][0]["insight"]["type"] == "already_paid"
    assert result["dateMismatches"][0]["daysDifference"] == 4

    assert (out_dir / "match_report.json").exists()
    assert (out_dir / "match_report.xlsx").exists()
    assert (out_dir / "match_report.pdf").exists()

    events = list(iter_jsonl(out_dir / "pipeline.jsonl"))
    steps = [event["step"] for event in events if event.get("event") == "end"]
    assert steps == ["reconciler", "export_json", "export_xlsx", "export_pdf"]
    reconciler_end = next(e for e in events if e.get("step") == "reconciler" and e["event"] == "end")
    assert reconciler_end["rows_processed"] == 4
    assert reconciler_end["details"]["perfect_matches"] == 2
    assert events[-1]["event"] == "pipeline"
    assert events[-1]["status"] == "ok"


def test_pipeline_skip_exports(tmp_path: Path):
    inputs = write_inputs(tmp_path)
    out_dir = tmp_path / "out"

    exit_code = run_pipeline_main(
        [
            "--company1",
            str(inputs["company1"]),
            "--company2",
            str(inputs["company2"]),
            "--cfg-dir",
            str(CFG),
            "--out-dir",
            str(out_dir),
            "--skip-xlsx",
            "--skip-pdf",
        ]
    )

    assert exit_code == 0
    assert (out_dir / "match_report.json").exists()
    assert not (out_dir / "match_report.xlsx").exists()
    assert not (out_dir / "match_report.pdf").exists()
    assert (out_dir / "match" / "match_log.jsonl").exists()


def test_pipeline_missing_input_exits_with_2(tmp_path: Path):
    with pytest.raises(SystemExit) as excinfo:
        run_pipeline_main(
            [
                "--company1",
                str(tmp_path / "missing.csv"),
                "--company2",
                str(tmp_path / "missing.csv"),
                "--cfg-dir",
                str(CFG),
                "--out-dir",
                str(tmp_path / "out"),
            ]
        )
    assert excinfo.value.code == 2


def test_pipeline_invalid_configuration_returns_2(tmp_path: Path):
    inputs = write_inputs(tmp_path)
    bad_cfg = tmp_path / "matching.yml"
    bad_cfg.write_text("weights:\n  nonsense: 1\n", encoding="utf-8")

    exit_code = run_pipeline_main(
        [
            "--company1",
            str(inputs["company1"]),
            "--company2",
            str(inputs["company2"]),
            "--matching-config",
            str(bad_cfg),
            "--out-dir",
            str(tmp_path / "out"),
        ]
    )

    assert exit_code == 2


def test_step_metrics_read_context_paths(tmp_path: Path):
    match_dir = tmp_path / "match"
    match_dir.mkdir()
    (match_dir / "match_result.json").write_text(
        json.dumps(
            {
                "perfectMatches": [{}],
                "mismatches": [],
                "unmatchedItems": {"company1": [{}], "company2": []},
                "totals": {"variance": 5.0},
            }
        ),
        encoding="utf-8",
    )
    log_path = match_dir / "match_log.jsonl"
    log_path.write_text('{"event": "pair"}\n{"event": "pair"}\n{"event": "summary"}\n', encoding="utf-8")

    context = StepContext(name="reconciler", args=[], log_path=log_path, match_dir=match_dir)
    metrics = reconciler_metrics(context)

    assert metrics.rows_processed == 2
    assert metrics.details["perfect_matches"] == 1
    assert metrics.details["variance"] == 5.0
    assert metrics.inconsistencies == ["Unmatched rows: company1=1 company2=0"]

    missing = StepContext(
        name="export_pdf", args=[], log_path=None, match_dir=match_dir, extra={"out": tmp_path / "r.pdf"}
    )
    assert export_metrics(missing).inconsistencies == ["r.pdf was not generated."]
