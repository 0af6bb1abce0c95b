from __future__ import annotations

import argparse
import json
import sys
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence

# Ensure src/ is importable
ROOT_DIR = Path(__file__).resolve().parent
SRC_DIR = ROOT_DIR / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from export_json import main as export_json_main
from export_pdf import main as export_pdf_main
from export_xlsx import main as export_xlsx_main
from matcher import MatchConfig
from parsers import DEFAULT_DATE_FORMAT
from reconciler import main as reconciler_main


class ConfigurationError(Exception):
    """Raised when a configuration file cannot be loaded or fails validation."""


def validate_configuration(matching_path: Path) -> MatchConfig:
    try:
        return MatchConfig.load(matching_path)
    except (OSError, ValueError) as exc:
        raise ConfigurationError(f"{matching_path.name}: {exc}") from exc


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Run the reconciliation pipeline (match → JSON report → Excel report → PDF summary)."
    )
    parser.add_argument("--company1", type=Path, required=True, help="Company1 (AR) CSV or JSON file.")
    parser.add_argument("--company2", type=Path, required=True, help="Company2 (AP) CSV or JSON file.")
    parser.add_argument("--historical", type=Path, default=None, help="Optional historical AR CSV or JSON file.")
    parser.add_argument("--date-format1", default=DEFAULT_DATE_FORMAT, help="Date format of company1 rows.")
    parser.add_argument("--date-format2", default=DEFAULT_DATE_FORMAT, help="Date format of company2 rows.")
    parser.add_argument("--delimiter", default=",", help="CSV delimiter shared by all inputs.")
    parser.add_argument("--cfg-dir", type=Path, default=Path("cfg"), help="Directory containing configuration files.")
    parser.add_argument(
        "--matching-config",
        type=Path,
        default=None,
        help="Override path to matching.yml (defaults to <cfg-dir>/matching.yml).",
    )
    parser.add_argument("--out-dir", type=Path, default=Path("out"), help="Directory to write pipeline outputs.")
    parser.add_argument(
        "--log-dir",
        type=Path,
        default=None,
        help="Directory to store step logs (defaults to <out-dir>).",
    )
    parser.add_argument("--skip-xlsx", action="store_true", help="Skip the Excel export step.")
    parser.add_argument("--skip-pdf", action="store_true", help="Skip the PDF summary step.")
    return parser


def require_files(description: str, files: Sequence[Path]) -> None:
    missing = [str(path) for path in files if not path.exists()]
    if missing:
        sys.stderr.write(f"[pipeline] Missing {description}: {json.dumps(missing, ensure_ascii=False)}\n")
        sys.exit(2)


def ensure_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


@dataclass
class StepMetrics:
    rows_processed: Optional[int] = None
    inconsistencies: List[str] = field(default_factory=list)
    details: Dict[str, Any] = field(default_factory=dict)

    def as_record(self) -> Dict[str, Any]:
        record: Dict[str, Any] = {}
        if self.rows_processed is not None:
            record["rows_processed"] = self.rows_processed
        record["inconsistencies"] = self.inconsistencies
        if self.details:
            record["details"] = self.details
        return record


@dataclass
class StepContext:
    name: str
    args: List[str]
    log_path: Optional[Path]
    match_dir: Path
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass
class StepDefinition:
    name: str
    func: Callable[[List[str]], int]
    args: List[str]
    log_path: Optional[Path] = None
    metrics_collector: Optional[Callable[[StepContext], StepMetrics]] = None
    extra: Dict[str, Any] = field(default_factory=dict)


def append_jsonl(path: Path, record: Dict[str, Any]) -> None:
    ensure_dir(path.parent)
    with path.open("a", encoding="utf-8") as handle:
        handle.write(json.dumps(record, ensure_ascii=False) + "\n")


def iter_jsonl(path: Path) -> Iterator[Dict[str, Any]]:
    with path.open("r", encoding="utf-8") as handle:
        for line_no, line in enumerate(handle, 1):
            text = line.strip()
            if not text:
                continue
            try:
                yield json.loads(text)
            except json.JSONDecodeError as exc:
                raise ValueError(f"Invalid JSON on line {line_no} of {path.name}: {exc}") from exc


def reconciler_metrics(context: StepContext) -> StepMetrics:
    result_path = Path(context.extra.get("result", context.match_dir / "match_result.json"))
    metrics = StepMetrics(details={"result": str(result_path)})

    if not result_path.exists():
        metrics.inconsistencies.append("match_result.json not found after matching.")
        return metrics

    result = json.loads(result_path.read_text(encoding="utf-8"))
    unmatched = result.get("unmatchedItems") or {}
    counts = {
        "perfect_matches": len(result.get("perfectMatches") or []),
        "mismatches": len(result.get("mismatches") or []),
        "unmatched_company1": len(unmatched.get("company1") or []),
        "unmatched_company2": len(unmatched.get("company2") or []),
        "date_mismatches": len(result.get("dateMismatches") or []),
        "historical_insights": len(result.get("historicalInsights") or []),
    }
    metrics.details.update(counts)
    metrics.details["variance"] = (result.get("totals") or {}).get("variance")

    log_path = context.log_path
    if log_path is not None and log_path.exists():
        pairs = [record for record in iter_jsonl(log_path) if record.get("event") == "pair"]
        metrics.rows_processed = len(pairs)
        metrics.details["log_entries"] = len(pairs)
    else:
        metrics.inconsistencies.append("match_log.jsonl not found.")

    if counts["mismatches"]:
        metrics.inconsistencies.append(f"Mismatched pairs: {counts['mismatches']}")
    if counts["unmatched_company1"] or counts["unmatched_company2"]:
        metrics.inconsistencies.append(
            f"Unmatched rows: company1={counts['unmatched_company1']} company2={counts['unmatched_company2']}"
        )
    return metrics


def export_metrics(context: StepContext) -> StepMetrics:
    out_path = Path(context.extra["out"])
    metrics = StepMetrics(details={"out": str(out_path)})
    if not out_path.exists():
        metrics.inconsistencies.append(f"{out_path.name} was not generated.")
    return metrics


def call_step(step: StepDefinition, pipeline_log: Path, *, match_dir: Path) -> None:
    args = list(step.args)
    sys.stdout.write(f"[pipeline] Running {step.name}...\n")

    start_time = datetime.now(timezone.utc)
    start_perf = time.perf_counter()
    append_jsonl(
        pipeline_log,
        {
            "step": step.name,
            "event": "start",
            "timestamp": start_time.isoformat(),
            "args": args,
        },
    )

    exit_code = step.func(args)
    end_perf = time.perf_counter()
    end_time = datetime.now(timezone.utc)
    duration = end_perf - start_perf

    if exit_code != 0:
        append_jsonl(
            pipeline_log,
            {
                "step": step.name,
                "event": "end",
                "timestamp": end_time.isoformat(),
                "duration_seconds": duration,
                "status": "failed",
                "exit_code": exit_code,
            },
        )
        sys.stderr.write(f"[pipeline] Step '{step.name}' failed with exit code {exit_code}.\n")
        sys.exit(exit_code)

    context = StepContext(
        name=step.name,
        args=args,
        log_path=step.log_path,
        match_dir=match_dir,
        extra=step.extra,
    )

    metrics = StepMetrics()
    if step.metrics_collector is not None:
        try:
            metrics = step.metrics_collector(context)
        except (OSError, ValueError, KeyError) as exc:
            metrics = StepMetrics()
            metrics.inconsistencies.append(f"Failed to collect metrics: {exc}")

    append_jsonl(
        pipeline_log,
        {
            "step": step.name,
            "event": "end",
            "timestamp": end_time.isoformat(),
            "duration_seconds": duration,
            "status": "ok",
            **metrics.as_record(),
        },
    )

    rows_text = "?" if metrics.rows_processed is None else str(metrics.rows_processed)
    inconsistencies_count = len(metrics.inconsistencies)
    sys.stdout.write(
        f"[pipeline] Step '{step.name}' completed in {duration:.2f}s | rows={rows_text} | inconsistencies={inconsistencies_count}.\n"
    )
    for item in metrics.inconsistencies:
        sys.stdout.write(f"[pipeline]   - {item}\n")


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    cfg_dir = args.cfg_dir.resolve()
    out_dir = args.out_dir.resolve()
    log_dir = (args.log_dir or out_dir).resolve()
    matching_path = (args.matching_config or cfg_dir / "matching.yml").resolve()

    inputs = [args.company1.resolve(), args.company2.resolve()]
    historical_path = args.historical.resolve() if args.historical else None
    if historical_path is not None:
        inputs.append(historical_path)
    require_files("input files", inputs)
    require_files("configuration files", [matching_path])

    try:
        validate_configuration(matching_path)
    except ConfigurationError as exc:
        sys.stderr.write(f"[pipeline] Invalid configuration: {exc}\n")
        return 2

    match_dir = out_dir / "match"
    ensure_dir(out_dir)
    ensure_dir(log_dir)
    ensure_dir(match_dir)

    pipeline_log_path = log_dir / "pipeline.jsonl"
    if pipeline_log_path.exists():
        pipeline_log_path.unlink()

    result_path = match_dir / "match_result.json"
    matcher_log = match_dir / "match_log.jsonl"
    reconciler_args: List[str] = [
        "--company1",
        str(inputs[0]),
        "--company2",
        str(inputs[1]),
        "--date-format1",
        args.date_format1,
        "--date-format2",
        args.date_format2,
        "--cfg",
        str(matching_path),
        "--delimiter",
        args.delimiter,
        "--out",
        str(match_dir),
        "--log",
        str(matcher_log),
    ]
    if historical_path is not None:
        reconciler_args.extend(["--historical", str(historical_path)])

    steps: List[StepDefinition] = [
        StepDefinition(
            name="reconciler",
            func=reconciler_main,
            args=reconciler_args,
            log_path=matcher_log,
            metrics_collector=reconciler_metrics,
            extra={"result": result_path},
        )
    ]

    report_json = out_dir / "match_report.json"
    steps.append(
        StepDefinition(
            name="export_json",
            func=export_json_main,
            args=["--result", str(result_path), "--out", str(report_json)],
            metrics_collector=export_metrics,
            extra={"out": report_json},
        )
    )

    if not args.skip_xlsx:
        report_xlsx = out_dir / "match_report.xlsx"
        steps.append(
            StepDefinition(
                name="export_xlsx",
                func=export_xlsx_main,
                args=["--result", str(result_path), "--out", str(report_xlsx)],
                metrics_collector=export_metrics,
                extra={"out": report_xlsx},
            )
        )

    if not args.skip_pdf:
        report_pdf = out_dir / "match_report.pdf"
        steps.append(
            StepDefinition(
                name="export_pdf",
                func=export_pdf_main,
                args=["--result", str(result_path), "--out", str(report_pdf)],
                metrics_collector=export_metrics,
                extra={"out": report_pdf},
            )
        )

    for step in steps:
        call_step(step, pipeline_log_path, match_dir=match_dir)

    append_jsonl(
        pipeline_log_path,
        {
            "event": "pipeline",
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    )

    sys.stdout.write("[pipeline] All steps completed successfully.\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
