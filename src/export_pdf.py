from __future__ import annotations

import argparse
import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from export_json import read_result
from parsers import format_currency
from report import build_report

HEADER_STYLE = [
    ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#111827")),
    ("TEXTCOLOR", (0, 0), (-1, 0), colors.whitesmoke),
    ("ALIGN", (0, 0), (-1, -1), "CENTER"),
    ("GRID", (0, 0), (-1, -1), 0.5, colors.gray),
    ("BACKGROUND", (0, 1), (-1, -1), colors.HexColor("#f3f4f6")),
]

MAX_DETAIL_ROWS = 50


def _table(data: List[List[Any]], col_widths: Optional[List[int]] = None) -> Table:
    table = Table(data, colWidths=col_widths, repeatRows=1)
    table.setStyle(TableStyle(HEADER_STYLE))
    return table


def summary_rows(report: Dict[str, Any]) -> List[List[Any]]:
    stats = report["statistics"]
    totals = report["totals"]
    return [
        ["Metric", "Value"],
        ["Perfect matches", stats["perfectMatchCount"]],
        ["Mismatches", stats["mismatchCount"]],
        ["Unmatched (company1)", stats["unmatchedCompany1Count"]],
        ["Unmatched (company2)", stats["unmatchedCompany2Count"]],
        ["Date mismatches", stats["dateMismatchCount"]],
        ["Historical insights", stats["historicalInsightCount"]],
        ["Match rate", f"{stats['matchRate']:.2f}%"],
        ["Company1 total", format_currency(totals.get("company1Total"))],
        ["Company2 total", format_currency(totals.get("company2Total"))],
        ["Variance", format_currency(totals.get("variance"))],
    ]


def mismatch_rows(report: Dict[str, Any]) -> List[List[Any]]:
    rows: List[List[Any]] = [["Transaction", "Receivable", "Payable", "Difference"]]
    ranked = sorted(report["mismatches"], key=lambda row: row["difference"], reverse=True)
    for row in ranked[:MAX_DETAIL_ROWS]:
        rows.append(
            [
                row["transactionNumber"],
                format_currency(row["receivableAmount"]),
                format_currency(row["payableAmount"]),
                format_currency(row["difference"]),
            ]
        )
    return rows


def build_pdf(out_path: Path, report: Dict[str, Any], title: Optional[str]) -> None:
    doc = SimpleDocTemplate(str(out_path), pagesize=A4)
    styles = getSampleStyleSheet()
    elements = []

    heading = "Reconciliation Report"
    if title:
        heading += f" - {escape(title)}"
    elements.append(Paragraph(heading, styles["Title"]))
    elements.append(Paragraph(f"Generated on {datetime.now().strftime('%d/%m/%Y %H:%M')}", styles["Normal"]))
    elements.append(Spacer(1, 12))

    elements.append(_table(summary_rows(report), col_widths=[200, 140]))

    if report["mismatches"]:
        elements.append(Spacer(1, 18))
        elements.append(Paragraph("Largest mismatches", styles["Heading2"]))
        elements.append(_table(mismatch_rows(report)))

    if report["historicalInsights"]:
        elements.append(Spacer(1, 18))
        elements.append(Paragraph("Historical insights", styles["Heading2"]))
        for row in report["historicalInsights"][:MAX_DETAIL_ROWS]:
            text = escape(f"[{row['insightSeverity']}] {row['insightMessage']}")
            elements.append(Paragraph(text, styles["Normal"]))

    doc.build(elements)


def run(result_json: str, out_path: str, title: Optional[str] = None) -> Dict[str, object]:
    report = build_report(read_result(result_json))
    out_file = Path(out_path)
    out_file.parent.mkdir(parents=True, exist_ok=True)
    build_pdf(out_file, report, title)
    return {"pdf": str(out_file), "stats": report["statistics"]}


def parse_args(argv: Optional[list] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Export reconciliation PDF summary")
    parser.add_argument("--result", required=True, help="Path to match_result.json")
    parser.add_argument("--out", required=True)
    parser.add_argument("--title")
    return parser.parse_args(argv)


def main(argv: Optional[list] = None) -> int:
    args = parse_args(argv)
    result = run(args.result, args.out, args.title)
    print(json.dumps(result, ensure_ascii=False, indent=2))
    return 0


if __name__ == "__main__":
    import sys

    sys.exit(main())
