from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import Dict, List, Optional

import pandas as pd

from export_json import read_result
from report import build_report

SECTION_SHEETS = {
    "perfectMatches": "Perfect Matches",
    "mismatches": "Mismatches",
    "unmatchedCompany1": "Unmatched Company1",
    "unmatchedCompany2": "Unmatched Company2",
    "historicalInsights": "Historical Insights",
    "dateMismatches": "Date Mismatches",
}

SECTION_COLUMNS: Dict[str, List[str]] = {
    "perfectMatches": [
        "transactionNumber", "type", "amount", "date", "dueDate", "status",
        "partiallyPaid", "amountPaid", "originalAmount",
    ],
    "mismatches": [
        "transactionNumber", "type", "receivableAmount", "payableAmount", "difference",
        "date", "status", "partiallyPaid", "paymentDate",
    ],
    "unmatchedCompany1": [
        "transactionNumber", "type", "amount", "date", "dueDate", "status",
        "partiallyPaid", "amountPaid", "originalAmount",
    ],
    "historicalInsights": [
        "apTransactionNumber", "apAmount", "apDate", "apStatus", "arTransactionNumber",
        "arOriginalAmount", "arCurrentAmount", "arAmountPaid", "arDate", "arStatus",
        "arPaymentDate", "insightType", "insightMessage", "insightSeverity",
    ],
    "dateMismatches": [
        "transactionNumber", "mismatchType", "company1Date", "company2Date", "daysDifference", "amount",
    ],
}
SECTION_COLUMNS["unmatchedCompany2"] = SECTION_COLUMNS["unmatchedCompany1"]


def style_sheet(writer: pd.ExcelWriter, sheet_name: str, df: pd.DataFrame, freeze: bool = True) -> None:
    worksheet = writer.sheets[sheet_name]
    if freeze:
        worksheet.freeze_panes(1, 0)
    header_format = writer.book.add_format({"bold": True, "bg_color": "#111827", "font_color": "#f9fafb"})
    for col_idx, column in enumerate(df.columns):
        worksheet.write(0, col_idx, column, header_format)
        lengths = df[column].astype(str).replace({"nan": "", "None": ""}).str.len()
        valid_max = lengths[~lengths.isna()].max() if not lengths.empty else 12
        try:
            max_len = int(max(12, valid_max or 12))
        except (TypeError, ValueError):
            max_len = 12
        worksheet.set_column(col_idx, col_idx, min(max_len + 2, 60))


def build_summary(report: Dict[str, object]) -> pd.DataFrame:
    rows = [{"metric": key, "value": value} for key, value in report["statistics"].items()]
    rows.extend({"metric": key, "value": value} for key, value in report["totals"].items())
    return pd.DataFrame(rows, columns=["metric", "value"])


def run(result_json: str, out_path: str) -> Dict[str, object]:
    report = build_report(read_result(result_json))

    out_file = Path(out_path)
    out_file.parent.mkdir(parents=True, exist_ok=True)

    counts: Dict[str, int] = {}
    with pd.ExcelWriter(out_file, engine="xlsxwriter") as writer:
        summary_df = build_summary(report)
        summary_df.to_excel(writer, sheet_name="Summary", index=False)
        style_sheet(writer, "Summary", summary_df, freeze=False)

        for section, sheet_name in SECTION_SHEETS.items():
            df = pd.DataFrame(report[section], columns=SECTION_COLUMNS[section])
            df.to_excel(writer, sheet_name=sheet_name, index=False)
            style_sheet(writer, sheet_name, df)
            counts[section] = int(len(df))

    return {
        "out": str(out_file),
        "perfect_matches": counts["perfectMatches"],
        "mismatches": counts["mismatches"],
        "unmatched_company1": counts["unmatchedCompany1"],
        "unmatched_company2": counts["unmatchedCompany2"],
        "historical_insights": counts["historicalInsights"],
        "date_mismatches": counts["dateMismatches"],
    }


def parse_args(argv: Optional[list] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Export reconciliation Excel report")
    parser.add_argument("--result", required=True, help="Path to match_result.json")
    parser.add_argument("--out", required=True)
    return parser.parse_args(argv)


def main(argv: Optional[list] = None) -> int:
    args = parse_args(argv)
    result = run(args.result, args.out)
    print(json.dumps(result, ensure_ascii=False, indent=2))
    return 0


if __name__ == "__main__":
    import sys

    sys.exit(main())
