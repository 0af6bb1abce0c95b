from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import Any, Dict, Optional

from report import build_report


def read_result(path: str) -> Dict[str, Any]:
    file_path = Path(path)
    if not file_path.exists():
        return {}
    return json.loads(file_path.read_text(encoding="utf-8")) or {}


def run(result_json: str, out_path: str, *, indent: int = 2, ensure_ascii: bool = False) -> Dict[str, object]:
    result = read_result(result_json)
    report = build_report(result)

    out_file = Path(out_path)
    out_file.parent.mkdir(parents=True, exist_ok=True)

    with out_file.open("w", encoding="utf-8") as handle:
        json.dump(report, handle, ensure_ascii=ensure_ascii, indent=indent)

    return {
        "out": str(out_file.resolve()),
        "perfect_matches": len(report["perfectMatches"]),
        "mismatches": len(report["mismatches"]),
        "unmatched_company1": len(report["unmatchedCompany1"]),
        "unmatched_company2": len(report["unmatchedCompany2"]),
        "match_rate": report["statistics"]["matchRate"],
    }


def parse_args(argv: Optional[list] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Export reconciliation report as JSON")
    parser.add_argument("--result", required=True, help="Path to match_result.json")
    parser.add_argument("--out", required=True, help="Output JSON path")
    parser.add_argument("--indent", type=int, default=2, help="JSON indentation level (default: 2)")
    parser.add_argument(
        "--ensure-ascii",
        action="store_true",
        help="Escape non-ASCII characters (disabled by default)",
    )
    return parser.parse_args(argv)


def main(argv: Optional[list] = None) -> int:
    args = parse_args(argv)
    result = run(args.result, args.out, indent=args.indent, ensure_ascii=args.ensure_ascii)
    print(json.dumps(result, ensure_ascii=False, indent=2))
    return 0


if __name__ == "__main__":
    import sys

    sys.exit(main())
