from __future__ import annotations

import io
import json
import re
from pathlib import Path
from typing import Any, Dict, List, Union

import pandas as pd

RawRecord = Dict[str, Any]

SUPPORTED_SUFFIXES = (".csv", ".json")


def _normalise_header(header: str) -> str:
    return re.sub(r"\s+", " ", str(header).strip())


def _frame_to_records(df: pd.DataFrame) -> List[RawRecord]:
    df.columns = [_normalise_header(col) for col in df.columns]
    if df.empty:
        return []
    # rows made only of empty cells carry nothing to reconcile
    blank = df.apply(lambda row: all(str(value).strip() == "" for value in row), axis=1)
    return df[~blank].to_dict(orient="records")


def _read_csv(source: Union[Path, io.BytesIO], delimiter: str, encoding: str) -> pd.DataFrame:
    try:
        return pd.read_csv(
            source,
            dtype=str,
            keep_default_na=False,
            encoding=encoding,
            sep=delimiter,
            skip_blank_lines=True,
            engine="python",
        )
    except UnicodeDecodeError:
        if isinstance(source, io.BytesIO):
            source.seek(0)
        return pd.read_csv(
            source,
            dtype=str,
            keep_default_na=False,
            encoding="latin1",
            sep=delimiter,
            skip_blank_lines=True,
            engine="python",
        )
    except pd.errors.EmptyDataError:
        return pd.DataFrame()


def _json_records(payload: Any, label: str) -> List[RawRecord]:
    if isinstance(payload, dict):
        payload = payload.get("records")
    if not isinstance(payload, list):
        raise ValueError(f"{label}: expected a list of records or an object with a 'records' list")
    records: List[RawRecord] = []
    for position, row in enumerate(payload):
        if not isinstance(row, dict):
            raise ValueError(f"{label}: record {position} is not an object")
        records.append(dict(row))
    return records


def read_records(path: Path, delimiter: str = ",", encoding: str = "utf-8") -> List[RawRecord]:
    """Read ledger rows from a CSV or JSON file as plain dicts of text cells."""

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"input file not found: {path}")

    suffix = path.suffix.lower()
    if suffix == ".csv":
        return _frame_to_records(_read_csv(path, delimiter, encoding))
    if suffix == ".json":
        return _json_records(json.loads(path.read_text(encoding=encoding)), str(path))
    raise ValueError(f"unsupported input format '{suffix}' for {path}; expected one of {SUPPORTED_SUFFIXES}")


def read_records_from_bytes(
    payload: bytes,
    filename: str = "upload.csv",
    delimiter: str = ",",
    encoding: str = "utf-8",
) -> List[RawRecord]:
    suffix = Path(filename or "").suffix.lower() or ".csv"
    if suffix == ".json":
        try:
            text = payload.decode(encoding)
        except UnicodeDecodeError:
            text = payload.decode("latin1")
        return _json_records(json.loads(text), filename)
    if suffix != ".csv":
        raise ValueError(f"unsupported input format '{suffix}' for {filename}; expected one of {SUPPORTED_SUFFIXES}")
    if not payload.strip():
        return []
    return _frame_to_records(_read_csv(io.BytesIO(payload), delimiter, encoding))
