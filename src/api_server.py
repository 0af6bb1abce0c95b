from __future__ import annotations

import os
import time
from functools import lru_cache
from importlib import metadata as importlib_metadata
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, File, Form, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from loader import read_records_from_bytes
from matcher import MatchConfig
from parsers import DEFAULT_DATE_FORMAT
from reconciler import MatchingError, match_records
from report import calculate_statistics

APP_TITLE = "LedgerLink Reconciler"
MATCHING_CFG = os.environ.get("MATCHING_CFG", "cfg/matching.yml")
CORS_ORIGINS = [item.strip() for item in os.environ.get("CORS_ORIGINS", "*").split(",") if item.strip()]


class MatchPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    company1_data: List[Dict[str, Any]] = Field(..., alias="company1Data")
    company2_data: List[Dict[str, Any]] = Field(..., alias="company2Data")
    date_format1: str = Field(DEFAULT_DATE_FORMAT, alias="dateFormat1")
    date_format2: str = Field(DEFAULT_DATE_FORMAT, alias="dateFormat2")
    historical_data: List[Dict[str, Any]] = Field(default_factory=list, alias="historicalData")


app = FastAPI(title=APP_TITLE)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)


@lru_cache(maxsize=1)
def _matching_config() -> Optional[MatchConfig]:
    path = Path(MATCHING_CFG).expanduser()
    if not path.exists():
        return None
    return MatchConfig.load(path)


def _failure(exc: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content={"error": "Failed to process matching", "message": str(exc)},
    )


def _run_match(
    data1: List[Dict[str, Any]],
    data2: List[Dict[str, Any]],
    date_format1: str,
    date_format2: str,
    historical: List[Dict[str, Any]],
) -> Dict[str, Any]:
    started = time.perf_counter()
    result = match_records(data1, data2, date_format1, date_format2, historical, _matching_config())
    processing_time = round((time.perf_counter() - started) * 1000, 3)

    payload = result.as_dict()
    payload["statistics"] = calculate_statistics(payload, processing_time)
    payload["processingTime"] = processing_time
    return {"success": True, "results": payload}


async def _read_upload(upload: Optional[UploadFile], field: str, *, required: bool) -> List[Dict[str, Any]]:
    if upload is None or not upload.filename:
        if required:
            raise HTTPException(400, detail=f"{field} is required")
        return []
    try:
        content = await upload.read()
    finally:
        await upload.close()
    try:
        return read_records_from_bytes(content, filename=upload.filename)
    except ValueError as exc:
        raise HTTPException(400, detail=f"{field}: {exc}") from exc


@app.get("/api/health")
def api_health() -> Dict[str, object]:
    try:
        version = importlib_metadata.version("ledgerlink-reconciler")
    except importlib_metadata.PackageNotFoundError:
        version = None
    return {"ok": True, "app": APP_TITLE, "version": version}


@app.post("/api/match")
def api_match(payload: MatchPayload):
    try:
        return _run_match(
            payload.company1_data,
            payload.company2_data,
            payload.date_format1,
            payload.date_format2,
            payload.historical_data,
        )
    except (MatchingError, ValueError) as exc:
        return _failure(exc)


@app.post("/api/match/upload")
async def api_match_upload(
    company1File: Optional[UploadFile] = File(None),
    company2File: Optional[UploadFile] = File(None),
    historicalFile: Optional[UploadFile] = File(None),
    dateFormat1: str = Form(DEFAULT_DATE_FORMAT),
    dateFormat2: str = Form(DEFAULT_DATE_FORMAT),
):
    data1 = await _read_upload(company1File, "company1File", required=True)
    data2 = await _read_upload(company2File, "company2File", required=True)
    historical = await _read_upload(historicalFile, "historicalFile", required=False)

    try:
        return _run_match(data1, data2, dateFormat1, dateFormat2, historical)
    except (MatchingError, ValueError) as exc:
        return _failure(exc)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=os.environ.get("API_HOST", "127.0.0.1"), port=int(os.environ.get("API_PORT", "8000")))
