"""FastAPI main application."""
import logging
from datetime import datetime
from typing import Optional

from fastapi import FastAPI, HTTPException, Depends
from fastapi.security import APIKeyHeader
from pydantic import BaseModel

from salesmail.config import config, ScanSettings
from salesmail.errors import ConfigurationError
from salesmail.jobs.report import RunReporter
from salesmail.jobs.runner import RunResult, ScanRunner
from salesmail.parse.models import SaleRecord
from salesmail.parse.notification import parse_notification
from salesmail.store.sink import SupabaseSalesSink

logger = logging.getLogger(__name__)

app = FastAPI(title="Sales Notification Ingester", version="0.1.0")

# API Key security (if configured)
API_KEY_HEADER = APIKeyHeader(name="X-API-KEY", auto_error=False)


def verify_api_key(api_key: str = Depends(API_KEY_HEADER)) -> bool:
    """Verify API key if configured."""
    expected_key = config.API_KEY
    if expected_key:
        if not api_key or api_key != expected_key:
            raise HTTPException(status_code=403, detail="Invalid API key")
    return True


class RunRequest(BaseModel):
    """Optional per-run overrides."""
    max_candidates: Optional[int] = None
    batch_size: Optional[int] = None
    time_budget_minutes: Optional[float] = None
    extract_variant: Optional[bool] = None


class ParseRequest(BaseModel):
    body: str
    extract_variant: bool = True


class ParseResponse(BaseModel):
    kind: Optional[str] = None
    reason: Optional[str] = None
    record: Optional[SaleRecord] = None


@app.get("/health")
async def health():
    """Health check endpoint (no auth required)."""
    sink = SupabaseSalesSink()
    return {
        "status": "ok",
        "timestamp": datetime.now().isoformat(),
        "sink_configured": sink.is_configured(),
        "sink_connected": sink.is_configured() and await sink.test_connection(),
    }


@app.post("/runs", response_model=RunResult)
async def trigger_run(
    request: Optional[RunRequest] = None,
    _: bool = Depends(verify_api_key),
):
    """Run one scan synchronously; a concurrent run yields status=skipped."""
    overrides = request.model_dump() if request else {}
    try:
        settings = ScanSettings.from_config(**overrides)
    except ConfigurationError as e:
        raise HTTPException(status_code=422, detail=str(e))

    runner = ScanRunner.from_config(settings)
    try:
        return await runner.run()
    finally:
        await runner.close()


@app.get("/runs")
async def recent_runs(_: bool = Depends(verify_api_key)):
    """Last 100 run results (requires API key if configured)."""
    return {"runs": await RunReporter().recent(100)}


@app.post("/parse", response_model=ParseResponse)
async def parse_body(request: ParseRequest, _: bool = Depends(verify_api_key)):
    """Parse one notification body without recording it."""
    outcome = parse_notification(request.body, extract_variant=request.extract_variant)
    return ParseResponse(
        kind=outcome.kind.value if outcome.kind else None,
        reason=outcome.reason,
        record=outcome.record,
    )


if __name__ == "__main__":
    import uvicorn
    from salesmail.logging_conf import setup_logging

    setup_logging()
    uvicorn.run(app, host="0.0.0.0", port=8000)
