"""
Observability REST API endpoints.
"""

import asyncio
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request

from faultline.models.analytics import AnalyticsReport, ErrorPattern
from faultline.pipeline import ErrorPipeline
from faultline.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/api/observability", tags=["observability"])


def get_pipeline(request: Request) -> ErrorPipeline:
    """Pipeline attached to the running application."""
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        raise HTTPException(status_code=503, detail="Error pipeline not initialized")
    return pipeline


async def verify_api_key(request: Request, x_api_key: Optional[str] = Header(None)) -> None:
    """
    Verify API key for observability endpoints.

    The check is skipped when no admin API key is configured.

    Raises:
        HTTPException: If the API key is missing or invalid
    """
    expected_key = getattr(request.app.state, "admin_api_key", None)
    if not expected_key:
        return
    if not x_api_key:
        raise HTTPException(status_code=401, detail="API key required")
    if x_api_key != expected_key:
        raise HTTPException(status_code=401, detail="Invalid API key")


@router.get("/report", response_model=AnalyticsReport, dependencies=[Depends(verify_api_key)])
async def get_report(
    reset: bool = False,
    pipeline: ErrorPipeline = Depends(get_pipeline),
) -> AnalyticsReport:
    """
    Generate an analytics report for the current period.

    Args:
        reset: Start a new reporting period after this report
    """
    await asyncio.to_thread(pipeline.analytics.drain)
    report = pipeline.analytics.generate_report(reset_period=reset)
    logger.info(
        f"Analytics report served: {report.total_failures} failures",
        extra={"total_failures": report.total_failures, "reset": reset},
    )
    return report


@router.get("/patterns", response_model=List[ErrorPattern], dependencies=[Depends(verify_api_key)])
async def list_patterns(
    limit: int = 50,
    pipeline: ErrorPipeline = Depends(get_pipeline),
) -> List[ErrorPattern]:
    """List error patterns, most frequent first."""
    return pipeline.analytics.patterns()[:limit]


@router.get("/alerts", dependencies=[Depends(verify_api_key)])
async def list_alerts(pipeline: ErrorPipeline = Depends(get_pipeline)) -> List[Dict[str, Any]]:
    """List recent spike alerts."""
    return [alert.to_map() for alert in pipeline.analytics.alerts()]


@router.get("/metrics", dependencies=[Depends(verify_api_key)])
async def get_metrics(pipeline: ErrorPipeline = Depends(get_pipeline)) -> Dict[str, Any]:
    """Pipeline counters and notification limiter state."""
    summary = pipeline.metrics.get_metrics_summary()
    summary["notifications"] = pipeline.interceptor.rate_limiter.get_stats()
    summary["sink_errors"] = pipeline.structured_logger.sink_errors
    return summary
