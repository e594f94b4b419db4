"""Store insights endpoints.

WHAT:
    - GET  /insights?shop=    → analysis of the stored orders of a shop
    - POST /insights/analyze  → analysis of a caller-supplied metrics snapshot

WHY:
    The rules engine is pure; these routes only assemble its input and map
    the result to camelCase JSON for the dashboard.

REFERENCES:
    - sierre/services/insights_engine.py (rules)
    - sierre/services/analytics_service.py (metrics from storage)
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from sierre.database import get_db
from sierre.errors import ValidationError
from sierre.schemas import (
    AnalyzeRequest,
    ErrorResponse,
    InsightMetricsOut,
    StoreAnalysisResponse,
    StoreInsightOut,
    StoreMetricsIn,
)
from sierre.services.analytics_service import build_store_metrics
from sierre.services.insights_engine import StoreAnalysis, StoreMetrics, TrafficSources, analyze

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/insights", tags=["insights"])


def _to_store_metrics(payload: StoreMetricsIn) -> StoreMetrics:
    fields = payload.model_dump(exclude={"traffic_sources"})
    return StoreMetrics(traffic_sources=TrafficSources(**payload.traffic_sources.model_dump()), **fields)


def _to_response(analysis: StoreAnalysis) -> StoreAnalysisResponse:
    return StoreAnalysisResponse(
        overall_health=analysis.overall_health.value,
        insights=[
            StoreInsightOut(
                id=insight.id,
                type=insight.type.value,
                severity=insight.severity.value,
                title=insight.title,
                description=insight.description,
                impact=insight.impact,
                recommendation=insight.recommendation,
                metrics=InsightMetricsOut(
                    current=insight.metrics.current,
                    previous=insight.metrics.previous,
                    change=insight.metrics.change,
                ),
                category=insight.category.value,
            )
            for insight in analysis.insights
        ],
        summary=analysis.summary,
        top_priorities=analysis.top_priorities,
    )


@router.get(
    "",
    response_model=StoreAnalysisResponse,
    response_model_exclude_none=True,
    responses={400: {"model": ErrorResponse}},
)
def get_shop_insights(
    shop: Optional[str] = Query(default=None, description="Shop domain"),
    db: Session = Depends(get_db),
):
    """Analyze the last 30 days of a shop's stored orders."""
    if not shop or not shop.strip():
        raise ValidationError("Missing shop")
    shop = shop.strip()
    metrics = build_store_metrics(db, shop)
    analysis = analyze(metrics, shop)
    logger.info(f"[INSIGHTS] {shop}: health={analysis.overall_health.value} insights={len(analysis.insights)}")
    return _to_response(analysis)


@router.post("/analyze", response_model=StoreAnalysisResponse, response_model_exclude_none=True)
def analyze_metrics(payload: AnalyzeRequest):
    """Analyze a metrics snapshot supplied by the caller (no storage access)."""
    analysis = analyze(_to_store_metrics(payload.metrics), payload.shop_name)
    return _to_response(analysis)
