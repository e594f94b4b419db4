"""
Insights Engine Tests (Unit)
============================

WHAT: Unit tests for the rule-based insights engine: rule thresholds, exact
      dashboard strings, health tiers, summary wording and priority ordering.
WHY: The dashboard renders these strings verbatim and caches them per snapshot;
     a changed threshold or a rounding drift shows up as a different card.

NOTE:
These tests live outside `sierre/tests/` because the engine is pure and needs
neither a database nor the integration-test `conftest.py`.

REFERENCES:
- sierre/services/insights_engine.py
"""

import pytest

from sierre.services.insights_engine import (
    HealthTier,
    InsightCategory,
    InsightMetrics,
    InsightType,
    Severity,
    StoreInsight,
    StoreMetrics,
    TrafficSources,
    _js_round,
    _js_str,
    _to_fixed,
    analyze,
    build_summary,
    overall_health,
    top_priorities,
)


def healthy_metrics(**overrides) -> StoreMetrics:
    """A snapshot that triggers no rule at all."""
    values = dict(
        gross_revenue=10000,
        net_revenue=9500,
        revenue_change_percent=5,
        new_customers=50,
        new_customers_change_percent=0,
        active_customers=60,
        active_customers_change_percent=0,
        growth_rate=5,
        conversion_rate=3,
        cart_abandonment_rate=60,
        traffic_sources=TrafficSources(ads=30, organic=40, social=10, referral=10, direct=5, email=5),
        total_orders=100,
        average_order_value=80,
        total_visitors=2400,
        total_sessions=3000,
    )
    values.update(overrides)
    return StoreMetrics(**values)


def insight(severity: Severity, type_: InsightType = InsightType.problem, id_: str = "x") -> StoreInsight:
    return StoreInsight(
        id=id_,
        type=type_,
        severity=severity,
        title="t",
        description="d",
        impact="i",
        recommendation=f"rec-{id_}",
        metrics=InsightMetrics(current=0),
        category=InsightCategory.revenue,
    )


def ids(analysis) -> list:
    return [i.id for i in analysis.insights]


# =============================================================================
# End-to-end
# =============================================================================

def test_struggling_store_is_critical() -> None:
    """Falling revenue, low AOV, high abandonment and low conversion."""
    metrics = healthy_metrics(
        conversion_rate=1.5,
        average_order_value=40,
        cart_abandonment_rate=80,
        revenue_change_percent=-35,
        total_sessions=4000,
    )

    analysis = analyze(metrics, "Acme")

    assert ids(analysis) == ["revenue-decline", "low-aov", "high-abandonment", "low-conversion"]
    assert [i.severity for i in analysis.insights] == [
        Severity.critical, Severity.medium, Severity.high, Severity.high,
    ]
    assert analysis.overall_health == HealthTier.critical

    decline, low_aov, abandonment, conversion = analysis.insights
    assert decline.description == "Revenue has decreased by 35.0% compared to the previous period."
    assert decline.impact == "This represents a loss of approximately $3500 in potential revenue."
    assert decline.metrics == InsightMetrics(current=10000, change=-35)
    assert low_aov.description == "Your AOV of $40.00 is below the industry average of $75."
    assert abandonment.description == (
        "Your cart abandonment rate of 80% is significantly above the industry average of 70%."
    )
    assert abandonment.impact == "Reducing abandonment by 10% could recover approximately $1000 in lost revenue."
    assert conversion.description == "Your conversion rate of 1.50% is below the industry average of 2.5%."
    assert conversion.impact == "Improving conversion by 0.5% could generate 20 additional orders."

    assert analysis.summary == (
        "Acme is showing critical issues that require urgent intervention. "
        "We've identified 3 key problems affecting your store's performance. "
        "There are also 1 significant opportunity for growth. "
        "Focus on the high-priority recommendations below to improve your store's performance."
    )
    assert analysis.top_priorities == [decline.recommendation, abandonment.recommendation, conversion.recommendation]


def test_healthy_store_has_no_insights() -> None:
    analysis = analyze(healthy_metrics(), "Acme")

    assert analysis.insights == []
    assert analysis.overall_health == HealthTier.good
    assert analysis.top_priorities == []
    assert analysis.summary == (
        "Acme is showing good overall performance with room for optimization. "
        "Focus on the high-priority recommendations below to improve your store's performance."
    )


def test_analysis_is_deterministic() -> None:
    metrics = healthy_metrics(conversion_rate=1.2, new_customers_change_percent=-40, total_orders=20)
    assert analyze(metrics, "Acme") == analyze(metrics, "Acme")


# =============================================================================
# Rule thresholds
# =============================================================================

@pytest.mark.parametrize("change,expected", [
    (-10, None),
    (-10.01, Severity.high),
    (-30, Severity.high),
    (-30.5, Severity.critical),
])
def test_revenue_decline_thresholds(change, expected) -> None:
    analysis = analyze(healthy_metrics(revenue_change_percent=change), "Acme")
    found = [i.severity for i in analysis.insights if i.id == "revenue-decline"]
    assert found == ([expected] if expected else [])


def test_high_conversion_is_a_success() -> None:
    analysis = analyze(healthy_metrics(conversion_rate=4.25), "Acme")

    assert ids(analysis) == ["high-conversion"]
    success = analysis.insights[0]
    assert success.type == InsightType.success
    assert success.description == "Your conversion rate of 4.25% is well above the industry average."
    assert analysis.summary.endswith(
        "On the positive side, you have 1 area performing exceptionally well. "
        "Focus on the high-priority recommendations below to improve your store's performance."
    )


def test_customer_rules() -> None:
    analysis = analyze(
        healthy_metrics(new_customers=100, active_customers=20, new_customers_change_percent=-22.25),
        "Acme",
    )

    assert ids(analysis) == ["declining-customers", "low-retention"]
    declining, retention = analysis.insights
    assert declining.description == "New customer acquisition has decreased by 22.3%."
    assert retention.description == "Only 20.0% of new customers are making repeat purchases."
    assert retention.metrics == InsightMetrics(current=20, previous=100)


def test_retention_rule_needs_new_customers() -> None:
    analysis = analyze(healthy_metrics(new_customers=0, active_customers=0), "Acme")
    assert "low-retention" not in ids(analysis)


def test_traffic_rules_use_marketing_category() -> None:
    traffic = TrafficSources(ads=70.0, organic=12.5)
    analysis = analyze(healthy_metrics(traffic_sources=traffic), "Acme")

    assert ids(analysis) == ["high-paid-traffic", "low-organic-traffic"]
    paid, organic = analysis.insights
    assert {paid.category, organic.category} == {InsightCategory.marketing}
    assert paid.description.startswith("70% of your traffic comes from paid advertising")
    assert organic.description.startswith("Only 12.5% of traffic comes from organic search")


def test_operations_rules() -> None:
    analysis = analyze(healthy_metrics(total_orders=40, total_sessions=2400), "Acme")

    assert ids(analysis) == ["low-orders", "traffic-conversion-gap"]
    low_orders, gap = analysis.insights
    assert low_orders.description == (
        "With only 40 orders, you have room to significantly increase sales volume."
    )
    assert gap.description == "You're getting good traffic (2400 sessions) but low conversion rates."
    assert gap.metrics.current == 60


def test_zero_orders_has_no_sessions_gap() -> None:
    analysis = analyze(healthy_metrics(total_orders=0, total_sessions=5000), "Acme")
    assert "traffic-conversion-gap" not in ids(analysis)


# =============================================================================
# Rollups
# =============================================================================

@pytest.mark.parametrize("insights,expected", [
    ([], HealthTier.good),
    ([insight(Severity.critical)], HealthTier.critical),
    ([insight(Severity.high)], HealthTier.warning),
    ([insight(Severity.medium)] * 3, HealthTier.good),
    ([insight(Severity.medium)] * 4, HealthTier.warning),
    ([insight(Severity.low, InsightType.success)] * 3, HealthTier.excellent),
    ([insight(Severity.low, InsightType.success)] * 3 + [insight(Severity.medium)] * 2, HealthTier.good),
])
def test_overall_health_tiers(insights, expected) -> None:
    assert overall_health(insights) == expected


def test_four_medium_findings_are_a_warning() -> None:
    metrics = healthy_metrics(
        average_order_value=40,
        traffic_sources=TrafficSources(ads=70, organic=10),
        total_orders=10,
        total_sessions=100,
    )

    analysis = analyze(metrics, "Acme")

    assert ids(analysis) == ["low-aov", "high-paid-traffic", "low-organic-traffic", "low-orders"]
    assert analysis.overall_health == HealthTier.warning
    assert "There are also 4 significant opportunities for growth. " in analysis.summary


def test_summary_pluralization() -> None:
    insights = [
        insight(Severity.high, id_="a"),
        insight(Severity.low, InsightType.success, id_="b"),
        insight(Severity.low, InsightType.success, id_="c"),
    ]

    summary = build_summary(insights, HealthTier.excellent, "Shop")

    assert summary.startswith("Shop is showing excellent performance with strong metrics across all areas. ")
    assert "We've identified 1 key problem affecting" in summary
    assert "you have 2 areas performing exceptionally well" in summary
    assert "opportunit" not in summary


def test_top_priorities_are_problems_by_severity_capped_at_three() -> None:
    insights = [
        insight(Severity.medium, id_="m1"),
        insight(Severity.high, InsightType.opportunity, id_="opp"),
        insight(Severity.high, id_="h1"),
        insight(Severity.critical, id_="c1"),
        insight(Severity.high, id_="h2"),
    ]

    assert top_priorities(insights) == ["rec-c1", "rec-h1", "rec-h2"]


# =============================================================================
# Number formatting
# =============================================================================

@pytest.mark.parametrize("value,digits,expected", [
    (35, 1, "35.0"),
    (2.5, 0, "3"),
    (-2.5, 0, "-3"),
    (1.005, 2, "1.00"),  # binary value is just below 1.005
    (0.125, 2, "0.13"),
    (-0.0, 1, "0.0"),
    (1234.5678, 2, "1234.57"),
])
def test_to_fixed_matches_javascript(value, digits, expected) -> None:
    assert _to_fixed(value, digits) == expected


@pytest.mark.parametrize("value,expected", [(2.5, 3), (-2.5, -2), (0.49, 0), (19.5, 20)])
def test_js_round_rounds_halves_up(value, expected) -> None:
    assert _js_round(value) == expected


@pytest.mark.parametrize("value,expected", [(80.0, "80"), (12.5, "12.5"), (7, "7")])
def test_js_str_drops_integral_decimal_point(value, expected) -> None:
    assert _js_str(value) == expected
