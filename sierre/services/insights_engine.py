"""Rule-based store insights.

WHAT:
    `analyze(metrics, shop_name)` runs a fixed battery of threshold checks over
    a store metrics snapshot and returns categorized findings, an overall
    health tier, a summary sentence and the top three problem
    recommendations.

WHY:
    Dashboard cards and the weekly digest render these strings verbatim, so
    the output must be deterministic: same metrics, same insights, same order,
    same text. The engine is a pure function with no I/O and no module state.

RULE ORDER:
    revenue → conversion → customers → traffic → operations. Each rule emits
    at most one insight. Number formatting mirrors the dashboard's JavaScript
    (`toFixed` rounds half away from zero, `Math.round` rounds half up, and
    integral numbers print without a decimal point).

REFERENCES:
    - sierre/services/analytics_service.py (builds StoreMetrics from stored orders)
    - sierre/routers/insights.py (HTTP surface)
"""

import enum
import math
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, List, Optional, Union

Number = Union[int, float]


class InsightType(str, enum.Enum):
    problem = "problem"
    opportunity = "opportunity"
    success = "success"


class Severity(str, enum.Enum):
    low = "low"
    medium = "medium"
    high = "high"
    critical = "critical"


class InsightCategory(str, enum.Enum):
    revenue = "revenue"
    conversion = "conversion"
    traffic = "traffic"
    customers = "customers"
    marketing = "marketing"
    operations = "operations"


class HealthTier(str, enum.Enum):
    excellent = "excellent"
    good = "good"
    warning = "warning"
    critical = "critical"


SEVERITY_RANK = {
    Severity.critical: 4,
    Severity.high: 3,
    Severity.medium: 2,
    Severity.low: 1,
}

TOP_PRIORITIES_LIMIT = 3


# =============================================================================
# DATA MODEL
# =============================================================================

@dataclass(frozen=True)
class TrafficSources:
    """Share of sessions per channel, in percent."""
    ads: Number = 0
    organic: Number = 0
    social: Number = 0
    referral: Number = 0
    direct: Number = 0
    email: Number = 0


@dataclass(frozen=True)
class StoreMetrics:
    """Precomputed store snapshot the rules read. Percentages are 0-100."""
    gross_revenue: Number = 0
    net_revenue: Number = 0
    revenue_change_percent: Number = 0
    new_customers: Number = 0
    new_customers_change_percent: Number = 0
    active_customers: Number = 0
    active_customers_change_percent: Number = 0
    growth_rate: Number = 0
    conversion_rate: Number = 0
    cart_abandonment_rate: Number = 0
    traffic_sources: TrafficSources = field(default_factory=TrafficSources)
    total_orders: Number = 0
    average_order_value: Number = 0
    total_visitors: Number = 0
    total_sessions: Number = 0


@dataclass
class InsightMetrics:
    current: Number
    previous: Optional[Number] = None
    change: Optional[Number] = None


@dataclass
class StoreInsight:
    id: str
    type: InsightType
    severity: Severity
    title: str
    description: str
    impact: str
    recommendation: str
    metrics: InsightMetrics
    category: InsightCategory


@dataclass
class StoreAnalysis:
    overall_health: HealthTier
    insights: List[StoreInsight]
    summary: str
    top_priorities: List[str]


# =============================================================================
# NUMBER FORMATTING
# =============================================================================

def _to_fixed(value: Number, digits: int) -> str:
    """JavaScript `Number.prototype.toFixed`: half away from zero on the exact binary value."""
    if value == 0:
        value = 0  # toFixed prints -0 as "0"
    quantum = Decimal(1).scaleb(-digits)
    return format(Decimal(value).quantize(quantum, rounding=ROUND_HALF_UP), "f")


def _js_round(value: Number) -> int:
    """JavaScript `Math.round`: halves round toward +infinity."""
    return int(math.floor(value + 0.5))


def _js_str(value: Number) -> str:
    """JavaScript number-to-string for template interpolation (80.0 → "80")."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


# =============================================================================
# RULES
# =============================================================================

def _analyze_revenue(m: StoreMetrics) -> List[StoreInsight]:
    insights: List[StoreInsight] = []

    if m.revenue_change_percent < -10:
        insights.append(StoreInsight(
            id="revenue-decline",
            type=InsightType.problem,
            severity=Severity.critical if m.revenue_change_percent < -30 else Severity.high,
            title="Revenue Decline Detected",
            description=(
                f"Revenue has decreased by {_to_fixed(abs(m.revenue_change_percent), 1)}% "
                "compared to the previous period."
            ),
            impact=(
                "This represents a loss of approximately "
                f"${_to_fixed(abs(m.gross_revenue * m.revenue_change_percent / 100), 0)} in potential revenue."
            ),
            recommendation=(
                "Focus on improving your marketing creatives and ad targeting. Test new ad formats, "
                "refresh your creative assets, and optimize your audience targeting to improve conversion rates."
            ),
            metrics=InsightMetrics(current=m.gross_revenue, change=m.revenue_change_percent),
            category=InsightCategory.revenue,
        ))

    if m.average_order_value < 50:
        insights.append(StoreInsight(
            id="low-aov",
            type=InsightType.opportunity,
            severity=Severity.medium,
            title="Low Average Order Value",
            description=(
                f"Your AOV of ${_to_fixed(m.average_order_value, 2)} is below the industry average of $75."
            ),
            impact="Increasing AOV by just $10 could boost revenue by 20% with the same number of orders.",
            recommendation=(
                "Implement upselling strategies, bundle products, offer free shipping thresholds, "
                "and create product recommendations to increase order value."
            ),
            metrics=InsightMetrics(current=m.average_order_value),
            category=InsightCategory.revenue,
        ))

    if m.cart_abandonment_rate > 75:
        insights.append(StoreInsight(
            id="high-abandonment",
            type=InsightType.problem,
            severity=Severity.high,
            title="High Cart Abandonment Rate",
            description=(
                f"Your cart abandonment rate of {_js_str(m.cart_abandonment_rate)}% is significantly "
                "above the industry average of 70%."
            ),
            impact=(
                "Reducing abandonment by 10% could recover approximately "
                f"${_to_fixed(m.gross_revenue * 0.1, 0)} in lost revenue."
            ),
            recommendation=(
                "Implement cart abandonment email sequences, optimize checkout flow, add trust signals, "
                "and offer incentives like free shipping or discounts."
            ),
            metrics=InsightMetrics(current=m.cart_abandonment_rate),
            category=InsightCategory.conversion,
        ))

    return insights


def _analyze_conversion(m: StoreMetrics) -> List[StoreInsight]:
    insights: List[StoreInsight] = []

    if m.conversion_rate < 2:
        insights.append(StoreInsight(
            id="low-conversion",
            type=InsightType.problem,
            severity=Severity.high,
            title="Low Conversion Rate",
            description=(
                f"Your conversion rate of {_to_fixed(m.conversion_rate, 2)}% is below the industry average of 2.5%."
            ),
            impact=(
                f"Improving conversion by 0.5% could generate {_js_round(m.total_sessions * 0.005)} additional orders."
            ),
            recommendation=(
                "Optimize your product pages, improve site speed, enhance product descriptions and images, "
                "and implement social proof elements like reviews and testimonials."
            ),
            metrics=InsightMetrics(current=m.conversion_rate),
            category=InsightCategory.conversion,
        ))

    if m.conversion_rate > 3.5:
        insights.append(StoreInsight(
            id="high-conversion",
            type=InsightType.success,
            severity=Severity.low,
            title="Excellent Conversion Rate",
            description=(
                f"Your conversion rate of {_to_fixed(m.conversion_rate, 2)}% is well above the industry average."
            ),
            impact="This indicates strong product-market fit and effective marketing strategies.",
            recommendation=(
                "Continue current strategies and consider scaling successful campaigns. Document what's "
                "working to replicate success across other marketing channels."
            ),
            metrics=InsightMetrics(current=m.conversion_rate),
            category=InsightCategory.conversion,
        ))

    return insights


def _analyze_customers(m: StoreMetrics) -> List[StoreInsight]:
    insights: List[StoreInsight] = []

    if m.new_customers_change_percent < -15:
        insights.append(StoreInsight(
            id="declining-customers",
            type=InsightType.problem,
            severity=Severity.high,
            title="Declining New Customer Acquisition",
            description=(
                f"New customer acquisition has decreased by {_to_fixed(abs(m.new_customers_change_percent), 1)}%."
            ),
            impact=(
                "This trend could lead to long-term revenue decline as customer acquisition is crucial for growth."
            ),
            recommendation=(
                "Invest in customer acquisition campaigns, expand to new marketing channels, improve your "
                "referral program, and enhance your brand presence on social media."
            ),
            metrics=InsightMetrics(current=m.new_customers, change=m.new_customers_change_percent),
            category=InsightCategory.customers,
        ))

    if m.new_customers > 0 and m.active_customers < m.new_customers * 0.3:
        insights.append(StoreInsight(
            id="low-retention",
            type=InsightType.problem,
            severity=Severity.medium,
            title="Low Customer Retention",
            description=(
                f"Only {_to_fixed((m.active_customers / m.new_customers) * 100, 1)}% of new customers "
                "are making repeat purchases."
            ),
            impact=(
                "Customer retention is more cost-effective than acquisition and drives long-term revenue growth."
            ),
            recommendation=(
                "Implement email marketing campaigns, loyalty programs, personalized product recommendations, "
                "and follow-up sequences to encourage repeat purchases."
            ),
            metrics=InsightMetrics(current=m.active_customers, previous=m.new_customers),
            category=InsightCategory.customers,
        ))

    return insights


def _analyze_traffic(m: StoreMetrics) -> List[StoreInsight]:
    insights: List[StoreInsight] = []
    traffic = m.traffic_sources

    if traffic.ads > 60:
        insights.append(StoreInsight(
            id="high-paid-traffic",
            type=InsightType.opportunity,
            severity=Severity.medium,
            title="Over-reliance on Paid Traffic",
            description=(
                f"{_js_str(traffic.ads)}% of your traffic comes from paid advertising, "
                "which can be expensive and unsustainable."
            ),
            impact=(
                "Diversifying traffic sources reduces dependency on ad spend and improves long-term profitability."
            ),
            recommendation=(
                "Focus on SEO, content marketing, social media engagement, and email marketing "
                "to build organic traffic sources."
            ),
            metrics=InsightMetrics(current=traffic.ads),
            category=InsightCategory.marketing,
        ))

    if traffic.organic < 20:
        insights.append(StoreInsight(
            id="low-organic-traffic",
            type=InsightType.opportunity,
            severity=Severity.medium,
            title="Low Organic Traffic",
            description=(
                f"Only {_js_str(traffic.organic)}% of traffic comes from organic search, "
                "limiting your reach and increasing acquisition costs."
            ),
            impact="Organic traffic is free and typically converts better than paid traffic.",
            recommendation=(
                "Invest in SEO, create valuable content, optimize product descriptions, and build quality "
                "backlinks to improve organic visibility."
            ),
            metrics=InsightMetrics(current=traffic.organic),
            category=InsightCategory.marketing,
        ))

    return insights


def _analyze_operations(m: StoreMetrics) -> List[StoreInsight]:
    insights: List[StoreInsight] = []

    if m.total_orders < 50:
        insights.append(StoreInsight(
            id="low-orders",
            type=InsightType.opportunity,
            severity=Severity.medium,
            title="Low Order Volume",
            description=(
                f"With only {_js_str(m.total_orders)} orders, you have room to significantly increase sales volume."
            ),
            impact="Increasing order volume is essential for scaling your business and improving profitability.",
            recommendation=(
                "Focus on marketing campaigns, product launches, seasonal promotions, and expanding your "
                "product catalog to drive more orders."
            ),
            metrics=InsightMetrics(current=m.total_orders),
            category=InsightCategory.operations,
        ))

    sessions_per_order = m.total_sessions / m.total_orders if m.total_orders > 0 else 0
    if sessions_per_order > 50:
        insights.append(StoreInsight(
            id="traffic-conversion-gap",
            type=InsightType.problem,
            severity=Severity.medium,
            title="Traffic Not Converting",
            description=(
                f"You're getting good traffic ({_js_str(m.total_sessions)} sessions) but low conversion rates."
            ),
            impact="This suggests issues with your sales funnel or product-market fit.",
            recommendation=(
                "Analyze your sales funnel, improve product-market fit, optimize pricing, and enhance the "
                "customer experience to convert more visitors into buyers."
            ),
            metrics=InsightMetrics(current=sessions_per_order),
            category=InsightCategory.operations,
        ))

    return insights


ANALYZERS: List[Callable[[StoreMetrics], List[StoreInsight]]] = [
    _analyze_revenue,
    _analyze_conversion,
    _analyze_customers,
    _analyze_traffic,
    _analyze_operations,
]


# =============================================================================
# ROLLUPS
# =============================================================================

def overall_health(insights: List[StoreInsight]) -> HealthTier:
    """Ordered decision list; the first matching branch wins."""
    critical = sum(1 for i in insights if i.severity == Severity.critical)
    high = sum(1 for i in insights if i.severity == Severity.high)
    medium = sum(1 for i in insights if i.severity == Severity.medium)
    successes = sum(1 for i in insights if i.type == InsightType.success)

    if critical > 0:
        return HealthTier.critical
    if high > 2:
        return HealthTier.warning
    if high > 0 or medium > 3:
        return HealthTier.warning
    if successes > 2 and high == 0 and medium <= 1:
        return HealthTier.excellent
    return HealthTier.good


_HEALTH_PHRASES = {
    HealthTier.excellent: "excellent performance with strong metrics across all areas. ",
    HealthTier.good: "good overall performance with room for optimization. ",
    HealthTier.warning: "concerning trends that need immediate attention. ",
    HealthTier.critical: "critical issues that require urgent intervention. ",
}


def build_summary(insights: List[StoreInsight], health: HealthTier, shop_name: str) -> str:
    problems = sum(1 for i in insights if i.type == InsightType.problem)
    opportunities = sum(1 for i in insights if i.type == InsightType.opportunity)
    successes = sum(1 for i in insights if i.type == InsightType.success)

    summary = f"{shop_name} is showing " + _HEALTH_PHRASES[health]

    if problems > 0:
        summary += (
            f"We've identified {problems} key problem{'s' if problems > 1 else ''} "
            "affecting your store's performance. "
        )
    if opportunities > 0:
        summary += (
            f"There are also {opportunities} significant opportunit{'ies' if opportunities > 1 else 'y'} "
            "for growth. "
        )
    if successes > 0:
        summary += (
            f"On the positive side, you have {successes} area{'s' if successes > 1 else ''} "
            "performing exceptionally well. "
        )

    summary += "Focus on the high-priority recommendations below to improve your store's performance."
    return summary


def top_priorities(insights: List[StoreInsight]) -> List[str]:
    """Recommendations of the three most severe problems (stable for equal severity)."""
    problems = [i for i in insights if i.type == InsightType.problem]
    problems.sort(key=lambda i: SEVERITY_RANK[i.severity], reverse=True)
    return [i.recommendation for i in problems[:TOP_PRIORITIES_LIMIT]]


def analyze(metrics: StoreMetrics, shop_name: str) -> StoreAnalysis:
    """Run every rule over `metrics` and roll the findings up."""
    insights: List[StoreInsight] = []
    for analyzer in ANALYZERS:
        insights.extend(analyzer(metrics))

    health = overall_health(insights)
    return StoreAnalysis(
        overall_health=health,
        insights=insights,
        summary=build_summary(insights, health, shop_name),
        top_priorities=top_priorities(insights),
    )
