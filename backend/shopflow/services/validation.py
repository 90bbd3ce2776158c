"""
Validation & Scoring

Pure decision functions used by the pipeline:

  score_trend(item)        additive 0-100 heuristic for a freshly discovered item
  evaluate_candidate(item) approve / reject decision with a reason

Decision order (first failing check wins):
  1. cost missing or <= 0      -> "No cost data"
  2. margin < 20%              -> "Low margin: <m>%"
  3. no supplier URL           -> "No supplier found"
  4. research_score >= 30 OR margin >= 35 -> approve, else reject (no reason)

A reject without reason leaves the item eligible for the next run.
"""

from dataclasses import dataclass
from typing import Any

MIN_MARGIN_PERCENT = 20.0
APPROVE_SCORE = 30
APPROVE_MARGIN_PERCENT = 35.0

# Base score for items coming from a reliable API source
SOURCE_BONUS = 15

# (exclusive lower bound on sales proxy, bonus), checked top-down
SALES_TIERS = (
    (10000, 25),
    (5000, 20),
    (1000, 15),
    (500, 10),
    (100, 5),
)

HIGH_DEMAND_CATEGORIES = (
    "electronics", "home", "beauty", "fashion", "sports",
    "toys", "kitchen", "garden", "pet",
)
CATEGORY_BONUS = 10
IMAGE_BONUS = 5
NAME_BONUS = 5
DESCRIPTIVE_NAME_LENGTH = 10


@dataclass(frozen=True)
class Decision:
    approved: bool
    reason: str = ""
    margin_percent: float = 0.0


def _cost_bonus(cost: float) -> int:
    # $5-50 is the sweet spot for markup headroom
    if 5 <= cost <= 50:
        return 20
    if 50 < cost <= 100:
        return 15
    if 100 < cost <= 200:
        return 10
    if 0 < cost < 5:
        return 5
    return 0


def score_trend(item: Any) -> int:
    """Trend score for a discovered item (DiscoveredItem or anything with the same attributes)."""
    score = SOURCE_BONUS

    sales = getattr(item, "sales_proxy", 0) or 0
    for threshold, bonus in SALES_TIERS:
        if sales > threshold:
            score += bonus
            break

    score += _cost_bonus(getattr(item, "cost_estimate", None) or 0)

    category = (getattr(item, "category", None) or "").lower()
    if any(c in category for c in HIGH_DEMAND_CATEGORIES):
        score += CATEGORY_BONUS

    if getattr(item, "image", None):
        score += IMAGE_BONUS

    name = getattr(item, "name", None) or ""
    if len(name) > DESCRIPTIVE_NAME_LENGTH:
        score += NAME_BONUS

    return min(score, 100)


def compute_margin(cost: float | None, selling_price: float | None, stored: float | None = None) -> float:
    """Gross margin in percent of selling price; falls back to the stored figure."""
    if cost and cost > 0 and selling_price and selling_price > 0:
        return round((selling_price - cost) / selling_price * 100, 1)
    return float(stored or 0)


def evaluate_candidate(item: Any) -> Decision:
    cost = getattr(item, "cost", None)
    if cost is None or cost <= 0:
        return Decision(approved=False, reason="No cost data")

    margin = compute_margin(cost, getattr(item, "selling_price", None), getattr(item, "margin_percent", None))
    if margin < MIN_MARGIN_PERCENT:
        return Decision(approved=False, reason=f"Low margin: {margin:.1f}%", margin_percent=margin)

    if not getattr(item, "supplier_url", None):
        return Decision(approved=False, reason="No supplier found", margin_percent=margin)

    score = getattr(item, "research_score", 0) or 0
    if score >= APPROVE_SCORE or margin >= APPROVE_MARGIN_PERCENT:
        return Decision(approved=True, margin_percent=margin)
    return Decision(approved=False, margin_percent=margin)


def evaluate_batch(items: list) -> list[Decision]:
    """Decisions in input order."""
    return [evaluate_candidate(item) for item in items]
