"""Tests for trend scoring and candidate validation."""

from types import SimpleNamespace

import pytest

from shopflow.services.validation import (
    Decision, compute_margin, evaluate_batch, evaluate_candidate, score_trend,
)
from tests.fakes import discovered


def candidate(**fields):
    defaults = {
        "cost": 8.0,
        "selling_price": 20.0,
        "margin_percent": 0.0,
        "supplier_url": "https://supplier.example/1",
        "research_score": 50,
    }
    defaults.update(fields)
    return SimpleNamespace(**defaults)


# ── Trend scoring ────────────────────────────────────────────────────────────

class TestScoreTrend:
    def test_full_marks_item(self):
        # 15 base + 25 sales + 20 cost + 10 category + 5 image + 5 name
        item = discovered(sales=20000, cost=10.0, category="Kitchen gadgets")
        assert score_trend(item) == 80

    def test_minimal_item_gets_base_score(self):
        item = discovered(name="Lamp", cost=None, sales=0, category=None, image=None)
        assert score_trend(item) == 15

    def test_sales_tiers_are_exclusive(self):
        at_threshold = discovered(sales=1000, cost=None, category=None, image=None, name="x")
        above = discovered(sales=1001, cost=None, category=None, image=None, name="x")
        assert score_trend(at_threshold) == 15 + 10
        assert score_trend(above) == 15 + 15

    @pytest.mark.parametrize("cost,bonus", [(3.0, 5), (5.0, 20), (50.0, 20), (75.0, 15), (150.0, 10), (500.0, 0)])
    def test_cost_bands(self, cost, bonus):
        item = discovered(cost=cost, sales=0, category=None, image=None, name="x")
        assert score_trend(item) == 15 + bonus

    def test_deterministic_and_bounded(self):
        item = discovered()
        scores = {score_trend(item) for _ in range(5)}
        assert len(scores) == 1
        assert 0 <= scores.pop() <= 100


# ── Margin ───────────────────────────────────────────────────────────────────

class TestComputeMargin:
    def test_computed_from_cost_and_price(self):
        assert compute_margin(8.0, 20.0) == 60.0

    def test_falls_back_to_stored_value(self):
        assert compute_margin(None, 20.0, stored=42.0) == 42.0
        assert compute_margin(8.0, 0, stored=None) == 0.0


# ── Candidate decisions ──────────────────────────────────────────────────────

class TestEvaluateCandidate:
    def test_zero_cost_rejected_regardless_of_margin_and_score(self):
        decision = evaluate_candidate(candidate(cost=0, margin_percent=90.0, research_score=100))
        assert decision == Decision(approved=False, reason="No cost data")

    def test_missing_cost_rejected(self):
        assert evaluate_candidate(candidate(cost=None)).reason == "No cost data"

    def test_low_margin_reason_has_one_decimal(self):
        decision = evaluate_candidate(candidate(cost=9.0, selling_price=10.0))
        assert not decision.approved
        assert decision.reason == "Low margin: 10.0%"

    def test_missing_supplier(self):
        decision = evaluate_candidate(candidate(supplier_url=""))
        assert decision.reason == "No supplier found"

    def test_high_margin_approves_low_score(self):
        # cost $8, margin 40%, score 10, supplier present
        decision = evaluate_candidate(candidate(cost=8.0, selling_price=13.3333, research_score=10))
        assert decision.approved
        assert decision.margin_percent == 40.0

    def test_score_alone_approves(self):
        decision = evaluate_candidate(candidate(cost=15.0, selling_price=20.0, research_score=30))
        assert decision.approved

    def test_neither_threshold_rejects_without_reason(self):
        decision = evaluate_candidate(candidate(cost=15.0, selling_price=20.0, research_score=10))
        assert not decision.approved
        assert decision.reason == ""

    def test_batch_preserves_order(self):
        items = [candidate(cost=0), candidate(), candidate(supplier_url="")]
        decisions = evaluate_batch(items)
        assert [d.approved for d in decisions] == [False, True, False]
        assert decisions[0].reason == "No cost data"
        assert decisions[2].reason == "No supplier found"
