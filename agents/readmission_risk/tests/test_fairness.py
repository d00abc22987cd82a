"""
Readmission Risk Agent - Fairness Aggregator Unit Tests

Run with: pytest agents/readmission_risk/tests/test_fairness.py -v
"""

import pytest
from pydantic import ValidationError as PydanticValidationError

from agents.readmission_risk.config import FairnessStatus
from agents.readmission_risk.exceptions import ValidationError
from agents.readmission_risk.fairness import (
    FairnessAggregator,
    SubgroupMetric,
    classify_ratio,
)
from agents.readmission_risk.repository import DEFAULT_SUBGROUP_METRICS


@pytest.fixture
def aggregator():
    return FairnessAggregator()


def metric(group="Female", ratio=1.0, precision=76.8, recall=69.4):
    return {"group": group, "precision": precision, "recall": recall, "fairness_ratio": ratio}


class TestClassification:
    """Tests for the Fair/Review band."""

    @pytest.mark.parametrize("ratio,expected", [
        (0.95, FairnessStatus.FAIR),
        (0.949, FairnessStatus.REVIEW),
        (1.0, FairnessStatus.FAIR),
        (1.05, FairnessStatus.FAIR),
        (1.051, FairnessStatus.REVIEW),
        (0.5, FairnessStatus.REVIEW),
    ])
    def test_band_is_inclusive(self, ratio, expected):
        """Ratios inside [0.95, 1.05] are Fair, everything else Review."""
        assert classify_ratio(ratio) == expected

    def test_default_catalogue(self, aggregator):
        """Only Medicaid (0.94) falls outside the band in the catalogue."""
        verdicts = aggregator.evaluate(DEFAULT_SUBGROUP_METRICS)

        review = [v.group for v in verdicts if v.status == FairnessStatus.REVIEW]
        assert review == ["Medicaid"]
        commercial = next(v for v in verdicts if v.group == "Commercial")
        assert commercial.status == FairnessStatus.FAIR


class TestEvaluate:
    """Tests for FairnessAggregator.evaluate."""

    def test_preserves_length_and_order(self, aggregator):
        """Verdicts come back in input order, one per metric."""
        metrics = [metric("C", 0.90), metric("A", 1.00), metric("B", 1.10)]
        verdicts = aggregator.evaluate(metrics)

        assert [v.group for v in verdicts] == ["C", "A", "B"]
        assert [v.status for v in verdicts] == [
            FairnessStatus.REVIEW, FairnessStatus.FAIR, FairnessStatus.REVIEW,
        ]

    def test_empty_input(self, aggregator):
        assert aggregator.evaluate([]) == []

    def test_accepts_camel_case_ratio(self, aggregator):
        """Upstream payloads may use fairnessRatio."""
        verdicts = aggregator.evaluate([
            {"group": "Male", "precision": 75.6, "recall": 68.3, "fairnessRatio": 0.99}
        ])
        assert verdicts[0].fairness_ratio == 0.99

    def test_accepts_subgroup_metric_instances(self, aggregator):
        verdicts = aggregator.evaluate([
            SubgroupMetric(group="White", precision=77.2, recall=70.1, fairness_ratio=1.02)
        ])
        assert verdicts[0].status == FairnessStatus.FAIR

    def test_verdict_wire_format(self, aggregator):
        """Serialized verdicts carry the metric fields plus status."""
        data = aggregator.evaluate([metric("Medicaid", 0.94, 73.5, 65.2)])[0].to_dict()
        assert data == {
            "group": "Medicaid",
            "precision": 73.5,
            "recall": 65.2,
            "fairness_ratio": 0.94,
            "status": "Review",
        }

    def test_is_idempotent(self, aggregator):
        first = aggregator.evaluate(DEFAULT_SUBGROUP_METRICS)
        second = aggregator.evaluate(DEFAULT_SUBGROUP_METRICS)
        assert first == second


class TestValidation:
    """Tests for malformed subgroup metrics."""

    def test_missing_ratio(self, aggregator):
        """A metric without a fairness ratio fails the whole call."""
        metrics = [metric("A", 1.0), {"group": "B", "precision": 70.0, "recall": 60.0}]
        with pytest.raises(ValidationError) as exc_info:
            aggregator.evaluate(metrics)
        assert exc_info.value.field == "fairness_ratio"

    @pytest.mark.parametrize("ratio", ["0.97", None, True, float("nan"), float("inf"), 10 ** 400])
    def test_non_numeric_ratio(self, aggregator, ratio):
        """Non-numeric, non-finite and out-of-range ratios name the field."""
        with pytest.raises(ValidationError) as exc_info:
            aggregator.evaluate([metric("A", ratio)])
        assert exc_info.value.field == "fairness_ratio"

    @pytest.mark.parametrize("field,value", [
        ("precision", 120.0),
        ("recall", -1.0),
        ("precision", "high"),
        ("precision", 10 ** 400),
        ("recall", True),
    ])
    def test_percentages_checked(self, aggregator, field, value):
        data = metric("A", 1.0)
        data[field] = value
        with pytest.raises(ValidationError) as exc_info:
            aggregator.evaluate([data])
        assert exc_info.value.field == field


class TestSummary:
    """Tests for FairnessAggregator.summarize."""

    def test_summary_counts(self, aggregator):
        verdicts = aggregator.evaluate(DEFAULT_SUBGROUP_METRICS)
        summary = aggregator.summarize(verdicts)

        assert summary.total_groups == 10
        assert summary.fair_groups == 9
        assert summary.review_groups == 1
        assert summary.groups_needing_review == ("Medicaid",)

    def test_summary_is_immutable(self, aggregator):
        summary = aggregator.summarize(aggregator.evaluate([metric("A", 1.2)]))
        with pytest.raises(AttributeError):
            summary.groups_needing_review.append("B")

    def test_summary_wire_format(self, aggregator):
        summary = aggregator.summarize(aggregator.evaluate([metric("A", 1.2)]))
        assert summary.to_dict() == {
            "totalGroups": 1,
            "fairGroups": 0,
            "reviewGroups": 1,
            "groupsNeedingReview": ["A"],
            "acceptableRange": [0.95, 1.05],
        }


class TestSubgroupMetric:
    """Tests for the SubgroupMetric model itself."""

    def test_integer_percentages_accepted(self):
        parsed = SubgroupMetric.from_dict(metric("A", 1, precision=80, recall=70))
        assert parsed.fairness_ratio == 1.0
        assert parsed.precision == 80.0

    def test_metric_is_frozen(self):
        parsed = SubgroupMetric.from_dict(metric("A", 1.0))
        with pytest.raises(PydanticValidationError):
            parsed.fairness_ratio = 0.5

    def test_camel_case_ratio_error_uses_snake_case_field(self):
        with pytest.raises(ValidationError) as exc_info:
            SubgroupMetric.from_dict(
                {"group": "A", "precision": 70.0, "recall": 60.0, "fairnessRatio": "high"}
            )
        assert exc_info.value.field == "fairness_ratio"
