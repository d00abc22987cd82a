"""
Readmission Risk Agent - Fairness Monitoring

Classifies per-subgroup model performance for the bias monitoring tab.

The fairness ratio of a subgroup is its performance divided by the overall
population's corresponding performance. It is precomputed upstream by the
model-monitoring pipeline; this module only classifies it:

    0.95 <= fairness_ratio <= 1.05   ->  Fair
    anything else                    ->  Review

Each subgroup is judged independently; no cross-group computation happens
here.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Sequence, Tuple, Union

from pydantic import AliasChoices, BaseModel, Field, StrictStr
from pydantic import ValidationError as PydanticValidationError

from .config import FAIRNESS_RATIO_LOWER, FAIRNESS_RATIO_UPPER, FairnessStatus
from .exceptions import ValidationError

logger = logging.getLogger(__name__)


class SubgroupMetric(BaseModel):
    """
    Model performance for one demographic subgroup.

    Numbers are taken as given: no coercion from strings or booleans, and
    NaN or infinity are rejected.
    """

    group: StrictStr = Field(
        ...,
        min_length=1,
        description="Subgroup label (e.g. 'Age 65+', 'Medicaid')"
    )
    fairness_ratio: float = Field(
        ...,
        strict=True,
        allow_inf_nan=False,
        validation_alias=AliasChoices("fairness_ratio", "fairnessRatio"),
        description="Group performance / overall average performance"
    )
    precision: float = Field(
        ...,
        strict=True,
        ge=0.0,
        le=100.0,
        description="Precision in percent"
    )
    recall: float = Field(
        ...,
        strict=True,
        ge=0.0,
        le=100.0,
        description="Recall in percent"
    )

    class Config:
        frozen = True

    @classmethod
    def from_dict(cls, data: Any) -> "SubgroupMetric":
        """Accepts ``fairness_ratio`` or ``fairnessRatio`` keys."""
        try:
            return cls.model_validate(data)
        except PydanticValidationError as exc:
            raise ValidationError.from_errors(
                exc.errors(), {"fairnessRatio": "fairness_ratio"}
            ) from None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "group": self.group,
            "precision": self.precision,
            "recall": self.recall,
            "fairness_ratio": self.fairness_ratio,
        }


@dataclass(frozen=True)
class FairnessVerdict:
    """A subgroup metric together with its Fair/Review status."""
    metric: SubgroupMetric
    status: FairnessStatus

    @property
    def group(self) -> str:
        return self.metric.group

    @property
    def fairness_ratio(self) -> float:
        return self.metric.fairness_ratio

    def to_dict(self) -> Dict[str, Any]:
        result = self.metric.to_dict()
        result["status"] = self.status.value
        return result


@dataclass(frozen=True)
class FairnessSummary:
    """Roll-up of verdicts for the dashboard banner."""
    total_groups: int
    fair_groups: int
    review_groups: int
    groups_needing_review: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalGroups": self.total_groups,
            "fairGroups": self.fair_groups,
            "reviewGroups": self.review_groups,
            "groupsNeedingReview": list(self.groups_needing_review),
            "acceptableRange": [FAIRNESS_RATIO_LOWER, FAIRNESS_RATIO_UPPER],
        }


def classify_ratio(ratio: float) -> FairnessStatus:
    """Fair iff the ratio lies inside the inclusive acceptable band."""
    if FAIRNESS_RATIO_LOWER <= ratio <= FAIRNESS_RATIO_UPPER:
        return FairnessStatus.FAIR
    return FairnessStatus.REVIEW


class FairnessAggregator:
    """
    Turns subgroup performance statistics into Fair/Review verdicts.

    Example:
        >>> aggregator = FairnessAggregator()
        >>> verdicts = aggregator.evaluate([
        ...     {"group": "Medicaid", "precision": 73.5, "recall": 65.2,
        ...      "fairness_ratio": 0.94},
        ... ])
        >>> verdicts[0].status.value
        'Review'
    """

    def evaluate(
        self,
        metrics: Iterable[Union[SubgroupMetric, Mapping[str, Any]]],
    ) -> List[FairnessVerdict]:
        """
        Classify every subgroup, preserving input order.

        Raises:
            ValidationError: if any metric has a missing or non-numeric
                fairness ratio. No verdicts are returned in that case.
        """
        parsed = [
            m if isinstance(m, SubgroupMetric) else SubgroupMetric.from_dict(m)
            for m in metrics
        ]
        return [FairnessVerdict(m, classify_ratio(m.fairness_ratio)) for m in parsed]

    def summarize(self, verdicts: Sequence[FairnessVerdict]) -> FairnessSummary:
        """Count Fair/Review groups and list the ones flagged for review."""
        flagged = tuple(v.group for v in verdicts if v.status == FairnessStatus.REVIEW)

        if flagged:
            logger.info(
                f"{len(flagged)} of {len(verdicts)} subgroups outside fairness band",
                extra={"groups": list(flagged)},
            )

        return FairnessSummary(
            total_groups=len(verdicts),
            fair_groups=len(verdicts) - len(flagged),
            review_groups=len(flagged),
            groups_needing_review=flagged,
        )
