"""
Health-modifier rule matching.

Among an org's rules for the deal's bucket whose inclusive band contains the
health score, the rule with the highest ``min_score`` wins (narrowest,
most specific band). Ties go to the smaller ``max_score``, then the lower
rule id. No match is a pass-through: no suppression, modifier 1.0.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from forecast_engine.core.schemas import ForecastBucket, HealthScoreRule
from forecast_engine.engine.classifier import Classification, classify
from forecast_engine.engine.deal import Deal

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HealthModifier:
    """Resolved rule outcome for one deal."""

    suppression: bool = False
    modifier: float = 1.0
    rule_id: Optional[int] = None


PASS_THROUGH = HealthModifier()


class RuleSet:
    """An org's health-score rules, indexed by bucket in precedence order."""

    def __init__(self, org_id: int, rules: Iterable[HealthScoreRule] = ()):
        self.org_id = org_id
        self._by_bucket: Dict[ForecastBucket, List[HealthScoreRule]] = defaultdict(list)
        count = 0
        for rule in rules:
            if rule.org_id != org_id:
                raise ValueError(
                    f"Rule {rule.id} belongs to org {rule.org_id}, not org {org_id}"
                )
            self._by_bucket[rule.mapped_bucket].append(rule)
            count += 1
        for bucket_rules in self._by_bucket.values():
            bucket_rules.sort(
                key=lambda r: (-r.min_score, r.max_score, r.id if r.id is not None else 0)
            )
        self._count = count

    def __len__(self) -> int:
        return self._count

    def rules_for(self, bucket: ForecastBucket) -> List[HealthScoreRule]:
        return list(self._by_bucket.get(bucket, []))

    def match(self, bucket: ForecastBucket, health_score: Optional[float]) -> Optional[HealthScoreRule]:
        """Most specific rule for the score, or None."""
        # Unscored deals (None/0) still look up, as score 0.
        score = health_score or 0.0
        for rule in self._by_bucket.get(bucket, ()):
            if rule.matches(bucket, score):
                return rule
        return None

    def resolve(self, bucket: ForecastBucket, health_score: Optional[float]) -> HealthModifier:
        rule = self.match(bucket, health_score)
        if rule is None:
            return PASS_THROUGH
        return HealthModifier(
            suppression=rule.suppression,
            modifier=rule.effective_modifier,
            rule_id=rule.id,
        )


def resolve_modifier(
    rules: RuleSet, bucket: ForecastBucket, health_score: Optional[float]
) -> HealthModifier:
    """Resolve suppression and probability modifier for a bucket + score."""
    return rules.resolve(bucket, health_score)


@dataclass(frozen=True)
class ScoredDeal:
    """A deal with its classification and (open deals only) modifier."""

    deal: Deal
    classification: Classification
    modifier: HealthModifier = PASS_THROUGH

    @property
    def bucket(self) -> Optional[ForecastBucket]:
        return self.classification.bucket


def annotate_deals(deals: Iterable[Deal], rules: RuleSet) -> List[ScoredDeal]:
    """Classify each deal and resolve its health modifier.

    Deals from another org are dropped, never mixed into the result.
    """
    scored = []
    suppressed = 0
    for deal in deals:
        if deal.org_id != rules.org_id:
            logger.warning(
                f"Dropping deal {deal.id} from org {deal.org_id} "
                f"out of an org {rules.org_id} computation"
            )
            continue
        c = classify(deal)
        if c.is_open:
            mod = rules.resolve(c.bucket, deal.health_score)
            suppressed += mod.suppression
        else:
            mod = PASS_THROUGH
        scored.append(ScoredDeal(deal=deal, classification=c, modifier=mod))

    logger.debug(
        f"Annotated {len(scored)} deals for org {rules.org_id} "
        f"({len(rules)} rules, {suppressed} suppressed)"
    )
    return scored
