from __future__ import annotations

import logging
import operator
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional

from storefront.monitoring.config import AlertRule, MonitoringConfig

logger = logging.getLogger(__name__)

COMPARATORS: Dict[str, Callable[[float, float], bool]] = {
    ">": operator.gt,
    ">=": operator.ge,
    "<": operator.lt,
    "<=": operator.le,
    "==": operator.eq,
    "!=": operator.ne,
}


@dataclass
class RuleOutcome:
    rule: AlertRule
    value: float
    threshold: float
    triggered: bool


def render_message(template: str, value: Any) -> str:
    return (template or "").replace("{{value}}", str(value))


def compare(value: float, comparison: str, threshold: float) -> bool:
    try:
        comparator = COMPARATORS[comparison]
    except KeyError:
        raise ValueError(f"Unknown comparison operator: {comparison}")
    return comparator(value, threshold)


def evaluate_rules(config: MonitoringConfig, metrics: Mapping[str, Any]) -> List[RuleOutcome]:
    """Evaluate every metric rule that has both a value and a threshold."""
    outcomes: List[RuleOutcome] = []
    for rule in config.rules:
        if rule.type != "metric":
            continue

        value = metrics.get(rule.metric)
        if value is None:
            logger.debug("Skipping alert rule %s: metric %s not collected", rule.id, rule.metric)
            continue
        try:
            threshold: Optional[float] = config.resolve_threshold(rule)
            if threshold is None:
                logger.debug("Skipping alert rule %s: no threshold defined", rule.id)
                continue
            triggered = compare(float(value), rule.comparison, threshold)
        except (TypeError, ValueError) as exc:
            # One broken rule must not stop the others
            logger.error("Alert rule %s could not be evaluated: %s", rule.id, exc)
            continue
        outcomes.append(RuleOutcome(rule=rule, value=value, threshold=threshold, triggered=triggered))
    return outcomes
