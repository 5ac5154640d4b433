"""
Condition evaluation for condition steps.

``evaluate`` is a pure function of the step and the fact snapshot. Malformed
numeric comparisons fail closed (return False) and are logged rather than
raised, so a bad condition can never crash a tick.
"""

import logging
import math
from typing import Dict, Any, Optional

from coach_sequences.models.steps import ConditionStep
from coach_sequences.utils.error_handling import ConditionEvaluationError

logger = logging.getLogger(__name__)


def _to_number(value) -> Optional[float]:
    """Parse a value as a finite number, or None if it does not parse."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(str(value).strip())
    except ValueError:
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def _normalise(value) -> str:
    return '' if value is None else str(value).strip()


def _equals(actual, expected) -> bool:
    actual_number = _to_number(actual)
    expected_number = _to_number(expected)
    if actual_number is not None and expected_number is not None:
        return actual_number == expected_number
    return _normalise(actual) == _normalise(expected)


def _compare(step: ConditionStep, actual) -> bool:
    actual_number = _to_number(actual)
    expected_number = _to_number(step.condition_value)
    if actual_number is None or expected_number is None:
        raise ConditionEvaluationError(
            f"Step {step.step_order}: '{step.condition_operator}' needs numeric operands, "
            f"got {step.condition_field}={actual!r} and value={step.condition_value!r}"
        )
    if step.condition_operator == 'gt':
        return actual_number > expected_number
    return actual_number < expected_number


def evaluate(step: ConditionStep, facts: Dict[str, Any]) -> bool:
    """Evaluate a condition step against a fact snapshot."""
    facts = facts or {}
    operator = step.condition_operator
    actual = facts.get(step.condition_field)

    if operator == 'exists':
        return actual is not None

    try:
        if operator == 'eq':
            return _equals(actual, step.condition_value)
        if operator == 'neq':
            return not _equals(actual, step.condition_value)
        if operator in ('gt', 'lt'):
            return _compare(step, actual)
        raise ConditionEvaluationError(f"Step {step.step_order}: unknown operator '{operator}'")
    except ConditionEvaluationError as e:
        logger.warning(f"Condition evaluated as false: {str(e)}")
        return False
