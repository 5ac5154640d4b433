"""
Step definitions for automation sequences.

A step is either a ``MessageStep`` or a ``ConditionStep``. Steps are stored as
plain dicts in ``Sequence.steps_json`` with a ``type`` key selecting the
variant; ``parse_step`` and ``step_to_dict`` convert between the two forms.
"""

from dataclasses import dataclass, field
from datetime import time
from typing import Dict, Any, Optional, FrozenSet, Union

from coach_sequences.utils.error_handling import ValidationError

WEEKDAYS = ('monday', 'tuesday', 'wednesday', 'thursday', 'friday', 'saturday', 'sunday')
ANY_DAY = 'any'
OPERATORS = ('eq', 'neq', 'gt', 'lt', 'exists')

DEFAULT_WINDOW_START = time(9, 0)
DEFAULT_WINDOW_END = time(10, 0)


@dataclass(frozen=True)
class MessageStep:
    step_order: int
    message_content: Dict[str, str] = field(default_factory=dict)
    delay_days: int = 0
    send_window_start: time = DEFAULT_WINDOW_START
    send_window_end: time = DEFAULT_WINDOW_END
    send_days: FrozenSet[str] = frozenset({ANY_DAY})
    is_active: bool = True

    type = 'message'

    @property
    def any_day(self) -> bool:
        return ANY_DAY in self.send_days or not self.send_days


@dataclass(frozen=True)
class ConditionStep:
    step_order: int
    condition_field: str
    condition_operator: str = 'eq'
    condition_value: Optional[str] = None
    true_branch: Optional[int] = None
    false_branch: Optional[int] = None

    type = 'condition'


Step = Union[MessageStep, ConditionStep]


def _parse_int(value, name: str, step_order=None) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"Step {step_order}: {name} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Step {step_order}: {name} must be an integer, got {value!r}")


def _parse_time(data: Dict[str, Any], prefix: str, default: time, step_order) -> time:
    """Read a window bound either as "HH:MM" or as ``<prefix>_hour``/``<prefix>_minute``."""
    raw = data.get(prefix)
    if raw is not None:
        if isinstance(raw, time):
            return raw.replace(second=0, microsecond=0)
        try:
            hour_text, minute_text = str(raw).split(':', 1)
            hour, minute = int(hour_text), int(minute_text)
        except ValueError:
            raise ValidationError(f"Step {step_order}: {prefix} must be formatted HH:MM, got {raw!r}")
    else:
        hour = data.get(f'{prefix}_hour', default.hour)
        minute = data.get(f'{prefix}_minute', default.minute)
        hour = _parse_int(hour, f'{prefix}_hour', step_order)
        minute = _parse_int(minute, f'{prefix}_minute', step_order)

    if not 0 <= hour <= 23 or not 0 <= minute <= 59:
        raise ValidationError(f"Step {step_order}: {prefix} {hour:02d}:{minute:02d} is out of range")
    return time(hour, minute)


def _parse_send_days(data: Dict[str, Any], step_order) -> FrozenSet[str]:
    raw = data.get('send_days', data.get('send_day', ANY_DAY))
    if raw is None:
        return frozenset({ANY_DAY})
    if isinstance(raw, str):
        raw = [raw]

    days = set()
    for day in raw:
        name = str(day).strip().lower()
        if name != ANY_DAY and name not in WEEKDAYS:
            raise ValidationError(f"Step {step_order}: unknown send day '{day}'")
        days.add(name)

    if not days or ANY_DAY in days:
        return frozenset({ANY_DAY})
    return frozenset(days)


def _parse_message_content(data: Dict[str, Any]) -> Dict[str, str]:
    raw = data.get('message_content')
    if isinstance(raw, dict):
        content = {str(locale): str(text) for locale, text in raw.items() if text}
    elif raw:
        content = {'en': str(raw)}
    else:
        content = {}

    # Arabic variant stored alongside the default template by the mobile editor
    if data.get('message_content_ar'):
        content.setdefault('ar', str(data['message_content_ar']))
    return content


def _parse_branch(value, name: str, step_order) -> Optional[int]:
    if value is None or value == '':
        return None
    return _parse_int(value, name, step_order)


def parse_step(data: Dict[str, Any]) -> Step:
    """Build a step from its stored dict form."""
    if not isinstance(data, dict):
        raise ValidationError(f"Step must be an object, got {type(data).__name__}")

    if 'step_order' not in data:
        raise ValidationError("Step is missing step_order")
    step_order = _parse_int(data['step_order'], 'step_order')

    step_type = data.get('type')
    if step_type == 'message':
        delay_days = _parse_int(data.get('delay_days', 0), 'delay_days', step_order)
        if delay_days < 0:
            raise ValidationError(f"Step {step_order}: delay_days cannot be negative")
        return MessageStep(
            step_order=step_order,
            message_content=_parse_message_content(data),
            delay_days=delay_days,
            send_window_start=_parse_time(data, 'send_window_start', DEFAULT_WINDOW_START, step_order),
            send_window_end=_parse_time(data, 'send_window_end', DEFAULT_WINDOW_END, step_order),
            send_days=_parse_send_days(data, step_order),
            is_active=data.get('is_active', True) is not False,
        )

    if step_type == 'condition':
        operator = data.get('condition_operator', 'eq')
        if operator not in OPERATORS:
            raise ValidationError(f"Step {step_order}: invalid condition_operator '{operator}'")
        condition_field = data.get('condition_field')
        if not condition_field:
            raise ValidationError(f"Step {step_order}: condition_field is required")
        value = data.get('condition_value')
        return ConditionStep(
            step_order=step_order,
            condition_field=str(condition_field),
            condition_operator=operator,
            condition_value=None if value is None else str(value),
            true_branch=_parse_branch(data.get('true_branch'), 'true_branch', step_order),
            false_branch=_parse_branch(data.get('false_branch'), 'false_branch', step_order),
        )

    raise ValidationError(f"Step {step_order}: invalid step type '{step_type}'")


def step_to_dict(step: Step) -> Dict[str, Any]:
    """Serialise a step back to its stored dict form."""
    if isinstance(step, MessageStep):
        return {
            'step_order': step.step_order,
            'type': 'message',
            'message_content': dict(step.message_content),
            'delay_days': step.delay_days,
            'send_window_start': step.send_window_start.strftime('%H:%M'),
            'send_window_end': step.send_window_end.strftime('%H:%M'),
            'send_days': sorted(step.send_days),
            'is_active': step.is_active,
        }
    if isinstance(step, ConditionStep):
        return {
            'step_order': step.step_order,
            'type': 'condition',
            'condition_field': step.condition_field,
            'condition_operator': step.condition_operator,
            'condition_value': step.condition_value,
            'true_branch': step.true_branch,
            'false_branch': step.false_branch,
        }
    raise TypeError(f"Unknown step kind: {type(step).__name__}")
