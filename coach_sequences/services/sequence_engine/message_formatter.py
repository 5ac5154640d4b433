"""
Message formatting and personalization functionality.

This module contains functionality for:
- Template selection by locale
- Placeholder replacement from the client's fact snapshot
- Message validation for the sequence editor
"""

import logging
import re
from datetime import datetime
from typing import Dict, Any, Optional, Tuple

from coach_sequences.models.steps import MessageStep
from coach_sequences.utils.error_handling import SchedulingConfigError
from .timezone import to_local

logger = logging.getLogger(__name__)

PLACEHOLDER_PATTERN = re.compile(r'\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}')

# Fallbacks keep a rendered message readable when a fact is missing
PLACEHOLDER_DEFAULTS = {
    'clientName': 'there',
    'mealType': 'meal',
}


def select_template(content: Dict[str, str], locale: Optional[str], default_locale: str) -> Tuple[Optional[str], Optional[str]]:
    """Pick the template for a locale, falling back to the default locale, then any template."""
    if not content:
        return None, None
    for candidate in (locale, default_locale):
        if candidate and content.get(candidate):
            return candidate, content[candidate]
    fallback_locale = sorted(content)[0]
    return fallback_locale, content[fallback_locale]


def render_template(template: str, variables: Dict[str, Any]) -> str:
    """Replace ``{{name}}`` placeholders; unknown placeholders are left untouched."""
    def _replace(match):
        value = variables.get(match.group(1))
        if value is None or value == '':
            return match.group(0)
        return str(value)

    return PLACEHOLDER_PATTERN.sub(_replace, template or '')


def build_variables(facts: Dict[str, Any], now: datetime, tz) -> Dict[str, Any]:
    """Build placeholder values from a fact snapshot."""
    variables = dict(PLACEHOLDER_DEFAULTS)
    variables['date'] = to_local(now, tz).date().isoformat()

    for key, value in (facts or {}).items():
        if value is not None and value != '':
            variables[key] = value

    # Snake-case fact keys from tracking services map onto editor placeholders
    if facts and facts.get('client_name') and not facts.get('clientName'):
        variables['clientName'] = facts['client_name']
    if facts and facts.get('meal_type') and not facts.get('mealType'):
        variables['mealType'] = facts['meal_type']
    return variables


def _format_message(self, step: MessageStep, facts: Dict[str, Any], locale: Optional[str],
                    now: datetime, tz) -> Tuple[str, str]:
    """Render a message step for a client; returns (locale, text)."""
    chosen_locale, template = select_template(step.message_content, locale, self.default_locale)
    if template is None or not template.strip():
        raise SchedulingConfigError(f"Step {step.step_order}: message content is empty")

    if locale and chosen_locale != locale:
        logger.info(f"No '{locale}' template for step {step.step_order}, using '{chosen_locale}'")

    text = render_template(template, build_variables(facts, now, tz))
    if not text.strip():
        raise SchedulingConfigError(f"Step {step.step_order}: rendered message is empty")

    leftover = PLACEHOLDER_PATTERN.findall(text)
    if leftover:
        logger.warning(f"Unresolved placeholders in step {step.step_order}: {leftover}")

    return chosen_locale, text


def validate_message(message: str) -> Dict[str, Any]:
    """Validate a message template for common issues."""
    errors = []
    warnings = []

    if not message or not message.strip():
        errors.append("Message cannot be empty")
        return {'valid': False, 'errors': errors, 'warnings': warnings, 'placeholders': []}

    if len(message) > 1000:
        warnings.append("Message is very long (>1000 characters)")

    placeholders = PLACEHOLDER_PATTERN.findall(message)

    if message.count('{{') != message.count('}}'):
        errors.append("Unbalanced placeholder brackets")

    return {
        'valid': len(errors) == 0,
        'errors': errors,
        'warnings': warnings,
        'placeholders': placeholders
    }
