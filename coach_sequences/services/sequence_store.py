"""
Sequence definition store.

This module contains functionality for:
- Creating, reading, updating and deleting sequences
- Validating step definitions on write
- Applying the deactivation policy to in-flight enrollments
"""

import logging
from datetime import datetime
from typing import Dict, List, Any, Optional

from flask import current_app

from coach_sequences.extensions import db
from coach_sequences.models import Sequence
from coach_sequences.models.steps import MessageStep, ConditionStep, parse_step, step_to_dict
from coach_sequences.services.sequence_engine.message_formatter import validate_message
from coach_sequences.utils.error_handling import ValidationError, NotFoundError

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ('name', 'trigger_event', 'is_active', 'timezone', 'client_ids', 'coach_id', 'owner_email')


class SequenceStore:
    """CRUD access to sequence definitions."""

    def __init__(self, deactivation_policy: Optional[str] = None, tracker=None):
        self._deactivation_policy = deactivation_policy
        self.tracker = tracker

    @property
    def deactivation_policy(self) -> str:
        if self._deactivation_policy:
            return self._deactivation_policy
        try:
            return current_app.config.get('DEACTIVATION_POLICY', 'drain')
        except RuntimeError:
            # No application context
            return 'drain'

    def _get_tracker(self):
        """Get enrollment tracker instance (lazy initialization)."""
        if self.tracker is None:
            from coach_sequences.services.enrollment_tracker import EnrollmentTracker
            self.tracker = EnrollmentTracker()
        return self.tracker

    def validate_sequence(self, steps: List[Dict[str, Any]]) -> Dict[str, Any]:
        """Validate a list of step definitions."""
        errors = []
        warnings = []
        parsed = []

        if not steps:
            warnings.append("Sequence has no steps; enrollments will complete immediately")
            return {'valid': True, 'errors': errors, 'warnings': warnings, 'steps': []}

        if not isinstance(steps, list):
            return {'valid': False, 'errors': ["Steps must be a list"], 'warnings': warnings, 'steps': []}

        for i, raw_step in enumerate(steps):
            try:
                parsed.append(parse_step(raw_step))
            except ValidationError as e:
                errors.append(f"Entry {i+1}: {str(e)}")

        seen = set()
        for step in parsed:
            if step.step_order in seen:
                errors.append(f"Duplicate step_order {step.step_order}")
            seen.add(step.step_order)

        for step in parsed:
            if isinstance(step, MessageStep):
                if step.send_window_end <= step.send_window_start:
                    warnings.append(
                        f"Step {step.step_order}: send window end is not after start; "
                        f"enrollments will pause on this step"
                    )
                if not step.message_content:
                    errors.append(f"Step {step.step_order}: message content is empty")
                for locale, template in step.message_content.items():
                    result = validate_message(template)
                    errors.extend(f"Step {step.step_order} ({locale}): {e}" for e in result['errors'])
                    warnings.extend(f"Step {step.step_order} ({locale}): {w}" for w in result['warnings'])
            elif isinstance(step, ConditionStep):
                for branch_name in ('true_branch', 'false_branch'):
                    target = getattr(step, branch_name)
                    if target is not None and target not in seen:
                        warnings.append(
                            f"Step {step.step_order}: {branch_name} {target} does not exist; "
                            f"the branch will end the sequence"
                        )
            else:
                raise TypeError(f"Unknown step kind: {type(step).__name__}")

        return {
            'valid': len(errors) == 0,
            'errors': errors,
            'warnings': warnings,
            'steps': sorted(parsed, key=lambda s: s.step_order)
        }

    def _normalised_steps(self, steps) -> List[Dict[str, Any]]:
        result = self.validate_sequence(steps or [])
        if not result['valid']:
            raise ValidationError("Invalid sequence definition", result['errors'])
        for warning in result['warnings']:
            logger.info(f"Sequence validation warning: {warning}")
        return [step_to_dict(step) for step in result['steps']]

    def _validate_fields(self, data: Dict[str, Any], partial: bool = False):
        errors = []
        for field_name in ('name', 'trigger_event'):
            if partial and field_name not in data:
                continue
            value = data.get(field_name)
            if value is not None and not isinstance(value, str):
                errors.append(f"{field_name} must be a string")
            elif not (value or '').strip():
                errors.append(f"{field_name} is required")
        if 'client_ids' in data and data['client_ids'] is not None and not isinstance(data['client_ids'], (list, tuple, set)):
            errors.append("client_ids must be a list")
        if errors:
            raise ValidationError("Invalid sequence definition", errors)

    def create(self, data: Dict[str, Any]) -> Sequence:
        """Create a new sequence."""
        self._validate_fields(data)
        now = datetime.utcnow()

        sequence = Sequence(
            coach_id=data.get('coach_id'),
            name=data['name'].strip(),
            trigger_event=data['trigger_event'].strip(),
            is_active=data.get('is_active', True) is not False,
            timezone=data.get('timezone') or 'UTC',
            client_ids=[str(cid) for cid in data.get('client_ids') or []],
            steps_json=self._normalised_steps(data.get('steps')),
            owner_email=data.get('owner_email'),
            created_at=now,
            updated_at=now
        )
        db.session.add(sequence)
        db.session.commit()

        logger.info(f"Created sequence {sequence.id} '{sequence.name}' on trigger '{sequence.trigger_event}'")
        return sequence

    def get(self, sequence_id: str) -> Sequence:
        sequence = db.session.get(Sequence, sequence_id)
        if sequence is None:
            raise NotFoundError('Sequence', sequence_id)
        return sequence

    def list(self, coach_id: Optional[str] = None, trigger_event: Optional[str] = None,
             active_only: bool = False) -> List[Sequence]:
        query = Sequence.query
        if coach_id:
            query = query.filter_by(coach_id=coach_id)
        if trigger_event:
            query = query.filter_by(trigger_event=trigger_event)
        if active_only:
            query = query.filter_by(is_active=True)
        return query.order_by(Sequence.created_at.asc()).all()

    def find_by_trigger(self, trigger_event: str) -> List[Sequence]:
        """Get active sequences listening for a trigger event."""
        return self.list(trigger_event=trigger_event, active_only=True)

    def update(self, sequence_id: str, data: Dict[str, Any]) -> Sequence:
        """Update an existing sequence."""
        sequence = self.get(sequence_id)
        self._validate_fields(data, partial=True)

        was_active = sequence.is_active

        if 'steps' in data:
            sequence.steps_json = self._normalised_steps(data['steps'])
        for field_name in EDITABLE_FIELDS:
            if field_name not in data:
                continue
            value = data[field_name]
            if field_name in ('name', 'trigger_event'):
                value = value.strip()
            elif field_name == 'is_active':
                value = value is not False
            elif field_name == 'client_ids':
                value = [str(cid) for cid in value or []]
            elif field_name == 'timezone':
                value = value or 'UTC'
            setattr(sequence, field_name, value)

        sequence.updated_at = datetime.utcnow()
        db.session.commit()
        logger.info(f"Updated sequence {sequence.id}")

        if was_active and not sequence.is_active:
            self._on_deactivated(sequence)

        return sequence

    def _on_deactivated(self, sequence: Sequence):
        if self.deactivation_policy != 'cancel':
            logger.info(f"Sequence {sequence.id} deactivated; in-flight enrollments will drain")
            return

        tracker = self._get_tracker()
        active = tracker.list(sequence_id=sequence.id, status='active')
        for enrollment in active:
            tracker.cancel(enrollment, reason='sequence deactivated')
        logger.info(f"Sequence {sequence.id} deactivated; cancelled {len(active)} enrollments")

    def delete(self, sequence_id: str):
        """Delete a sequence together with its enrollments and their logs."""
        sequence = self.get(sequence_id)
        # Enrollments and their event logs cascade
        db.session.delete(sequence)
        db.session.commit()
        logger.info(f"Deleted sequence {sequence_id}")
