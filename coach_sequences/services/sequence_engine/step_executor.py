"""
Step execution functionality.

This module contains functionality for:
- Condition step evaluation and branch resolution
- Message step dispatch through the messaging collaborator
- Dispatch failure and retry-cap handling
- Scheduling error handling
- Step event logging
"""

import logging
from datetime import datetime
from typing import Dict, Any, Optional

from coach_sequences.extensions import db
from coach_sequences.models import Sequence, Enrollment, SequenceEventLog
from coach_sequences.models.steps import MessageStep, ConditionStep
from coach_sequences.services.condition_evaluator import evaluate
from coach_sequences.utils.error_handling import DispatchError, SchedulingConfigError, StaleEnrollmentError, log_error

logger = logging.getLogger(__name__)


def _log_event(self, enrollment: Enrollment, step, result: str,
               dispatch_id: Optional[str] = None, error_message: Optional[str] = None,
               now: Optional[datetime] = None):
    """Record a step outcome in the sequence event log."""
    try:
        event = SequenceEventLog(
            enrollment_id=enrollment.id,
            sequence_id=enrollment.sequence_id,
            client_id=enrollment.client_id,
            step_order=step.step_order if step is not None else None,
            step_type=step.type if step is not None else None,
            result=result,
            dispatch_id=dispatch_id,
            error_message=error_message,
            created_at=now or datetime.utcnow()
        )
        db.session.add(event)
        db.session.commit()
    except Exception as e:
        logger.error(f"Failed to log '{result}' event for enrollment {enrollment.id}: {str(e)}")
        db.session.rollback()


def _transition(self, sequence: Sequence, enrollment: Enrollment, next_step_order: Optional[int],
                now: datetime, expected_version: int) -> str:
    """Move an enrollment along a declared transition, refusing to revisit steps."""
    if next_step_order is not None and sequence.get_step(next_step_order) is None:
        logger.warning(
            f"Sequence {sequence.id}: step {next_step_order} does not exist; "
            f"ending enrollment {enrollment.id}"
        )
        next_step_order = None

    visited = set(enrollment.visited_steps or [])
    visited.add(enrollment.current_step_order)
    if next_step_order is not None and next_step_order in visited:
        reason = f"branch cycle detected: step {next_step_order} was already visited"
        logger.error(f"Enrollment {enrollment.id}: {reason}")
        self.tracker.cancel(enrollment, reason=reason, expected_version=expected_version)
        return 'cancelled'

    self.tracker.advance(enrollment, next_step_order, now, expected_version)
    return 'completed' if next_step_order is None else 'advanced'


def _execute_condition_step(self, sequence: Sequence, enrollment: Enrollment, step: ConditionStep,
                            now: datetime, expected_version: int) -> str:
    """Evaluate a condition step and follow the chosen branch."""
    facts = self._get_facts(enrollment)
    result = evaluate(step, facts)
    target = step.true_branch if result else step.false_branch

    logger.info(
        f"Enrollment {enrollment.id}: condition {step.condition_field} {step.condition_operator} "
        f"{step.condition_value!r} -> {result}, next step {target}"
    )

    outcome = self._transition(sequence, enrollment, target, now, expected_version)
    self._log_event(enrollment, step, 'condition_true' if result else 'condition_false', now=now)
    return outcome


def _skip_inactive_step(self, sequence: Sequence, enrollment: Enrollment, step: MessageStep,
                        now: datetime, expected_version: int) -> str:
    """Advance past an inactive message step without dispatching it."""
    logger.info(f"Enrollment {enrollment.id}: step {step.step_order} is inactive, skipping")
    outcome = self._transition(sequence, enrollment, sequence.next_step_order(step.step_order), now, expected_version)
    self._log_event(enrollment, step, 'skipped_inactive', now=now)
    return outcome


def _dispatch_message_step(self, sequence: Sequence, enrollment: Enrollment, step: MessageStep,
                           now: datetime, tz, expected_version: int) -> str:
    """Send a due message step and advance the pointer on success."""
    facts = self._get_facts(enrollment)
    try:
        locale, text = self._format_message(step, facts, self._resolve_locale(enrollment.client_id, facts), now, tz)
    except SchedulingConfigError as e:
        return self._handle_scheduling_error(sequence, enrollment, step, str(e), now, expected_version)

    # No database transaction is held across the network call
    db.session.commit()
    try:
        dispatch_id = self._get_dispatcher().send_message(enrollment.client_id, text, locale)
    except DispatchError as e:
        return self._handle_dispatch_failure(sequence, enrollment, step, str(e), now, expected_version)
    except Exception as e:
        log_error(e, {'enrollment_id': enrollment.id, 'step_order': step.step_order})
        return self._handle_dispatch_failure(sequence, enrollment, step, f"Unexpected dispatch error: {str(e)}",
                                             now, expected_version)

    try:
        self._transition(sequence, enrollment, sequence.next_step_order(step.step_order), now, expected_version)
    except StaleEnrollmentError:
        logger.warning(
            f"Enrollment {enrollment.id} changed while dispatching step {step.step_order} "
            f"(dispatch {dispatch_id}); leaving it to the concurrent writer"
        )
        self._log_event(enrollment, step, 'sent', dispatch_id=dispatch_id, now=now)
        raise

    self._log_event(enrollment, step, 'sent', dispatch_id=dispatch_id, now=now)
    logger.info(f"Enrollment {enrollment.id}: dispatched step {step.step_order} ({dispatch_id})")
    return 'dispatched'


def _handle_dispatch_failure(self, sequence: Sequence, enrollment: Enrollment, step: MessageStep,
                             error: str, now: datetime, expected_version: int) -> str:
    """Keep the enrollment on the step for retry, or cancel it once the retry cap is exceeded."""
    attempts = (enrollment.retry_count or 0) + 1
    logger.error(f"Dispatch failed for enrollment {enrollment.id} step {step.step_order} "
                 f"(attempt {attempts}): {error}")

    if attempts > self.retry_cap:
        reason = f"dispatch failed {attempts} times at step {step.step_order}: {error}"
        self.tracker.cancel(enrollment, reason=reason, expected_version=expected_version)
        self._log_event(enrollment, step, 'error', error_message=error, now=now)
        self._notify('send_enrollment_cancelled_notification', sequence, enrollment, reason)
        return 'cancelled'

    self.tracker.record_failure(enrollment, error, expected_version)
    self._log_event(enrollment, step, 'error', error_message=error, now=now)
    return 'retrying'


def _handle_scheduling_error(self, sequence: Sequence, enrollment: Enrollment, step: MessageStep,
                             error: str, now: datetime, expected_version: int) -> str:
    """Pause the enrollment on a misconfigured step and tell the owner once."""
    if enrollment.last_error == error:
        return 'paused'

    logger.error(f"Scheduling configuration error for enrollment {enrollment.id}: {error}")
    self.tracker.update_schedule(enrollment, next_run_at=None, last_error=error, expected_version=expected_version)
    self._log_event(enrollment, step, 'error', error_message=error, now=now)
    self._notify('send_scheduling_error_notification', sequence, enrollment, error)
    return 'paused'
