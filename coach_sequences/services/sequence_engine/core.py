"""
Core sequence runner functionality.

This module contains the main runner class and core functionality:
- SequenceRunner class
- Trigger intake and enrollment
- The per-enrollment state machine
- Tick orchestration across enrollments
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Dict, List, Optional, Any, Callable

from flask import current_app

from coach_sequences.config import Config
from coach_sequences.extensions import db
from coach_sequences.models import Sequence, Enrollment
from coach_sequences.models.steps import MessageStep, ConditionStep
from coach_sequences.services.enrollment_tracker import EnrollmentTracker
from coach_sequences.utils.error_handling import (
    AlreadyEnrolledError, SchedulingConfigError, ValidationError, log_error
)
from .window_scheduler import next_dispatch_time

logger = logging.getLogger(__name__)

# Example sequence definition for a missed meal
EXAMPLE_SEQUENCE = [
    {
        "step_order": 1,
        "type": "message",
        "message_content": {
            "en": "Hi {{clientName}}, we noticed you missed your {{mealType}} today. Everything okay?",
            "ar": "مرحبا {{clientName}}، لاحظنا أنك فوت وجبة {{mealType}} اليوم. هل كل شيء على ما يرام؟"
        },
        "delay_days": 0,
        "send_window_start": "09:00",
        "send_window_end": "10:00",
        "send_days": ["any"]
    },
    {
        "step_order": 2,
        "type": "condition",
        "condition_field": "meal_completed_within",
        "condition_operator": "eq",
        "condition_value": "60",
        "true_branch": None,
        "false_branch": 3
    },
    {
        "step_order": 3,
        "type": "message",
        "message_content": {"en": "Just a reminder to log your {{mealType}}, {{clientName}}."},
        "delay_days": 0,
        "send_window_start": "18:00",
        "send_window_end": "20:00",
        "send_days": ["any"]
    }
]


class SequenceRunner:
    """Runs automation sequences: enrolls clients on triggers and advances enrollments each tick."""

    def __init__(self, dispatcher=None, store=None, tracker=None,
                 fact_provider: Optional[Callable[[str], Dict[str, Any]]] = None,
                 locale_resolver: Optional[Callable[[str], Optional[str]]] = None,
                 notifier=None, retry_cap: Optional[int] = None, max_hops: Optional[int] = None,
                 retrigger_policy: Optional[str] = None, default_locale: Optional[str] = None,
                 default_timezone: Optional[str] = None):
        """
        Initialize the sequence runner.

        Args:
            dispatcher: Messaging collaborator; defaults to HttpMessageDispatcher
            store: SequenceStore; created lazily
            tracker: EnrollmentTracker
            fact_provider: Optional callable returning fresh facts for a client; its
                values override the trigger snapshot at condition and render time
            locale_resolver: Optional callable returning a client's preferred locale
            notifier: Owner notification service; defaults to the Resend service
            retry_cap: Failed dispatch attempts tolerated before cancelling
            max_hops: Transitions allowed per enrollment per tick
            retrigger_policy: 'ignore' or 'restart' for already-enrolled clients
            default_locale: Locale used when none is known for a client
            default_timezone: Timezone for sequences without one
        """
        self.dispatcher = dispatcher  # Initialize lazily
        self.store = store
        self.tracker = tracker or EnrollmentTracker()
        self.fact_provider = fact_provider
        self.locale_resolver = locale_resolver
        self.notifier = notifier
        self.retry_cap = retry_cap if retry_cap is not None else self._config('DISPATCH_RETRY_CAP')
        self.max_hops = max_hops if max_hops is not None else self._config('MAX_HOPS_PER_TICK')
        self.retrigger_policy = retrigger_policy or self._config('RETRIGGER_POLICY')
        self.default_locale = default_locale or self._config('DEFAULT_LOCALE')
        self.default_timezone = default_timezone or self._config('DEFAULT_TIMEZONE')

    @staticmethod
    def _config(name):
        """Get a setting from Flask config, falling back to the base defaults."""
        try:
            if current_app:
                return current_app.config.get(name, getattr(Config, name))
        except RuntimeError:
            # No application context
            pass
        return getattr(Config, name)

    def _get_dispatcher(self):
        """Get dispatcher instance (lazy initialization)."""
        if self.dispatcher is None:
            from coach_sequences.services.dispatch import HttpMessageDispatcher
            self.dispatcher = HttpMessageDispatcher()
        return self.dispatcher

    def _get_store(self):
        """Get sequence store instance (lazy initialization)."""
        if self.store is None:
            from coach_sequences.services.sequence_store import SequenceStore
            self.store = SequenceStore(tracker=self.tracker)
        return self.store

    def _notify(self, method_name: str, *args):
        """Send an owner notification without letting notification failures leak into the tick."""
        try:
            if self.notifier is None:
                from coach_sequences.services.notifications import get_notification_service
                self.notifier = get_notification_service()
            getattr(self.notifier, method_name)(*args)
        except Exception as e:
            logger.error(f"Failed to send {method_name}: {str(e)}")

    def _get_facts(self, enrollment: Enrollment) -> Dict[str, Any]:
        """Get the facts for an enrollment: trigger snapshot overlaid with fresh facts."""
        facts = enrollment.facts
        if self.fact_provider is not None:
            try:
                facts.update(self.fact_provider(enrollment.client_id) or {})
            except Exception as e:
                logger.error(f"Fact provider failed for client {enrollment.client_id}, using snapshot: {str(e)}")
        return facts

    def _resolve_locale(self, client_id: str, facts: Dict[str, Any]) -> str:
        if self.locale_resolver is not None:
            try:
                locale = self.locale_resolver(client_id)
                if locale:
                    return locale
            except Exception as e:
                logger.error(f"Locale resolver failed for client {client_id}: {str(e)}")
        return facts.get('locale') or self.default_locale

    # Trigger intake

    def on_trigger_event(self, event_name: str, client_id: str, fact_snapshot: Optional[Dict[str, Any]] = None,
                         now: Optional[datetime] = None) -> List[Enrollment]:
        """
        Handle a domain event that may start sequences for a client.

        Returns:
            Enrollments created by this event
        """
        now = now or datetime.utcnow()
        client_id = str(client_id)
        created = []

        sequences = self._get_store().find_by_trigger(event_name)
        logger.info(f"Trigger '{event_name}' for client {client_id} matched {len(sequences)} active sequences")

        for sequence in sequences:
            if not sequence.targets_client(client_id):
                logger.info(f"Client {client_id} is not targeted by sequence {sequence.id}")
                continue

            try:
                created.append(self.tracker.enroll(sequence.id, client_id, now, fact_snapshot))
            except AlreadyEnrolledError:
                if self.retrigger_policy == 'restart':
                    existing = self.tracker.get_active(sequence.id, client_id)
                    if existing is not None:
                        self.tracker.cancel(existing, reason='restarted by trigger')
                    created.append(self.tracker.enroll(sequence.id, client_id, now, fact_snapshot))
                    logger.info(f"Restarted enrollment of client {client_id} in sequence {sequence.id}")
                else:
                    logger.info(f"Client {client_id} already enrolled in sequence {sequence.id}; ignoring trigger")

        return created

    def enroll_client(self, sequence_id: str, client_id: str, facts: Optional[Dict[str, Any]] = None,
                      now: Optional[datetime] = None) -> Enrollment:
        """Manually enroll a client; raises AlreadyEnrolledError if already active."""
        sequence = self._get_store().get(sequence_id)
        if not sequence.is_active:
            raise ValidationError(f"Sequence {sequence_id} is not active")
        return self.tracker.enroll(sequence.id, client_id, now or datetime.utcnow(), facts)

    # Tick processing

    def process_enrollment(self, enrollment_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Advance one enrollment as far as it can go at ``now``."""
        now = now or datetime.utcnow()
        outcome = 'waiting'
        dispatched = 0
        hops = 0

        while hops < self.max_hops:
            enrollment = self.tracker.get(enrollment_id)
            if enrollment.status != 'active':
                if hops == 0:
                    outcome = enrollment.status
                break

            expected_version = enrollment.version
            sequence = db.session.get(Sequence, enrollment.sequence_id)
            if sequence is None:
                self.tracker.cancel(enrollment, reason='sequence no longer exists', expected_version=expected_version)
                outcome = 'cancelled'
                break

            step = sequence.get_step(enrollment.current_step_order)
            if step is None:
                logger.warning(f"Enrollment {enrollment.id} points at missing step "
                               f"{enrollment.current_step_order}; completing")
                self.tracker.advance(enrollment, None, now, expected_version)
                outcome = 'completed'
                break

            if isinstance(step, ConditionStep):
                outcome = self._execute_condition_step(sequence, enrollment, step, now, expected_version)
            elif isinstance(step, MessageStep):
                if not step.is_active:
                    outcome = self._skip_inactive_step(sequence, enrollment, step, now, expected_version)
                else:
                    tz = self._get_sequence_timezone(sequence)
                    try:
                        if not step.message_content:
                            raise SchedulingConfigError(f"Step {step.step_order}: message content is empty")
                        dispatch_at = next_dispatch_time(step, enrollment.enrolled_at, enrollment.step_entered_at,
                                                         now, tz)
                    except SchedulingConfigError as e:
                        outcome = self._handle_scheduling_error(sequence, enrollment, step, str(e), now,
                                                                expected_version)
                        break

                    if dispatch_at > now:
                        if enrollment.next_run_at != dispatch_at or enrollment.last_error:
                            self.tracker.update_schedule(enrollment, next_run_at=dispatch_at,
                                                         expected_version=expected_version)
                        if hops == 0:
                            outcome = 'waiting'
                        break

                    outcome = self._dispatch_message_step(sequence, enrollment, step, now, tz, expected_version)
                    if outcome != 'dispatched':
                        break
                    dispatched += 1
            else:
                raise TypeError(f"Unknown step kind: {type(step).__name__}")

            hops += 1
            if outcome in ('completed', 'cancelled'):
                break
        else:
            logger.warning(f"Enrollment {enrollment_id} reached {self.max_hops} transitions this tick; "
                           f"continuing next tick")

        enrollment = self.tracker.get(enrollment_id)
        if enrollment.status != 'active':
            outcome = enrollment.status

        return {
            'enrollment_id': enrollment_id,
            'outcome': outcome,
            'dispatched': dispatched,
            'hops': hops
        }

    def _process_safely(self, enrollment_id: str, now: datetime, app=None) -> Dict[str, Any]:
        """Process one enrollment, containing any failure to that enrollment."""
        if app is not None:
            with app.app_context():
                try:
                    return self._process_safely(enrollment_id, now)
                finally:
                    db.session.remove()

        try:
            return self.process_enrollment(enrollment_id, now)
        except Exception as e:
            db.session.rollback()
            log_error(e, {'enrollment_id': enrollment_id})
            return {'enrollment_id': enrollment_id, 'outcome': 'error', 'dispatched': 0, 'hops': 0,
                    'error': str(e)}

    def run_tick(self, now: Optional[datetime] = None, workers: int = 1, app=None) -> Dict[str, Any]:
        """
        Run one pass over every active enrollment.

        Enrollments of deactivated sequences are included so they drain; each
        enrollment is handled by exactly one worker.

        Args:
            now: Tick instant (naive UTC)
            workers: Worker pool size; values above 1 require ``app``
            app: Flask app whose context each worker pushes

        Returns:
            Summary counts for the tick
        """
        now = now or datetime.utcnow()
        enrollment_ids = [row.id for row in db.session.query(Enrollment.id).filter_by(status='active').all()]
        db.session.commit()

        if workers > 1 and app is not None and len(enrollment_ids) > 1:
            with ThreadPoolExecutor(max_workers=workers) as executor:
                results = list(executor.map(lambda eid: self._process_safely(eid, now, app), enrollment_ids))
        else:
            results = [self._process_safely(eid, now) for eid in enrollment_ids]

        summary = {
            'processed': len(results),
            'dispatched': sum(r['dispatched'] for r in results),
            'completed': 0,
            'cancelled': 0,
            'waiting': 0,
            'errors': 0
        }
        for result in results:
            outcome = result['outcome']
            if outcome in ('completed', 'cancelled'):
                summary[outcome] += 1
            elif outcome == 'error':
                summary['errors'] += 1
            else:
                # Still active: waiting on a window, paused, retrying or mid-sequence
                summary['waiting'] += 1

        logger.info(f"Tick at {now.isoformat()} finished: {summary}")
        return summary

    # Import functionality from other modules
    from .timezone import _get_sequence_timezone
    from .message_formatter import _format_message
    from .step_executor import (
        _log_event, _transition, _execute_condition_step, _skip_inactive_step,
        _dispatch_message_step, _handle_dispatch_failure, _handle_scheduling_error
    )
