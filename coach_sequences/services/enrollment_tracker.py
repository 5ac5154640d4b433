"""
Enrollment tracking.

Every mutation is a single-row compare-and-swap on ``Enrollment.version``:
callers pass the version they read, and the write only applies if nobody else
advanced the enrollment in between. A lost race raises StaleEnrollmentError.
"""

import logging
from datetime import datetime
from typing import Dict, Any, List, Optional

from sqlalchemy.exc import IntegrityError

from coach_sequences.extensions import db
from coach_sequences.models import Sequence, Enrollment
from coach_sequences.models.enrollment import make_active_key
from coach_sequences.utils.error_handling import AlreadyEnrolledError, NotFoundError, StaleEnrollmentError

logger = logging.getLogger(__name__)


class EnrollmentTracker:
    """Creates and mutates enrollment records."""

    def get(self, enrollment_id: str) -> Enrollment:
        enrollment = db.session.get(Enrollment, enrollment_id)
        if enrollment is None:
            raise NotFoundError('Enrollment', enrollment_id)
        return enrollment

    def get_active(self, sequence_id: str, client_id: str) -> Optional[Enrollment]:
        return Enrollment.query.filter_by(
            active_key=make_active_key(sequence_id, client_id)
        ).first()

    def list(self, sequence_id: Optional[str] = None, client_id: Optional[str] = None,
             status: Optional[str] = None) -> List[Enrollment]:
        query = Enrollment.query
        if sequence_id:
            query = query.filter_by(sequence_id=sequence_id)
        if client_id:
            query = query.filter_by(client_id=str(client_id))
        if status:
            query = query.filter_by(status=status)
        return query.order_by(Enrollment.created_at.asc()).all()

    def enroll(self, sequence_id: str, client_id: str, now: Optional[datetime] = None,
               facts: Optional[Dict[str, Any]] = None) -> Enrollment:
        """
        Enroll a client in a sequence.

        Args:
            sequence_id: Sequence to enroll into
            client_id: Client being enrolled
            now: Enrollment instant (naive UTC); the delay baseline of the first step
            facts: Fact snapshot from the trigger

        Returns:
            The new enrollment, positioned on the lowest step_order

        Raises:
            AlreadyEnrolledError: If the pair already has an active enrollment
        """
        now = now or datetime.utcnow()
        client_id = str(client_id)

        sequence = db.session.get(Sequence, sequence_id)
        if sequence is None:
            raise NotFoundError('Sequence', sequence_id)

        if self.get_active(sequence_id, client_id):
            raise AlreadyEnrolledError(sequence_id, client_id)

        first_step = sequence.first_step_order()
        active = first_step is not None

        enrollment = Enrollment(
            sequence_id=sequence_id,
            client_id=client_id,
            current_step_order=first_step,
            status='active' if active else 'completed',
            enrolled_at=now,
            step_entered_at=now,
            trigger_payload=dict(facts or {}),
            visited_steps=[],
            retry_count=0,
            version=0,
            active_key=make_active_key(sequence_id, client_id) if active else None,
            created_at=now,
            updated_at=now
        )
        db.session.add(enrollment)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise AlreadyEnrolledError(sequence_id, client_id)

        if active:
            logger.info(f"Enrolled client {client_id} in sequence {sequence_id} at step {first_step}")
        else:
            logger.info(f"Sequence {sequence_id} has no steps; enrollment for client {client_id} completed")
        return enrollment

    def _compare_and_swap(self, enrollment: Enrollment, values: Dict[str, Any],
                          expected_version: Optional[int] = None) -> Enrollment:
        expected = enrollment.version if expected_version is None else expected_version
        values = dict(values)
        values['version'] = expected + 1
        values.setdefault('updated_at', datetime.utcnow())

        updated = Enrollment.query.filter_by(
            id=enrollment.id,
            version=expected
        ).update(values, synchronize_session=False)

        if updated != 1:
            db.session.rollback()
            raise StaleEnrollmentError(enrollment.id, expected)

        db.session.commit()
        db.session.refresh(enrollment)
        return enrollment

    def advance(self, enrollment: Enrollment, next_step_order: Optional[int], now: Optional[datetime] = None,
                expected_version: Optional[int] = None) -> Enrollment:
        """Move the pointer to ``next_step_order``; None completes the enrollment."""
        now = now or datetime.utcnow()

        visited = list(enrollment.visited_steps or [])
        if enrollment.current_step_order is not None and enrollment.current_step_order not in visited:
            visited.append(enrollment.current_step_order)

        values = {
            'visited_steps': visited,
            'retry_count': 0,
            'last_error': None,
            'next_run_at': None,
            'updated_at': now
        }
        if next_step_order is None:
            values.update({
                'current_step_order': None,
                'status': 'completed',
                'active_key': None
            })
        else:
            values.update({
                'current_step_order': next_step_order,
                'step_entered_at': now
            })

        enrollment = self._compare_and_swap(enrollment, values, expected_version)
        if next_step_order is None:
            logger.info(f"Enrollment {enrollment.id} completed")
        else:
            logger.info(f"Enrollment {enrollment.id} advanced to step {next_step_order}")
        return enrollment

    def cancel(self, enrollment: Enrollment, reason: Optional[str] = None,
               expected_version: Optional[int] = None) -> Enrollment:
        """Cancel an enrollment; terminal enrollments are returned unchanged."""
        if enrollment.status != 'active':
            logger.info(f"Enrollment {enrollment.id} already {enrollment.status}; nothing to cancel")
            return enrollment

        enrollment = self._compare_and_swap(enrollment, {
            'status': 'cancelled',
            'active_key': None,
            'next_run_at': None,
            'failure_reason': reason
        }, expected_version)
        logger.info(f"Enrollment {enrollment.id} cancelled: {reason or 'no reason given'}")
        return enrollment

    def record_failure(self, enrollment: Enrollment, error: str,
                       expected_version: Optional[int] = None) -> Enrollment:
        """Count a failed dispatch attempt; the pointer stays on the step."""
        return self._compare_and_swap(enrollment, {
            'retry_count': (enrollment.retry_count or 0) + 1,
            'last_error': error
        }, expected_version)

    def update_schedule(self, enrollment: Enrollment, next_run_at: Optional[datetime] = None,
                        last_error: Optional[str] = None, expected_version: Optional[int] = None) -> Enrollment:
        """Record when the current step is next due, or why it is paused."""
        return self._compare_and_swap(enrollment, {
            'next_run_at': next_run_at,
            'last_error': last_error
        }, expected_version)

    def record_facts(self, enrollment: Enrollment, facts: Dict[str, Any],
                     expected_version: Optional[int] = None) -> Enrollment:
        """Merge fresh facts into the enrollment's snapshot."""
        payload = dict(enrollment.trigger_payload or {})
        payload.update(facts or {})
        return self._compare_and_swap(enrollment, {'trigger_payload': payload}, expected_version)
