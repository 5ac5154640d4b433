import uuid
from datetime import datetime
from coach_sequences.models import db
from sqlalchemy import JSON, UniqueConstraint

ENROLLMENT_STATUSES = ('active', 'completed', 'cancelled')


def make_active_key(sequence_id, client_id):
    return f"{sequence_id}:{client_id}"


class Enrollment(db.Model):
    __tablename__ = 'sequence_enrollments'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    sequence_id = db.Column(db.String(36), db.ForeignKey('sequences.id'), nullable=False, index=True)
    client_id = db.Column(db.String(36), nullable=False, index=True)
    current_step_order = db.Column(db.Integer, nullable=True)  # None once terminal
    status = db.Column(db.String(20), nullable=False, default='active')
    # Status options: active, completed, cancelled
    enrolled_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    step_entered_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)  # Delay baseline
    next_run_at = db.Column(db.DateTime, nullable=True)
    trigger_payload = db.Column(JSON, nullable=True)  # Fact snapshot from the trigger
    visited_steps = db.Column(JSON, nullable=True)  # Step orders already left
    retry_count = db.Column(db.Integer, nullable=False, default=0)
    last_error = db.Column(db.Text, nullable=True)
    failure_reason = db.Column(db.Text, nullable=True)
    version = db.Column(db.Integer, nullable=False, default=0)
    # Set only while active; NULLs never collide so terminal rows are unconstrained
    active_key = db.Column(db.String(80), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    # Relationships
    events = db.relationship('SequenceEventLog', backref='enrollment', lazy=True, cascade='all, delete-orphan')

    # At most one active enrollment per (sequence, client)
    __table_args__ = (
        UniqueConstraint('active_key', name='uq_enrollment_active_pair'),
    )

    @property
    def is_active(self):
        return self.status == 'active'

    @property
    def facts(self):
        return dict(self.trigger_payload or {})

    def to_dict(self):
        return {
            'id': str(self.id),
            'sequence_id': str(self.sequence_id),
            'client_id': str(self.client_id),
            'current_step_order': self.current_step_order,
            'status': self.status,
            'enrolled_at': self.enrolled_at.isoformat() if self.enrolled_at else None,
            'step_entered_at': self.step_entered_at.isoformat() if self.step_entered_at else None,
            'next_run_at': self.next_run_at.isoformat() if self.next_run_at else None,
            'trigger_payload': self.trigger_payload,
            'retry_count': self.retry_count,
            'last_error': self.last_error,
            'failure_reason': self.failure_reason,
            'version': self.version,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None
        }

    def __repr__(self):
        return f'<Enrollment {self.client_id} in {self.sequence_id} ({self.status})>'
