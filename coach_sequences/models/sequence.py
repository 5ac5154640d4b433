import uuid
from datetime import datetime
from coach_sequences.models import db
from coach_sequences.models.steps import parse_step
from sqlalchemy import JSON


class Sequence(db.Model):
    __tablename__ = 'sequences'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    coach_id = db.Column(db.String(36), nullable=True, index=True)  # Owning coach
    name = db.Column(db.String(255), nullable=False)
    trigger_event = db.Column(db.String(100), nullable=False, index=True)  # e.g. meal_missed
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    timezone = db.Column(db.String(50), nullable=False, default='UTC')  # IANA timezone format
    client_ids = db.Column(JSON, nullable=True)  # Empty means all eligible clients
    steps_json = db.Column(JSON, nullable=True)  # Step definitions as JSON
    owner_email = db.Column(db.String(255), nullable=True)  # Receives configuration alerts
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    # Relationships
    enrollments = db.relationship('Enrollment', backref='sequence', lazy=True, cascade='all, delete-orphan')

    @property
    def steps(self):
        """Get the steps as parsed objects, ordered by step_order."""
        return sorted((parse_step(step) for step in self.steps_json or []), key=lambda s: s.step_order)

    def get_step(self, step_order):
        """Get a step by its step_order, or None if it does not exist."""
        if step_order is None:
            return None
        for step in self.steps:
            if step.step_order == step_order:
                return step
        return None

    def next_step_order(self, step_order):
        """Get the next-higher step_order after the given one, or None at the end."""
        for step in self.steps:
            if step.step_order > step_order:
                return step.step_order
        return None

    def first_step_order(self):
        steps = self.steps
        return steps[0].step_order if steps else None

    def targets_client(self, client_id):
        """Check whether a client is eligible for this sequence."""
        if not self.client_ids:
            return True
        return str(client_id) in {str(cid) for cid in self.client_ids}

    def to_dict(self):
        return {
            'id': str(self.id),
            'coach_id': self.coach_id,
            'name': self.name,
            'trigger_event': self.trigger_event,
            'is_active': self.is_active,
            'timezone': self.timezone,
            'client_ids': list(self.client_ids or []),
            'steps': sorted(self.steps_json or [], key=lambda s: s.get('step_order', 0)),
            'owner_email': self.owner_email,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None
        }

    def __repr__(self):
        return f'<Sequence {self.name} ({self.trigger_event})>'
