import uuid
from datetime import datetime
from coach_sequences.models import db


class SequenceEventLog(db.Model):
    __tablename__ = 'sequence_event_logs'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    enrollment_id = db.Column(db.String(36), db.ForeignKey('sequence_enrollments.id'), nullable=False, index=True)
    sequence_id = db.Column(db.String(36), nullable=False)
    client_id = db.Column(db.String(36), nullable=False)
    step_order = db.Column(db.Integer, nullable=True)
    step_type = db.Column(db.String(20), nullable=True)  # message, condition
    result = db.Column(db.String(30), nullable=False)
    # Results: sent, skipped_inactive, condition_true, condition_false, error
    dispatch_id = db.Column(db.String(255), nullable=True)
    error_message = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': str(self.id),
            'enrollment_id': str(self.enrollment_id),
            'sequence_id': str(self.sequence_id),
            'client_id': str(self.client_id),
            'step_order': self.step_order,
            'step_type': self.step_type,
            'result': self.result,
            'dispatch_id': self.dispatch_id,
            'error_message': self.error_message,
            'created_at': self.created_at.isoformat() if self.created_at else None
        }

    def __repr__(self):
        return f'<SequenceEventLog {self.result} step {self.step_order} for Enrollment {self.enrollment_id}>'
