# Import db from extensions to use the same instance
from coach_sequences.extensions import db

# Import all models to ensure they are registered with SQLAlchemy
from coach_sequences.models.sequence import Sequence
from coach_sequences.models.enrollment import Enrollment, ENROLLMENT_STATUSES
from coach_sequences.models.event_log import SequenceEventLog
from coach_sequences.models.steps import MessageStep, ConditionStep, parse_step, step_to_dict

__all__ = [
    'db', 'Sequence', 'Enrollment', 'ENROLLMENT_STATUSES', 'SequenceEventLog',
    'MessageStep', 'ConditionStep', 'parse_step', 'step_to_dict'
]
