"""
Error taxonomy and logging helpers for the sequence engine.

Definition errors are rejected at save time, enrollment conflicts are left to
the caller, and runtime errors (conditions, scheduling, dispatch) are handled
inside the tick so a single enrollment never aborts the others.
"""

import logging
from typing import Dict, Any, Optional, List

logger = logging.getLogger(__name__)

# Standard error codes
ERROR_CODES = {
    'VALIDATION_ERROR': 'VALIDATION_ERROR',
    'NOT_FOUND': 'NOT_FOUND',
    'ALREADY_ENROLLED': 'ALREADY_ENROLLED',
    'CONDITION_ERROR': 'CONDITION_ERROR',
    'DISPATCH_ERROR': 'DISPATCH_ERROR',
    'SCHEDULING_CONFIG_ERROR': 'SCHEDULING_CONFIG_ERROR',
    'STALE_ENROLLMENT': 'STALE_ENROLLMENT',
    'INTERNAL_ERROR': 'INTERNAL_ERROR',
}


class SequenceEngineError(Exception):
    """Base class for all sequence engine errors."""
    code = 'INTERNAL_ERROR'

    def to_dict(self) -> Dict[str, Any]:
        return {'code': self.code, 'message': str(self)}


class ValidationError(SequenceEngineError):
    """A sequence definition was rejected at save time."""
    code = 'VALIDATION_ERROR'

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.errors = errors or [message]

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data['errors'] = self.errors
        return data


class NotFoundError(SequenceEngineError):
    code = 'NOT_FOUND'

    def __init__(self, resource: str, resource_id: Optional[str] = None):
        message = f"{resource} not found"
        if resource_id:
            message += f" with id: {resource_id}"
        super().__init__(message)
        self.resource = resource
        self.resource_id = resource_id


class AlreadyEnrolledError(SequenceEngineError):
    """An active enrollment already exists for the (sequence, client) pair."""
    code = 'ALREADY_ENROLLED'

    def __init__(self, sequence_id: str, client_id: str):
        super().__init__(f"Client {client_id} is already actively enrolled in sequence {sequence_id}")
        self.sequence_id = sequence_id
        self.client_id = client_id


class ConditionEvaluationError(SequenceEngineError):
    """A condition step could not be evaluated; callers fail closed."""
    code = 'CONDITION_ERROR'


class DispatchError(SequenceEngineError):
    """The messaging collaborator failed to deliver a message. Retryable."""
    code = 'DISPATCH_ERROR'

    def __init__(self, message, status_code=None, response_data=None):
        super().__init__(message)
        self.status_code = status_code
        self.response_data = response_data


class SchedulingConfigError(SequenceEngineError):
    """A message step's send window is inverted or malformed."""
    code = 'SCHEDULING_CONFIG_ERROR'


class StaleEnrollmentError(SequenceEngineError):
    """The enrollment changed between read and commit (compare-and-swap lost)."""
    code = 'STALE_ENROLLMENT'

    def __init__(self, enrollment_id: str, expected_version: int):
        super().__init__(f"Enrollment {enrollment_id} changed concurrently (expected version {expected_version})")
        self.enrollment_id = enrollment_id
        self.expected_version = expected_version


def log_error(error: Exception, context: Optional[Dict[str, Any]] = None):
    """
    Log an error with context information.

    Args:
        error: The exception that occurred
        context: Additional context information
    """
    error_info = {
        'error_type': type(error).__name__,
        'error_code': getattr(error, 'code', ERROR_CODES['INTERNAL_ERROR']),
        'error_message': str(error),
        'context': context or {}
    }

    logger.error(f"Error occurred: {error_info}")
