"""
Unit tests for Utility Functions.

This module tests the error taxonomy and error logging helpers.
"""

import logging
import pytest

from coach_sequences.utils.error_handling import (
    ERROR_CODES,
    SequenceEngineError,
    ValidationError,
    NotFoundError,
    AlreadyEnrolledError,
    ConditionEvaluationError,
    DispatchError,
    SchedulingConfigError,
    StaleEnrollmentError,
    log_error
)


class TestErrorCodes:
    """Test error code constants."""

    def test_error_codes_structure(self):
        """Test that every error class maps to a known code."""
        for error_class in (ValidationError, NotFoundError, AlreadyEnrolledError, ConditionEvaluationError,
                            DispatchError, SchedulingConfigError, StaleEnrollmentError):
            assert error_class.code in ERROR_CODES
            assert issubclass(error_class, SequenceEngineError)


class TestErrors:
    """Test error classes."""

    def test_validation_error_collects_messages(self):
        error = ValidationError("Invalid sequence definition", ["name is required", "Duplicate step_order 1"])

        data = error.to_dict()
        assert data['code'] == 'VALIDATION_ERROR'
        assert data['message'] == 'Invalid sequence definition'
        assert data['errors'] == ["name is required", "Duplicate step_order 1"]

    def test_validation_error_defaults_to_message(self):
        assert ValidationError("bad step").errors == ["bad step"]

    def test_not_found_error(self):
        error = NotFoundError('Sequence', 'seq-1')
        assert str(error) == 'Sequence not found with id: seq-1'
        assert str(NotFoundError('Sequence')) == 'Sequence not found'

    def test_already_enrolled_error(self):
        error = AlreadyEnrolledError('seq-1', 'c1')
        assert error.sequence_id == 'seq-1'
        assert 'c1' in str(error)

    def test_dispatch_error(self):
        error = DispatchError("gateway down", status_code=502, response_data='Bad Gateway')
        assert error.status_code == 502
        assert error.response_data == 'Bad Gateway'
        assert error.to_dict() == {'code': 'DISPATCH_ERROR', 'message': 'gateway down'}

    def test_stale_enrollment_error(self):
        error = StaleEnrollmentError('enr-1', 4)
        assert error.expected_version == 4
        assert 'expected version 4' in str(error)


class TestLogError:
    """Test error logging helper."""

    def test_log_error_includes_context(self, caplog):
        with caplog.at_level(logging.ERROR, logger='coach_sequences.utils.error_handling'):
            log_error(DispatchError("gateway down"), {'enrollment_id': 'enr-1'})

        assert 'DISPATCH_ERROR' in caplog.text
        assert 'enr-1' in caplog.text

    def test_log_error_plain_exception(self, caplog):
        with caplog.at_level(logging.ERROR, logger='coach_sequences.utils.error_handling'):
            log_error(ValueError("boom"))

        assert 'INTERNAL_ERROR' in caplog.text
        assert 'ValueError' in caplog.text
