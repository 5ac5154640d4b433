"""
Pytest configuration and fixtures for the coach sequence engine tests.

This module provides:
- Test database setup and teardown
- Flask app and CLI runner
- A fake messaging dispatcher
- Common sequence definitions
"""

import pytest
from datetime import datetime
from unittest.mock import Mock

from coach_sequences.main import create_app
from coach_sequences.extensions import db
from coach_sequences.services.sequence_store import SequenceStore
from coach_sequences.services.enrollment_tracker import EnrollmentTracker
from coach_sequences.services.sequence_engine import SequenceRunner
from coach_sequences.utils.error_handling import DispatchError

# Monday 1 January 2024
MONDAY = datetime(2024, 1, 1)


def at(hour, minute=0, day=0):
    """Build a naive UTC instant relative to Monday 1 January 2024."""
    return datetime(2024, 1, 1 + day, hour, minute)


class FakeDispatcher:
    """In-memory messaging collaborator that records sends and can be told to fail."""

    def __init__(self):
        self.sent = []
        self.failures_remaining = 0
        self.always_fail = False
        self.failing_clients = set()

    def send_message(self, client_id, rendered_text, locale):
        if self.always_fail or client_id in self.failing_clients or self.failures_remaining > 0:
            self.failures_remaining = max(0, self.failures_remaining - 1)
            raise DispatchError("gateway unavailable", status_code=503)
        self.sent.append({'client_id': client_id, 'text': rendered_text, 'locale': locale})
        return f"dispatch-{len(self.sent)}"


@pytest.fixture
def app():
    """Create and configure a new app instance for each test."""
    app = create_app('testing')

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()

@pytest.fixture
def cli_runner(app):
    """A test runner for the app's Click commands."""
    return app.test_cli_runner()

@pytest.fixture
def db_session(app):
    """Database session for tests."""
    yield db.session

@pytest.fixture
def dispatcher():
    return FakeDispatcher()

@pytest.fixture
def notifier():
    return Mock()

@pytest.fixture
def tracker(app):
    return EnrollmentTracker()

@pytest.fixture
def store(app, tracker):
    return SequenceStore(tracker=tracker)

@pytest.fixture
def runner(app, dispatcher, store, tracker, notifier):
    return SequenceRunner(dispatcher=dispatcher, store=store, tracker=tracker, notifier=notifier)

@pytest.fixture
def meal_missed_steps():
    """Reminder, then a check on meal completion, then a second reminder."""
    return [
        {
            'step_order': 1,
            'type': 'message',
            'message_content': {
                'en': 'Hi {{clientName}}, you missed your {{mealType}}.',
                'ar': 'مرحبا {{clientName}}'
            },
            'delay_days': 0,
            'send_window_start': '09:00',
            'send_window_end': '10:00',
            'send_days': ['any']
        },
        {
            'step_order': 2,
            'type': 'condition',
            'condition_field': 'meal_completed_within',
            'condition_operator': 'eq',
            'condition_value': '60',
            'true_branch': None,
            'false_branch': 3
        },
        {
            'step_order': 3,
            'type': 'message',
            'message_content': {'en': 'Reminder: please log your {{mealType}}.'},
            'delay_days': 0,
            'send_window_start': '18:00',
            'send_window_end': '20:00',
            'send_days': ['any']
        }
    ]

@pytest.fixture
def sample_sequence(store, meal_missed_steps):
    """Create an active meal_missed sequence for all clients."""
    return store.create({
        'name': 'Missed meal follow-up',
        'trigger_event': 'meal_missed',
        'coach_id': 'coach-1',
        'owner_email': 'coach@example.com',
        'steps': meal_missed_steps
    })
