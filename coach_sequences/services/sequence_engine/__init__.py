"""
Sequence engine services package.

This package contains organized sequence engine functionality:
- core.py: Main sequence runner class, trigger intake and tick orchestration
- window_scheduler.py: Delay, send-day and send-window timing for message steps
- timezone.py: Sequence timezone handling
- message_formatter.py: Template selection and personalization
- step_executor.py: Condition branching, message dispatch and failure handling
"""

from .core import SequenceRunner, EXAMPLE_SEQUENCE
from .window_scheduler import next_dispatch_time

# Export the main runner class, the timing function and the example sequence
__all__ = ['SequenceRunner', 'EXAMPLE_SEQUENCE', 'next_dispatch_time']
