"""
Scheduler services package.

This package contains organized scheduler functionality:
- core.py: Main scheduler class, thread lifecycle and tick mutual exclusion
"""

from .core import SequenceScheduler, get_sequence_scheduler

# Export the main scheduler class and function
__all__ = ['SequenceScheduler', 'get_sequence_scheduler']
