"""Automation sequence engine for coach/client messaging workflows."""

__version__ = '0.1.0'
