"""
Testing package for the coach sequence engine.

This package contains:
- Unit tests for step definitions, timing and condition evaluation
- Store, tracker and runner tests against an in-memory database
- Test utilities and fixtures
"""
