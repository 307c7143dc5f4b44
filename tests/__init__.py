"""Personalization Engine Test Suite

Test organization:
- unit/: Unit tests for individual modules
  - learning/: Event store, model builders, model store
  - adaptive/: Calibration, estimates, style, suggestions, notifications, rate limiting
- integration/: Engine and HTTP API workflows

Running tests:
    # All tests
    pytest

    # Specific area
    pytest tests/unit/adaptive/

    # Excluding integration tests
    pytest -m "not integration"
"""
