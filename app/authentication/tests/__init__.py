"""
Tests for authentication app.

- test_managers.py: UserManager tests
- test_signals.py: Billing linkage signal tests
"""
