"""
Authentication application.

Provides the email-based User model. New users are matched to existing
billing customers by email so credits bought before sign-up are claimed.

Usage:
    from authentication.models import User
"""
