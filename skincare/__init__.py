"""Core domain logic for the skin-care evaluation tracker.

This package contains the business logic and domain models,
isolated from external services for easy testing and reasoning.
"""
