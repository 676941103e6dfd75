"""
Service layer for business logic.

This package contains the statement pipeline state machine, manual
transaction overrides, category management and the analytics change feed.
"""
