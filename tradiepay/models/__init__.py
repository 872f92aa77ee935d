"""
Model package initializer.

Importing this package registers every ORM mapping on `Base.metadata`
for the app, Alembic and the test suite.
"""

from tradiepay.models import (  # noqa: F401
    invoice,
    profile,
    webhook_event,
)
