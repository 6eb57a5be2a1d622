"""
ORM models. Importing this package registers every table on Base.metadata
(Alembic autogenerate and the test suite's create_all rely on that).
"""

from dsa_onboarding.models.application import Application
from dsa_onboarding.models.audit_log import AuditLog
from dsa_onboarding.models.user import User

__all__ = ["Application", "AuditLog", "User"]
