"""BlueCarbon Ledger - Data Models"""
from .db_models import (
    # Enums
    UserRole, AccountStatus, EcosystemType, SubmissionStatus, CreditStatus, AdminAction,
    # Tables
    UserDB, SubmissionDB, SubmissionAuditLogDB, CreditRecordDB,
    RegistryControlDB, AdminActionLogDB,
    ImmutableRecordError,
)

__all__ = [
    "UserRole", "AccountStatus", "EcosystemType", "SubmissionStatus", "CreditStatus", "AdminAction",
    "UserDB", "SubmissionDB", "SubmissionAuditLogDB", "CreditRecordDB",
    "RegistryControlDB", "AdminActionLogDB",
    "ImmutableRecordError",
]
