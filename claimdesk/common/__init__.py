"""Common module — shared utilities for ClaimDesk."""

from claimdesk.common.audit import AuditTrail, create_audit_entry
from claimdesk.common.constants import (
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    ClaimStatus,
    LimitSource,
    ResetCycle,
    UserRole,
)
from claimdesk.common.exceptions import (
    AppException,
    ForbiddenException,
    InfrastructureException,
    InvalidTransitionException,
    LimitExceededException,
    NotFoundException,
    ValidationException,
    register_exception_handlers,
)
from claimdesk.common.pagination import (
    PaginatedResponse,
    PaginationMeta,
    PaginationParams,
    paginate,
)

__all__ = [
    # Audit
    "AuditTrail",
    "create_audit_entry",
    # Constants / Enums
    "ClaimStatus",
    "LimitSource",
    "ResetCycle",
    "UserRole",
    "DEFAULT_PAGE_SIZE",
    "MAX_PAGE_SIZE",
    # Exceptions
    "AppException",
    "ForbiddenException",
    "InfrastructureException",
    "InvalidTransitionException",
    "LimitExceededException",
    "NotFoundException",
    "ValidationException",
    "register_exception_handlers",
    # Pagination
    "PaginatedResponse",
    "PaginationMeta",
    "PaginationParams",
    "paginate",
]
