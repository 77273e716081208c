"""Permission catalog and the static role -> permission mapping.

Permissions are closed-world `resource:action` strings. There are no wildcards
and no inheritance between roles: every role set below is an explicit
enumeration, so adding a resource means adding its strings here and to each
role that should hold them.
"""

from enum import Enum
from typing import Dict, FrozenSet, Iterable, List


class Role(str, Enum):
    USER = "User"
    LIBRARIAN = "Librarian"
    ADMIN = "Admin"
    SUPER_ADMIN = "Super Admin"


# Dashboard
DASHBOARD_READ = "dashboard:read"

# Books
BOOKS_READ = "books:read"
BOOKS_CREATE = "books:create"
BOOKS_UPDATE = "books:update"
BOOKS_DELETE = "books:delete"

# Borrowers
BORROWERS_READ = "borrowers:read"
BORROWERS_CREATE = "borrowers:create"
BORROWERS_UPDATE = "borrowers:update"
BORROWERS_DELETE = "borrowers:delete"

# Lendings
LENDINGS_READ = "lendings:read"
LENDINGS_CREATE = "lendings:create"
LENDINGS_UPDATE = "lendings:update"
LENDINGS_DELETE = "lendings:delete"

# Reports
REPORTS_READ = "reports:read"
REPORTS_EXPORT = "reports:export"

# Users
USERS_READ = "users:read"
USERS_CREATE = "users:create"
USERS_UPDATE = "users:update"
USERS_DELETE = "users:delete"

# Notifications
NOTIFICATIONS_READ = "notifications:read"
NOTIFICATIONS_CREATE = "notifications:create"
NOTIFICATIONS_UPDATE = "notifications:update"
NOTIFICATIONS_DELETE = "notifications:delete"

# API docs
API_DOCS_READ = "api_docs:read"

# Case management
CASES_READ = "cases:read"
CASES_CREATE = "cases:create"
CASES_UPDATE = "cases:update"
CASES_DELETE = "cases:delete"

# Document management
DOCUMENTS_READ = "documents:read"
DOCUMENTS_CREATE = "documents:create"
DOCUMENTS_UPDATE = "documents:update"
DOCUMENTS_DELETE = "documents:delete"


ALL_PERMISSIONS: FrozenSet[str] = frozenset({
    DASHBOARD_READ,
    BOOKS_READ, BOOKS_CREATE, BOOKS_UPDATE, BOOKS_DELETE,
    BORROWERS_READ, BORROWERS_CREATE, BORROWERS_UPDATE, BORROWERS_DELETE,
    LENDINGS_READ, LENDINGS_CREATE, LENDINGS_UPDATE, LENDINGS_DELETE,
    REPORTS_READ, REPORTS_EXPORT,
    USERS_READ, USERS_CREATE, USERS_UPDATE, USERS_DELETE,
    NOTIFICATIONS_READ, NOTIFICATIONS_CREATE, NOTIFICATIONS_UPDATE, NOTIFICATIONS_DELETE,
    API_DOCS_READ,
    CASES_READ, CASES_CREATE, CASES_UPDATE, CASES_DELETE,
    DOCUMENTS_READ, DOCUMENTS_CREATE, DOCUMENTS_UPDATE, DOCUMENTS_DELETE,
})

SUPER_ADMIN_PERMISSIONS: FrozenSet[str] = ALL_PERMISSIONS

ADMIN_PERMISSIONS: FrozenSet[str] = frozenset({
    DASHBOARD_READ,
    BOOKS_READ, BOOKS_CREATE, BOOKS_UPDATE, BOOKS_DELETE,
    BORROWERS_READ, BORROWERS_CREATE, BORROWERS_UPDATE, BORROWERS_DELETE,
    LENDINGS_READ, LENDINGS_CREATE, LENDINGS_UPDATE, LENDINGS_DELETE,
    REPORTS_READ, REPORTS_EXPORT,
    USERS_READ, USERS_CREATE, USERS_UPDATE, USERS_DELETE,
    API_DOCS_READ,
    CASES_READ, CASES_CREATE, CASES_UPDATE, CASES_DELETE,
    DOCUMENTS_READ, DOCUMENTS_CREATE, DOCUMENTS_UPDATE, DOCUMENTS_DELETE,
})

LIBRARIAN_PERMISSIONS: FrozenSet[str] = frozenset({
    DASHBOARD_READ,
    BOOKS_READ, BOOKS_CREATE, BOOKS_UPDATE,
    BORROWERS_READ, BORROWERS_CREATE, BORROWERS_UPDATE,
    LENDINGS_READ, LENDINGS_CREATE, LENDINGS_UPDATE,
    REPORTS_READ,
    CASES_READ,
    DOCUMENTS_READ,
})

DEFAULT_USER_PERMISSIONS: FrozenSet[str] = frozenset({
    DASHBOARD_READ,
    BOOKS_READ,
    BORROWERS_READ,
    LENDINGS_READ,
    NOTIFICATIONS_READ,
    CASES_READ,
    DOCUMENTS_READ,
})

ROLE_PERMISSIONS: Dict[Role, FrozenSet[str]] = {
    Role.SUPER_ADMIN: SUPER_ADMIN_PERMISSIONS,
    Role.ADMIN: ADMIN_PERMISSIONS,
    Role.LIBRARIAN: LIBRARIAN_PERMISSIONS,
    Role.USER: DEFAULT_USER_PERMISSIONS,
}


def permissions_for_role(role) -> FrozenSet[str]:
    """Return the default permission set of `role`.

    Accepts a `Role` or its string value. Anything unrecognised gets the
    plain `User` defaults.
    """
    try:
        return ROLE_PERMISSIONS[Role(role)]
    except ValueError:
        return DEFAULT_USER_PERMISSIONS


def has_all(granted: Iterable[str], required: Iterable[str]) -> bool:
    """True when every required permission is literally present in `granted`."""
    granted_set = set(granted)
    return all(perm in granted_set for perm in required)


def is_known_permission(permission: str) -> bool:
    return permission in ALL_PERMISSIONS


def unknown_permissions(permissions: Iterable[str]) -> List[str]:
    return sorted({p for p in permissions if not is_known_permission(p)})


def effective_permissions(role, explicit: Iterable[str]) -> FrozenSet[str]:
    # explicit grants may only ever extend the role defaults
    return frozenset(explicit or ()) | permissions_for_role(role)
