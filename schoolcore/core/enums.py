from enum import Enum


class UserRole(str, Enum):
    ADMIN = "admin"
    TEACHER = "teacher"
    STUDENT = "student"
    PARENT = "parent"


class TenantStatus(str, Enum):
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"


class ClassActionType(str, Enum):
    PROMOTED = "promoted"
    DEMOTED = "demoted"
    ADMITTED = "admitted"
    TRANSFERRED = "transferred"


class ScopeKind(str, Enum):
    ALL = "all"
    EXPLICIT = "explicit"
