"""Enum definitions for application constants."""

from enum import Enum


class Role(str, Enum):
    """
    Organization roles, highest privilege first.

    - OWNER: billing and organization lifecycle; cannot be removed if last
    - ADMIN: member management, webhooks
    - MANAGER: invites, projects
    - MEMBER: day-to-day task work
    - VIEWER: read-only
    """
    OWNER = "OWNER"
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    MEMBER = "MEMBER"
    VIEWER = "VIEWER"

    @classmethod
    def has_value(cls, value: str) -> bool:
        """Check if value is a valid role."""
        return value in cls._value2member_map_


class MembershipStatus(str, Enum):
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"


class Plan(str, Enum):
    FREE = "FREE"
    STARTER = "STARTER"
    PROFESSIONAL = "PROFESSIONAL"
    ENTERPRISE = "ENTERPRISE"


class OrganizationStatus(str, Enum):
    TRIAL = "TRIAL"
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    CANCELLED = "CANCELLED"


class InvitationStatus(str, Enum):
    """PENDING moves to ACCEPTED or EXPIRED; both are terminal."""
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    EXPIRED = "EXPIRED"


class TaskStatus(str, Enum):
    TODO = "TODO"
    IN_PROGRESS = "IN_PROGRESS"
    IN_REVIEW = "IN_REVIEW"
    DONE = "DONE"
    BLOCKED = "BLOCKED"


class TaskPriority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


class RecurrenceFrequency(str, Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"


class NotificationType(str, Enum):
    TASK_ASSIGNED = "TASK_ASSIGNED"
    TASK_COMPLETED = "TASK_COMPLETED"
    COMMENT_ADDED = "COMMENT_ADDED"
    MENTION = "MENTION"
    PROJECT_INVITE = "PROJECT_INVITE"
    DUE_DATE_REMINDER = "DUE_DATE_REMINDER"


class Channel(str, Enum):
    """Notification delivery channels."""
    IN_APP = "in-app"
    EMAIL = "email"
    PUSH = "push"


class ProjectStatus(str, Enum):
    ACTIVE = "ACTIVE"
    ARCHIVED = "ARCHIVED"


# =============================================================================
# Role groups
# =============================================================================

ROLES_CAN_INVITE = frozenset({Role.OWNER, Role.ADMIN, Role.MANAGER})
ROLES_CAN_REMOVE_MEMBERS = frozenset({Role.OWNER, Role.ADMIN})
ROLES_CAN_MANAGE_WEBHOOKS = frozenset({Role.OWNER, Role.ADMIN})
ROLES_CAN_MANAGE_PROJECTS = frozenset({Role.OWNER, Role.ADMIN, Role.MANAGER})
ROLES_CAN_EDIT_TASKS = frozenset({Role.OWNER, Role.ADMIN, Role.MANAGER, Role.MEMBER})
