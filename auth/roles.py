# Role-Based Access Control for Collabflow
# User types and the workflow permissions each of them holds

from enum import Enum
from typing import List, Set

from database.models import UserType


class Permission(str, Enum):
    """Fine-grained permissions for the proposal workflow."""

    # Brand permissions
    REVIEW_PROPOSALS = "review_proposals"
    MANAGE_PAYMENTS = "manage_payments"
    REVIEW_CONTENT = "review_content"
    VIEW_AUDIT_TRAIL = "view_audit_trail"

    # Influencer permissions
    SUBMIT_PROPOSALS = "submit_proposals"
    SUBMIT_CONTENT = "submit_content"
    COMPLETE_MILESTONES = "complete_milestones"

    # Admin permissions
    VIEW_ALL_TRANSACTIONS = "view_all_transactions"


# Role to permissions mapping
ROLE_PERMISSIONS: dict[UserType, Set[Permission]] = {
    UserType.BRAND: {
        Permission.REVIEW_PROPOSALS,
        Permission.MANAGE_PAYMENTS,
        Permission.REVIEW_CONTENT,
        Permission.VIEW_AUDIT_TRAIL,
    },

    UserType.INFLUENCER: {
        Permission.SUBMIT_PROPOSALS,
        Permission.SUBMIT_CONTENT,
        Permission.COMPLETE_MILESTONES,
    },

    UserType.ADMIN: {
        # Admin has ALL permissions
        *Permission.__members__.values()
    },
}


def get_permissions_for_role(user_type: UserType) -> Set[Permission]:
    """Get all permissions for a given user type."""
    return ROLE_PERMISSIONS.get(user_type, set())


def has_permission(user_type: UserType, permission: Permission) -> bool:
    return permission in get_permissions_for_role(user_type)


def has_any_permission(user_type: UserType, permissions: List[Permission]) -> bool:
    user_permissions = get_permissions_for_role(user_type)
    return any(p in user_permissions for p in permissions)
