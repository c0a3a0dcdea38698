# Authentication and Authorization guards for Collabflow
# FastAPI dependencies for access control on workflow endpoints

from fastapi import HTTPException, status, Depends

from database.models import User
from auth.roles import UserType, Permission, has_any_permission
from auth.dependencies import get_current_user


class AuthError(HTTPException):
    """Custom exception for authentication/authorization errors."""

    def __init__(self, detail: str, status_code: int = status.HTTP_403_FORBIDDEN):
        super().__init__(status_code=status_code, detail=detail)


def require_user_type(*allowed_types: UserType):
    """
    Dependency that requires the user to be one of the specified types.

    Usage:
        @router.post("/proposals")
        async def submit(user: User = Depends(require_user_type(UserType.INFLUENCER))):
            ...
    """
    async def dependency(current_user: User = Depends(get_current_user)) -> User:
        user_type = get_user_type(current_user)

        # Admin can access everything
        if user_type == UserType.ADMIN:
            return current_user

        if user_type not in allowed_types:
            allowed_names = ", ".join(t.value for t in allowed_types)
            raise AuthError(detail=f"This endpoint requires user type: {allowed_names}")

        return current_user

    return dependency


def require_permission(*permissions: Permission):
    """Dependency that requires the user to hold any of the given permissions."""
    async def dependency(current_user: User = Depends(get_current_user)) -> User:
        if not has_any_permission(get_user_type(current_user), list(permissions)):
            raise AuthError(detail="You don't have permission to perform this action")
        return current_user

    return dependency


def require_admin():
    async def dependency(current_user: User = Depends(get_current_user)) -> User:
        if get_user_type(current_user) != UserType.ADMIN:
            raise AuthError(detail="Admin access required")
        return current_user

    return dependency


def get_user_type(user: User) -> UserType:
    """Extract UserType from a User whether the column holds an enum or a raw string."""
    val = user.user_type.value if hasattr(user.user_type, "value") else user.user_type
    try:
        return UserType(str(val).lower())
    except ValueError:
        return UserType.BRAND
