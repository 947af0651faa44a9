from __future__ import annotations

"""RBAC helpers for the app and admin AI surfaces."""
from enum import Enum
from typing import Set, Callable
from fastapi import Depends, HTTPException, status

from .auth import User, get_current_user


class Permission(str, Enum):
    AI_USE = "ai:use"
    ADMIN = "admin:*"


ROLE_PERMISSIONS = {
    "user": {Permission.AI_USE},
    "admin": {Permission.ADMIN},
}


def _user_permissions(user: User) -> Set[Permission]:
    perms: Set[Permission] = set()
    for role in user.roles:
        perms |= ROLE_PERMISSIONS.get(role, set())
    return perms


def _is_authorized(user: User, required: Permission) -> bool:
    perms = _user_permissions(user)
    if Permission.ADMIN in perms:
        return True
    return required in perms


def require_permission(required: Permission) -> Callable[[User], User]:
    """FastAPI dependency to enforce a single permission on a route."""

    def dependency(user: User = Depends(get_current_user)) -> User:
        if not _is_authorized(user, required):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
        return user

    return dependency
