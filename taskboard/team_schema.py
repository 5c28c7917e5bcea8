"""Team and membership records for multi-tenancy."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping

from taskboard.todo_schema import parse_timestamp

TEAM_ROLES = ("owner", "admin", "member", "collaborator")
MEMBER_STATUSES = ("active", "invited", "suspended")
SUBSCRIPTION_TIERS = ("starter", "professional", "enterprise")

PERMISSION_KEYS = (
    "can_create_tasks",
    "can_delete_tasks",
    "can_view_strategic_goals",
    "can_invite_users",
    "can_manage_templates",
    "can_manage_team_settings",
    "can_transfer_ownership",
    "can_delete_team",
    "can_manage_roles",
)

_OWNER_ONLY = {"can_manage_team_settings", "can_transfer_ownership", "can_delete_team"}

DEFAULT_PERMISSIONS: dict[str, dict[str, bool]] = {
    "owner": {key: True for key in PERMISSION_KEYS},
    "admin": {key: key not in _OWNER_ONLY for key in PERMISSION_KEYS},
    "member": {key: key == "can_create_tasks" for key in PERMISSION_KEYS},
    "collaborator": {key: False for key in PERMISSION_KEYS},
}

SUBSCRIPTION_LIMITS = {
    "starter": {"users": 10, "storage_mb": 1024},
    "professional": {"users": 50, "storage_mb": 5120},
    "enterprise": {"users": 999, "storage_mb": 51200},
}


@dataclass(frozen=True)
class Team:
    id: str
    name: str
    slug: str
    primary_color: str = "#0033A0"
    secondary_color: str = "#72B5E8"
    subscription_tier: str = "starter"
    max_users: int = 10
    max_storage_mb: int = 1024
    is_active: bool = True
    logo_url: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Team":
        tier = row.get("subscription_tier") or "starter"
        limits = SUBSCRIPTION_LIMITS.get(tier, SUBSCRIPTION_LIMITS["starter"])
        return cls(
            id=str(row["id"]),
            name=str(row.get("name") or ""),
            slug=str(row.get("slug") or ""),
            primary_color=row.get("primary_color") or "#0033A0",
            secondary_color=row.get("secondary_color") or "#72B5E8",
            subscription_tier=tier,
            max_users=int(row.get("max_users") or limits["users"]),
            max_storage_mb=int(row.get("max_storage_mb") or limits["storage_mb"]),
            is_active=bool(row.get("is_active", True)),
            logo_url=row.get("logo_url"),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "primary_color": self.primary_color,
            "secondary_color": self.secondary_color,
            "subscription_tier": self.subscription_tier,
            "max_users": self.max_users,
            "max_storage_mb": self.max_storage_mb,
            "is_active": self.is_active,
            "logo_url": self.logo_url,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass(frozen=True)
class TeamMembership:
    """The signed-in user's membership in one team."""

    team_id: str
    team_name: str
    team_slug: str
    role: str
    permissions: Mapping[str, bool] = field(default_factory=dict)
    is_default: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "team_id": self.team_id,
            "team_name": self.team_name,
            "team_slug": self.team_slug,
            "role": self.role,
            "permissions": dict(self.permissions),
            "is_default": self.is_default,
        }


@dataclass(frozen=True)
class TeamInvitation:
    id: str
    team_id: str
    email: str
    role: str
    token: str
    expires_at: str
    accepted_at: str | None = None


def resolve_permissions(role: str, raw: Mapping[str, Any] | None) -> dict[str, bool]:
    """Role defaults overlaid with any explicit per-member grants."""
    permissions = dict(DEFAULT_PERMISSIONS.get(role, DEFAULT_PERMISSIONS["collaborator"]))
    for key, value in (raw or {}).items():
        if key in permissions:
            permissions[key] = value is True
    return permissions


def has_permission(permissions: Mapping[str, bool] | None, permission: str) -> bool:
    if not permissions:
        return False
    return permissions.get(permission) is True


def is_team_owner(membership: TeamMembership | None) -> bool:
    if membership is None:
        return False
    return membership.role == "owner"


def is_team_admin(membership: TeamMembership | None) -> bool:
    if membership is None:
        return False
    return membership.role in {"owner", "admin"}


def can_view_goals(membership: TeamMembership | None) -> bool:
    if membership is None:
        return False
    if is_team_admin(membership):
        return True
    return has_permission(membership.permissions, "can_view_strategic_goals")


def can_invite_users(membership: TeamMembership | None) -> bool:
    if membership is None:
        return False
    if is_team_admin(membership):
        return True
    return has_permission(membership.permissions, "can_invite_users")


def generate_team_slug(name: str) -> str:
    """Generate a URL-friendly slug from a team name."""
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower())
    return slug.strip("-")[:50]


def is_invitation_valid(invitation: TeamInvitation, now: datetime | None = None) -> bool:
    if invitation.accepted_at:
        return False
    expires = parse_timestamp(invitation.expires_at)
    if expires is None:
        return False
    current = now or datetime.now(timezone.utc)
    if current.tzinfo is not None:
        current = current.astimezone(timezone.utc).replace(tzinfo=None)
    return expires > current
