"""Team (tenant) resolution, selection and team-scoped change subscription."""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Mapping

from taskboard.datastore import Channel, ChangeEvent, Datastore
from taskboard.errors import UNDEFINED_TABLE, DatastoreError, TaskboardError
from taskboard.preferences import CURRENT_TEAM_KEY, PreferenceStore
from taskboard.store import TodoStore
from taskboard.team_schema import (
    Team,
    TeamMembership,
    is_team_admin,
    is_team_owner,
    resolve_permissions,
)

logger = logging.getLogger(__name__)

MAX_LOAD_RETRIES = 3
LOAD_TEAMS_ERROR = "Failed to load teams"
LOAD_DETAILS_ERROR = "Failed to load team details"
NOT_A_MEMBER_ERROR = "You are not a member of this team"

TeamChangeListener = Callable[["str | None"], None]


class _Schema:
    """Table and column names for the team tables (current or legacy)."""

    def __init__(self, members: str, teams: str, team_key: str, default_key: str) -> None:
        self.members = members
        self.teams = teams
        self.team_key = team_key
        self.default_key = default_key


TEAM_SCHEMA = _Schema("team_members", "teams", "team_id", "is_default_team")
LEGACY_SCHEMA = _Schema("agency_members", "agencies", "agency_id", "is_default_agency")


class TeamContext:
    """The signed-in user's teams and the currently selected one.

    When multi-tenancy is disabled every permission check passes and no team
    is ever selected.
    """

    def __init__(
        self,
        datastore: Datastore,
        store: TodoStore,
        preferences: PreferenceStore,
        *,
        multi_tenancy: bool = True,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._datastore = datastore
        self._store = store
        self._preferences = preferences
        self.multi_tenancy = multi_tenancy
        self._sleep = sleep
        self._lock = threading.RLock()
        self._schema = TEAM_SCHEMA
        self._listeners: list[TeamChangeListener] = []
        self._channel: Channel | None = None
        self._subscription_key: tuple[str, str | None] | None = None

        self.user_id: str | None = None
        self.teams: tuple[TeamMembership, ...] = ()
        self.current_team: Team | None = None
        self.current_membership: TeamMembership | None = None
        self.is_loading = True
        self.error: str | None = None

    # -- derived -----------------------------------------------------------

    @property
    def current_team_id(self) -> str | None:
        return self.current_team.id if self.current_team is not None else None

    @property
    def current_role(self) -> str | None:
        return self.current_membership.role if self.current_membership is not None else None

    @property
    def current_permissions(self) -> dict[str, bool] | None:
        if self.current_membership is None:
            return None
        return dict(self.current_membership.permissions)

    @property
    def is_team_owner(self) -> bool:
        return is_team_owner(self.current_membership)

    @property
    def is_team_admin(self) -> bool:
        return is_team_admin(self.current_membership)

    @property
    def channel_name(self) -> str | None:
        if self._channel is None:
            return None
        return self._channel.name

    def has_permission(self, permission: str) -> bool:
        if not self.multi_tenancy:
            return True
        if self.current_membership is None or not self.current_membership.permissions:
            return False
        return self.current_membership.permissions.get(permission) is True

    def team_scope(self) -> dict[str, str]:
        if not self.multi_tenancy or self.current_team is None:
            return {}
        return {"team_id": self.current_team.id}

    def to_dict(self) -> dict[str, Any]:
        return {
            "current_team": self.current_team.to_dict() if self.current_team else None,
            "current_team_id": self.current_team_id,
            "current_role": self.current_role,
            "current_permissions": self.current_permissions,
            "teams": [membership.to_dict() for membership in self.teams],
            "is_loading": self.is_loading,
            "error": self.error,
            "is_multi_tenancy_enabled": self.multi_tenancy,
            "is_team_owner": self.is_team_owner,
            "is_team_admin": self.is_team_admin,
        }

    # -- listeners ---------------------------------------------------------

    def on_team_change(self, listener: TeamChangeListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _set_current(self, team: Team | None, membership: TeamMembership | None) -> None:
        previous_id = self.current_team_id
        self.current_team = team
        self.current_membership = membership
        self._resubscribe()
        if self.current_team_id != previous_id:
            logger.info(
                "User %s switched team %s -> %s", self.user_id, previous_id, self.current_team_id
            )
            for listener in list(self._listeners):
                listener(self.current_team_id)

    # -- loading -----------------------------------------------------------

    def set_user(self, user_id: str | None) -> None:
        with self._lock:
            self.user_id = user_id
            if not self.multi_tenancy:
                self.is_loading = False
                return
            if user_id is None:
                self.is_loading = False
                self.teams = ()
                self._set_current(None, None)
                return
            self.load_user_teams()

    def _fetch_memberships(self, schema: _Schema) -> list[TeamMembership]:
        rows = (
            self._datastore.table(schema.members)
            .select("*")
            .eq("user_id", self.user_id)
            .eq("status", "active")
            .execute()
        )
        team_ids = [str(row[schema.team_key]) for row in rows]
        teams: dict[str, Mapping[str, Any]] = {}
        if team_ids:
            for team_row in (
                self._datastore.table(schema.teams).select("*").in_("id", team_ids).execute()
            ):
                teams[str(team_row["id"])] = team_row

        memberships = []
        for row in rows:
            team = teams.get(str(row[schema.team_key]))
            if team is None or not team.get("is_active"):
                continue
            role = row.get("role") or "member"
            memberships.append(
                TeamMembership(
                    team_id=str(team["id"]),
                    team_name=str(team.get("name") or ""),
                    team_slug=str(team.get("slug") or ""),
                    role=role,
                    permissions=resolve_permissions(role, row.get("permissions")),
                    is_default=bool(row.get(schema.default_key)),
                )
            )
        return memberships

    def _load_memberships(self) -> list[TeamMembership]:
        try:
            memberships = self._fetch_memberships(TEAM_SCHEMA)
            self._schema = TEAM_SCHEMA
            return memberships
        except DatastoreError as exc:
            if exc.code != UNDEFINED_TABLE:
                raise
        logger.info("Team tables missing, falling back to legacy agency tables")
        memberships = self._fetch_memberships(LEGACY_SCHEMA)
        self._schema = LEGACY_SCHEMA
        return memberships

    def load_user_teams(self) -> bool:
        """Load active memberships, retrying with exponential backoff."""
        with self._lock:
            if self.user_id is None:
                return False
            self.is_loading = True
            self.error = None
            try:
                for attempt in range(MAX_LOAD_RETRIES + 1):
                    try:
                        memberships = self._load_memberships()
                        break
                    except DatastoreError as exc:
                        logger.error(
                            "Failed to load teams for %s (attempt %d): %s",
                            self.user_id,
                            attempt + 1,
                            exc,
                        )
                        if attempt == MAX_LOAD_RETRIES:
                            self.error = LOAD_TEAMS_ERROR
                            return False
                        self._sleep(float(2**attempt))
                self.teams = tuple(memberships)
                self._select_after_load()
                return True
            finally:
                self.is_loading = False

    def _select_after_load(self) -> None:
        if not self.teams:
            self._set_current(None, None)
            return
        if self.current_team is not None:
            membership = self._find_membership(self.current_team.id)
            if membership is not None:
                # Re-sync permissions from the fresh list.
                self.current_membership = membership
                self._resubscribe()
                return
        saved_id = self._preferences.get(CURRENT_TEAM_KEY)
        membership = self._find_membership(saved_id) if saved_id else None
        if membership is None:
            membership = next((item for item in self.teams if item.is_default), self.teams[0])
        self.load_team_details(membership.team_id, membership)

    def _find_membership(self, team_id: str | None) -> TeamMembership | None:
        return next((item for item in self.teams if item.team_id == team_id), None)

    def _fetch_team_row(self, table: str, team_id: str) -> dict[str, Any]:
        return (
            self._datastore.table(table)
            .select("*")
            .eq("id", team_id)
            .eq("is_active", True)
            .single()
            .execute()
        )

    def load_team_details(self, team_id: str, membership: TeamMembership) -> bool:
        with self._lock:
            try:
                try:
                    row = self._fetch_team_row(TEAM_SCHEMA.teams, team_id)
                except DatastoreError as exc:
                    if exc.code != UNDEFINED_TABLE:
                        raise
                    row = self._fetch_team_row(LEGACY_SCHEMA.teams, team_id)
            except DatastoreError as exc:
                logger.error("Failed to load team details for %s: %s", team_id, exc)
                self.error = LOAD_DETAILS_ERROR
                return False
            self._preferences.set(CURRENT_TEAM_KEY, team_id)
            self._set_current(Team.from_row(row), membership)
            return True

    def switch_team(self, team_id: str) -> bool:
        with self._lock:
            membership = self._find_membership(team_id)
            if membership is None:
                self.error = NOT_A_MEMBER_ERROR
                raise TaskboardError(
                    "TEAM_NOT_FOUND",
                    NOT_A_MEMBER_ERROR,
                    {"team_id": team_id},
                )
            self._store.set_todos([])
            self._store.set_projects([])
            self._store.set_tags([])
            self._store.clear_selection()
            self._store.reset_filters()
            self._store.set_loading(True)
            self._store.set_error(None)
            return self.load_team_details(team_id, membership)

    def refresh_teams(self) -> bool:
        with self._lock:
            if self.user_id is None or not self.multi_tenancy:
                return False
            return self.load_user_teams()

    def retry(self) -> bool:
        with self._lock:
            self.error = None
            return self.refresh_teams()

    # -- change feed -------------------------------------------------------

    def _resubscribe(self) -> None:
        if not self.multi_tenancy or self.user_id is None:
            self._remove_channel()
            return
        key = (self.user_id, self.current_team_id)
        if self._channel is not None and key == self._subscription_key:
            return
        self._remove_channel()

        name = (
            f"team-updates-{self.current_team_id}-{self.user_id}"
            if self.current_team_id
            else f"team-updates-global-{self.user_id}"
        )
        channel = self._datastore.channel(name)
        channel.on(
            "*",
            self._schema.members,
            self._handle_membership_change,
            filter=("user_id", self.user_id),
        )
        team_filter = ("id", self.current_team_id) if self.current_team_id else None
        channel.on("UPDATE", self._schema.teams, self._handle_team_update, filter=team_filter)
        self._channel = channel
        self._subscription_key = key
        channel.subscribe()

    def _remove_channel(self) -> None:
        channel, self._channel = self._channel, None
        self._subscription_key = None
        if channel is not None:
            self._datastore.remove_channel(channel)

    def _handle_membership_change(self, event: ChangeEvent) -> None:
        self.refresh_teams()

    def _handle_team_update(self, event: ChangeEvent) -> None:
        if event.new is None:
            return
        with self._lock:
            if self.current_team is not None and str(event.new.get("id")) == self.current_team.id:
                self.current_team = Team.from_row(event.new)

    def close(self) -> None:
        with self._lock:
            self._remove_channel()
            self._listeners.clear()
