"""Per-user composition of store, team context and data services."""

from __future__ import annotations

import logging
import threading
from typing import Callable

from taskboard.activity import ActivityLogger
from taskboard.ai_parse import AnthropicClient
from taskboard.bulk_actions import BulkActions
from taskboard.config import AppConfig
from taskboard.datastore import Datastore
from taskboard.preferences import PreferenceStore
from taskboard.store import TodoStore
from taskboard.team_context import TeamContext
from taskboard.todo_data import TodoDataService

logger = logging.getLogger(__name__)


class Workspace:
    """Everything one signed-in user works with.

    The todos subscription and activity scope follow the selected team:
    whenever it changes, the data service is stopped, re-scoped, refetched
    and started again.
    """

    def __init__(
        self,
        user_id: str,
        user_name: str,
        datastore: Datastore,
        config: AppConfig,
        *,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        self.user_id = user_id
        self.user_name = user_name
        self.preferences = PreferenceStore(config.state_path, user_id)
        self.store = TodoStore(self.preferences)
        self.activity = ActivityLogger(datastore, team_required=config.multi_tenancy)
        team_kwargs = {"multi_tenancy": config.multi_tenancy}
        if sleep is not None:
            team_kwargs["sleep"] = sleep
        self.team = TeamContext(datastore, self.store, self.preferences, **team_kwargs)
        self.todos = TodoDataService(
            datastore,
            self.store,
            self.activity,
            user_id,
            user_name,
            team_required=config.multi_tenancy,
        )
        self.bulk = BulkActions(
            datastore,
            self.store,
            self.activity,
            user_name,
            permission_check=self.team.has_permission,
        )

        self.store.hydrate_focus_mode()
        self._unsubscribe_team = self.team.on_team_change(self._rescope)
        self.team.set_user(user_id)
        if not self.todos.active:
            self._rescope(self.team.current_team_id)

    def _rescope(self, team_id: str | None) -> None:
        logger.info("Scoping workspace for %s to team %s", self.user_id, team_id or "global")
        self.todos.stop()
        self.todos.team_id = team_id
        self.activity.team_id = team_id
        self.todos.fetch_todos()
        self.todos.start()

    def close(self) -> None:
        self._unsubscribe_team()
        self.todos.stop()
        self.team.close()


class WorkspaceRegistry:
    """Creates workspaces lazily per user id; owns the shared LLM client."""

    def __init__(self, datastore: Datastore, config: AppConfig) -> None:
        self._datastore = datastore
        self._config = config
        self._lock = threading.Lock()
        self._workspaces: dict[str, Workspace] = {}
        self.ai_client = (
            AnthropicClient(config.anthropic_api_key, config.anthropic_model)
            if config.anthropic_api_key
            else None
        )

    def get(self, user_id: str, user_name: str | None = None) -> Workspace:
        with self._lock:
            workspace = self._workspaces.get(user_id)
            if workspace is None:
                workspace = Workspace(user_id, user_name or user_id, self._datastore, self._config)
                self._workspaces[user_id] = workspace
                logger.info("Opened workspace for %s", user_id)
            return workspace

    def user_ids(self) -> list[str]:
        with self._lock:
            return sorted(self._workspaces)

    def close(self) -> None:
        with self._lock:
            workspaces = list(self._workspaces.values())
            self._workspaces.clear()
        for workspace in workspaces:
            workspace.close()
        if self.ai_client is not None:
            self.ai_client.close()
