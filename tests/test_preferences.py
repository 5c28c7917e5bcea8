import json

from taskboard.preferences import CURRENT_TEAM_KEY, FOCUS_MODE_KEY, PreferenceStore


def test_file_backed_preferences_persist(tmp_path):
    store = PreferenceStore(tmp_path / "prefs", "user-1")

    store.set(CURRENT_TEAM_KEY, "t1")
    store.set(FOCUS_MODE_KEY, True)

    reopened = PreferenceStore(tmp_path / "prefs", "user-1")
    assert reopened.get(CURRENT_TEAM_KEY) == "t1"
    assert reopened.get(FOCUS_MODE_KEY) is True
    assert json.loads(store.path.read_text(encoding="utf-8")) == {
        CURRENT_TEAM_KEY: "t1",
        FOCUS_MODE_KEY: True,
    }


def test_remove_and_defaults(tmp_path):
    store = PreferenceStore(tmp_path, "user-1")
    store.set(CURRENT_TEAM_KEY, "t1")

    store.remove(CURRENT_TEAM_KEY)

    assert store.get(CURRENT_TEAM_KEY, "none") == "none"


def test_unreadable_file_is_ignored(tmp_path):
    (tmp_path / "user-1.json").write_text("{not json", encoding="utf-8")
    store = PreferenceStore(tmp_path, "user-1")

    assert store.get(FOCUS_MODE_KEY) is None
    store.set(FOCUS_MODE_KEY, False)
    assert store.get(FOCUS_MODE_KEY) is False


def test_memory_preferences_are_per_instance():
    first = PreferenceStore()
    second = PreferenceStore()

    first.set(FOCUS_MODE_KEY, True)

    assert first.path is None
    assert first.get(FOCUS_MODE_KEY) is True
    assert second.get(FOCUS_MODE_KEY) is None
