"""Tests for stored notifications and the preference store."""

from pathlib import Path
import sys
import time

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from action_flows import config  # noqa: E402
from action_flows.db import Base, get_engine, get_session_factory  # noqa: E402
from action_flows.flows import notifications  # noqa: E402
from action_flows.flows.feed import DismissalState  # noqa: E402
from action_flows.flows.models import FlowDraft  # noqa: E402
from action_flows.flows.storage import create_flow  # noqa: E402
from action_flows.models import OptimisticLockError  # noqa: E402
from action_flows.users import UserCreate, create_user  # noqa: E402


@pytest.fixture(autouse=True)
def setup_database(monkeypatch, tmp_path):
    db_path = tmp_path / "notifications.db"
    monkeypatch.setenv("ADMIN_USER_IDS", "A1")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{db_path}")
    config.get_settings.cache_clear()
    get_engine.cache_clear()
    get_session_factory.cache_clear()

    engine = get_engine()
    Base.metadata.create_all(engine)
    yield
    Base.metadata.drop_all(engine)
    config.get_settings.cache_clear()
    get_engine.cache_clear()
    get_session_factory.cache_clear()


@pytest.fixture
def flow_id():
    create_user(UserCreate(name="Ula", email="ula@example.com", id="U1"))
    flow = create_flow(
        FlowDraft.model_validate(
            {
                "title": "Onboarding",
                "assignee_id": "U1",
                "sections": [{"id": "s1", "title": "Paperwork", "tasks": [{"id": "t1", "title": "Sign"}]}],
            }
        ),
        created_by="A1",
    )
    return flow.id


def _message_kwargs(flow_id, **overrides):
    kwargs = {
        "flow_id": flow_id,
        "assignee_id": "U1",
        "section_id": "s1",
        "task_id": "t1",
        "text": "Please sign",
        "sender_id": "A1",
        "sender_name": "Admin",
        "sender_is_admin": True,
    }
    kwargs.update(overrides)
    return kwargs


def test_create_and_list_notifications(flow_id):
    notifications.create_notification(
        user_id="U1", flow_id=flow_id, message="first", sender_id="A1", sender_name="Admin"
    )
    time.sleep(0.01)
    notifications.create_notification(
        user_id="U1",
        flow_id=flow_id,
        message="second",
        sender_id="A1",
        sender_name="Admin",
        type=notifications.TYPE_TASK_REFUSED,
    )

    listed = notifications.list_notifications("U1")

    assert [item.message for item in listed] == ["second", "first"]
    assert listed[0].type == notifications.TYPE_TASK_REFUSED
    assert all(item.read is False for item in listed)
    assert notifications.list_notifications("") == []


def test_admin_message_notifies_assignee(flow_id):
    result = notifications.notify_message_recipient(**_message_kwargs(flow_id))

    assert result is not None
    assert result.user_id == "U1"
    assert result.task_id == "t1"
    assert result.type == notifications.TYPE_MESSAGE


def test_assignee_message_notifies_first_admin(flow_id):
    create_user(UserCreate(name="Root", email="root@example.com", role="admin", id="A9"))
    time.sleep(0.01)
    create_user(UserCreate(name="Second", email="second@example.com", role="admin", id="A8"))

    result = notifications.notify_message_recipient(
        **_message_kwargs(flow_id, sender_id="U1", sender_name="Ula", sender_is_admin=False)
    )

    assert result.user_id == "A9"


def test_message_without_recipient_is_skipped(flow_id):
    assert notifications.notify_message_recipient(**_message_kwargs(flow_id, assignee_id=None)) is None
    assert (
        notifications.notify_message_recipient(
            **_message_kwargs(flow_id, sender_id="U1", sender_name="Ula", sender_is_admin=False)
        )
        is None
    )


def test_mark_and_delete_notifications(flow_id):
    for _ in range(2):
        notifications.notify_message_recipient(**_message_kwargs(flow_id))
    notifications.create_notification(
        user_id="U1",
        flow_id=flow_id,
        message="refused",
        sender_id="A1",
        sender_name="Admin",
        type=notifications.TYPE_TASK_REFUSED,
    )

    updated = notifications.mark_notifications_read("U1", flow_id=flow_id, section_id="s1", task_id="t1")

    assert updated == 2
    unread = notifications.list_notifications("U1", unread_only=True)
    assert [item.type for item in unread] == [notifications.TYPE_TASK_REFUSED]

    assert notifications.delete_notifications("U1", type=notifications.TYPE_MESSAGE) == 2
    assert len(notifications.list_notifications("U1")) == 1


def test_preference_store_behaves_like_a_mapping():
    store = notifications.PreferenceStore("U1")

    store["theme"] = "dark"
    store["theme"] = "light"
    store["lang"] = "en"

    assert store["theme"] == "light"
    assert sorted(store) == ["lang", "theme"]
    assert len(store) == 2
    assert store.get("missing") is None
    assert len(notifications.PreferenceStore("U2")) == 0

    del store["lang"]
    assert "lang" not in store
    with pytest.raises(KeyError):
        del store["lang"]


def test_dismissal_state_survives_new_session():
    DismissalState("U1", notifications.PreferenceStore("U1")).dismiss("m1")

    reloaded = DismissalState("U1", notifications.PreferenceStore("U1"))

    assert reloaded.is_dismissed("m1") is True


def test_concurrent_dismissals_are_both_kept():
    first = DismissalState("U1", notifications.PreferenceStore("U1"))
    second = DismissalState("U1", notifications.PreferenceStore("U1"))

    assert first.dismiss("m1") is True
    assert second.dismiss("m2") is True

    assert second.dismissed == frozenset({"m1", "m2"})
    assert DismissalState("U1", notifications.PreferenceStore("U1")).dismissed == frozenset({"m1", "m2"})


def test_merge_retries_after_a_concurrent_first_insert():
    store = notifications.PreferenceStore("U1")
    calls = []

    def combine(current):
        calls.append(current)
        if len(calls) == 1:
            # another request creates the row between our read and our insert
            notifications.PreferenceStore("U1")["dismissed_messages:U1"] = '["m1"]'
        return current[:-1] + ',"m2"]' if current else '["m2"]'

    assert store.merge("dismissed_messages:U1", combine) == '["m1","m2"]'
    assert calls == [None, '["m1"]']


def test_merge_retries_after_a_concurrent_update():
    store = notifications.PreferenceStore("U1")
    store["counter"] = "1"
    calls = []

    def increment(current):
        calls.append(current)
        if len(calls) == 1:
            notifications.PreferenceStore("U1")["counter"] = "5"
        return str(int(current) + 1)

    assert store.merge("counter", increment) == "6"
    assert calls == ["1", "5"]
    assert store["counter"] == "6"


def test_merge_gives_up_when_the_value_keeps_changing(monkeypatch):
    store = notifications.PreferenceStore("U1")
    store["counter"] = "0"
    monkeypatch.setattr(notifications.PreferenceStore, "MERGE_ATTEMPTS", 2)

    def always_raced(current):
        notifications.PreferenceStore("U1")["counter"] = str(int(current) + 10)
        return "never"

    with pytest.raises(OptimisticLockError):
        store.merge("counter", always_raced)
    assert store["counter"] == "20"
