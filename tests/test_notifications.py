from __future__ import annotations

import pytest

import models
from notifications import NotificationHub, push_snapshot, student_payload
from presence import set_presence

from conftest import MONDAY, STUDENT, STUDENT2, TEACHER, TEACHER2, at


class FakeConnection:
    def __init__(self, name="conn"):
        self.name = name
        self.sent = []

    async def send_json(self, data):
        self.sent.append(data)


class BrokenConnection(FakeConnection):
    async def send_json(self, data):
        raise RuntimeError("socket closed")


class LeavingConnection(FakeConnection):
    """Unregisters another session while a fan-out is in progress."""

    def __init__(self, hub, user_id, other):
        super().__init__("leaving")
        self.hub = hub
        self.user_id = user_id
        self.other = other

    async def send_json(self, data):
        self.sent.append(data)
        self.hub.unregister(self.user_id, self.other)


def sam():
    return models.User(id=STUDENT, firstname="Sam", lastname="Student", short="SAM", role=1)


def test_student_payload_shape():
    record = models.Presence(student_id=STUDENT, date=MONDAY, period_id=3, present_from=550, present_until=585)

    assert student_payload(sam(), record, MONDAY) == {
        "user": {"id": STUDENT, "firstname": "Sam", "middlename": None, "lastname": "Student", "short": "SAM"},
        "present_from": 550,
        "present_until": 585,
        "date": "2024-03-04",
    }
    assert student_payload(sam(), None, MONDAY)["present_from"] is None


def test_register_and_unregister():
    hub = NotificationHub()
    first, second = FakeConnection(), FakeConnection()

    hub.register(TEACHER, first)
    hub.register(TEACHER, second)
    hub.register(TEACHER, first)
    assert hub.connections(TEACHER) == [first, second]

    hub.unregister(TEACHER, first)
    assert hub.connections(TEACHER) == [second]
    hub.unregister(TEACHER, first)  # already gone

    hub.unregister(TEACHER, second)
    assert hub.connections(TEACHER) == []
    assert hub.connected_users() == []


@pytest.mark.anyio
async def test_notify_reaches_every_session_of_the_teacher():
    hub = NotificationHub()
    laptop, tablet, other = FakeConnection(), FakeConnection(), FakeConnection()
    hub.register(TEACHER, laptop)
    hub.register(TEACHER, tablet)
    hub.register(TEACHER2, other)

    delivered = await hub.notify(TEACHER, {"present_from": 550})

    assert delivered == 2
    assert laptop.sent == tablet.sent == [{"event": "student", "data": {"present_from": 550}}]
    assert other.sent == []


@pytest.mark.anyio
async def test_notify_without_sessions():
    assert await NotificationHub().notify(TEACHER, {}) == 0


@pytest.mark.anyio
async def test_failed_send_drops_only_that_session():
    hub = NotificationHub()
    good, broken = FakeConnection(), BrokenConnection()
    hub.register(TEACHER, broken)
    hub.register(TEACHER, good)

    assert await hub.notify(TEACHER, {"n": 1}) == 1
    assert hub.connections(TEACHER) == [good]

    assert await hub.notify(TEACHER, {"n": 2}) == 1
    assert [m["data"]["n"] for m in good.sent] == [1, 2]


@pytest.mark.anyio
async def test_unregister_during_fan_out():
    hub = NotificationHub()
    other = FakeConnection()
    leaving = LeavingConnection(hub, TEACHER, other)
    hub.register(TEACHER, leaving)
    hub.register(TEACHER, other)

    # the fan-out works on the sessions registered when it started
    assert await hub.notify(TEACHER, {"n": 1}) == 2
    assert hub.connections(TEACHER) == [leaving]

    assert await hub.notify(TEACHER, {"n": 2}) == 1
    assert len(other.sent) == 1


@pytest.mark.anyio
async def test_snapshot_of_the_running_lesson(school_db):
    hub = NotificationHub()
    conn = FakeConnection()
    hub.register(TEACHER2, conn)
    await set_presence(school_db, STUDENT, MONDAY, 3, 550, 585, room_id=7)

    sent = await push_snapshot(school_db, hub, TEACHER2, conn, at(MONDAY, 9, 10))

    assert sent == 2
    assert [m["event"] for m in conn.sent] == ["student", "student"]
    by_user = {m["data"]["user"]["id"]: m["data"] for m in conn.sent}
    assert (by_user[STUDENT]["present_from"], by_user[STUDENT]["present_until"]) == (550, 585)
    assert by_user[STUDENT2]["present_from"] is None
    assert by_user[STUDENT]["date"] == "2024-03-04"


@pytest.mark.anyio
async def test_no_snapshot_outside_lessons(school_db):
    hub = NotificationHub()
    conn = FakeConnection()

    # Tom handed period 3 to Tina
    assert await push_snapshot(school_db, hub, TEACHER, conn, at(MONDAY, 9, 10)) == 0
    assert conn.sent == []
