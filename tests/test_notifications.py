from decimal import Decimal

import pytest

from errors import NotFound
from services import notifications
from services.notifications import DonationReceived, NewRequest, RequestAccepted, RequestCompleted
from services.presence import hub, user_room


class Recorder:
    def __init__(self, user_id: int):
        self.user_id = user_id
        self.rooms = set()
        self.frames = []

    def deliver(self, frame: dict) -> None:
        self.frames.append(frame)


class TestRender:
    def test_messages(self) -> None:
        assert NewRequest(1, "water", "Ana").render() == "New water request from Ana"
        assert RequestAccepted(1, "food", "Ben").render() == "Ben accepted your food request"
        assert (
            RequestCompleted(1, "Ben", confirmed=False).render()
            == "Ben marked your request as complete. Please confirm."
        )
        assert (
            RequestCompleted(1, "Ana", confirmed=True, points=25).render()
            == "Ana confirmed completion! You earned 25 points!"
        )
        assert DonationReceived(1, "Cy", Decimal("1500")).render() == "Cy donated 1,500.00"


class TestDelivery:
    def test_persisted_when_offline(self, session, make_user, make_request) -> None:
        ana = make_user("Ana")
        request = make_request(ana)
        note = notifications.notify(session, ana.id, RequestAccepted(request.id, "food", "Ben"))
        assert note.id is not None
        assert note.kind == "request_accepted"
        assert note.is_read is False
        assert [n.id for n in notifications.list_for(session, ana.id)] == [note.id]

    def test_pushed_when_online(self, session, make_user, make_request) -> None:
        ana = make_user("Ana")
        request = make_request(ana)
        conn = Recorder(ana.id)
        hub.connect(conn)

        note = notifications.notify(session, ana.id, RequestAccepted(request.id, "food", "Ben"))
        [frame] = conn.frames
        assert frame["event"] == "notification:new"
        assert frame["data"]["id"] == note.id
        assert frame["data"]["message"] == "Ben accepted your food request"
        assert frame["data"]["related_request_id"] == request.id

    def test_stage_waits_for_commit(self, session, make_user, make_request) -> None:
        ana = make_user("Ana")
        request = make_request(ana)
        notifications.stage(session, ana.id, RequestAccepted(request.id, "food", "Ben"))
        session.rollback()
        assert notifications.list_for(session, ana.id) == []

    def test_push_only_reaches_owner(self, session, make_user, make_request) -> None:
        ana, ben = make_user("Ana"), make_user("Ben")
        request = make_request(ana)
        other = Recorder(ben.id)
        hub.join(other, user_room(ben.id))
        notifications.notify(session, ana.id, RequestAccepted(request.id, "food", "Ben"))
        assert other.frames == []


class TestMutations:
    def _note(self, session, user, request):
        return notifications.notify(session, user.id, RequestCompleted(request.id, "Ben", confirmed=False))

    def test_unread_count_and_mark_read(self, session, make_user, make_request) -> None:
        ana = make_user("Ana")
        request = make_request(ana)
        first = self._note(session, ana, request)
        self._note(session, ana, request)
        assert notifications.unread_count(session, ana.id) == 2

        assert notifications.mark_read(session, first.id, ana.id).is_read is True
        assert notifications.unread_count(session, ana.id) == 1

    def test_mark_all_read(self, session, make_user, make_request) -> None:
        ana = make_user("Ana")
        request = make_request(ana)
        ben = make_user("Ben")
        self._note(session, ana, request)
        self._note(session, ana, request)
        self._note(session, ben, request)

        assert notifications.mark_all_read(session, ana.id) == 2
        assert notifications.unread_count(session, ana.id) == 0
        assert notifications.unread_count(session, ben.id) == 1
        assert notifications.mark_all_read(session, ana.id) == 0

    def test_other_users_notification_is_not_found(self, session, make_user, make_request) -> None:
        ana, ben = make_user("Ana"), make_user("Ben")
        request = make_request(ana)
        note = self._note(session, ana, request)
        with pytest.raises(NotFound):
            notifications.mark_read(session, note.id, ben.id)
        with pytest.raises(NotFound):
            notifications.delete(session, note.id, ben.id)
        assert notifications.unread_count(session, ana.id) == 1

    def test_delete(self, session, make_user, make_request) -> None:
        ana = make_user("Ana")
        request = make_request(ana)
        note = self._note(session, ana, request)
        notifications.delete(session, note.id, ana.id)
        assert notifications.list_for(session, ana.id) == []
        with pytest.raises(NotFound):
            notifications.delete(session, note.id, ana.id)
