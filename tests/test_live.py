import pytest
from fastapi import status
from starlette.websockets import WebSocketDisconnect

from conftest import auth
from routers.auth import create_session_token
from services import chat, lifecycle


def _url(user) -> str:
    return f"/ws?token={create_session_token(user.id)}"


def _join(ws, chat_id: int) -> None:
    ws.send_json({"event": "chat:join", "data": {"chat_id": chat_id}})
    assert ws.receive_json() == {"event": "chat:joined", "data": {"chat_id": chat_id}}


@pytest.fixture
def accepted_chat(session, make_user, make_request):
    ana, ben = make_user("Ana"), make_user("Ben")
    request = make_request(ana)
    lifecycle.accept(session, request.id, ben)
    room = chat.open_chat(session, request.id, ana.id)
    return ana, ben, room.id


class TestConnect:
    def test_rejects_missing_token(self, client) -> None:
        with pytest.raises(WebSocketDisconnect) as exc:
            with client.websocket_connect("/ws"):
                pass
        assert exc.value.code == status.WS_1008_POLICY_VIOLATION

    def test_rejects_forged_token(self, client) -> None:
        with pytest.raises(WebSocketDisconnect) as exc:
            with client.websocket_connect("/ws?token=forged"):
                pass
        assert exc.value.code == status.WS_1008_POLICY_VIOLATION

    def test_unknown_event(self, client, make_user) -> None:
        ana = make_user("Ana")
        with client.websocket_connect(_url(ana)) as ws:
            ws.send_json({"event": "room:destroy", "data": {}})
            frame = ws.receive_json()
        assert frame["event"] == "error"
        assert frame["data"]["event"] == "room:destroy"

    def test_invalid_json(self, client, make_user) -> None:
        ana = make_user("Ana")
        with client.websocket_connect(_url(ana)) as ws:
            ws.send_text("{not json")
            frame = ws.receive_json()
        assert frame == {"event": "error", "data": {"event": None, "message": "Invalid JSON"}}

    def test_cannot_join_other_users_room(self, client, make_user) -> None:
        ana = make_user("Ana")
        with client.websocket_connect(_url(ana)) as ws:
            ws.send_json({"event": "user:join", "data": {"user_id": ana.id + 1}})
            frame = ws.receive_json()
        assert frame["event"] == "error"


class TestChatEvents:
    def test_message_reaches_both_participants(self, client, accepted_chat) -> None:
        ana, ben, chat_id = accepted_chat
        with client.websocket_connect(_url(ana)) as ana_ws, client.websocket_connect(_url(ben)) as ben_ws:
            _join(ana_ws, chat_id)
            _join(ben_ws, chat_id)

            ana_ws.send_json({"event": "chat:message", "data": {"chat_id": chat_id, "content": "Gate 3"}})
            for ws in (ana_ws, ben_ws):
                frame = ws.receive_json()
                assert frame["event"] == "chat:message"
                assert frame["data"]["chat_id"] == chat_id
                assert frame["data"]["message"]["content"] == "Gate 3"
                assert frame["data"]["message"]["sender_id"] == ana.id

        history = client.get(f"/chats/{chat_id}/messages", headers=auth(ben)).json()["data"]
        assert [m["content"] for m in history] == ["Gate 3"]

    def test_outsider_cannot_join(self, client, make_user, accepted_chat) -> None:
        _, _, chat_id = accepted_chat
        eve = make_user("Eve")
        with client.websocket_connect(_url(eve)) as ws:
            ws.send_json({"event": "chat:join", "data": {"chat_id": chat_id}})
            frame = ws.receive_json()
        assert frame["event"] == "error"
        assert frame["data"]["message"] == "You are not authorized to access this chat"

    def test_typing_skips_sender(self, client, accepted_chat) -> None:
        ana, ben, chat_id = accepted_chat
        with client.websocket_connect(_url(ana)) as ana_ws, client.websocket_connect(_url(ben)) as ben_ws:
            _join(ana_ws, chat_id)
            _join(ben_ws, chat_id)

            ana_ws.send_json({"event": "chat:typing", "data": {"chat_id": chat_id, "is_typing": True}})
            typing = ben_ws.receive_json()
            assert typing["event"] == "chat:typing"
            assert typing["data"]["user_id"] == ana.id
            assert typing["data"]["is_typing"] is True

            ana_ws.send_json({"event": "chat:message", "data": {"chat_id": chat_id, "content": "here"}})
            # the sender's next frame is its own message, not its typing echo
            assert ana_ws.receive_json()["event"] == "chat:message"
            assert ben_ws.receive_json()["event"] == "chat:message"

    def test_read_receipt(self, client, accepted_chat) -> None:
        ana, ben, chat_id = accepted_chat
        with client.websocket_connect(_url(ana)) as ana_ws, client.websocket_connect(_url(ben)) as ben_ws:
            _join(ana_ws, chat_id)
            _join(ben_ws, chat_id)

            ana_ws.send_json({"event": "chat:message", "data": {"chat_id": chat_id, "content": "one"}})
            ana_ws.receive_json()
            ben_ws.receive_json()

            ben_ws.send_json({"event": "chat:read", "data": {"chat_id": chat_id}})
            receipt = ana_ws.receive_json()
        assert receipt == {"event": "chat:read", "data": {"chat_id": chat_id, "read_by": ben.id, "count": 1}}

    def test_empty_message_is_an_error(self, client, accepted_chat) -> None:
        ana, _, chat_id = accepted_chat
        with client.websocket_connect(_url(ana)) as ws:
            _join(ws, chat_id)
            ws.send_json({"event": "chat:message", "data": {"chat_id": chat_id, "content": "   "}})
            frame = ws.receive_json()
        assert frame["event"] == "error"
        assert frame["data"]["message"] == "Message content is required"


def _ready(ws, user) -> None:
    ws.send_json({"event": "user:join", "data": {"user_id": user.id}})
    assert ws.receive_json() == {"event": "user:joined", "data": {"user_id": user.id}}


def _open_request(client, user) -> int:
    resp = client.post(
        "/requests/",
        json={
            "type": "shelter",
            "title": "Tarpaulins",
            "description": "Roof torn off",
            "coordinates": [120.98, 14.6],
        },
        headers=auth(user),
    )
    assert resp.status_code == 201
    return resp.json()["data"]["id"]


class TestPushes:
    def test_accept_pushes_notification_and_update(self, client, make_user) -> None:
        ana, ben = make_user("Ana"), make_user("Ben")
        request_id = _open_request(client, ana)

        with client.websocket_connect(_url(ana)) as ws:
            _ready(ws, ana)
            resp = client.post(f"/requests/{request_id}/accept", headers=auth(ben))
            assert resp.status_code == 200
            frames = [ws.receive_json(), ws.receive_json()]

        by_event = {f["event"]: f["data"] for f in frames}
        assert by_event["notification:new"]["kind"] == "request_accepted"
        assert by_event["notification:new"]["message"] == "Ben accepted your shelter request"
        assert by_event["request:update"]["id"] == request_id
        assert by_event["request:update"]["status"] == "accepted"

    def test_every_tab_of_a_user_gets_it(self, client, make_user) -> None:
        ana, ben = make_user("Ana"), make_user("Ben")
        request_id = _open_request(client, ana)

        with client.websocket_connect(_url(ana)) as first, client.websocket_connect(_url(ana)) as second:
            _ready(first, ana)
            _ready(second, ana)
            client.post(f"/requests/{request_id}/accept", headers=auth(ben))
            for ws in (first, second):
                events = {ws.receive_json()["event"], ws.receive_json()["event"]}
                assert events == {"notification:new", "request:update"}

    def test_new_request_reaches_online_volunteers(self, client, make_user) -> None:
        ana, ben = make_user("Ana"), make_user("Ben")
        with client.websocket_connect(_url(ben)) as ws:
            _ready(ws, ben)
            request_id = _open_request(client, ana)
            frame = ws.receive_json()
        assert frame["event"] == "notification:new"
        assert frame["data"]["kind"] == "new_request"
        assert frame["data"]["related_request_id"] == request_id
        assert frame["data"]["message"] == "New shelter request from Ana"
