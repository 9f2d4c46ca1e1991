"""Tests for the Artemis callback inbox (POST /eventRcv): ACK first, then parse and store."""
import asyncio
import json

import pytest
from fastapi.testclient import TestClient

from apps.backend.config import Settings
from apps.backend.main import create_app
from apps.backend.middleware.event_inbox import ArtemisEventInboxMiddleware, decode_body
from apps.backend.services.event_parser import event_type_name
from apps.backend.services.request_store import RequestStore

ACK_TEXT = '{"code":"0","msg":"success"}'

NOTIFY = {
    "method": "OnEventNotify",
    "ability": "x",
    "params": {
        "sendTime": "t1",
        "events": [
            {"eventId": "e1", "eventType": 196893, "happenTime": "h1", "srcName": "cam1", "status": 1, "timeout": 5}
        ],
    },
}


@pytest.fixture
def store():
    return RequestStore()


@pytest.fixture
def client(store):
    return TestClient(create_app(Settings(), store=store))


def _assert_ack(r):
    assert r.status_code == 200
    assert r.text == ACK_TEXT
    assert r.headers["content-type"] == "application/json; charset=utf-8"
    assert r.headers["connection"] == "close"


class TestCallbackAck:
    """Every body shape on the callback path gets the same 200 ACK."""

    @pytest.mark.timeout(10)
    @pytest.mark.parametrize("body", [b"", b"{not json", json.dumps(NOTIFY).encode(), b'{"method":"Other"}', b"\xff\xfe"])
    def test_post_any_body_gets_ack(self, client, store, body):
        r = client.post("/eventRcv", content=body, headers={"Content-Type": "application/json"})
        _assert_ack(r)
        assert len(store) == 1

    @pytest.mark.timeout(10)
    @pytest.mark.parametrize("path", ["/eventrcv", "/EVENTRCV", "/eventRcv/", "/eventRcvl", "/eventrcvl/"])
    def test_path_variants_match(self, client, store, path):
        r = client.post(path, json={"method": "OnEventNotify", "params": {}})
        _assert_ack(r)
        assert store.snapshot()[0].path == path

    @pytest.mark.timeout(10)
    @pytest.mark.parametrize("method", ["GET", "PUT", "DELETE", "OPTIONS"])
    def test_non_post_gets_ack_and_is_logged_without_parsing(self, client, store, method):
        r = client.request(method, "/eventRcv?probe=1")
        _assert_ack(r)
        entry = store.snapshot()[0]
        assert entry.method == method
        assert entry.body is None
        assert entry.raw_body is None
        assert entry.parsed_event is None
        assert entry.query == {"probe": "1"}

    @pytest.mark.timeout(10)
    def test_unknown_path_returns_404_envelope(self, client, store):
        r = client.get("/unknown-path")
        assert r.status_code == 404
        data = r.json()
        assert data["code"] == "404"
        assert data["msg"]
        assert len(store) == 0

    @pytest.mark.timeout(10)
    @pytest.mark.parametrize("method,path", [("POST", "/"), ("POST", "/health"), ("DELETE", "/requests"), ("PUT", "/")])
    def test_wrong_method_on_known_route_returns_404_envelope(self, client, store, method, path):
        r = client.request(method, path)
        assert r.status_code == 404
        assert r.json() == {"code": "404", "msg": "path not found"}
        assert len(store) == 0


class TestPostProcessing:
    @pytest.mark.timeout(10)
    def test_end_to_end_notification_is_parsed_and_stored(self, client, store):
        r = client.post("/eventRcv?src=platform", content=json.dumps(NOTIFY), headers={"Content-Type": "application/json"})
        _assert_ack(r)
        entry = store.snapshot()[0]
        assert entry.method == "POST"
        assert entry.protocol == "HTTP"
        assert entry.query == {"src": "platform"}
        assert entry.body == NOTIFY
        assert entry.raw_body == json.dumps(NOTIFY)
        assert entry.headers["content-type"] == "application/json"
        env = entry.parsed_event
        assert env is not None
        assert len(env.events) == 1
        assert env.events[0].event_type_name == event_type_name(196893)
        assert env.send_time == "t1"

    @pytest.mark.timeout(10)
    def test_malformed_json_kept_as_raw_text(self, client, store):
        client.post("/eventRcv", content=b"{not json")
        entry = store.snapshot()[0]
        assert entry.body == "{not json"
        assert entry.parsed_event is None

    @pytest.mark.timeout(10)
    def test_form_encoded_body_parsed(self, client, store):
        client.post("/eventRcv", content=b"a=1&b=x&b=y", headers={"Content-Type": "application/x-www-form-urlencoded"})
        assert store.snapshot()[0].body == {"a": "1", "b": ["x", "y"]}

    @pytest.mark.timeout(10)
    def test_newest_first_across_requests(self, client, store):
        for i in range(3):
            client.post("/eventRcv", json={"n": i})
        assert [e.body["n"] for e in store.snapshot()] == [2, 1, 0]

    def test_decode_body_non_notify_json_has_no_envelope(self):
        body, env = decode_body('{"method":"Other","params":{"events":[1,2]}}')
        assert body["method"] == "Other"
        assert env is None

    def test_decode_body_empty(self):
        assert decode_body("") == ("", None)


def _scope(path="/eventRcv", method="POST", scheme="http"):
    return {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": method,
        "scheme": scheme,
        "path": path,
        "raw_path": path.encode(),
        "query_string": b"",
        "headers": [(b"content-type", b"application/json"), (b"user-agent", b"artemis-test")],
        "client": ("127.0.0.1", 50000),
        "server": ("127.0.0.1", 8082),
    }


async def _not_found_app(scope, receive, send):
    await send({"type": "http.response.start", "status": 404, "headers": []})
    await send({"type": "http.response.body", "body": b"inner"})


def _run(middleware, scope, receive):
    sent: list[dict] = []

    async def send(message):
        sent.append(message)

    asyncio.run(middleware(scope, receive, send))
    return sent


def _ack_sent(sent: list[dict]) -> bool:
    starts = [m for m in sent if m["type"] == "http.response.start"]
    bodies = [m for m in sent if m["type"] == "http.response.body"]
    return bool(starts) and starts[0]["status"] == 200 and b"".join(m.get("body", b"") for m in bodies) == ACK_TEXT.encode()


class TestInboxAsgi:
    @pytest.mark.timeout(10)
    def test_ack_is_sent_before_post_processing(self):
        sent: list[dict] = []

        class SpyStore(RequestStore):
            def add(self, entry):
                self.sent_at_insert = list(sent)
                super().add(entry)

        spy = SpyStore()
        mw = ArtemisEventInboxMiddleware(_not_found_app, store=spy)
        messages = [{"type": "http.request", "body": json.dumps(NOTIFY).encode(), "more_body": False}]

        async def receive():
            return messages.pop(0)

        async def send(message):
            sent.append(message)

        asyncio.run(mw(_scope(), receive, send))
        assert _ack_sent(spy.sent_at_insert)
        assert spy.sent_at_insert[-1].get("more_body", False) is False
        assert len(spy) == 1

    @pytest.mark.timeout(10)
    def test_chunked_body_is_accumulated(self):
        store = RequestStore()
        mw = ArtemisEventInboxMiddleware(_not_found_app, store=store)
        raw = json.dumps(NOTIFY).encode()
        messages = [
            {"type": "http.request", "body": raw[:10], "more_body": True},
            {"type": "http.request", "body": raw[10:], "more_body": False},
        ]

        async def receive():
            return messages.pop(0)

        sent = _run(mw, _scope(scheme="https"), receive)
        assert _ack_sent(sent)
        entry = store.snapshot()[0]
        assert entry.parsed_event is not None
        assert entry.protocol == "HTTPS"

    @pytest.mark.timeout(10)
    def test_receive_timeout_still_acks(self):
        store = RequestStore()
        mw = ArtemisEventInboxMiddleware(_not_found_app, store=store, receive_timeout=0.05)

        async def receive():
            await asyncio.sleep(5)
            return {"type": "http.request", "body": b"late", "more_body": False}

        sent = _run(mw, _scope(), receive)
        assert _ack_sent(sent)
        assert len(store) == 0

    @pytest.mark.timeout(10)
    def test_disconnect_while_receiving_still_acks(self):
        store = RequestStore()
        mw = ArtemisEventInboxMiddleware(_not_found_app, store=store)

        async def receive():
            return {"type": "http.disconnect"}

        sent = _run(mw, _scope(), receive)
        assert _ack_sent(sent)
        assert len(store) == 0

    @pytest.mark.timeout(10)
    def test_other_paths_pass_through(self):
        store = RequestStore()
        mw = ArtemisEventInboxMiddleware(_not_found_app, store=store)

        async def receive():
            return {"type": "http.request", "body": b"", "more_body": False}

        sent = _run(mw, _scope(path="/eventRcvX"), receive)
        assert sent[0]["status"] == 404
        assert len(store) == 0
