from types import SimpleNamespace

from fastapi.testclient import TestClient

import main


class RecordingPipeline:
    def __init__(self):
        self.calls = []

    async def handle_inbound(self, phone_number, text):
        self.calls.append((phone_number, text))


def _client(monkeypatch):
    monkeypatch.setattr(main.settings, "TELNYX_PUBLIC_KEY", None)
    pipeline = RecordingPipeline()
    main.app.state.services = SimpleNamespace(pipeline=pipeline)
    return TestClient(main.app), pipeline


def test_health(monkeypatch):
    client, _ = _client(monkeypatch)
    body = client.get("/health").json()
    assert body["status"] == "healthy"
    assert body["service"] == "whispr"


def test_inbound_sms_is_handed_to_pipeline(monkeypatch):
    client, pipeline = _client(monkeypatch)
    payload = {"data": {"payload": {"from": {"phone_number": "+2348000000001"}, "text": "Exam Monday 9am"}}}

    resp = client.post("/v1/sms/telnyx", json=payload)

    assert resp.status_code == 200
    assert resp.text == "OK"
    assert pipeline.calls == [("+2348000000001", "Exam Monday 9am")]


def test_ping_and_senderless_payloads(monkeypatch):
    client, pipeline = _client(monkeypatch)

    assert client.post("/v1/sms/telnyx", json={"data": {"payload": {"type": "ping"}}}).text == "PONG"
    assert client.post("/v1/sms/telnyx", json={"data": {"payload": {"text": "hi"}}}).text == "IGNORED"
    assert pipeline.calls == []


def test_malformed_body_is_rejected(monkeypatch):
    client, _ = _client(monkeypatch)
    assert client.post("/v1/sms/telnyx", json={"nope": 1}).status_code == 400
