"""
Tests for the local feedback server.
"""

import pytest

from livecells.config import Settings
from livecells.feedback import (
    FeedbackBackend,
    FeedbackCredentialMissing,
    FeedbackNetworkError,
    FeedbackReply,
    RemoteModelBackend,
)
from livecells.web import create_app


class StubBackend(FeedbackBackend):
    name = "stub"

    def __init__(self, reply=None, error=None):
        super().__init__()
        self.reply = reply
        self.error = error
        self.received = []

    async def complete(self, messages):
        self.received.append(messages)
        if self.error is not None:
            raise self.error
        return self.reply


MESSAGES = [{"role": "system", "content": "s"}, {"role": "user", "content": "u"}]


def _client(backend):
    app = create_app(Settings(), backend=backend)
    app.config["TESTING"] = True
    return app.test_client()


class TestFeedbackEndpoint:
    """Test cases for POST /api/feedback."""

    def test_forwards_messages(self):
        backend = StubBackend(reply=FeedbackReply("Looks fine", model="m1", model_list=["m1", "m2"]))
        response = _client(backend).post("/api/feedback", json={"messages": MESSAGES})

        assert response.status_code == 200
        body = response.get_json()
        assert body["choices"][0]["message"]["content"] == "Looks fine"
        assert body["selected_model"] == "m1"
        assert body["model_list"] == ["m1", "m2"]
        assert backend.received == [MESSAGES]

    @pytest.mark.parametrize("payload", [{}, {"messages": []}, {"messages": "hi"}])
    def test_rejects_bad_messages(self, payload):
        backend = StubBackend()
        response = _client(backend).post("/api/feedback", json=payload)
        assert response.status_code == 400
        assert backend.received == []

    def test_missing_credentials(self):
        backend = StubBackend(error=FeedbackCredentialMissing("Please enter your API Key."))
        response = _client(backend).post("/api/feedback", json={"messages": MESSAGES})
        assert response.status_code == 400
        assert response.get_json()["error"] == "Please enter your API Key."

    def test_upstream_failure(self):
        backend = StubBackend(error=FeedbackNetworkError("Error requesting the API: 500"))
        response = _client(backend).post("/api/feedback", json={"messages": MESSAGES})
        assert response.status_code == 502

    def test_cors_headers(self):
        response = _client(StubBackend()).open("/api/feedback", method="OPTIONS")
        assert response.status_code == 204
        assert response.headers["Access-Control-Allow-Origin"] == "*"


class TestCreateApp:
    def test_health(self):
        response = _client(StubBackend()).get("/api/health")
        assert response.get_json() == {"ok": True, "backend": "stub"}

    def test_default_backend_from_settings(self):
        app = create_app(Settings(base_url="https://api.example.com/v1", api_key="k"))
        response = app.test_client().get("/api/health")
        assert response.get_json()["backend"] == RemoteModelBackend.name
