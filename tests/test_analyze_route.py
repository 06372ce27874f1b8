"""
API tests for the streaming diagnosis endpoints.
"""
import asyncio
import json

import httpx
import pytest
from fastapi.testclient import TestClient

from client.diagnosis_client import DiagnosisStreamClient, DiagnosisStreamError
from client.stream_reducer import StreamReducer
from main import create_app
from services.diagnosis.rate_limit import InMemoryRateLimitStore, RateLimiter
from tests.fakes import FakeAggregator, FakeIdentifier, FakeSynthesizer
from utils.settings import DiagnosisSettings

IMAGE_URL = "https://cdn.example.com/tomato-leaf.jpg"


@pytest.fixture
def app(settings, tomato_identification, tomato_treatments):
    # TestClient is used without a context manager, so the lifespan does not run.
    app = create_app()
    app.state.settings = settings
    app.state.identifier = FakeIdentifier(tomato_identification)
    app.state.aggregator = FakeAggregator(by_disease={"Đốm lá": tomato_treatments})
    app.state.synthesizer = FakeSynthesizer()
    app.state.rate_limiter = RateLimiter(InMemoryRateLimitStore(), points=10, window=60.0)
    return app


@pytest.fixture
def client(app):
    return TestClient(app)


class TestAnalyzeImageStream:
    def test_streams_events_until_sentinel(self, client):
        response = client.post("/api/v1/analyze/image-stream", json={"imageUrl": IMAGE_URL})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache"
        assert response.headers["x-accel-buffering"] == "no"
        assert response.text.endswith("data: [DONE]\n\n")

        reducer = StreamReducer()
        reducer.feed(response.content)
        assert reducer.state.status == "complete"
        assert reducer.state.plant["commonName"] == "Cà chua"
        assert reducer.result["isHealthy"] is False

    def test_missing_image_url_streams_error(self, client):
        response = client.post("/api/v1/analyze/image-stream", json={})

        assert response.status_code == 200
        reducer = StreamReducer()
        reducer.feed(response.content)
        assert reducer.state.status == "error"
        assert reducer.state.done

    def test_rate_limited(self, app, client):
        app.state.rate_limiter = RateLimiter(InMemoryRateLimitStore(), points=2, window=60.0)

        statuses = [client.post("/api/v1/analyze/image-stream", json={"imageUrl": IMAGE_URL}).status_code for _ in range(3)]

        assert statuses == [200, 200, 429]

    def test_missing_collaborator_is_server_error(self, app, client):
        app.state.identifier = None

        response = client.post("/api/v1/analyze/image-stream", json={"imageUrl": IMAGE_URL})

        assert response.status_code == 500


class TestSuggestDiseases:
    def test_suggestions(self, client):
        response = client.get("/api/v1/diseases/suggest", params={"q": "thoi"})

        assert response.status_code == 200
        assert response.json()["suggestions"][0] == "Thối rễ"

    def test_empty_query_lists_common_diseases(self, client):
        response = client.get("/api/v1/diseases/suggest")

        assert "Đốm lá" in response.json()["suggestions"]


class TestHealth:
    def test_reports_components(self, client):
        body = client.get("/health").json()

        assert body["ok"] is True
        assert body["identifier_available"] is True
        assert body["knowledge_available"] is True


class TestDiagnosisStreamClient:
    @pytest.mark.asyncio
    async def test_reduces_stream_and_reports_progress(self, app):
        progress = []
        async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as http:
            state = await DiagnosisStreamClient(http).analyze(IMAGE_URL, on_progress=lambda event, state: progress.append(state.progress))

        assert state.status == "complete"
        assert state.result["imageUrl"] == IMAGE_URL
        assert progress == sorted(progress)
        assert progress[-1] == 100

    @pytest.mark.asyncio
    async def test_http_error_raises(self, app):
        app.state.rate_limiter = RateLimiter(InMemoryRateLimitStore(), points=1, window=60.0)
        async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as http:
            client = DiagnosisStreamClient(http)
            await client.analyze(IMAGE_URL)

            with pytest.raises(DiagnosisStreamError) as excinfo:
                await client.analyze(IMAGE_URL)

        assert excinfo.value.status_code == 429


class SlowIdentifier:
    """Identifier that blocks until cancelled and records what happened."""

    def __init__(self):
        self.started = asyncio.Event()
        self.cancelled = False
        self.finished = False

    async def identify(self, image_ref):
        self.started.set()
        try:
            await asyncio.sleep(5)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        self.finished = True


class TestClientDisconnect:
    @pytest.mark.asyncio
    async def test_disconnect_cancels_identification_in_flight(self, app):
        app.state.settings = DiagnosisSettings(identify_timeout=10.0, request_timeout=20.0, advisory_timeout=1.0)
        identifier = SlowIdentifier()
        app.state.identifier = identifier
        body = json.dumps({"imageUrl": IMAGE_URL}).encode("utf-8")
        scope = {
            "type": "http",
            "asgi": {"version": "3.0", "spec_version": "2.3"},
            "http_version": "1.1",
            "method": "POST",
            "scheme": "http",
            "path": "/api/v1/analyze/image-stream",
            "raw_path": b"/api/v1/analyze/image-stream",
            "root_path": "",
            "query_string": b"",
            "headers": [(b"host", b"test"), (b"content-type", b"application/json")],
            "client": ("127.0.0.1", 50000),
            "server": ("test", 80),
        }
        body_sent = False

        async def receive():
            nonlocal body_sent
            if not body_sent:
                body_sent = True
                return {"type": "http.request", "body": body, "more_body": False}
            await identifier.started.wait()
            return {"type": "http.disconnect"}

        sent = []

        async def send(message):
            sent.append(message)

        await asyncio.wait_for(app(scope, receive, send), timeout=3.0)

        assert identifier.cancelled
        assert not identifier.finished
        assert b"data: [DONE]" not in b"".join(message.get("body", b"") for message in sent)
