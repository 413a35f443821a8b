"""Tests for the httpx-based Platform Publisher."""

import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from postflow.tools.http_publisher import HttpPlatformPublisher
from tests.conftest import make_job

ENDPOINTS = {"facebook": "https://publish.example.com/facebook"}


def publisher_for(handler, **kwargs):
    return HttpPlatformPublisher(ENDPOINTS, transport=httpx.MockTransport(handler), **kwargs)


@pytest.fixture
def job(sample_utc_now):
    return make_job("j1", sample_utc_now, content="Hello\n\n\n\nworld #a")


class TestPayload:
    def test_content_is_formatted_for_platform(self, job):
        payload = HttpPlatformPublisher(ENDPOINTS).build_payload(job)

        assert payload["content"] == "Hello\n\nworld #a"
        assert payload["job_id"] == "j1"
        assert payload["scheduled_time"] == "2025-06-15T12:00:00+00:00"

    def test_unknown_platform_content_untouched(self, sample_utc_now):
        job = make_job("j1", sample_utc_now, platform="mastodon", content="a\n\n\n\nb")
        assert HttpPlatformPublisher({}).build_payload(job)["content"] == "a\n\n\n\nb"


class TestPublish:
    @pytest.mark.asyncio
    async def test_success_returns_post_id(self, job):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("Authorization")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"post_id": "fb-123"})

        result = await publisher_for(handler, token="secret").publish(job)

        assert result.success is True
        assert result.platform_post_id == "fb-123"
        assert seen["url"] == ENDPOINTS["facebook"]
        assert seen["auth"] == "Bearer secret"
        assert seen["body"]["platform"] == "facebook"

    @pytest.mark.asyncio
    async def test_token_from_env(self, job, monkeypatch):
        monkeypatch.setenv("POSTFLOW_PUBLISHER_TOKEN", "from-env")
        seen = {}

        def handler(request):
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(200, json={"id": 42})

        result = await publisher_for(handler).publish(job)

        assert seen["auth"] == "Bearer from-env"
        assert result.platform_post_id == "42"

    @pytest.mark.asyncio
    async def test_no_token_no_auth_header(self, job):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(201, json={})

        result = await publisher_for(handler).publish(job)

        assert result.success is True
        assert result.platform_post_id is None
        assert seen["auth"] is None

    @pytest.mark.asyncio
    async def test_http_error_is_failed_result(self, job):
        def handler(request):
            return httpx.Response(500, json={"error": "upstream down"})

        result = await publisher_for(handler).publish(job)

        assert result.success is False
        assert result.error == "HTTP 500: upstream down"

    @pytest.mark.asyncio
    async def test_non_json_error_body(self, job):
        def handler(request):
            return httpx.Response(502, text="Bad Gateway")

        result = await publisher_for(handler).publish(job)

        assert result.error == "HTTP 502: Bad Gateway"

    @pytest.mark.asyncio
    async def test_platform_reported_failure(self, job):
        def handler(request):
            return httpx.Response(200, json={"success": False, "error": "duplicate post"})

        result = await publisher_for(handler).publish(job)

        assert result.success is False
        assert result.error == "duplicate post"

    @pytest.mark.asyncio
    async def test_transport_errors_are_retried_then_reported(self, job):
        calls = {"n": 0}

        def handler(request):
            calls["n"] += 1
            raise httpx.ConnectError("connection refused", request=request)

        with patch("postflow.utils.asyncio.sleep", new_callable=AsyncMock):
            result = await publisher_for(handler).publish(job)

        assert calls["n"] == 3
        assert result.success is False
        assert result.error.startswith("Transport error:")

    @pytest.mark.asyncio
    async def test_transient_transport_error_recovers(self, job):
        calls = {"n": 0}

        def handler(request):
            calls["n"] += 1
            if calls["n"] == 1:
                raise httpx.ReadTimeout("slow", request=request)
            return httpx.Response(200, json={"post_id": "fb-2"})

        with patch("postflow.utils.asyncio.sleep", new_callable=AsyncMock):
            result = await publisher_for(handler).publish(job)

        assert result.platform_post_id == "fb-2"

    @pytest.mark.asyncio
    async def test_missing_endpoint(self, sample_utc_now):
        job = make_job("j1", sample_utc_now, platform="linkedin")

        result = await HttpPlatformPublisher(ENDPOINTS).publish(job)

        assert result.success is False
        assert "linkedin" in result.error
