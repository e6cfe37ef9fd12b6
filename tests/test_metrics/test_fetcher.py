"""Tests for the monitoring endpoint client."""

import asyncio
import json
from datetime import UTC, datetime
from unittest.mock import AsyncMock

import httpx
import pytest

from src.metrics.errors import EmptyDatasetError, NetworkError, SchemaError
from src.metrics.fallback import FALLBACK_ROSTER, build_fallback_dataset
from src.metrics.fetcher import MetricsFetcher, parse_metrics_payload
from src.metrics.models import DataSource

NOW = datetime(2026, 1, 15, 12, 0, tzinfo=UTC)
BASE_URL = "http://metrics.test"


def build_fetcher(handler, **kwargs) -> MetricsFetcher:
    """Fetcher over an httpx MockTransport."""
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    kwargs.setdefault("retry_wait_seconds", 0)
    kwargs.setdefault("timeout_seconds", 1.0)
    return MetricsFetcher(BASE_URL, http_client=client, clock=lambda: NOW, **kwargs)


def json_response(body, status_code: int = 200) -> httpx.Response:
    return httpx.Response(status_code, json=body)


PAYLOAD = {
    "timestamp": "2026-01-15T12:00:00Z",
    "totalAgents": 2,
    "activeAgents": 1,
    "metrics": [
        {"agentId": "python-pro", "requests": 10, "errors": 1, "isActive": True},
        {"agentId": "code-reviewer", "requests": 4, "errors": 0},
    ],
}


class TestParseMetricsPayload:
    """Tests for parse_metrics_payload."""

    def test_valid_payload(self):
        """Test records and envelope fields are extracted."""
        agents, envelope = parse_metrics_payload(PAYLOAD)

        assert [a.agent_id for a in agents] == ["python-pro", "code-reviewer"]
        assert envelope["total_agents"] == 2
        assert envelope["active_agents"] == 1
        assert envelope["rejected"] == 0

    @pytest.mark.parametrize("payload", [[], "metrics", None, 3])
    def test_non_object_rejected(self, payload):
        """Test non-object bodies raise SchemaError."""
        with pytest.raises(SchemaError):
            parse_metrics_payload(payload)

    def test_metrics_not_a_list(self):
        """Test a non-list metrics field raises SchemaError."""
        with pytest.raises(SchemaError):
            parse_metrics_payload({"metrics": {"agentId": "a"}})

    def test_invalid_records_skipped(self):
        """Test records that are not objects or lack an id are skipped."""
        agents, envelope = parse_metrics_payload(
            {"metrics": [{"agentId": "a"}, "junk", {"requests": 3}]}
        )

        assert [a.agent_id for a in agents] == ["a"]
        assert envelope["rejected"] == 2

    def test_all_records_invalid(self):
        """Test a payload with only invalid records raises SchemaError."""
        with pytest.raises(SchemaError) as exc_info:
            parse_metrics_payload({"metrics": [1, 2]}, url="http://x")

        assert exc_info.value.url == "http://x"
        assert exc_info.value.details["rejected"] == 2

    def test_missing_metrics_rejected(self):
        """Test a body without a metrics field is a SchemaError, not an empty dataset."""
        with pytest.raises(SchemaError) as exc_info:
            parse_metrics_payload({"error": "internal", "message": "db down"})

        assert exc_info.value.details["keys"] == ["error", "message"]

    @pytest.mark.parametrize("records", [[], None])
    def test_empty_metrics_list(self, records):
        """Test an empty or null metrics list yields no agents."""
        agents, _ = parse_metrics_payload({"timestamp": "now", "metrics": records})

        assert agents == []


class TestFetchSuccess:
    """Tests for successful fetches."""

    @pytest.mark.asyncio
    async def test_live_counters(self):
        """Test a 200 response yields live counters."""
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return json_response(PAYLOAD)

        result = await build_fetcher(handler).fetch()

        assert result.source == DataSource.LIVE
        assert result.error is None
        assert not result.is_synthetic
        assert len(result.agents) == 2
        assert result.reported_total_agents == 2
        assert result.fetched_at == NOW
        assert str(requests[0].url) == f"{BASE_URL}/api/metrics/agents"

    def test_trailing_slash_in_base_url(self):
        """Test the base URL is normalized."""
        fetcher = MetricsFetcher(f"{BASE_URL}/")

        assert fetcher.agents_url == f"{BASE_URL}/api/metrics/agents"
        assert fetcher.health_url == f"{BASE_URL}/health"


class TestFetchFallback:
    """Tests for fallback substitution."""

    @pytest.mark.asyncio
    async def test_timeout_falls_back(self):
        """Test a slow backend yields the fallback roster with a NetworkError."""

        async def handler(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(1)
            return json_response(PAYLOAD)

        result = await build_fetcher(handler, timeout_seconds=0.05).fetch()

        assert result.is_synthetic
        assert isinstance(result.error, NetworkError)
        assert "Timed out" in result.error.message
        assert [a.agent_id for a in result.agents] == [agent_id for agent_id, _ in FALLBACK_ROSTER]

    @pytest.mark.asyncio
    async def test_server_error_retried_then_falls_back(self):
        """Test 5xx responses are retried up to the attempt limit."""
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return json_response({"error": "boom"}, status_code=503)

        result = await build_fetcher(handler, retry_attempts=3).fetch()

        assert calls == 3
        assert result.is_synthetic
        assert result.error.status_code == 503
        assert result.error.retryable is True

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self):
        """Test 4xx responses fail immediately."""
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return json_response({"error": "missing"}, status_code=404)

        result = await build_fetcher(handler, retry_attempts=3).fetch()

        assert calls == 1
        assert isinstance(result.error, NetworkError)
        assert result.error.retryable is False

    @pytest.mark.asyncio
    async def test_retry_recovers(self):
        """Test a transient failure followed by success yields live data."""
        responses = [json_response({}, status_code=502), json_response(PAYLOAD)]

        def handler(request: httpx.Request) -> httpx.Response:
            return responses.pop(0)

        result = await build_fetcher(handler, retry_attempts=2).fetch()

        assert result.source == DataSource.LIVE
        assert len(result.agents) == 2

    @pytest.mark.asyncio
    async def test_connection_error_falls_back(self):
        """Test transport failures are reported as NetworkError."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("Connection refused", request=request)

        result = await build_fetcher(handler, retry_attempts=1).fetch()

        assert result.is_synthetic
        assert isinstance(result.error, NetworkError)
        assert result.error.status_code is None

    @pytest.mark.asyncio
    async def test_invalid_json_falls_back(self):
        """Test an unparseable body is reported as SchemaError."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b"<html>oops</html>")

        result = await build_fetcher(handler).fetch()

        assert result.is_synthetic
        assert isinstance(result.error, SchemaError)

    @pytest.mark.asyncio
    async def test_malformed_envelope_falls_back(self):
        """Test a wrong payload shape is reported as SchemaError."""

        def handler(request: httpx.Request) -> httpx.Response:
            return json_response({"metrics": "not-a-list"})

        result = await build_fetcher(handler).fetch()

        assert isinstance(result.error, SchemaError)
        assert result.error.url == f"{BASE_URL}/api/metrics/agents"

    @pytest.mark.asyncio
    async def test_error_envelope_falls_back(self):
        """Test a 200 error body without metrics is a SchemaError, not EMPTY."""

        def handler(request: httpx.Request) -> httpx.Response:
            return json_response({"error": "internal", "message": "db down"})

        result = await build_fetcher(handler).fetch()

        assert result.is_synthetic
        assert not result.is_empty
        assert isinstance(result.error, SchemaError)

    @pytest.mark.asyncio
    async def test_unexpected_client_error_falls_back(self):
        """Test errors outside the httpx.HTTPError hierarchy do not escape fetch()."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.InvalidURL("bad url")

        result = await build_fetcher(handler).fetch()

        assert result.is_synthetic
        assert isinstance(result.error, NetworkError)
        assert result.error.details["exception_type"] == "InvalidURL"
        assert result.error.url == f"{BASE_URL}/api/metrics/agents"

    @pytest.mark.asyncio
    async def test_fallback_is_deterministic(self):
        """Test the same seed and clock give the same fallback data."""

        def handler(request: httpx.Request) -> httpx.Response:
            return json_response({}, status_code=500)

        first = await build_fetcher(handler, retry_attempts=1).fetch()
        second = await build_fetcher(handler, retry_attempts=1).fetch()

        assert first.agents == second.agents
        assert first.resources == second.resources
        assert first.agents == build_fallback_dataset(42, NOW).agents

    @pytest.mark.asyncio
    async def test_with_mocked_client(self):
        """Test an injected client that raises is handled."""
        client = AsyncMock(spec=httpx.AsyncClient)
        client.get.side_effect = httpx.ConnectError("unreachable")

        fetcher = MetricsFetcher(BASE_URL, http_client=client, retry_attempts=1, clock=lambda: NOW)
        result = await fetcher.fetch()

        assert result.is_synthetic
        client.get.assert_called_once_with(f"{BASE_URL}/api/metrics/agents")


class TestFetchEmpty:
    """Tests for the empty dataset state."""

    @staticmethod
    def _handler(health_status: int = 200):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/health":
                return json_response({"status": "healthy"}, status_code=health_status)
            return json_response({"totalAgents": 0, "activeAgents": 0, "metrics": []})

        return handler

    @pytest.mark.asyncio
    async def test_empty_with_healthy_backend(self):
        """Test an empty list is a live EmptyDatasetError, not a fallback."""
        result = await build_fetcher(self._handler()).fetch()

        assert result.source == DataSource.LIVE
        assert result.agents == []
        assert result.is_empty
        assert isinstance(result.error, EmptyDatasetError)
        assert result.error.details["health_status"] == "healthy"
        assert result.error.falls_back is False

    @pytest.mark.asyncio
    async def test_empty_with_unhealthy_backend(self):
        """Test an empty list plus a failing health check falls back."""
        result = await build_fetcher(self._handler(health_status=503)).fetch()

        assert result.is_synthetic
        assert isinstance(result.error, NetworkError)
        assert not result.is_empty

    @pytest.mark.asyncio
    async def test_health_check_disabled(self):
        """Test no health request is made when probing is off."""
        paths = []

        def handler(request: httpx.Request) -> httpx.Response:
            paths.append(request.url.path)
            return json_response({"metrics": []})

        result = await build_fetcher(handler, check_health_on_empty=False).fetch()

        assert result.is_empty
        assert paths == ["/api/metrics/agents"]

    @pytest.mark.asyncio
    async def test_health_check_shares_fetch_deadline(self):
        """Test a slow health check is cut off by the remaining fetch budget."""

        async def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/health":
                await asyncio.sleep(5)
                return json_response({"status": "healthy"})
            await asyncio.sleep(0.3)
            return json_response({"metrics": []})

        fetcher = build_fetcher(handler, timeout_seconds=0.4)
        loop = asyncio.get_running_loop()
        started = loop.time()

        result = await fetcher.fetch()

        assert loop.time() - started < 0.6
        assert result.is_synthetic
        assert result.error.details["health_error"] == "timeout"


class TestCheckHealth:
    """Tests for check_health."""

    @pytest.mark.asyncio
    async def test_reachable(self):
        """Test a healthy backend."""

        def handler(request: httpx.Request) -> httpx.Response:
            return json_response({"status": "healthy", "uptime": 12})

        health = await build_fetcher(handler).check_health()

        assert health.reachable is True
        assert health.status == "healthy"

    @pytest.mark.asyncio
    async def test_unreachable(self):
        """Test transport failures are reported, not raised."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        health = await build_fetcher(handler).check_health()

        assert health.reachable is False
        assert "refused" in health.error

    @pytest.mark.asyncio
    async def test_non_json_body(self):
        """Test a 200 without JSON is still reachable."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b"OK")

        health = await build_fetcher(handler).check_health()

        assert health.reachable is True
        assert health.status is None

    @pytest.mark.asyncio
    async def test_unexpected_error_reported(self):
        """Test errors outside httpx.HTTPError are reported, not raised."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.InvalidURL("bad url")

        health = await build_fetcher(handler).check_health()

        assert health.reachable is False
        assert health.error == "bad url"

    @pytest.mark.asyncio
    async def test_explicit_timeout(self):
        """Test the check honours a per-call time budget."""

        async def handler(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(5)
            return json_response({"status": "healthy"})

        health = await build_fetcher(handler).check_health(timeout_seconds=0.05)

        assert health.reachable is False
        assert health.error == "timeout"


class TestClientLifecycle:
    """Tests for HTTP client ownership."""

    @pytest.mark.asyncio
    async def test_injected_client_not_closed(self):
        """Test close() leaves an injected client open."""
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: json_response(PAYLOAD)))

        async with MetricsFetcher(BASE_URL, http_client=client):
            pass

        assert not client.is_closed
        await client.aclose()

    @pytest.mark.asyncio
    async def test_owned_client_closed(self):
        """Test close() closes a client the fetcher created."""
        fetcher = MetricsFetcher(BASE_URL)
        client = await fetcher._get_client()

        await fetcher.close()

        assert client.is_closed


class TestErrors:
    """Tests for the error taxonomy."""

    def test_network_error_to_dict(self):
        """Test serialization for logging."""
        error = NetworkError("HTTP 502", url="http://x", status_code=502)

        data = error.to_dict()

        assert data["error_type"] == "NetworkError"
        assert data["status_code"] == 502
        assert data["retryable"] is True
        assert data["url"] == "http://x"
        json.dumps(data)

    def test_fallback_policy(self):
        """Test only the empty dataset does not substitute fallback data."""
        assert NetworkError("x").falls_back is True
        assert SchemaError("x").falls_back is True
        assert EmptyDatasetError("x").falls_back is False
