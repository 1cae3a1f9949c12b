import asyncio
import json
from unittest.mock import patch

import httpx

from vetintel.service.audit import AuditLogger, SupabaseAuditSink
from vetintel.storage.memory import MemoryAuditSink
from vetintel.storage.models import AuditEvent, Identity

IDENTITY = Identity(user_id="user-9", email="vet@example.com", access_token="user-token")


class SlowSink:
    async def write(self, event, *, access_token=None):
        await asyncio.sleep(1)

    async def close(self):
        return None


class FailingSink:
    async def write(self, event, *, access_token=None):
        raise ConnectionError("audit table unreachable")

    async def close(self):
        return None


async def test_record_writes_event_with_identity():
    sink = MemoryAuditSink()
    audit = AuditLogger(sink)

    ok = await audit.record(
        "ai_search_query", "ai_search", details={"queryLength": 5}, identity=IDENTITY
    )

    assert ok is True
    assert sink.actions() == ["ai_search_query"]
    event = sink.events[0]
    assert event.user_id == "user-9"
    assert event.details == {"queryLength": 5}
    assert event.created_at.tzinfo is not None


async def test_failed_write_is_swallowed_and_logged():
    audit = AuditLogger(FailingSink())

    with patch("vetintel.service.audit.logger") as mock_logger:
        ok = await audit.record("ai_api_error", "ai_search", details={"status": 500})

    assert ok is False
    mock_logger.warning.assert_called_once()
    assert mock_logger.warning.call_args[0][0] == "audit_write_failed"
    assert mock_logger.warning.call_args.kwargs["error_type"] == "ConnectionError"


async def test_slow_write_times_out():
    audit = AuditLogger(SlowSink(), timeout=0.01)

    ok = await audit.record("ai_search_success")

    assert ok is False


class TestSupabaseAuditSink:
    async def test_posts_rpc_with_user_token(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(204)

        sink = SupabaseAuditSink(
            "https://identity.test/", "anon-key", transport=httpx.MockTransport(handler)
        )
        event = AuditEvent(
            action="suspicious_query",
            resource_type="ai_search",
            details={"query": "hack", "ip": "10.0.0.1"},
        )

        await sink.write(event, access_token="user-token")
        await sink.close()

        request = seen[0]
        assert request.url.path == "/rest/v1/rpc/log_user_action"
        assert request.headers["authorization"] == "Bearer user-token"
        assert request.headers["apikey"] == "anon-key"
        assert json.loads(request.content) == {
            "action_name": "suspicious_query",
            "resource_type_param": "ai_search",
            "resource_id_param": None,
            "details_param": {"query": "hack", "ip": "10.0.0.1"},
        }

    async def test_falls_back_to_anon_key(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=None)

        sink = SupabaseAuditSink("https://identity.test", "anon-key", transport=httpx.MockTransport(handler))

        await sink.write(AuditEvent(action="ai_search_query"))

        assert seen[0].headers["authorization"] == "Bearer anon-key"

    async def test_rpc_error_fails_record_not_request(self):
        sink = SupabaseAuditSink(
            "https://identity.test",
            "anon-key",
            transport=httpx.MockTransport(lambda request: httpx.Response(500, text="boom")),
        )
        audit = AuditLogger(sink)

        assert await audit.record("ai_search_query", identity=IDENTITY) is False
