import asyncio
import inspect
import json
import os
import sys
from pathlib import Path

# Configure the environment before anything imports vetintel settings
os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("USE_MEMORY_STORE", "true")
os.environ.setdefault("GOOGLE_GEMINI_API_KEY", "test-gemini-key")
os.environ.setdefault("SUPABASE_URL", "https://identity.test")
os.environ.setdefault("SUPABASE_ANON_KEY", "test-anon-key")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import httpx  # noqa: E402
import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from vetintel.service.audit import AuditLogger  # noqa: E402
from vetintel.service.auth import CredentialVerifier  # noqa: E402
from vetintel.service.gateway import QueryGateway  # noqa: E402
from vetintel.service.gemini import GeminiClient  # noqa: E402
from vetintel.service.rate_limit import RateLimiter  # noqa: E402
from vetintel.service.runtime import reset_runtime_for_tests  # noqa: E402
from vetintel.service.validation import QueryValidator  # noqa: E402
from vetintel.storage.memory import MemoryAuditSink, MemoryRateLimitStore  # noqa: E402

VALID_TOKEN = "valid-token"
USER_ID = "user-123"
USER_EMAIL = "vet@example.com"
ANSWER = "NSAIDs need care in cats [1]. References: 1. Foo et al."


@pytest.fixture(autouse=True)
def reset_runtime_state():
    reset_runtime_for_tests()
    yield
    reset_runtime_for_tests()


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")


class FakeClock:
    """Millisecond clock the tests advance by hand."""

    def __init__(self, start_ms: int = 1_700_000_000_000):
        self.now_ms = start_ms

    def __call__(self) -> int:
        return self.now_ms

    def advance(self, seconds: float) -> None:
        self.now_ms += int(seconds * 1000)


def identity_handler(request: httpx.Request) -> httpx.Response:
    """Stand-in for GoTrue ``/auth/v1/user`` and the role RPC."""
    auth = request.headers.get("authorization", "")
    if auth != f"Bearer {VALID_TOKEN}":
        return httpx.Response(401, json={"msg": "invalid JWT"})
    if request.url.path == "/auth/v1/user":
        return httpx.Response(200, json={"id": USER_ID, "email": USER_EMAIL})
    if request.url.path == "/rest/v1/rpc/get_user_role":
        return httpx.Response(200, json="veterinarian")
    return httpx.Response(404)


class UpstreamRecorder:
    """Mock Gemini transport that records every call it receives."""

    def __init__(self, status_code: int = 200, payload=None, text: str | None = None):
        self.status_code = status_code
        self.payload = payload if payload is not None else {
            "candidates": [{"content": {"parts": [{"text": ANSWER}]}}]
        }
        self.text = text
        self.calls: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        if self.text is not None:
            return httpx.Response(self.status_code, text=self.text)
        return httpx.Response(self.status_code, json=self.payload)

    def last_prompt(self) -> str:
        body = json.loads(self.calls[-1].content)
        return body["contents"][0]["parts"][0]["text"]


class GatewayHarness:
    def __init__(self, gateway, store, sink, upstream, clock):
        self.gateway = gateway
        self.store = store
        self.sink = sink
        self.upstream = upstream
        self.clock = clock


def build_gateway(
    *,
    upstream: UpstreamRecorder | None = None,
    store=None,
    api_key: str | None = "test-gemini-key",
    clock: FakeClock | None = None,
) -> GatewayHarness:
    upstream = upstream or UpstreamRecorder()
    store = store if store is not None else MemoryRateLimitStore()
    clock = clock or FakeClock()
    sink = MemoryAuditSink()
    audit = AuditLogger(sink, timeout=1.0)
    gateway = QueryGateway(
        verifier=CredentialVerifier(
            "https://identity.test",
            "test-anon-key",
            transport=httpx.MockTransport(identity_handler),
        ),
        validator=QueryValidator(audit),
        limiter=RateLimiter(store, clock=clock),
        upstream=GeminiClient(api_key, transport=httpx.MockTransport(upstream)),
        audit=audit,
    )
    return GatewayHarness(gateway, store, sink, upstream, clock)


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def harness(fake_clock):
    return build_gateway(clock=fake_clock)
