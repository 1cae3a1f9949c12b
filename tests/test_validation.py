"""Tests for query validation and denylist screening."""

import pytest

from vetintel.service.audit import AuditLogger
from vetintel.service.errors import BadRequestError, ProhibitedContentError
from vetintel.service.validation import (
    BLOCKED_KEYWORDS,
    MAX_QUERY_LENGTH,
    QueryValidator,
    find_blocked_keyword,
)
from vetintel.storage.memory import MemoryAuditSink
from vetintel.storage.models import Identity


@pytest.fixture
def sink():
    return MemoryAuditSink()


@pytest.fixture
def validator(sink):
    return QueryValidator(AuditLogger(sink))


IDENTITY = Identity(user_id="user-1", email="vet@example.com", access_token="tok")


class TestShape:
    async def test_returns_query(self, validator):
        query = await validator.validate({"query": "NSAID safety in cats"})
        assert query == "NSAID safety in cats"

    @pytest.mark.parametrize(
        "payload",
        [None, [], "query", {}, {"query": None}, {"query": ""}, {"query": 42}, {"query": ["a"]}],
    )
    async def test_missing_or_non_string_query(self, validator, payload):
        with pytest.raises(BadRequestError) as excinfo:
            await validator.validate(payload)
        assert excinfo.value.message == "Query is required and must be a string"
        assert excinfo.value.status_code == 400

    async def test_exactly_max_length_is_accepted(self, validator):
        query = "a" * MAX_QUERY_LENGTH
        assert await validator.validate({"query": query}) == query

    async def test_over_max_length_states_limit(self, validator, sink):
        with pytest.raises(BadRequestError) as excinfo:
            await validator.validate({"query": "a" * (MAX_QUERY_LENGTH + 1)})

        assert "500" in excinfo.value.message
        assert not isinstance(excinfo.value, ProhibitedContentError)
        assert sink.events == []

    async def test_length_checked_before_denylist(self, validator, sink):
        with pytest.raises(BadRequestError) as excinfo:
            await validator.validate({"query": "hack " * 200})

        assert not isinstance(excinfo.value, ProhibitedContentError)
        assert sink.events == []


class TestDenylist:
    @pytest.mark.parametrize("query", ["How to HACK a vet clinic", "hAcK", "exploit dosing", "SQL Injection"])
    async def test_blocked_terms_any_case(self, validator, query):
        with pytest.raises(ProhibitedContentError) as excinfo:
            await validator.validate({"query": query}, identity=IDENTITY)
        assert excinfo.value.status_code == 400
        assert excinfo.value.message == "Query contains prohibited content"

    async def test_rejection_records_exactly_one_audit_event(self, validator, sink):
        query = "hack " + "x" * 300

        with pytest.raises(ProhibitedContentError):
            await validator.validate({"query": query}, identity=IDENTITY, client_ip="203.0.113.9")

        assert len(sink.events) == 1
        event = sink.events[0]
        assert event.action == "suspicious_query"
        assert event.resource_type == "ai_search"
        assert event.user_id == "user-1"
        assert event.details == {"query": query[:100], "ip": "203.0.113.9"}

    async def test_rejection_survives_audit_failure(self, sink):
        class BrokenSink:
            async def write(self, event, *, access_token=None):
                raise RuntimeError("audit store down")

            async def close(self):
                return None

        validator = QueryValidator(AuditLogger(BrokenSink()))

        with pytest.raises(ProhibitedContentError):
            await validator.validate({"query": "exploit"})

    async def test_substring_match_is_a_known_false_positive(self, validator):
        # "description" contains "script"; the heuristic is intentionally naive
        with pytest.raises(ProhibitedContentError):
            await validator.validate({"query": "Give a description of feline asthma"})

    async def test_paraphrase_is_not_caught(self, validator):
        query = "How do I break into the pharmacy cabinet"
        assert await validator.validate({"query": query}) == query

    def test_denylist_is_fixed(self):
        assert BLOCKED_KEYWORDS == ("hack", "exploit", "injection", "script")
        assert find_blocked_keyword("Canine parvovirus") is None
        assert find_blocked_keyword("JavaScript question") == "script"
