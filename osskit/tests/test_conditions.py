"""
Conditional Request Test Suite

Tests for:
- ConditionalEvaluator: full precedence table in READ and WRITE contexts
- ObjectPrecondition: header rendering and parsing
- Server-evaluated conditions through the client (GET, HEAD, copy)

Run: python -m pytest osskit/tests/test_conditions.py -v
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from osskit.core.errors import PreconditionFailed
from osskit.core.types import TargetObjectState
from osskit.tests.fake_oss import BUCKET
from osskit.transfer.conditions import (
    ConditionContext,
    ConditionOutcome,
    ConditionalEvaluator,
    ObjectPrecondition,
    normalize_etag,
)

T = datetime(2026, 1, 1, tzinfo=timezone.utc)
STATE = TargetObjectState(etag='"ABC"', last_modified=T)
SECOND = timedelta(seconds=1)

PROCEED = ConditionOutcome.PROCEED
NOT_MODIFIED = ConditionOutcome.NOT_MODIFIED
FAILED = ConditionOutcome.PRECONDITION_FAILED


# =============================================================================
# EVALUATOR
# =============================================================================

class TestEvaluator:

    @pytest.mark.parametrize(
        "precondition, expected",
        [
            (ObjectPrecondition(), PROCEED),
            (ObjectPrecondition(if_match='"ABC"'), PROCEED),
            (ObjectPrecondition(if_match="ABC"), PROCEED),
            (ObjectPrecondition(if_match='W/"ABC"'), PROCEED),
            (ObjectPrecondition(if_match="*"), PROCEED),
            (ObjectPrecondition(if_match='"XYZ"'), FAILED),
            (ObjectPrecondition(if_none_match='"ABC"'), NOT_MODIFIED),
            (ObjectPrecondition(if_none_match="*"), NOT_MODIFIED),
            (ObjectPrecondition(if_none_match='"XYZ"'), PROCEED),
            (ObjectPrecondition(if_modified_since=T), NOT_MODIFIED),
            (ObjectPrecondition(if_modified_since=T + SECOND), NOT_MODIFIED),
            (ObjectPrecondition(if_modified_since=T - SECOND), PROCEED),
            (ObjectPrecondition(if_unmodified_since=T), PROCEED),
            (ObjectPrecondition(if_unmodified_since=T - SECOND), FAILED),
            # If-Match is decided before If-None-Match.
            (ObjectPrecondition(if_match='"XYZ"', if_none_match='"ABC"'), FAILED),
            # Entity tags are decided before dates.
            (ObjectPrecondition(if_none_match='"XYZ"', if_modified_since=T), NOT_MODIFIED),
            (ObjectPrecondition(if_match='"ABC"', if_unmodified_since=T - SECOND), FAILED),
        ],
    )
    def test_read_context(self, precondition: ObjectPrecondition, expected: ConditionOutcome) -> None:
        assert ConditionalEvaluator().evaluate(precondition, STATE, ConditionContext.READ) is expected

    @pytest.mark.parametrize(
        "precondition, expected",
        [
            (ObjectPrecondition(if_none_match='"ABC"'), FAILED),
            (ObjectPrecondition(if_none_match="*"), FAILED),
            (ObjectPrecondition(if_modified_since=T), FAILED),
            (ObjectPrecondition(if_match='"ABC"'), PROCEED),
            (ObjectPrecondition(if_none_match='"XYZ"'), PROCEED),
        ],
    )
    def test_write_context_has_no_not_modified(
        self, precondition: ObjectPrecondition, expected: ConditionOutcome
    ) -> None:
        assert ConditionalEvaluator().evaluate(precondition, STATE, ConditionContext.WRITE) is expected

    def test_copy_source_context_matches_read(self) -> None:
        evaluator = ConditionalEvaluator()
        precondition = ObjectPrecondition(if_none_match='"ABC"')
        assert evaluator.evaluate(precondition, STATE, ConditionContext.COPY_SOURCE) is NOT_MODIFIED

    @pytest.mark.parametrize(
        "precondition, expected",
        [
            (ObjectPrecondition(if_match="*"), FAILED),
            (ObjectPrecondition(if_match='"ABC"'), FAILED),
            (ObjectPrecondition(if_none_match="*"), PROCEED),
            (ObjectPrecondition(if_modified_since=T), PROCEED),
            (ObjectPrecondition(if_unmodified_since=T), PROCEED),
        ],
    )
    def test_missing_target(self, precondition: ObjectPrecondition, expected: ConditionOutcome) -> None:
        assert ConditionalEvaluator().evaluate(precondition, None, ConditionContext.WRITE) is expected

    def test_sub_second_differences_are_ignored(self) -> None:
        state = TargetObjectState(etag='"ABC"', last_modified=T + timedelta(milliseconds=700))
        precondition = ObjectPrecondition(if_modified_since=T)
        assert ConditionalEvaluator().evaluate(precondition, state) is NOT_MODIFIED

    def test_check_names_the_failing_condition(self) -> None:
        result = ConditionalEvaluator().check(
            ObjectPrecondition(if_unmodified_since=T - SECOND), STATE, key="k"
        )
        assert result.is_err()
        assert isinstance(result.error, PreconditionFailed)
        assert result.error.context["condition"] == "If-Unmodified-Since"
        assert result.error.status == 412

    def test_outcome_from_status(self) -> None:
        assert ConditionalEvaluator.outcome_from_status(304) is NOT_MODIFIED
        assert ConditionalEvaluator.outcome_from_status(412) is FAILED
        assert ConditionalEvaluator.outcome_from_status(206) is PROCEED
        assert ConditionalEvaluator.outcome_from_status(404) is None


# =============================================================================
# PRECONDITION HEADERS
# =============================================================================

class TestPreconditionHeaders:

    def test_plain_and_copy_source_names(self) -> None:
        precondition = ObjectPrecondition(if_match='"A"', if_modified_since=T)
        assert precondition.to_headers() == {
            "If-Match": '"A"',
            "If-Modified-Since": "Thu, 01 Jan 2026 00:00:00 GMT",
        }
        assert precondition.to_copy_source_headers() == {
            "x-oss-copy-source-if-match": '"A"',
            "x-oss-copy-source-if-modified-since": "Thu, 01 Jan 2026 00:00:00 GMT",
        }

    def test_from_headers_is_case_insensitive(self) -> None:
        parsed = ObjectPrecondition.from_headers({
            "IF-NONE-MATCH": '"B"',
            "If-Unmodified-Since": "Thu, 01 Jan 2026 00:00:00 GMT",
        })
        assert parsed == ObjectPrecondition(if_none_match='"B"', if_unmodified_since=T)

    def test_normalize_etag(self) -> None:
        assert normalize_etag('W/"abc"') == "abc"
        assert normalize_etag('"abc"') == "abc"
        assert normalize_etag(None) is None


# =============================================================================
# THROUGH THE CLIENT
# =============================================================================

class TestServerConditions:

    @pytest.mark.asyncio
    async def test_get_if_none_match_is_not_modified(self, client, service) -> None:
        stored = service.put_object(BUCKET, "doc.txt", b"hello")

        result = await client.get("doc.txt", ObjectPrecondition(if_none_match=stored.etag))

        assert result.is_ok()
        assert result.value.not_modified
        assert result.value.content == b""

    @pytest.mark.asyncio
    async def test_get_if_match_mismatch_fails(self, client, service) -> None:
        service.put_object(BUCKET, "doc.txt", b"hello")

        result = await client.get("doc.txt", ObjectPrecondition(if_match='"NOPE"'))

        assert result.is_err()
        assert isinstance(result.error, PreconditionFailed)

    @pytest.mark.asyncio
    async def test_head_if_unmodified_since_fails_without_body(self, client, service) -> None:
        service.put_object(BUCKET, "doc.txt", b"hello")

        result = await client.head("doc.txt", ObjectPrecondition(if_unmodified_since=T - SECOND))

        assert result.is_err()
        assert isinstance(result.error, PreconditionFailed)

    @pytest.mark.asyncio
    async def test_get_if_modified_since_older_date_returns_content(self, client, service) -> None:
        service.put_object(BUCKET, "doc.txt", b"hello")

        result = await client.get("doc.txt", ObjectPrecondition(if_modified_since=T - SECOND))

        assert result.unwrap().content == b"hello"
        assert not result.unwrap().not_modified

    @pytest.mark.asyncio
    async def test_copy_source_if_none_match_is_not_modified(self, client, service) -> None:
        stored = service.put_object(BUCKET, "src.txt", b"data")

        result = await client.copy(
            "src.txt", "dst.txt", source_precondition=ObjectPrecondition(if_none_match=stored.etag)
        )

        assert result.unwrap().not_modified
        assert service.get_object(BUCKET, "dst.txt") is None

    @pytest.mark.asyncio
    async def test_copy_destination_if_none_match_star_refuses_overwrite(self, client, service) -> None:
        service.put_object(BUCKET, "src.txt", b"new")
        service.put_object(BUCKET, "dst.txt", b"old")

        result = await client.copy(
            "src.txt", "dst.txt", precondition=ObjectPrecondition(if_none_match="*")
        )

        assert isinstance(result.error, PreconditionFailed)
        assert service.get_object(BUCKET, "dst.txt").data == b"old"
        assert not service.requests_for("PUT")
