"""
Conditional Request Evaluation
==============================

Interprets If-Match / If-None-Match / If-Modified-Since /
If-Unmodified-Since against a known object state.

Outcomes:
---------
PROCEED              request continues on the 2xx path
NOT_MODIFIED         304-equivalent success with an empty result
PRECONDITION_FAILED  the caller must re-fetch state before retrying

Precedence (HTTP semantics, entity tags before dates):
------------------------------------------------------
1. If-Match set and != etag                   -> PRECONDITION_FAILED
2. If-None-Match set and == etag              -> NOT_MODIFIED*
3. If-Modified-Since set and mtime <= date    -> NOT_MODIFIED*
4. If-Unmodified-Since set and mtime > date   -> PRECONDITION_FAILED
5. otherwise                                  -> PROCEED

(*) only for READ and COPY_SOURCE contexts. A WRITE context (append,
copy destination) has nothing to "not modify" and reports
PRECONDITION_FAILED instead.

Dates compare at one-second granularity, the resolution of an HTTP date.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Mapping, Optional, Tuple

from osskit.core import constants as C
from osskit.core.errors import PreconditionFailed
from osskit.core.types import Err, Ok, Result, TargetObjectState, format_http_date, parse_http_date


class ConditionOutcome(Enum):
    PROCEED = "proceed"
    NOT_MODIFIED = "not_modified"
    PRECONDITION_FAILED = "precondition_failed"


class ConditionContext(Enum):
    """Which operation the precondition gates."""

    READ = "read"                # GET / HEAD
    COPY_SOURCE = "copy_source"  # x-oss-copy-source-if-* on a copy
    WRITE = "write"              # append, copy destination


_HEADER_NAMES = (
    ("if_match", "if-match"),
    ("if_none_match", "if-none-match"),
    ("if_modified_since", "if-modified-since"),
    ("if_unmodified_since", "if-unmodified-since"),
)


@dataclass(frozen=True)
class ObjectPrecondition:
    """
    Optional set of preconditions for one request.

    Attributes:
        if_match: Required current etag ("*" for any existing object).
        if_none_match: Etag the object must not currently have.
        if_modified_since: Object must have changed after this time.
        if_unmodified_since: Object must not have changed after this time.
    """

    if_match: Optional[str] = None
    if_none_match: Optional[str] = None
    if_modified_since: Optional[datetime] = None
    if_unmodified_since: Optional[datetime] = None

    @property
    def is_empty(self) -> bool:
        return (
            self.if_match is None
            and self.if_none_match is None
            and self.if_modified_since is None
            and self.if_unmodified_since is None
        )

    def to_headers(self, prefix: str = "") -> Dict[str, str]:
        """
        Render as request headers.

        Args:
            prefix: "" for plain ``If-*`` headers, or
                ``x-oss-copy-source-`` for copy-source conditions.
        """
        headers: Dict[str, str] = {}
        for attr, name in _HEADER_NAMES:
            value = getattr(self, attr)
            if value is None:
                continue
            if isinstance(value, datetime):
                value = format_http_date(value)
            header = f"{prefix}{name}" if prefix else "-".join(p.capitalize() for p in name.split("-"))
            headers[header] = value
        return headers

    def to_copy_source_headers(self) -> Dict[str, str]:
        return self.to_headers(prefix=C.COPY_SOURCE_CONDITION_PREFIX)

    @classmethod
    def from_headers(cls, headers: Mapping[str, str], prefix: str = "") -> ObjectPrecondition:
        """Parse from request headers (names matched case-insensitively)."""
        lowered = {name.lower(): value for name, value in headers.items()}
        values = {attr: lowered.get(f"{prefix}{name}") for attr, name in _HEADER_NAMES}
        return cls(
            if_match=values["if_match"],
            if_none_match=values["if_none_match"],
            if_modified_since=parse_http_date(values["if_modified_since"]),
            if_unmodified_since=parse_http_date(values["if_unmodified_since"]),
        )


def normalize_etag(etag: Optional[str]) -> Optional[str]:
    """Strip a weak validator prefix and surrounding quotes."""
    if etag is None:
        return None
    value = etag.strip()
    if value.startswith("W/"):
        value = value[2:]
    return value.strip('"')


def _seconds(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp())


def _etag_matches(wanted: str, state: TargetObjectState) -> bool:
    if wanted.strip() == "*":
        return True
    return normalize_etag(wanted) == normalize_etag(state.etag)


class ConditionalEvaluator:
    """
    Stateless precondition evaluator.

    Example:
        >>> evaluator = ConditionalEvaluator()
        >>> pre = ObjectPrecondition(if_none_match=state.etag)
        >>> evaluator.evaluate(pre, state, ConditionContext.READ)
        <ConditionOutcome.NOT_MODIFIED: 'not_modified'>
    """

    def decide(
        self,
        precondition: Optional[ObjectPrecondition],
        state: Optional[TargetObjectState],
        context: ConditionContext = ConditionContext.READ,
    ) -> Tuple[ConditionOutcome, Optional[str]]:
        """
        Evaluate and name the deciding header.

        Returns:
            (outcome, header name) where the name is None for PROCEED.
        """
        if precondition is None or precondition.is_empty:
            return ConditionOutcome.PROCEED, None

        not_modified = (
            ConditionOutcome.PRECONDITION_FAILED
            if context is ConditionContext.WRITE
            else ConditionOutcome.NOT_MODIFIED
        )

        # Missing target: nothing can match, nothing has been modified.
        if state is None:
            if precondition.if_match is not None:
                return ConditionOutcome.PRECONDITION_FAILED, "If-Match"
            return ConditionOutcome.PROCEED, None

        if precondition.if_match is not None and not _etag_matches(precondition.if_match, state):
            return ConditionOutcome.PRECONDITION_FAILED, "If-Match"

        if precondition.if_none_match is not None and _etag_matches(precondition.if_none_match, state):
            return not_modified, "If-None-Match"

        modified = state.last_modified
        if precondition.if_modified_since is not None and modified is not None:
            if _seconds(modified) <= _seconds(precondition.if_modified_since):
                return not_modified, "If-Modified-Since"

        if precondition.if_unmodified_since is not None and modified is not None:
            if _seconds(modified) > _seconds(precondition.if_unmodified_since):
                return ConditionOutcome.PRECONDITION_FAILED, "If-Unmodified-Since"

        return ConditionOutcome.PROCEED, None

    def evaluate(
        self,
        precondition: Optional[ObjectPrecondition],
        state: Optional[TargetObjectState],
        context: ConditionContext = ConditionContext.READ,
    ) -> ConditionOutcome:
        """Outcome of the preconditions against ``state`` (None if absent)."""
        return self.decide(precondition, state, context)[0]

    def check(
        self,
        precondition: Optional[ObjectPrecondition],
        state: Optional[TargetObjectState],
        context: ConditionContext = ConditionContext.READ,
        key: Optional[str] = None,
    ) -> Result[ConditionOutcome, PreconditionFailed]:
        """Like evaluate, but PRECONDITION_FAILED becomes an Err."""
        outcome, condition = self.decide(precondition, state, context)
        if outcome is ConditionOutcome.PRECONDITION_FAILED:
            return Err(PreconditionFailed.condition(condition or "unknown", key=key))
        return Ok(outcome)

    @staticmethod
    def outcome_from_status(status: int) -> Optional[ConditionOutcome]:
        """
        Map a server status to an outcome.

        None means the status is not a conditional outcome (an error the
        response mapper handles).
        """
        if status == 304:
            return ConditionOutcome.NOT_MODIFIED
        if status == 412:
            return ConditionOutcome.PRECONDITION_FAILED
        if 200 <= status < 300:
            return ConditionOutcome.PROCEED
        return None
