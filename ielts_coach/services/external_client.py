"""
Resilient client for the generative-AI providers.

One POST per attempt. 429 is retried with exponential backoff
(`2^attempt * base_delay`), any other error status is fatal, and a
successful body is decoded as JSON before it is handed back.
"""
import json
import time
import asyncio
import logging
from enum import Enum
from dataclasses import dataclass, field
from typing import Optional, Dict, List, Tuple, FrozenSet, Sequence, Union

import httpx

from ielts_coach.core import errors
from ielts_coach.utils import parsers

logger = logging.getLogger(__name__)


class Outcome(str, Enum):
    SUCCESS = "success"
    RATE_LIMITED = "rate_limited"
    HTTP_ERROR = "http_error"
    TRANSPORT_ERROR = "transport_error"


class FailureKind(str, Enum):
    UPSTREAM_ERROR = "UpstreamError"
    RETRIES_EXHAUSTED = "RetriesExhausted"
    RESPONSE_PARSE_ERROR = "ResponseParseError"


@dataclass(frozen=True)
class CallRequest:
    url: str
    body: bytes
    headers: Tuple[Tuple[str, str], ...] = ()
    method: str = "POST"

    @classmethod
    def from_json(cls, url: str, payload: dict, headers: Optional[Dict[str, str]] = None) -> "CallRequest":
        merged = {"Content-Type": "application/json"}
        merged.update(headers or {})
        return cls(
            url=url,
            body=json.dumps(payload).encode("utf-8"),
            headers=tuple(merged.items()),
        )


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay_ms: int = 1000
    retryable_statuses: FrozenSet[int] = frozenset({429})
    # Same backoff formula on network errors as on 429
    backoff_on_transport_error: bool = True

    def delay_seconds(self, attempt: int) -> float:
        return (2 ** attempt) * self.base_delay_ms / 1000.0


DEFAULT_POLICY = RetryPolicy()


@dataclass(frozen=True)
class CallAttempt:
    number: int
    outcome: Outcome
    timestamp: float
    status: Optional[int] = None
    delay: float = 0.0
    error: Optional[str] = None


@dataclass(frozen=True)
class FailureReason:
    kind: FailureKind
    message: str
    status: Optional[int] = None


@dataclass
class CallResult:
    attempts: List[CallAttempt] = field(default_factory=list)
    body: Optional[bytes] = None
    data: Union[dict, list, None] = None
    text: Optional[str] = None
    failure: Optional[FailureReason] = None

    @property
    def ok(self) -> bool:
        return self.failure is None

    def raise_for_failure(self) -> "CallResult":
        """Turns a failed result into the matching SpeechCoachError."""
        if self.failure is None:
            return self
        kind = self.failure.kind
        if kind == FailureKind.UPSTREAM_ERROR:
            raise errors.UpstreamError(status=self.failure.status, detail=self.failure.message)
        if kind == FailureKind.RETRIES_EXHAUSTED:
            raise errors.RetriesExhausted(detail=self.failure.message)
        raise errors.ResponseParseError(detail=self.failure.message)


class ResilientCallClient:
    def __init__(self, http_client: httpx.AsyncClient, sleep=asyncio.sleep, clock=time.time):
        self._http = http_client
        self._sleep = sleep
        self._clock = clock

    async def execute(
        self,
        request: CallRequest,
        policy: RetryPolicy = DEFAULT_POLICY,
        text_path: Optional[Sequence[Union[str, int]]] = None,
    ) -> CallResult:
        """
        Sends `request` until it succeeds, fails fatally or runs out of attempts.

        With `text_path`, the model text found there is placed on `result.text`
        (placeholder when missing).
        """
        result = CallResult()
        response = None
        last = policy.max_attempts - 1

        for attempt in range(policy.max_attempts):
            started = self._clock()
            try:
                response = await self._http.request(
                    request.method,
                    request.url,
                    headers=dict(request.headers),
                    content=request.body,
                )
            except httpx.HTTPError as e:
                delay = policy.delay_seconds(attempt) if policy.backoff_on_transport_error else 0.0
                if attempt == last:
                    delay = 0.0
                logger.error(f"❌ API call failed (attempt {attempt + 1}/{policy.max_attempts}): {e!r}")
                result.attempts.append(
                    CallAttempt(attempt, Outcome.TRANSPORT_ERROR, started, delay=delay, error=repr(e))
                )
                response = None
                if delay:
                    await self._sleep(delay)
                continue

            status = response.status_code

            if response.is_success:
                duration = self._clock() - started
                logger.info(f"📥 RECEIVED {status} ({duration:.2f}s) on attempt {attempt + 1}")
                result.attempts.append(CallAttempt(attempt, Outcome.SUCCESS, started, status=status))
                break

            if status in policy.retryable_statuses:
                delay = policy.delay_seconds(attempt) if attempt < last else 0.0
                if delay:
                    logger.warning(f"⚠️ Rate limit exceeded. Retrying in {int(delay * 1000)}ms...")
                else:
                    logger.warning(f"⚠️ Rate limit exceeded on final attempt {attempt + 1}.")
                result.attempts.append(
                    CallAttempt(attempt, Outcome.RATE_LIMITED, started, status=status, delay=delay)
                )
                response = None
                if delay:
                    await self._sleep(delay)
                continue

            # Not OK, not retryable: stop here
            logger.error(f"❌ API returned non-OK status: {status}. Body: {response.text[:200]}")
            result.attempts.append(CallAttempt(attempt, Outcome.HTTP_ERROR, started, status=status))
            result.failure = FailureReason(
                FailureKind.UPSTREAM_ERROR, f"API returned non-OK status: {status}", status=status
            )
            return result

        if response is None:
            logger.error(f"❌ No successful response after {len(result.attempts)} attempts.")
            result.failure = FailureReason(
                FailureKind.RETRIES_EXHAUSTED,
                f"Failed to get a response after {len(result.attempts)} attempts",
                status=result.attempts[-1].status if result.attempts else None,
            )
            return result

        result.body = response.content
        try:
            result.data = json.loads(response.content)
        except ValueError as e:
            logger.error(f"❌ Error parsing API response: {e}")
            result.failure = FailureReason(FailureKind.RESPONSE_PARSE_ERROR, f"Response body is not JSON: {e}")
            return result

        if text_path is not None:
            result.text = parsers.extract_text(result.data, text_path)
        return result
