"""
Chat-completion client used for splitting, translation and summaries.

Every caller talks to the `ChatCompleter` protocol; `OpenAIChatClient` is the
httpx implementation against any OpenAI-compatible `/chat/completions`
endpoint. Failures are classified into fatal (never retried) and retryable
(retried on a fixed backoff schedule).
"""

import asyncio
import logging
import time
from typing import Protocol, Sequence

import httpx

from cancellation import CancellationToken, run_cancellable
from exceptions import FatalLLMError, LLMError, RetryableLLMError
from settings import TranslatorConfig

# ─────────────────────────────────────────────────────────
#  Error classification
# ─────────────────────────────────────────────────────────
FATAL_STATUS_CODES = {401, 403, 404}

FATAL_PATTERNS = (
    "invalid api key", "incorrect api key", "api key not found",
    "authentication failed", "invalid_api_key",
    "model_not_found", "model does not exist",
    "unauthorized", "forbidden",
)

RETRYABLE_PATTERNS = (
    "timeout", "timed out",
    "connection reset", "connection refused", "network",
    "rate_limit_exceeded", "rate limit", "too many requests",
    "internal server error", "bad gateway", "service unavailable",
    "temporarily unavailable",
)


def classify_error(status_code: int | None, message: str) -> type[LLMError]:
    """Pick FatalLLMError or RetryableLLMError; unknown failures are retryable."""
    if status_code is not None:
        if status_code in FATAL_STATUS_CODES:
            return FatalLLMError
        if status_code == 429 or status_code >= 500:
            return RetryableLLMError

    lowered = message.lower()
    if any(p in lowered for p in FATAL_PATTERNS):
        return FatalLLMError
    if any(p in lowered for p in RETRYABLE_PATTERNS):
        return RetryableLLMError
    return RetryableLLMError


class ChatCompleter(Protocol):
    """One-method capability: system + user prompt in, assistant text out."""

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float = 0.7,
        timeout: float | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> str:
        ...


# ─────────────────────────────────────────────────────────
#  Token Bucket Rate Limiter
# ─────────────────────────────────────────────────────────
class TokenBucket:
    def __init__(self, capacity: int, refill_rate: float):
        self.capacity = capacity
        self.tokens = capacity
        self.refill_rate = refill_rate  # tokens per second
        self.last_refill = time.monotonic()
        self.lock = asyncio.Lock()

    async def acquire(self, tokens: int = 1) -> None:
        async with self.lock:
            now = time.monotonic()
            elapsed = now - self.last_refill
            if elapsed > 0:
                self.tokens = min(self.capacity, self.tokens + elapsed * self.refill_rate)

            if self.tokens < tokens:
                wait_time = (tokens - self.tokens) / self.refill_rate
                await asyncio.sleep(wait_time)
                now = time.monotonic()
                elapsed = now - self.last_refill
                if elapsed > 0:
                    self.tokens = min(self.capacity, self.tokens + elapsed * self.refill_rate)

            self.last_refill = now
            self.tokens -= tokens


# ─────────────────────────────────────────────────────────
#  Retry
# ─────────────────────────────────────────────────────────
async def with_retry(
    call,
    *,
    max_retries: int,
    delays: Sequence[float],
    operation: str = "LLM call",
    cancel_token: CancellationToken | None = None,
    logger: logging.Logger | None = None,
):
    """
    Run `call()` (a zero-argument coroutine factory) with a fixed backoff.

    Fatal errors and cancellation propagate on the first occurrence. After
    `max_retries` retries the last retryable error is raised.
    """
    log = logger or logging.getLogger(__name__)
    last_error: RetryableLLMError | None = None

    for attempt in range(max_retries + 1):
        if attempt > 0:
            delay = delays[min(attempt - 1, len(delays) - 1)]
            log.info(f"{operation}: retry {attempt}/{max_retries} in {delay:.1f}s")
            await run_cancellable(asyncio.sleep(delay), cancel_token)
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        try:
            result = await call()
            if attempt > 0:
                log.info(f"{operation}: succeeded on retry {attempt}")
            return result
        except FatalLLMError as e:
            log.error(f"{operation}: fatal error, not retrying: {e}")
            raise
        except RetryableLLMError as e:
            last_error = e
            log.warning(f"{operation}: attempt {attempt + 1}/{max_retries + 1} failed: {e}")

    log.error(f"{operation}: giving up after {max_retries} retries")
    raise last_error


# ─────────────────────────────────────────────────────────
#  OpenAI-compatible client
# ─────────────────────────────────────────────────────────
class OpenAIChatClient:
    """ChatCompleter over httpx with a shared connection pool and RPM limit."""

    def __init__(
        self,
        config: TranslatorConfig,
        model: str,
        *,
        http_client: httpx.AsyncClient | None = None,
        rate_limiter: TokenBucket | None = None,
        logger: logging.Logger | None = None,
    ):
        self.config = config
        self.model = model
        self.endpoint = f"{config.base_url.rstrip('/')}/chat/completions"
        self.logger = logger or logging.getLogger(__name__)
        self._http_client = http_client
        self._owns_client = http_client is None
        self._rate_limiter = rate_limiter or TokenBucket(
            capacity=config.max_rpm, refill_rate=config.max_rpm / 60.0
        )

    def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.config.request_timeout),
                limits=httpx.Limits(max_keepalive_connections=20, max_connections=100),
                headers={"Accept-Encoding": "gzip, deflate"},
            )
            self._owns_client = True
        return self._http_client

    async def aclose(self) -> None:
        if self._owns_client and self._http_client is not None and not self._http_client.is_closed:
            await self._http_client.aclose()
        self._http_client = None

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float = 0.7,
        timeout: float | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> str:
        if not self.config.api_key:
            raise FatalLLMError("API key is not configured")

        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "stream": False,
            "temperature": temperature,
        }

        async def attempt() -> str:
            return await run_cancellable(self._post(payload, timeout), cancel_token)

        return await with_retry(
            attempt,
            max_retries=self.config.max_retries,
            delays=self.config.retry_delays,
            operation=f"chat completion ({self.model})",
            cancel_token=cancel_token,
            logger=self.logger,
        )

    async def _post(self, payload: dict, timeout: float | None) -> str:
        await self._rate_limiter.acquire()
        client = self._get_http_client()
        headers = {
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/json",
        }
        request_timeout = httpx.Timeout(timeout) if timeout is not None else httpx.USE_CLIENT_DEFAULT

        try:
            response = await client.post(self.endpoint, headers=headers, json=payload, timeout=request_timeout)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            message = _extract_error_message(e.response)
            error_cls = classify_error(status, message)
            raise error_cls(f"HTTP {status}: {message}", status_code=status) from e
        except httpx.TimeoutException as e:
            raise RetryableLLMError(f"request timed out: {type(e).__name__}") from e
        except httpx.RequestError as e:
            raise RetryableLLMError(f"network error: {type(e).__name__} - {e}") from e

        try:
            data = response.json()
        except ValueError as e:
            raise RetryableLLMError(f"response is not JSON: {response.text[:200]}") from e

        choices = data.get("choices") or []
        if not choices or not choices[0].get("message"):
            raise RetryableLLMError(f"unexpected response structure: {str(data)[:300]}")
        content = choices[0]["message"].get("content") or ""
        if not content.strip():
            raise RetryableLLMError("response content is empty")
        return content


def _extract_error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            return error
    return str(data)[:200]


def create_client(config: TranslatorConfig, role: str = "translation", **kwargs) -> OpenAIChatClient:
    """Client bound to the model configured for `role` ("split", "translation" or "summary")."""
    models = {
        "split": config.split_model,
        "translation": config.translation_model,
        "summary": config.summary_model,
    }
    if role not in models:
        raise ValueError(f"Unknown client role: {role!r}")
    return OpenAIChatClient(config, models[role], **kwargs)
