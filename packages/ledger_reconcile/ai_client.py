"""Thin chat-completions client for the OpenAI-compatible AI provider.

The provider (DeepSeek by default, see :class:`~ledger_reconcile.settings.Settings`)
speaks the OpenAI chat-completions protocol, so the official ``openai`` SDK is
used with a custom ``base_url``. A request is a role-tagged message list plus a
temperature and token budget; the response is free text that callers parse
with :mod:`ledger_reconcile.responses`.

Failures are normalized: any transport/HTTP/SDK failure surfaces as
:class:`~ledger_reconcile.errors.RemoteCallFailed`, and an empty completion as
:class:`~ledger_reconcile.errors.ResponseUnparseable`. Only HTTP 429 and 5xx
are retried.
"""

from __future__ import annotations

import random
import time
from collections.abc import Sequence
from typing import Any, Literal, TypedDict

from openai import OpenAI

from .errors import RemoteCallFailed, ResponseUnparseable
from .logging_setup import get_logger
from .settings import Settings

_CREDENTIAL_PREFIX = "sk-"
_CREDENTIAL_MIN_LEN = 30
_CREDENTIAL_MAX_LEN = 200

_BACKOFF_SCHEDULE_SEC: tuple[float, ...] = (0.5, 2.0)
_JITTER_PCT: float = 0.20

_logger = get_logger("ledger_reconcile.ai_client")


class ChatMessage(TypedDict):
    role: Literal["system", "user", "assistant"]
    content: str


def validate_credential(credential: str | None) -> bool:
    """Shape check only: fixed ``sk-`` prefix and a 30–200 character length."""

    if not isinstance(credential, str):
        return False
    c = credential.strip()
    return c.startswith(_CREDENTIAL_PREFIX) and _CREDENTIAL_MIN_LEN <= len(c) <= _CREDENTIAL_MAX_LEN


def _is_retryable(exc: BaseException) -> bool:
    sc = getattr(exc, "status_code", None)
    return isinstance(sc, int) and (sc == 429 or 500 <= sc < 600)


def _sleep_backoff(attempt_no: int) -> None:
    if attempt_no - 1 < len(_BACKOFF_SCHEDULE_SEC):
        base = _BACKOFF_SCHEDULE_SEC[attempt_no - 1]
    else:
        base = _BACKOFF_SCHEDULE_SEC[-1]
    jitter = base * _JITTER_PCT
    time.sleep(max(0.0, base + random.uniform(-jitter, jitter)))


def _extract_message_text(resp: Any) -> str | None:
    """Return ``resp.choices[0].message.content`` tolerating SDK shape drift."""

    choices = getattr(resp, "choices", None)
    if not choices:
        return None
    message = getattr(choices[0], "message", None)
    content = getattr(message, "content", None)
    if isinstance(content, str):
        return content
    return None


class ChatClient:
    """One credential bound to one OpenAI SDK client.

    Instances are safe to share across threads; the SDK client is thread-safe
    and this wrapper keeps no per-call state.
    """

    def __init__(self, api_key: str, *, settings: Settings | None = None) -> None:
        self._settings = settings or Settings.from_env()
        self._client = OpenAI(
            api_key=api_key,
            base_url=self._settings.base_url,
            max_retries=0,
            timeout=self._settings.request_timeout,
        )

    @property
    def settings(self) -> Settings:
        return self._settings

    def complete(
        self,
        messages: Sequence[ChatMessage],
        *,
        temperature: float = 0.1,
        max_tokens: int = 600,
        timeout: float | None = None,
        purpose: str = "chat",
    ) -> str:
        """Send ``messages`` and return the completion text.

        Parameters
        ----------
        messages:
            Role-tagged instruction/content pairs.
        temperature / max_tokens:
            Sampling temperature and completion token budget.
        timeout:
            Per-request timeout in seconds (defaults to the settings value).
        purpose:
            Short label used in log lines (``"header"``, ``"classify"``, …).
        """

        attempt = 1
        max_attempts = max(1, self._settings.max_attempts)
        while True:
            t0 = time.perf_counter()
            try:
                resp = self._client.chat.completions.create(
                    model=self._settings.model,
                    messages=[dict(m) for m in messages],
                    temperature=temperature,
                    max_tokens=max_tokens,
                    timeout=timeout if timeout is not None else self._settings.request_timeout,
                )
                break
            except Exception as e:  # noqa: BLE001 - normalized below
                dt_ms = (time.perf_counter() - t0) * 1000.0
                if attempt >= max_attempts or not _is_retryable(e):
                    _logger.warning(
                        "ai_client:call_failed purpose=%s attempt=%d latency_ms=%.2f error=%s",
                        purpose,
                        attempt,
                        dt_ms,
                        e.__class__.__name__,
                    )
                    raise RemoteCallFailed(
                        f"AI request failed ({purpose}): {e}",
                        status_code=getattr(e, "status_code", None),
                    ) from e
                _logger.info(
                    "ai_client:retry purpose=%s attempt=%d latency_ms=%.2f error=%s",
                    purpose,
                    attempt,
                    dt_ms,
                    e.__class__.__name__,
                )
                _sleep_backoff(attempt)
                attempt += 1

        text = _extract_message_text(resp)
        if not text or not text.strip():
            raise ResponseUnparseable(f"AI returned empty content ({purpose})")
        _logger.debug(
            "ai_client:call_done purpose=%s latency_ms=%.2f chars=%d",
            purpose,
            (time.perf_counter() - t0) * 1000.0,
            len(text),
        )
        return text

    def check_connection(self) -> bool:
        """Return ``True`` when the provider accepts the credential (lists models)."""

        try:
            self._client.models.list()
        except Exception as e:  # noqa: BLE001 - any failure means "not usable"
            _logger.warning("ai_client:connection_check_failed error=%s", e.__class__.__name__)
            return False
        return True


def create_client(credential: str | None, *, settings: Settings | None = None) -> ChatClient | None:
    """Return a :class:`ChatClient` for a well-shaped credential, else ``None``.

    ``None`` means "AI disabled": structure inference falls back to heuristics
    and AI-mandatory stages report an error.
    """

    if not validate_credential(credential):
        if credential:
            _logger.warning("ai_client:credential_rejected reason=shape")
        return None
    assert credential is not None
    return ChatClient(credential.strip(), settings=settings)


__all__ = ["ChatClient", "ChatMessage", "create_client", "validate_credential"]
