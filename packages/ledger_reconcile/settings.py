"""Runtime settings resolved from the environment.

All tunables live on a single frozen :class:`Settings` object so callers can
thread one value through the pipeline instead of reading the environment in
every module. ``Settings.from_env()`` reads ``LEDGER_RECONCILE_*`` variables;
malformed values fall back to the defaults.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

_ENV_PREFIX = "LEDGER_RECONCILE_"


def _env_int(name: str, default: int, *, minimum: int = 1) -> int:
    raw = os.getenv(_ENV_PREFIX + name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        return default
    return value if value >= minimum else default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(_ENV_PREFIX + name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw.strip())
    except ValueError:
        return default
    return value if value > 0 else default


def _env_str(name: str, default: str) -> str:
    raw = os.getenv(_ENV_PREFIX + name)
    return raw.strip() if raw and raw.strip() else default


@dataclass(frozen=True, slots=True)
class Settings:
    """Tunables for the AI client and the extraction pipeline.

    Attributes
    ----------
    model / base_url:
        Chat-completions model and OpenAI-compatible endpoint.
    request_timeout:
        Per-request timeout (seconds) for ordinary AI calls.
    max_attempts:
        Attempts per AI call; only HTTP 429/5xx are retried.
    header_scan_rows:
        Number of leading grid rows inspected by the header locator.
    sample_rows:
        Data rows sampled for column-role prompts and statistics.
    row_summary_max_samples / row_summary_batch_size /
    row_summary_concurrency / row_summary_timeout:
        Bounds for the row-level summarization fan-out.
    context_max_chars:
        Character budget of an entry's context text.
    """

    model: str = "deepseek-chat"
    base_url: str = "https://api.deepseek.com/v1"
    request_timeout: float = 60.0
    max_attempts: int = 2
    header_scan_rows: int = 10
    sample_rows: int = 10
    row_summary_max_samples: int = 200
    row_summary_batch_size: int = 20
    row_summary_concurrency: int = 3
    row_summary_timeout: float = 20.0
    context_max_chars: int = 240

    @classmethod
    def from_env(cls) -> Settings:
        d = cls()
        return cls(
            model=_env_str("MODEL", d.model),
            base_url=_env_str("BASE_URL", d.base_url),
            request_timeout=_env_float("REQUEST_TIMEOUT", d.request_timeout),
            max_attempts=_env_int("MAX_ATTEMPTS", d.max_attempts),
            header_scan_rows=_env_int("HEADER_SCAN_ROWS", d.header_scan_rows),
            sample_rows=_env_int("SAMPLE_ROWS", d.sample_rows),
            row_summary_max_samples=_env_int("ROW_SUMMARY_MAX_SAMPLES", d.row_summary_max_samples),
            row_summary_batch_size=_env_int("ROW_SUMMARY_BATCH_SIZE", d.row_summary_batch_size),
            row_summary_concurrency=_env_int(
                "ROW_SUMMARY_CONCURRENCY", d.row_summary_concurrency
            ),
            row_summary_timeout=_env_float("ROW_SUMMARY_TIMEOUT", d.row_summary_timeout),
            context_max_chars=_env_int("CONTEXT_MAX_CHARS", d.context_max_chars, minimum=16),
        )


__all__ = ["Settings"]
