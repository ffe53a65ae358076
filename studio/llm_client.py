from __future__ import annotations
import logging
import os
import threading
import time
from typing import Any, Dict, List, Optional

import requests

from studio.errors import ProviderError

log = logging.getLogger(__name__)

OPENROUTER_API_KEY = os.getenv("OPENROUTER_API_KEY", "").strip()
LLM_ENDPOINT = os.getenv("LLM_ENDPOINT", "https://openrouter.ai/api/v1/chat/completions").strip()
LLM_APP_TITLE = os.getenv("LLM_APP_TITLE", "component-studio").strip()

DEFAULT_MODELS = [
    "anthropic/claude-3.5-sonnet",
    "openai/gpt-4o-mini",
    "meta-llama/llama-3.1-8b-instruct:free",
    "microsoft/phi-3-mini-128k-instruct:free",
]


def _model_list() -> List[str]:
    raw = os.getenv("LLM_MODELS", "")
    models = [m.strip() for m in raw.split(",") if m.strip()]
    return models or list(DEFAULT_MODELS)


LLM_MODELS: List[str] = _model_list()

try:
    TEMPERATURE = float(os.getenv("TEMPERATURE", "0.7"))
except ValueError:
    TEMPERATURE = 0.7
try:
    LLM_MAX_TOKENS = int(os.getenv("LLM_MAX_TOKENS", "4000"))
except ValueError:
    LLM_MAX_TOKENS = 4000
try:
    LLM_TIMEOUT_SECS = float(os.getenv("LLM_TIMEOUT_SECS", "60"))
except ValueError:
    LLM_TIMEOUT_SECS = 60.0

_BACKOFF_LOCK = threading.Lock()
_BACKOFF_UNTIL = 0.0
_BACKOFF_DELAY = 0.0
try:
    _BACKOFF_INITIAL = float(os.getenv("LLM_BACKOFF_INITIAL", "3.0") or 3.0)
except ValueError:
    _BACKOFF_INITIAL = 3.0
try:
    _BACKOFF_MAX = float(os.getenv("LLM_BACKOFF_MAX", "45.0") or 45.0)
except ValueError:
    _BACKOFF_MAX = 45.0
_BACKOFF_FACTOR = 1.5


def _sleep_if_backing_off() -> None:
    now = time.time()
    wait_for = 0.0
    with _BACKOFF_LOCK:
        if _BACKOFF_UNTIL > now:
            wait_for = _BACKOFF_UNTIL - now
    if wait_for > 0:
        log.info("llm backoff active; waiting %.2fs before next request", wait_for)
        time.sleep(min(wait_for, _BACKOFF_MAX))


def _register_rate_limit(retry_after: Optional[str]) -> float:
    delay = None
    if retry_after:
        try:
            delay = float(retry_after)
        except ValueError:
            delay = None
    global _BACKOFF_DELAY, _BACKOFF_UNTIL
    with _BACKOFF_LOCK:
        base = _BACKOFF_DELAY or _BACKOFF_INITIAL
        if delay is None:
            delay = base * _BACKOFF_FACTOR
        delay = max(_BACKOFF_INITIAL, min(delay, _BACKOFF_MAX))
        _BACKOFF_DELAY = delay
        _BACKOFF_UNTIL = time.time() + delay
    log.warning("llm rate limited; backing off for %.2fs", delay)
    return delay


def _reset_backoff() -> None:
    global _BACKOFF_DELAY, _BACKOFF_UNTIL
    with _BACKOFF_LOCK:
        _BACKOFF_DELAY = 0.0
        _BACKOFF_UNTIL = 0.0


def _extract_text(data: Any) -> Optional[str]:
    if not isinstance(data, dict):
        return None
    choices = data.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        return None
    message = choices[0].get("message") or {}
    content = message.get("content")
    if isinstance(content, list):
        # Some providers return content parts
        content = "".join(p.get("text", "") for p in content if isinstance(p, dict))
    if isinstance(content, str) and content.strip():
        return content
    return None


def complete(model: str, system_prompt: str, user_prompt: str, timeout: Optional[float] = None) -> str:
    """Run one chat completion and return the assistant text.

    Raises ProviderError on any failure; the caller decides whether to fall back.
    """
    if not OPENROUTER_API_KEY:
        raise ProviderError("missing OPENROUTER_API_KEY")

    headers = {
        "Authorization": f"Bearer {OPENROUTER_API_KEY}",
        "Content-Type": "application/json",
        "X-Title": LLM_APP_TITLE,
    }
    body: Dict[str, Any] = {
        "model": model,
        "messages": [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ],
        "temperature": TEMPERATURE,
        "max_tokens": LLM_MAX_TOKENS,
    }

    _sleep_if_backing_off()
    try:
        resp = requests.post(LLM_ENDPOINT, headers=headers, json=body, timeout=timeout or LLM_TIMEOUT_SECS)
    except requests.RequestException as exc:
        raise ProviderError(f"request error: {exc!r}") from exc

    if resp.status_code == 429:
        _register_rate_limit(resp.headers.get("Retry-After"))
        raise ProviderError("rate limited", status=429)
    if resp.status_code != 200:
        try:
            msg = resp.text[:400]
        except Exception:
            msg = str(resp.status_code)
        raise ProviderError(f"HTTP {resp.status_code}: {msg}", status=resp.status_code)
    _reset_backoff()

    try:
        data = resp.json()
    except ValueError as exc:
        raise ProviderError("non-JSON HTTP body") from exc

    text = _extract_text(data)
    if not text:
        raise ProviderError("empty response text")
    return text


def status() -> Dict[str, Any]:
    return {
        "provider": "openrouter" if OPENROUTER_API_KEY else None,
        "endpoint": LLM_ENDPOINT,
        "models": list(LLM_MODELS),
        "has_token": bool(OPENROUTER_API_KEY),
        "using": "openrouter" if OPENROUTER_API_KEY else "mock",
    }
