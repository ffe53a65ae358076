from __future__ import annotations

import hashlib
import logging
import os
import threading
from typing import Any, Dict, Optional

from pydantic import ValidationError as PydanticValidationError

from studio.cache import Cache, NullCache
from studio.generator import ComponentGenerator, iteration_context
from studio.models import ComponentState, ExistingCode, GeneratedPayload, GenerationContext
from studio.validators import validate_generated_code

log = logging.getLogger(__name__)

AI_CACHE_TTL_SECONDS = int(os.getenv("AI_CACHE_TTL_SECONDS", "1800") or 1800)


def cache_key(prompt: str, context: GenerationContext, schema_version: str = "v1") -> str:
    """Deterministic key over (prompt, context).

    The context fingerprint carries isIteration and a hash of existingCode, so
    refining the same prompt against different code does not reuse an entry.
    Identical prompt + identical context still share one entry.
    """
    h = hashlib.sha256()
    h.update((prompt or "").encode("utf-8"))
    h.update(("\n" + context.fingerprint()).encode("utf-8"))
    h.update(("\n" + schema_version).encode("utf-8"))
    return f"ai_cache:{h.hexdigest()}"


def _usable_cached(value: Any) -> Optional[GeneratedPayload]:
    if not isinstance(value, dict):
        return None
    try:
        payload = GeneratedPayload(**value)
    except (PydanticValidationError, TypeError):
        return None
    return payload if payload.is_usable() else None


class GenerationPipeline:
    """Cache lookup and write-through around the generator."""

    def __init__(
        self,
        generator: ComponentGenerator,
        cache: Optional[Cache] = None,
        ttl_seconds: int = AI_CACHE_TTL_SECONDS,
    ) -> None:
        self.generator = generator
        self.cache = cache or NullCache()
        self.ttl_seconds = ttl_seconds

    def _lookup(self, key: str) -> Optional[GeneratedPayload]:
        try:
            value = self.cache.get(key)
        except Exception as exc:
            log.warning("pipeline: cache read failed key=%s err=%r", key[:20], exc)
            return None
        if value is None:
            log.debug("pipeline: cache miss key=%s", key[:20])
            return None
        payload = _usable_cached(value)
        if payload is None:
            log.warning("pipeline: cached value invalid, ignoring key=%s", key[:20])
            return None
        log.info("pipeline: cache hit key=%s", key[:20])
        return payload

    def _store(self, key: str, payload: GeneratedPayload) -> None:
        if payload.model_extra and payload.model_extra.get("mock"):
            # Mock components mean the providers were down; retry them next time.
            return
        try:
            self.cache.set(key, payload.model_dump(), self.ttl_seconds)
        except Exception as exc:
            log.warning("pipeline: cache write failed key=%s err=%r", key[:20], exc)

    def generate_cached(
        self,
        prompt: str,
        context: Optional[GenerationContext] = None,
        cancel: Optional[threading.Event] = None,
    ) -> GeneratedPayload:
        context = context or GenerationContext()
        key = cache_key(prompt, context)
        cached = self._lookup(key)
        if cached is not None:
            return cached

        payload = self.generator.generate(prompt, context, cancel=cancel)
        validation = validate_generated_code(payload)
        if not validation["isValid"]:
            log.warning("pipeline: generated code validation failed: %s", validation["errors"])
        self._store(key, payload)
        return payload

    def refine_cached(
        self,
        original_code: ComponentState | ExistingCode | Dict[str, Any],
        refinement_prompt: str,
        context: Optional[GenerationContext] = None,
        cancel: Optional[threading.Event] = None,
    ) -> GeneratedPayload:
        return self.generate_cached(refinement_prompt, iteration_context(original_code, context), cancel=cancel)
