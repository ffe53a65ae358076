"""Model fallback orchestration.

``ComponentGenerator.generate`` walks the configured model list in order and
returns the first response that comes back, normalized into a payload. When
every model fails the list is *exhausted*: that is a terminal state which
produces a fixed mock component instead of an error, so the editor always
has something to render.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, List, Optional, Sequence

from studio import llm_client
from studio.errors import ProviderExhausted
from studio.llm_parsing import normalize_response
from studio.llm_prompts import build_system_prompt, build_user_prompt, variation_prompt
from studio.models import ComponentState, ExistingCode, GeneratedPayload, GenerationContext

log = logging.getLogger(__name__)

CompleteFn = Callable[[str, str, str], str]

MOCK_EXPLANATION = (
    "This is a mock component generated when AI services are unavailable. "
    "You can use this as a starting point and try again when the AI service is restored."
)

MOCK_CSS = """.mock-component {
  padding: 20px;
  border: 2px dashed #ccc;
  border-radius: 8px;
  text-align: center;
  background-color: #f9f9f9;
  margin: 20px;
}

.mock-button {
  background-color: #007bff;
  color: white;
  padding: 10px 20px;
  border: none;
  border-radius: 4px;
  cursor: pointer;
  margin-top: 10px;
}

.mock-button:hover {
  background-color: #0056b3;
}"""


def _jsx_text(text: str) -> str:
    return text.replace("{", "&#123;").replace("}", "&#125;").replace("<", "&lt;").replace(">", "&gt;")


def mock_component(prompt: str) -> GeneratedPayload:
    """Deterministic stand-in payload; depends on the prompt only."""
    jsx = f"""import React from 'react';

const MockComponent = () => {{
  return (
    <div className="mock-component">
      <h2>Mock Component</h2>
      <p>This is a mock component generated because AI services are temporarily unavailable.</p>
      <p>Your request: "{_jsx_text(prompt or '')}"</p>
      <button className="mock-button">Click me</button>
    </div>
  );
}};

export default MockComponent;"""
    return GeneratedPayload(
        jsx=jsx,
        css=MOCK_CSS,
        explanation=MOCK_EXPLANATION,
        features=["Mock component", "Basic styling", "Placeholder content"],
        props={},
        mock=True,
    )


def iteration_context(
    original_code: ComponentState | ExistingCode | Dict[str, Any],
    context: Optional[GenerationContext] = None,
) -> GenerationContext:
    """Context for a refinement: isIteration forced on, existingCode forced to the caller's code."""
    if isinstance(original_code, dict):
        existing = ExistingCode(jsx=original_code.get("jsx"), css=original_code.get("css"))
    else:
        existing = ExistingCode(jsx=original_code.jsx, css=original_code.css)
    base = context or GenerationContext()
    return base.model_copy(update={"existingCode": existing, "isIteration": True})


class ComponentGenerator:
    def __init__(
        self,
        models: Optional[Sequence[str]] = None,
        complete: Optional[CompleteFn] = None,
    ) -> None:
        self.models: List[str] = list(models) if models is not None else list(llm_client.LLM_MODELS)
        self._complete = complete

    def _call(self, model: str, system_prompt: str, user_prompt: str) -> str:
        if self._complete is not None:
            return self._complete(model, system_prompt, user_prompt)
        return llm_client.complete(model, system_prompt, user_prompt)

    def _attempt_models(
        self,
        prompt: str,
        context: GenerationContext,
        cancel: Optional[threading.Event],
    ) -> GeneratedPayload:
        system_prompt = build_system_prompt(context)
        user_prompt = build_user_prompt(prompt, context)
        attempted: List[str] = []
        last_error: Optional[BaseException] = None
        for model in self.models:
            if cancel is not None and cancel.is_set():
                log.info("generator: cancelled before model=%s; skipping remaining attempts", model)
                break
            attempted.append(model)
            log.info("generator: attempting model=%s iteration=%s", model, context.iterating)
            try:
                raw = self._call(model, system_prompt, user_prompt)
            except Exception as exc:
                last_error = exc
                log.warning("generator: model=%s failed: %r", model, exc)
                continue
            log.info("generator: model=%s succeeded chars=%d", model, len(raw or ""))
            return normalize_response(raw)
        raise ProviderExhausted(attempted, last_error)

    def generate(
        self,
        prompt: str,
        context: Optional[GenerationContext] = None,
        cancel: Optional[threading.Event] = None,
    ) -> GeneratedPayload:
        context = context or GenerationContext()
        try:
            return self._attempt_models(prompt, context, cancel)
        except ProviderExhausted as exhausted:
            log.warning("generator: %s; returning mock component", exhausted)
            return mock_component(prompt)

    def refine(
        self,
        original_code: ComponentState | ExistingCode | Dict[str, Any],
        refinement_prompt: str,
        context: Optional[GenerationContext] = None,
        cancel: Optional[threading.Event] = None,
    ) -> GeneratedPayload:
        return self.generate(refinement_prompt, iteration_context(original_code, context), cancel=cancel)

    def generate_variations(
        self,
        prompt: str,
        count: int = 3,
        context: Optional[GenerationContext] = None,
        cancel: Optional[threading.Event] = None,
    ) -> List[Dict[str, Any]]:
        variations: List[Dict[str, Any]] = []
        for i in range(count):
            payload = self.generate(variation_prompt(prompt, i + 1), context, cancel=cancel)
            variations.append({"id": i + 1, **payload.model_dump()})
        return variations
