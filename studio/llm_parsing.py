from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from studio.models import GeneratedPayload

log = logging.getLogger(__name__)

MISSING_JSX = "// No JSX code provided"
MISSING_CSS = "/* No styles provided */"
EMPTY_RESPONSE_JSX = "// Error generating component"
DEFAULT_EXPLANATION = "Component generated successfully"
BASIC_PARSE_EXPLANATION = "Component generated with basic parsing"
DEFAULT_FEATURES = ["Generated component"]

_PAYLOAD_KEYS = {"jsx", "css", "explanation", "features", "props", "code", "tsx"}
_CODE_TAGS = {"", "jsx", "tsx", "javascript", "typescript", "js", "ts"}

_FENCE_RE = re.compile(r"```[ \t]*([A-Za-z0-9_+-]*)[^\n]*\n([\s\S]*?)\n?[ \t]*```")


def _greedy_json_slice(text: str) -> Optional[str]:
    """First '{' to the last '}'; tolerant of prose before and after the object."""
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return None
    return text[start : end + 1]


def _load_object(candidate: str) -> Optional[Dict[str, Any]]:
    for attempt in range(2):
        s = candidate
        if attempt:
            s = re.sub(r",\s*([}\]])", r"\1", s)
            s = s.replace("“", '"').replace("”", '"').replace("’", "'")
        try:
            # strict=False: models routinely emit raw newlines inside code strings
            doc = json.loads(s, strict=False)
        except ValueError:
            continue
        return doc if isinstance(doc, dict) else None
    return None


def _as_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    if value is None:
        return ""
    if isinstance(value, list):
        return "\n".join(str(v) for v in value if v is not None)
    return str(value)


def _coerce_features(value: Any) -> List[str]:
    if isinstance(value, list):
        out = [str(v) for v in value if isinstance(v, (str, int, float)) and str(v).strip()]
        return out or list(DEFAULT_FEATURES)
    if isinstance(value, str) and value.strip():
        return [value.strip()]
    return list(DEFAULT_FEATURES)


def _payload_from_doc(doc: Dict[str, Any]) -> GeneratedPayload:
    out: Dict[str, Any] = {k: v for k, v in doc.items() if k not in _PAYLOAD_KEYS}
    jsx = _as_text(doc.get("jsx") or doc.get("tsx") or doc.get("code"))
    css = _as_text(doc.get("css"))
    if not jsx.strip():
        log.warning("llm_parsing: JSON response missing jsx field, using placeholder")
        jsx = MISSING_JSX
    out["jsx"] = jsx
    out["css"] = css if css.strip() else MISSING_CSS
    explanation = doc.get("explanation")
    out["explanation"] = explanation.strip() if isinstance(explanation, str) and explanation.strip() else DEFAULT_EXPLANATION
    out["features"] = _coerce_features(doc.get("features"))
    props = doc.get("props")
    out["props"] = dict(props) if isinstance(props, dict) else {}
    return GeneratedPayload(**out)


def _fenced_blocks(text: str) -> List[Tuple[str, str]]:
    return [(tag.lower(), body) for tag, body in _FENCE_RE.findall(text)]


def _payload_from_fences(text: str) -> GeneratedPayload:
    jsx: Optional[str] = None
    css: Optional[str] = None
    for tag, body in _fenced_blocks(text):
        if css is None and tag == "css":
            css = body.strip()
        elif jsx is None and tag in _CODE_TAGS:
            jsx = body.strip()
    return GeneratedPayload(
        jsx=jsx or text,
        css=css or MISSING_CSS,
        explanation=DEFAULT_EXPLANATION,
        features=list(DEFAULT_FEATURES),
        props={},
    )


def normalize_response(raw_text: Optional[str]) -> GeneratedPayload:
    """Coerce free-form model output into a payload. Never raises.

    Order:
    - greedy {...} slice parsed as the payload (sanitized retry on failure);
    - fenced ```jsx/tsx/js/ts``` and ```css``` blocks;
    - the raw text itself as jsx.
    """
    text = raw_text if isinstance(raw_text, str) else _as_text(raw_text)
    try:
        candidate = _greedy_json_slice(text)
        if candidate:
            doc = _load_object(candidate)
            if doc is not None and _PAYLOAD_KEYS.intersection(doc):
                return _payload_from_doc(doc)
        log.debug("llm_parsing: no JSON payload found, extracting code blocks")
        payload = _payload_from_fences(text)
        if payload.is_usable():
            return payload
        raise ValueError("empty response text")
    except Exception as exc:
        log.warning("llm_parsing: response parsing error, using raw text: %r", exc)
        return GeneratedPayload(
            jsx=text if text.strip() else EMPTY_RESPONSE_JSX,
            css="",
            explanation=BASIC_PARSE_EXPLANATION,
            features=list(DEFAULT_FEATURES),
            props={},
        )
