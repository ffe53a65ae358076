from __future__ import annotations
from typing import Any, Dict, List

from studio.models import GeneratedPayload


def collect_errors(code: GeneratedPayload | Dict[str, Any]) -> List[Dict[str, str]]:
    """
    Return a list of {"path": "...", "message": "..."} findings for generated code.
    These are advisory: generation keeps going and the caller only logs them.
    """
    if isinstance(code, GeneratedPayload):
        jsx = code.jsx
    elif isinstance(code, dict):
        jsx = code.get("jsx")
    else:
        return [{"path": "(root)", "message": "generated code must be an object"}]

    errors: List[Dict[str, str]] = []
    if not isinstance(jsx, str) or not jsx.strip():
        errors.append({"path": "jsx", "message": "No JSX code provided"})
        return errors

    if "return" not in jsx:
        errors.append({"path": "jsx", "message": "JSX code missing return statement"})
    if "export" not in jsx:
        errors.append({"path": "jsx", "message": "Component should be exported"})
    return errors


def validate_generated_code(code: GeneratedPayload | Dict[str, Any]) -> Dict[str, Any]:
    errs = collect_errors(code)
    return {"isValid": not errs, "errors": [e["message"] for e in errs]}
