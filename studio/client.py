from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import requests

from studio.debounce import DEFAULT_INTERVAL, DebouncedSync
from studio.models import ComponentState

log = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


class StudioClient:
    """Thin requests client for the session and generation routes."""

    def __init__(
        self,
        base_url: str,
        user_id: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()
        if api_key:
            self._session.headers["x-api-key"] = api_key
        if user_id:
            self._session.headers["x-user-id"] = user_id

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        resp = self._session.request(method, f"{self.base_url}{path}", timeout=self.timeout, **kwargs)
        resp.raise_for_status()
        return resp.json()

    def create_session(self, title: Optional[str] = None, **fields: Any) -> Dict[str, Any]:
        body = {k: v for k, v in {"title": title, **fields}.items() if v is not None}
        return self._request("POST", "/sessions", json=body)["session"]

    def get_session(self, session_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/sessions/{session_id}")["session"]

    def update_component(self, session_id: str, state: ComponentState) -> Dict[str, Any]:
        body = {"currentComponent": state.model_dump(include={"jsx", "css"})}
        return self._request("PUT", f"/sessions/{session_id}", json=body)["session"]

    def generate(self, session_id: str, prompt: str, context: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        body = {"sessionId": session_id, "prompt": prompt, "context": context or {}}
        return self._request("POST", "/ai/generate", json=body)

    def refine(self, session_id: str, refinement_prompt: str) -> Dict[str, Any]:
        body = {"sessionId": session_id, "refinementPrompt": refinement_prompt}
        return self._request("POST", "/ai/refine", json=body)

    def editor_sync(self, session_id: str, interval: float = DEFAULT_INTERVAL, **kwargs: Any) -> DebouncedSync:
        """Debounced autosave for one open editor; close() it when the editor goes away."""

        def push(state: ComponentState) -> None:
            self.update_component(session_id, state)
            log.debug("client: synced component session=%s", session_id)

        return DebouncedSync(push, interval=interval, **kwargs)

    def close(self) -> None:
        self._session.close()
