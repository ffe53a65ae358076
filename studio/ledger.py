"""Mutation rules for a session's chat history, current component and versions.

Every operation copies the session, applies its whole transition to the copy
and persists it with a single save. If validation or the save fails, the
caller's session object is untouched and nothing partial reaches the store.

One archive rule is shared by every path that replaces ``currentComponent``:
a non-empty prior component is appended to ``componentVersions`` first; an
empty one never is. ``componentVersions`` is append-only.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import ValidationError as PydanticValidationError

from studio.errors import NotFoundOrUnauthorized, PersistenceFailure, ValidationError
from studio.models import (
    ChatMessage,
    ComponentState,
    GeneratedPayload,
    GenerationContext,
    MessageMetadata,
    Session,
    SessionSettings,
    SessionStats,
    utcnow,
)
from studio.store import SessionStore

log = logging.getLogger(__name__)

DEFAULT_GENERATED_REPLY = "Component generated successfully"
DEFAULT_REFINED_REPLY = "Component refined successfully"
DEFAULT_IMAGE_REPLY = "Component generated from image and prompt"


@dataclass(frozen=True)
class Found:
    session: Session


@dataclass(frozen=True)
class NotFound:
    """Missing, inactive and foreign sessions all look like this."""


LookupResult = Union[Found, NotFound]


def find_owned(store: SessionStore, session_id: str, user_id: Optional[str]) -> LookupResult:
    if not session_id or not user_id:
        return NotFound()
    session = store.find_one({"id": session_id, "userId": user_id, "isActive": True})
    return Found(session) if session is not None else NotFound()


def recompute_stats(session: Session) -> SessionStats:
    """Derive counters from the chat history; exportsCount is carried over."""
    generations = sum(
        1 for m in session.chatHistory if m.role == "assistant" and m.metadata.generatedCode is not None
    )
    return SessionStats(
        messagesCount=len(session.chatHistory),
        generationsCount=generations,
        exportsCount=session.stats.exportsCount,
    )


def archive_and_replace(session: Session, new_state: ComponentState) -> bool:
    """Replace currentComponent, archiving a non-empty prior state first.

    Returns True when a version was archived.
    """
    prior = session.currentComponent
    archived = False
    if not prior.is_empty():
        session.componentVersions.append(prior.model_copy(deep=True))
        archived = True
    session.currentComponent = new_state
    return archived


def _require_text(value: Any, path: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError([{"path": path, "message": f"{path} must be a non-empty string"}])
    return value


def _require_payload(payload: Any) -> GeneratedPayload:
    if not isinstance(payload, GeneratedPayload) or not payload.is_usable():
        raise ValidationError([{"path": "payload.jsx", "message": "generated payload must carry non-empty jsx"}])
    return payload


def _paired_append(
    session: Session,
    prompt: str,
    reply: str,
    code: ComponentState,
    user_meta: MessageMetadata,
    assistant_meta: MessageMetadata,
) -> None:
    now = utcnow()
    assistant_meta = assistant_meta.model_copy(update={"generatedCode": code.model_copy()})
    session.chatHistory.append(ChatMessage(role="user", content=prompt, timestamp=now, metadata=user_meta))
    session.chatHistory.append(ChatMessage(role="assistant", content=reply, timestamp=now, metadata=assistant_meta))


def _details(exc: PydanticValidationError, prefix: str = "") -> List[Dict[str, str]]:
    out = []
    for err in exc.errors():
        path = ".".join(str(p) for p in (prefix, *err.get("loc", ())) if p != "")
        out.append({"path": path or "(root)", "message": err.get("msg", "invalid value")})
    return out


def _edit_metadata(
    draft: Session,
    title: Optional[str],
    description: Optional[str],
    tags: Optional[List[str]],
    settings: Optional[Dict[str, Any]],
) -> None:
    if title:
        draft.title = title
    if description is not None:
        draft.description = description
    if tags is not None:
        draft.tags = list(tags)
    if settings:
        merged = draft.settings.model_dump()
        merged.update({k: v for k, v in settings.items() if v is not None})
        try:
            draft.settings = SessionSettings(**merged)
        except PydanticValidationError as exc:
            raise ValidationError(_details(exc, "settings")) from exc


def _edit_component(draft: Session, component: Dict[str, Any] | ComponentState) -> None:
    """Merge a partial component into the draft; an unchanged result archives nothing."""
    if isinstance(component, ComponentState):
        changes = component.model_dump()
    elif isinstance(component, dict):
        changes = {k: v for k, v in component.items() if k in {"jsx", "css", "typescript"} and v is not None}
    else:
        raise ValidationError([{"path": "currentComponent", "message": "currentComponent must be an object"}])
    try:
        merged = ComponentState(**{**draft.currentComponent.model_dump(), **changes})
    except PydanticValidationError as exc:
        raise ValidationError(_details(exc, "currentComponent")) from exc
    if merged == draft.currentComponent:
        log.debug("ledger: manual edit session=%s is a no-op", draft.id)
        return
    archive_and_replace(draft, merged)
    log.info("ledger: manual edit session=%s versions=%d", draft.id, len(draft.componentVersions))


def export_filename(title: str) -> str:
    safe = "".join(ch if ch.isascii() and ch.isalnum() else "_" for ch in (title or "session"))
    return f"{safe.lower()}_export.json"


class SessionLedger:
    def __init__(self, store: SessionStore) -> None:
        self.store = store

    def _commit(self, draft: Session, touch: bool = True) -> Session:
        draft.stats = recompute_stats(draft)
        now = utcnow()
        draft.updatedAt = now
        if touch:
            draft.lastAccessed = now
        # assignment skips field constraints
        try:
            draft = Session.model_validate(draft.model_dump())
        except PydanticValidationError as exc:
            raise ValidationError(_details(exc)) from exc
        try:
            self.store.save(draft)
        except PersistenceFailure:
            raise
        except Exception as exc:
            raise PersistenceFailure(f"failed to save session {draft.id}: {exc!r}") from exc
        return draft

    def create(
        self,
        user_id: str,
        title: Optional[str] = None,
        description: Optional[str] = None,
        tags: Optional[List[str]] = None,
        settings: Optional[Dict[str, Any]] = None,
    ) -> Session:
        _require_text(user_id, "userId")
        session = Session(userId=user_id)
        _edit_metadata(session, title, description, tags, settings)
        log.info("ledger: created session=%s user=%s", session.id, user_id)
        return self._commit(session)

    def load(self, session_id: str, user_id: Optional[str], touch: bool = True) -> Session:
        result = find_owned(self.store, session_id, user_id)
        if isinstance(result, NotFound):
            raise NotFoundOrUnauthorized(session_id)
        session = result.session
        if touch:
            session = self._commit(session)
        return session

    def list_for(
        self,
        user_id: str,
        page: int = 1,
        limit: int = 10,
        search: Optional[str] = None,
        sort_by: str = "lastAccessed",
    ) -> Tuple[List[Session], Dict[str, int]]:
        page = max(1, int(page))
        limit = max(1, int(limit))
        query = {"userId": user_id, "isActive": True}
        docs = self.store.find(query, search=search, sort_by=sort_by, skip=(page - 1) * limit, limit=limit)
        total = self.store.count_documents(query, search=search)
        pagination = {
            "page": page,
            "limit": limit,
            "total": total,
            "totalPages": math.ceil(total / limit) if total else 0,
        }
        return docs, pagination

    def apply_generation(
        self,
        session: Session,
        prompt: str,
        payload: GeneratedPayload,
        context: Optional[GenerationContext] = None,
    ) -> Session:
        _require_text(prompt, "prompt")
        _require_payload(payload)
        context = context or GenerationContext()
        draft = session.model_copy(deep=True)
        code = payload.code(typescript=context.typescript)
        _paired_append(
            draft,
            prompt,
            payload.explanation or DEFAULT_GENERATED_REPLY,
            code,
            MessageMetadata(hasImage=False),
            MessageMetadata(),
        )
        archived = archive_and_replace(draft, code)
        log.info(
            "ledger: generation session=%s iteration=%s archived=%s versions=%d",
            draft.id,
            context.isIteration,
            archived,
            len(draft.componentVersions),
        )
        return self._commit(draft)

    def apply_refinement(self, session: Session, refinement_prompt: str, payload: GeneratedPayload) -> Session:
        _require_text(refinement_prompt, "refinementPrompt")
        _require_payload(payload)
        draft = session.model_copy(deep=True)
        code = payload.code(typescript=draft.currentComponent.typescript)
        _paired_append(
            draft,
            refinement_prompt,
            payload.explanation or DEFAULT_REFINED_REPLY,
            code,
            MessageMetadata(hasImage=False, isRefinement=True),
            MessageMetadata(isRefinement=True),
        )
        archived = archive_and_replace(draft, code)
        log.info(
            "ledger: refinement session=%s archived=%s versions=%d",
            draft.id,
            archived,
            len(draft.componentVersions),
        )
        return self._commit(draft)

    def apply_image_generation(
        self,
        session: Session,
        prompt: str,
        image_ref: str,
        payload: GeneratedPayload,
    ) -> Session:
        _require_text(prompt, "prompt")
        _require_text(image_ref, "image")
        _require_payload(payload)
        draft = session.model_copy(deep=True)
        code = payload.code(typescript=False)
        _paired_append(
            draft,
            prompt,
            payload.explanation or DEFAULT_IMAGE_REPLY,
            code,
            MessageMetadata(hasImage=True, imageUrl=image_ref),
            MessageMetadata(),
        )
        archived = archive_and_replace(draft, code)
        log.info("ledger: image generation session=%s archived=%s", draft.id, archived)
        return self._commit(draft)

    def apply_manual_edit(self, session: Session, component: Dict[str, Any] | ComponentState) -> Session:
        draft = session.model_copy(deep=True)
        _edit_component(draft, component)
        return self._commit(draft)

    def append_message(
        self,
        session: Session,
        role: str,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Tuple[Session, ChatMessage]:
        if role not in ("user", "assistant"):
            raise ValidationError([{"path": "role", "message": "role must be one of user, assistant"}])
        _require_text(content, "content")
        message = ChatMessage(role=role, content=content, metadata=MessageMetadata(**(metadata or {})))
        draft = session.model_copy(deep=True)
        draft.chatHistory.append(message)
        return self._commit(draft), message

    def update_metadata(
        self,
        session: Session,
        title: Optional[str] = None,
        description: Optional[str] = None,
        tags: Optional[List[str]] = None,
        settings: Optional[Dict[str, Any]] = None,
    ) -> Session:
        draft = session.model_copy(deep=True)
        _edit_metadata(draft, title, description, tags, settings)
        return self._commit(draft)

    def update_session(
        self,
        session: Session,
        title: Optional[str] = None,
        description: Optional[str] = None,
        tags: Optional[List[str]] = None,
        settings: Optional[Dict[str, Any]] = None,
        component: Optional[Dict[str, Any] | ComponentState] = None,
    ) -> Session:
        """Metadata and component edits of one request, saved together."""
        draft = session.model_copy(deep=True)
        _edit_metadata(draft, title, description, tags, settings)
        if component is not None:
            _edit_component(draft, component)
        return self._commit(draft)

    def deactivate(self, session: Session) -> Session:
        draft = session.model_copy(deep=True)
        draft.isActive = False
        log.info("ledger: deactivated session=%s", draft.id)
        return self._commit(draft)

    def export(self, session: Session) -> Dict[str, Any]:
        """Count the export, persist it, then return the download projection."""
        draft = session.model_copy(deep=True)
        draft.stats.exportsCount += 1
        saved = self._commit(draft)
        return {
            "session": {
                "title": saved.title,
                "description": saved.description,
                "tags": list(saved.tags),
                "createdAt": saved.createdAt.isoformat(),
                "stats": saved.stats.model_dump(),
            },
            "component": saved.currentComponent.model_dump(),
            "chatHistory": [
                {"role": m.role, "content": m.content, "timestamp": m.timestamp.isoformat()}
                for m in saved.chatHistory
            ],
            "componentVersions": [v.model_dump() for v in saved.componentVersions],
        }
