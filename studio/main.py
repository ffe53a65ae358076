import base64
import logging
import os
import time
import uuid
from contextlib import asynccontextmanager
from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple

from fastapi import Depends, FastAPI, File, Form, Query, Request, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from studio import llm_client
from studio import ratelimit
from studio.auth import require_principal
from studio.cache import Cache, NullCache, connect_cache
from studio.errors import PersistenceFailure, StudioError, ValidationError
from studio.generator import ComponentGenerator
from studio.ledger import SessionLedger, export_filename
from studio.models import ExistingCode, GenerationContext, Session
from studio.pipeline import GenerationPipeline
from studio.store import SessionStore, default_store

if not logging.getLogger().handlers:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

log = logging.getLogger(__name__)

SESSION_CACHE_TTL_SECONDS = int(os.getenv("SESSION_CACHE_TTL_SECONDS", "3600") or 3600)
MAX_IMAGE_BYTES = 5 * 1024 * 1024

SUGGESTIONS = [
    "Add responsive design for mobile devices",
    "Implement hover effects and animations",
    "Add accessibility features (ARIA labels, keyboard navigation)",
    "Optimize for performance and loading speed",
    "Add error handling and loading states",
    "Implement dark mode support",
    "Add unit tests for the component",
    "Optimize for SEO and semantic HTML",
]

IMAGE_PROMPT_SUFFIX = "\n\n[Image analysis would go here - describing the uploaded image elements and layout]"

# Process-wide collaborators; tests swap these with monkeypatch.
store: SessionStore = default_store()
ledger = SessionLedger(store)
cache: Cache = NullCache()
pipeline = GenerationPipeline(ComponentGenerator(), cache)


@asynccontextmanager
async def lifespan(app: FastAPI):
    global cache
    cache = connect_cache()
    pipeline.cache = cache
    log.info("startup: cache backend=%s models=%s", cache.backend, ",".join(pipeline.generator.models))
    try:
        yield
    finally:
        try:
            cache.close()
        except Exception:
            log.warning("shutdown: cache close failed", exc_info=True)


app = FastAPI(lifespan=lifespan)

allow_origins = [o.strip() for o in os.getenv("ALLOW_ORIGINS", "*").split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins or ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    rid = str(uuid.uuid4())
    start = time.time()
    request.state.request_id = rid
    response = None
    try:
        response = await call_next(request)
        response.headers["X-Request-Id"] = rid
        return response
    finally:
        dur_ms = int((time.time() - start) * 1000)
        log.info(
            "rid=%s method=%s path=%s status=%s dur_ms=%d",
            rid,
            request.method,
            request.url.path,
            getattr(response, "status_code", "?"),
            dur_ms,
        )


@app.exception_handler(StudioError)
async def studio_error_handler(request: Request, exc: StudioError):
    if isinstance(exc, PersistenceFailure) or exc.status_code >= 500:
        log.error("request failed rid=%s: %r", getattr(request.state, "request_id", "?"), exc, exc_info=exc)
    content: Dict[str, Any] = {"error": exc.public_message}
    if isinstance(exc, ValidationError):
        content["details"] = exc.details
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    details = []
    for err in exc.errors():
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path", "header", "form")]
        details.append({"path": ".".join(loc) or "(root)", "message": err.get("msg", "invalid value")})
    return JSONResponse(status_code=400, content={"error": "Validation failed", "details": details})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=getattr(exc, "headers", None))


Framework = Literal["react", "vue", "angular"]
StyleFramework = Literal["css", "tailwind", "styled-components", "emotion"]
Tag = Annotated[str, Field(max_length=30)]


class _Strict(BaseModel):
    model_config = ConfigDict(extra="forbid")


class SettingsIn(_Strict):
    framework: Optional[Framework] = None
    styleFramework: Optional[StyleFramework] = None
    autoSave: Optional[bool] = None


class ComponentIn(_Strict):
    jsx: Optional[str] = None
    css: Optional[str] = None
    typescript: Optional[bool] = None


class ExistingCodeIn(_Strict):
    jsx: str = ""
    css: str = ""


class CreateSessionRequest(_Strict):
    title: Optional[str] = Field(default=None, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    tags: Optional[List[Tag]] = None
    settings: Optional[SettingsIn] = None


class UpdateSessionRequest(CreateSessionRequest):
    currentComponent: Optional[ComponentIn] = None


class MessageMetadataIn(_Strict):
    hasImage: Optional[bool] = None
    imageUrl: Optional[str] = None
    generatedCode: Optional[ComponentIn] = None


class ChatMessageRequest(_Strict):
    role: Literal["user", "assistant"]
    content: str = Field(min_length=1)
    metadata: Optional[MessageMetadataIn] = None


class ContextIn(_Strict):
    framework: Optional[Framework] = None
    styleFramework: Optional[StyleFramework] = None
    typescript: Optional[bool] = None
    existingCode: Optional[ExistingCodeIn] = None
    isIteration: Optional[bool] = None


class GenerateRequest(_Strict):
    prompt: str = Field(min_length=3, max_length=2000)
    sessionId: str = Field(min_length=1)
    context: Optional[ContextIn] = None


class RefineRequest(_Strict):
    sessionId: str = Field(min_length=1)
    refinementPrompt: str = Field(min_length=3, max_length=1000)
    # Defaults to the session's current component when omitted.
    originalCode: Optional[ExistingCodeIn] = None


class VariationsRequest(_Strict):
    prompt: str = Field(min_length=3, max_length=2000)
    sessionId: str = Field(min_length=1)
    count: int = Field(default=3, ge=1, le=5)
    context: Optional[ContextIn] = None


def _safe_rate_check(bucket: str, key: str) -> Tuple[bool, int, int]:
    """Return (allowed, remaining, reset_ts); a limiter fault fails open."""
    try:
        return ratelimit.check_and_increment(bucket, key)
    except Exception:
        log.warning("rate_limit: limiter error, allowing request", exc_info=True)
        return True, 9999, int(time.time()) + 60


def _rate_limit_headers(remaining: int, reset_ts: int, *, limited: bool = False) -> Dict[str, str]:
    headers = {
        "X-RateLimit-Remaining": str(remaining),
        "X-RateLimit-Reset": str(reset_ts),
    }
    if limited:
        wait_seconds = max(0, reset_ts - int(time.time()))
        headers["Retry-After"] = str(wait_seconds)
    return headers


def _rate_limit_payload(reset_ts: int) -> Dict[str, Any]:
    wait_seconds = max(0, reset_ts - int(time.time()))
    return {
        "error": "rate limit exceeded",
        "reset": reset_ts,
        "retry_after_seconds": wait_seconds,
        "message": f"Rate limit exceeded. Try again in {wait_seconds} seconds.",
    }


def _limited(principal: str) -> Tuple[Optional[JSONResponse], Dict[str, str]]:
    allowed, remaining, reset_ts = _safe_rate_check("ai", principal)
    if not allowed:
        log.info("rate_limit: denied principal=%s reset=%s", principal, reset_ts)
        return (
            JSONResponse(
                status_code=429,
                content=_rate_limit_payload(reset_ts),
                headers=_rate_limit_headers(remaining, reset_ts, limited=True),
            ),
            {},
        )
    return None, _rate_limit_headers(remaining, reset_ts)


def _session_key(session_id: str) -> str:
    return f"session:{session_id}"


def _remember_session(session: Session) -> None:
    summary = {
        "id": session.id,
        "title": session.title,
        "userId": session.userId,
        "lastAccessed": session.lastAccessed.isoformat(),
    }
    try:
        cache.set(_session_key(session.id), summary, SESSION_CACHE_TTL_SECONDS)
    except Exception as exc:
        log.warning("session cache: write failed session=%s err=%r", session.id, exc)


def _forget_session(session_id: str) -> None:
    try:
        cache.delete(_session_key(session_id))
    except Exception as exc:
        log.warning("session cache: delete failed session=%s err=%r", session_id, exc)


def _session_view(session: Session) -> Dict[str, Any]:
    return session.model_dump(mode="json")


def _summary_view(session: Session) -> Dict[str, Any]:
    """Listing shape: generated code is dropped from chat metadata."""
    doc = session.model_dump(mode="json")
    for message in doc.get("chatHistory", []):
        message.get("metadata", {}).pop("generatedCode", None)
    return doc


def _context_for(session: Session, requested: Optional[ContextIn]) -> GenerationContext:
    base: Dict[str, Any] = {
        "framework": session.settings.framework,
        "styleFramework": session.settings.styleFramework,
        "typescript": False,
    }
    if requested is not None:
        base.update(requested.model_dump(exclude_none=True))
    return GenerationContext(**base)


def _last_message(session: Session) -> Dict[str, Any]:
    return session.chatHistory[-1].model_dump(mode="json")


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/llm/status")
def llm_status_endpoint() -> Dict[str, Any]:
    info = llm_client.status()
    info["models"] = list(pipeline.generator.models)
    info["cache"] = cache.backend
    return info


@app.get("/sessions")
def list_sessions(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: Optional[str] = None,
    sortBy: str = "lastAccessed",
    principal: str = Depends(require_principal),
):
    sessions, pagination = ledger.list_for(principal, page=page, limit=limit, search=search, sort_by=sortBy)
    return {"sessions": [_summary_view(s) for s in sessions], "pagination": pagination}


@app.post("/sessions", status_code=201)
def create_session(req: CreateSessionRequest, principal: str = Depends(require_principal)):
    settings = req.settings.model_dump(exclude_none=True) if req.settings else None
    session = ledger.create(principal, title=req.title, description=req.description, tags=req.tags, settings=settings)
    _remember_session(session)
    return {"message": "Session created successfully", "session": _session_view(session)}


@app.get("/sessions/{session_id}")
def get_session(session_id: str, principal: str = Depends(require_principal)):
    session = ledger.load(session_id, principal)
    _remember_session(session)
    return {"session": _session_view(session)}


@app.put("/sessions/{session_id}")
def update_session(session_id: str, req: UpdateSessionRequest, principal: str = Depends(require_principal)):
    session = ledger.load(session_id, principal, touch=False)
    settings = req.settings.model_dump(exclude_none=True) if req.settings else None
    component = req.currentComponent.model_dump(exclude_none=True) if req.currentComponent is not None else None
    session = ledger.update_session(
        session,
        title=req.title,
        description=req.description,
        tags=req.tags,
        settings=settings,
        component=component,
    )
    _remember_session(session)
    return {"message": "Session updated successfully", "session": _session_view(session)}


@app.delete("/sessions/{session_id}")
def delete_session(session_id: str, principal: str = Depends(require_principal)):
    session = ledger.load(session_id, principal, touch=False)
    ledger.deactivate(session)
    _forget_session(session_id)
    return {"message": "Session deleted successfully"}


@app.post("/sessions/{session_id}/chat")
def add_chat_message(session_id: str, req: ChatMessageRequest, principal: str = Depends(require_principal)):
    session = ledger.load(session_id, principal, touch=False)
    metadata = req.metadata.model_dump(exclude_none=True) if req.metadata else None
    _, message = ledger.append_message(session, req.role, req.content, metadata)
    return {"message": "Message added successfully", "chatMessage": message.model_dump(mode="json")}


@app.get("/sessions/{session_id}/export")
def export_session(session_id: str, principal: str = Depends(require_principal)):
    session = ledger.load(session_id, principal, touch=False)
    data = ledger.export(session)
    headers = {"Content-Disposition": f'attachment; filename="{export_filename(session.title)}"'}
    return JSONResponse(content=jsonable_encoder(data), headers=headers)


@app.post("/ai/generate")
def generate_component(req: GenerateRequest, principal: str = Depends(require_principal)):
    session = ledger.load(req.sessionId, principal, touch=False)
    denied, rl_headers = _limited(principal)
    if denied is not None:
        return denied
    context = _context_for(session, req.context)
    payload = pipeline.generate_cached(req.prompt, context)
    session = ledger.apply_generation(session, req.prompt, payload, context)
    _remember_session(session)
    body = {
        "message": "Component generated successfully",
        "generatedCode": payload.model_dump(),
        "chatMessage": _last_message(session),
    }
    return JSONResponse(content=body, headers=rl_headers)


@app.post("/ai/refine")
def refine_component(req: RefineRequest, principal: str = Depends(require_principal)):
    session = ledger.load(req.sessionId, principal, touch=False)
    denied, rl_headers = _limited(principal)
    if denied is not None:
        return denied
    original = (
        ExistingCode(**req.originalCode.model_dump())
        if req.originalCode is not None
        else ExistingCode(jsx=session.currentComponent.jsx, css=session.currentComponent.css)
    )
    context = GenerationContext(
        framework=session.settings.framework,
        styleFramework=session.settings.styleFramework,
        typescript=session.currentComponent.typescript,
    )
    payload = pipeline.refine_cached(original, req.refinementPrompt, context)
    session = ledger.apply_refinement(session, req.refinementPrompt, payload)
    _remember_session(session)
    body = {
        "message": "Component refined successfully",
        "refinedCode": payload.model_dump(),
        "chatMessage": _last_message(session),
    }
    return JSONResponse(content=body, headers=rl_headers)


@app.post("/ai/generate-variations")
def generate_variations(req: VariationsRequest, principal: str = Depends(require_principal)):
    session = ledger.load(req.sessionId, principal, touch=False)
    denied, rl_headers = _limited(principal)
    if denied is not None:
        return denied
    context = _context_for(session, req.context)
    variations = pipeline.generator.generate_variations(req.prompt, req.count, context)
    body = {"message": "Variations generated successfully", "variations": variations, "count": len(variations)}
    return JSONResponse(content=body, headers=rl_headers)


@app.post("/ai/generate-with-image")
def generate_with_image(
    prompt: str = Form(..., min_length=1),
    sessionId: str = Form(..., min_length=1),
    image: Optional[UploadFile] = File(default=None),
    principal: str = Depends(require_principal),
):
    if image is None:
        raise ValidationError([{"path": "image", "message": "No image file provided"}])
    content_type = image.content_type or ""
    if not content_type.startswith("image/"):
        raise ValidationError([{"path": "image", "message": "Only image files are allowed"}])
    data = image.file.read(MAX_IMAGE_BYTES + 1)
    if len(data) > MAX_IMAGE_BYTES:
        raise ValidationError([{"path": "image", "message": "Image exceeds 5MB limit"}])

    session = ledger.load(sessionId, principal, touch=False)
    denied, rl_headers = _limited(principal)
    if denied is not None:
        return denied
    image_ref = f"data:{content_type};base64,{base64.b64encode(data).decode('ascii')}"
    context = GenerationContext(
        framework=session.settings.framework,
        styleFramework=session.settings.styleFramework,
        typescript=False,
        isIteration=False,
    )
    # The image itself is not sent to the model yet, so the prompt alone is not a safe cache key.
    payload = pipeline.generator.generate(prompt + IMAGE_PROMPT_SUFFIX, context)
    session = ledger.apply_image_generation(session, prompt, image_ref, payload)
    _remember_session(session)
    body = {
        "message": "Component generated from image successfully",
        "generatedCode": payload.model_dump(),
        "chatMessage": _last_message(session),
    }
    return JSONResponse(content=body, headers=rl_headers)


@app.get("/ai/suggestions/{session_id}")
def suggestions(session_id: str, principal: str = Depends(require_principal)):
    ledger.load(session_id, principal, touch=False)
    return {"suggestions": SUGGESTIONS[:4], "message": "Suggestions generated successfully"}
