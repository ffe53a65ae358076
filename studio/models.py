from __future__ import annotations

import hashlib
import json
import uuid
from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

Framework = Literal["react", "vue", "angular"]
StyleFramework = Literal["css", "tailwind", "styled-components", "emotion"]
Role = Literal["user", "assistant"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ComponentState(BaseModel):
    """One snapshot of component code. jsx/css are never None."""

    jsx: str = ""
    css: str = ""
    typescript: bool = False

    @field_validator("jsx", "css", mode="before")
    @classmethod
    def _none_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("typescript", mode="before")
    @classmethod
    def _none_to_false(cls, v: Any) -> Any:
        return False if v is None else v

    def is_empty(self) -> bool:
        return not self.jsx and not self.css


class ExistingCode(BaseModel):
    jsx: str = ""
    css: str = ""

    @field_validator("jsx", "css", mode="before")
    @classmethod
    def _none_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v


class MessageMetadata(BaseModel):
    model_config = ConfigDict(extra="ignore")

    hasImage: bool = False
    imageUrl: Optional[str] = None
    generatedCode: Optional[ComponentState] = None
    isRefinement: bool = False


class ChatMessage(BaseModel):
    role: Role
    content: str
    timestamp: datetime = Field(default_factory=utcnow)
    metadata: MessageMetadata = Field(default_factory=MessageMetadata)


class SessionSettings(BaseModel):
    framework: Framework = "react"
    styleFramework: StyleFramework = "css"
    autoSave: bool = True


class SessionStats(BaseModel):
    messagesCount: int = 0
    generationsCount: int = 0
    exportsCount: int = 0


class Session(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    userId: str
    title: str = Field("New Component Session", max_length=100)
    description: str = Field("", max_length=500)
    tags: List[Annotated[str, Field(max_length=30)]] = Field(default_factory=list)
    chatHistory: List[ChatMessage] = Field(default_factory=list)
    currentComponent: ComponentState = Field(default_factory=ComponentState)
    componentVersions: List[ComponentState] = Field(default_factory=list)
    settings: SessionSettings = Field(default_factory=SessionSettings)
    stats: SessionStats = Field(default_factory=SessionStats)
    isActive: bool = True
    lastAccessed: datetime = Field(default_factory=utcnow)
    createdAt: datetime = Field(default_factory=utcnow)
    updatedAt: datetime = Field(default_factory=utcnow)

    @field_validator("currentComponent", mode="before")
    @classmethod
    def _missing_component(cls, v: Any) -> Any:
        return {} if v is None else v


class GeneratedPayload(BaseModel):
    """Structured result of one generation call. Not persisted on its own."""

    model_config = ConfigDict(extra="allow")

    jsx: str
    css: str = ""
    explanation: str = "Component generated successfully"
    features: List[str] = Field(default_factory=lambda: ["Generated component"])
    props: Dict[str, Any] = Field(default_factory=dict)

    def is_usable(self) -> bool:
        return bool(self.jsx and self.jsx.strip())

    def code(self, typescript: bool = False) -> ComponentState:
        return ComponentState(jsx=self.jsx, css=self.css, typescript=typescript)


class GenerationContext(BaseModel):
    model_config = ConfigDict(extra="ignore")

    framework: Framework = "react"
    styleFramework: StyleFramework = "css"
    typescript: bool = False
    existingCode: Optional[ExistingCode] = None
    isIteration: bool = False

    @property
    def iterating(self) -> bool:
        return bool(self.isIteration and self.existingCode is not None)

    def fingerprint(self) -> str:
        """Canonical encoding for cache keys; folds in the code being iterated on."""
        code_hash = None
        if self.existingCode is not None:
            h = hashlib.sha256()
            h.update(self.existingCode.jsx.encode("utf-8"))
            h.update(b"\n\x00\n")
            h.update(self.existingCode.css.encode("utf-8"))
            code_hash = h.hexdigest()
        doc = {
            "framework": self.framework,
            "styleFramework": self.styleFramework,
            "typescript": self.typescript,
            "isIteration": self.isIteration,
            "existingCode": code_hash,
        }
        return json.dumps(doc, sort_keys=True, separators=(",", ":"))
