"""
models.py — Session data model and API request/response shapes.

Keeping models in one file means:
- The session store, actor and relay all share one definition of a Turn
- Swagger docs auto-generated from these definitions are always accurate
- Validation happens at the boundary — business logic never sees invalid data

Client-facing JSON uses camelCase (sessionId, assistantText); aliases keep
the Python side snake_case.
"""
from __future__ import annotations
from pydantic import BaseModel, ConfigDict, Field
from typing import Literal
from enum import Enum


# ── Session data ──────────────────────────────────────────────────────────────

class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class Turn(BaseModel):
    """One role-tagged message. Immutable once appended."""
    model_config = ConfigDict(frozen=True)

    role: Role
    content: str

    def as_message(self) -> dict:
        return {"role": self.role.value, "content": self.content}


class SessionRecord(BaseModel):
    """Everything stored for one session. A missing record reads as empty."""
    history: list[Turn] = Field(default_factory=list)
    summary: str = ""


# ── Chat ──────────────────────────────────────────────────────────────────────

class ChatRequest(BaseModel):
    """
    Body for /api/chat and /api/chat/stream.
    Both fields are optional here so a missing one becomes a 400 with a
    readable message instead of a schema error.
    """
    model_config = ConfigDict(populate_by_name=True)

    session_id: str | None = Field(
        default=None,
        alias="sessionId",
        description="Client-generated opaque session key",
        examples=["3f6c1f7e-2b1a-4c47-9a55-0d3b7c1e8f20"],
    )
    message: str | None = Field(
        default=None,
        description="The user's message",
        examples=["What did we decide about the launch date?"],
    )


class ChatResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    assistant_text: str = Field(alias="assistantText")


class ResetRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str | None = Field(default=None, alias="sessionId")


class OkResponse(BaseModel):
    ok: Literal[True] = True


class ErrorResponse(BaseModel):
    error: str


# ── Internal actor contract ───────────────────────────────────────────────────

class AppendRequest(BaseModel):
    role: Role
    content: str


class SetSummaryRequest(BaseModel):
    summary: str = ""
