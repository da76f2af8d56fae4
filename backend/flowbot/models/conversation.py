# /flowbot/models/conversation.py

from typing import Optional, Literal
from pydantic import BaseModel, Field

RecoveryPhase = Literal["initial", "fallback"]


class PendingSuggestion(BaseModel):
    """A fuzzy match waiting for a yes/no from the user."""
    option_id: str = Field(..., description="Id of the suggested option")
    option_text: str = Field(..., description="Label of the suggested option")
    confidence: float = Field(..., description="Similarity score in [0, 1]")


class ConversationState(BaseModel):
    """
    Recovery side-channel for one conversation. Lives in its own store and has
    a lifecycle independent from the flow state.
    """
    attempts: int = Field(default=0, description="Consecutive invalid inputs")
    phase: RecoveryPhase = Field(default="initial", description="Escalation phase")
    pending_suggestion: Optional[PendingSuggestion] = Field(default=None, description="Suggestion awaiting confirmation")
    locked_until: Optional[int] = Field(default=None, description="Epoch ms until which processing is suppressed")
    lock_notice_sent: bool = Field(default=False, description="Whether the 'still locked' notice went out for this lock")
    updated_at: int = Field(default=0, description="Epoch ms of the last write")


class AttemptStatus(BaseModel):
    attempts: int
    phase: RecoveryPhase


class LockStatus(BaseModel):
    locked: bool
    remaining_ms: int = 0
    locked_until: Optional[int] = None
    released: bool = Field(default=False, description="True on the read that lifted an expired lock")


class InboundMessage(BaseModel):
    """Inbound text as handed over by the transport collaborator."""
    chat_id: str = Field(..., description="Conversation identifier, e.g. '5511999999999@c.us'")
    body: str = Field(default="", description="Raw message text")
    from_me: bool = Field(default=False, description="Message was sent by the bot account itself")
    author: Optional[str] = Field(default=None, description="Author id for messages relayed by the account")
    to: Optional[str] = Field(default=None, description="Destination id")
    is_status: bool = Field(default=False, description="Status update rather than a chat message")
    is_broadcast: bool = Field(default=False, description="Broadcast list message")
