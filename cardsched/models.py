from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal, Optional

CardStatus = Literal["draft", "active", "archived", "deleted"]
CardType = Literal["word", "pattern", "complex_prompt"]
Quality = Literal["again", "hard", "medium", "easy"]
DrillState = Literal["active", "snoozed", "dismissed"]
NoteState = Literal["unprocessed", "deferred", "deleted"]
SourceType = Literal["manual", "api", "browser_extension", "ifttt", "zapier", "n8n"]
CefrLevel = Literal["A1", "A2", "B1", "B2", "C1", "C2"]


@dataclass
class Card:
    user_id: str
    language_id: str
    card_id: str
    content: str
    status: CardStatus = "active"
    card_type: CardType = "word"
    meaning: Optional[str] = None
    examples: list[str] = field(default_factory=list)
    mnemonics: list[str] = field(default_factory=list)
    llm_instructions: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class Group:
    user_id: str
    language_id: str
    group_id: str
    group_name: str
    description: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass
class ReviewState:
    user_id: str
    language_id: str
    card_id: str
    next_due: int = 0  # epoch seconds; 0 means due now
    interval_days: int = 1
    ease_factor: float = 2.5
    review_count: int = 0
    lapses: int = 0
    last_reviewed: Optional[int] = None


@dataclass
class DrillContextEntry:
    user_id: str
    language_id: str
    card_id: str
    state: DrillState = "active"
    added_from: Optional[str] = None
    added_at: Optional[datetime] = None
    usage_count: int = 0
    last_used: Optional[datetime] = None
    state_until: Optional[datetime] = None


@dataclass
class DrawPile:
    user_id: str
    language_id: str
    group_id: str
    enabled: bool = True
    draw_pile_name: Optional[str] = None
    pile_size_limit: int = 10
    created_at: Optional[datetime] = None


@dataclass
class InboxNote:
    """Raw captured text waiting to be turned into draft cards."""

    user_id: str
    language_id: str
    note_id: str
    content: str
    state: NoteState = "unprocessed"
    source_type: SourceType = "manual"
    source_metadata: Optional[dict[str, Any]] = None
    created_at: Optional[datetime] = None


@dataclass
class StudyLanguage:
    user_id: str
    language_id: str
    language_name: str
    is_active: bool = True
    cefr_level: CefrLevel = "A1"
    settings: Optional[dict[str, Any]] = None
    created_at: Optional[datetime] = None
