"""Knowledge base model and enums shared by ingestion and retrieval.

This module defines the `Section` enum and the `KnowledgeChunk` / `RawDataset`
dataclasses persisted by the knowledge store.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional

DEFAULT_BOT_TYPE = "default"


class Section(str, Enum):
    """Categories of client knowledge. Each has its own chunking and retrieval policy."""
    MENU = "menu"
    OFFERS = "offers"
    HOURS = "hours"
    FAQS = "faqs"
    LISTINGS = "listings"
    PAYMENT_PLANS = "paymentPlans"
    POLICIES = "policies"
    OTHER = "other"
    CONTACT = "contact"
    PROFILE = "profile"

    def __str__(self) -> str:
        return self.value


def section_name(section) -> str:
    """Plain string name for a Section member or a raw section string."""
    if isinstance(section, Section):
        return section.value
    return str(section or "").strip()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class KnowledgeChunk:
    """Atomic retrievable unit of a tenant's knowledge.

    Attributes:
        client_id: Tenant key.
        bot_type: Bot variant within the tenant (e.g., 'restaurant', 'default').
        section: Section name the chunk was cut from.
        text: Chunk text, never empty.
        created_at: Insertion time (UTC).
        generation: Write stamp of the replace that created the chunk.
        id: Row id once persisted.
        score: Relevance score, only set on search results (higher is better).
    """
    client_id: str
    section: str
    text: str
    bot_type: str = DEFAULT_BOT_TYPE
    created_at: datetime = field(default_factory=utcnow)
    generation: int = 0
    id: Optional[int] = None
    score: Optional[float] = None


@dataclass
class RawDataset:
    """Pre-chunking source of truth for one (client_id, bot_type).

    Kept so chunks can be rebuilt without the client uploading again.
    """
    client_id: str
    bot_type: str = DEFAULT_BOT_TYPE
    raw_sections: Dict[str, str] = field(default_factory=dict)
    updated_at: datetime = field(default_factory=utcnow)
    created_at: datetime = field(default_factory=utcnow)
