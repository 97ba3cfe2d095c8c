"""
Retriever module for turning a user message into section-grouped knowledge.

Searches the tenant's chunks by lexical relevance, falls back to the most
recent chunks when the query is empty or nothing matches, then groups the
result by section and caps each section so no single section can take over
the prompt.
"""

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence

from tenantbot.models.knowledge import DEFAULT_BOT_TYPE, KnowledgeChunk, Section, section_name
from tenantbot.rag.errors import ValidationError

logger = logging.getLogger(__name__)

# Maximum chunks kept per section after grouping.
# hours is a singleton fact, not a ranked list.
SECTION_CAPS = {
    Section.MENU.value: 15,
    Section.OFFERS.value: 6,
    Section.FAQS.value: 6,
    Section.LISTINGS.value: 8,
    Section.HOURS.value: 1,
    Section.PAYMENT_PLANS.value: 4,
    Section.POLICIES.value: 4,
    Section.OTHER.value: 4,
    Section.CONTACT.value: 4,
    Section.PROFILE.value: 4,
}
DEFAULT_SECTION_CAP = 4

# Pool sizes
SEARCH_POOL_SIZE = 50  # ranked candidates fetched before grouping
EMPTY_QUERY_LIMIT = 10  # recent chunks used when there is nothing to search for
FALLBACK_LIMIT = 25  # recent chunks used when the search matched nothing

SOURCE_RECENT = "recent"
SOURCE_SEARCH = "search"
SOURCE_FALLBACK = "fallback"


def section_cap(section: str) -> int:
    return SECTION_CAPS.get(section_name(section), DEFAULT_SECTION_CAP)


def group_chunks(chunks: Iterable[KnowledgeChunk]) -> Dict[str, List[str]]:
    """Partition chunks by section, keeping the first N of each in order.

    Sections without chunks are absent from the result.
    """
    grouped: Dict[str, List[str]] = {}
    for chunk in chunks:
        section = section_name(chunk.section) or Section.OTHER.value
        items = grouped.setdefault(section, [])
        if len(items) < section_cap(section):
            items.append(chunk.text)
    return grouped


def _normalize_request(client_id: str, bot_type: Optional[str]):
    client_id = str(client_id or "").strip()
    if not client_id:
        raise ValidationError("client_id is required")
    bot_type = str(bot_type or "").strip() or DEFAULT_BOT_TYPE
    return client_id, bot_type


def retrieve_with_details(
    store,
    client_id: str,
    bot_type: Optional[str],
    user_text: str,
    pinned_sections: Sequence[str] = (),
    min_score: Optional[float] = None,
) -> Dict[str, Any]:
    """Retrieve grouped chunks along with how they were found.

    Args:
        store: KnowledgeStore (or anything with search/list_recent/list_chunks).
        client_id: Tenant key.
        bot_type: Bot variant; empty means 'default'.
        user_text: Free-text user message.
        pinned_sections: Sections to add from storage when the query did not
                         bring any of them in (e.g., ("hours",)).
        min_score: Drop search hits scoring below this. None keeps all.

    Returns:
        Dict with keys: grouped, chunks (pre-grouping pool), source
        ('recent', 'search' or 'fallback'), query_text.

    Raises:
        ValidationError: If client_id is missing.
        StorageUnavailable: If the store cannot be read.
    """
    client_id, bot_type = _normalize_request(client_id, bot_type)
    query_text = str(user_text or "").strip()

    if not query_text:
        # Nothing to score, recency is the only signal
        chunks = store.list_recent(client_id, bot_type, limit=EMPTY_QUERY_LIMIT)
        source = SOURCE_RECENT
    else:
        chunks = store.search(client_id, bot_type, query_text, limit=SEARCH_POOL_SIZE)
        if min_score is not None:
            chunks = [c for c in chunks if (c.score or 0) >= min_score]
        source = SOURCE_SEARCH
        if not chunks:
            logger.info(f"[RETRIEVER] No matches for {client_id}/{bot_type}, falling back to recent chunks")
            chunks = store.list_recent(client_id, bot_type, limit=FALLBACK_LIMIT)
            source = SOURCE_FALLBACK

    grouped = group_chunks(chunks)

    for section in pinned_sections:
        name = section_name(section)
        if name in grouped:
            continue
        pinned = store.list_chunks(client_id, bot_type, section=name, limit=section_cap(name))
        if pinned:
            grouped[name] = [c.text for c in pinned]

    section_counts = {s: len(v) for s, v in grouped.items()}
    logger.info(
        f"[RETRIEVER] {client_id}/{bot_type}: {len(chunks)} candidates via {source}, "
        f"sections: {section_counts} for query: {query_text[:80]!r}"
    )

    return {
        "grouped": grouped,
        "chunks": chunks,
        "source": source,
        "query_text": query_text,
    }


def retrieve_grouped(
    store,
    client_id: str,
    bot_type: Optional[str],
    user_text: str,
    pinned_sections: Sequence[str] = (),
    min_score: Optional[float] = None,
) -> Dict[str, List[str]]:
    """Return section -> ordered chunk texts for a user message.

    Never raises for "no results"; an empty dict is a valid answer.
    """
    details = retrieve_with_details(
        store, client_id, bot_type, user_text,
        pinned_sections=pinned_sections, min_score=min_score,
    )
    return details["grouped"]


async def retrieve(
    store,
    client_id: str,
    bot_type: Optional[str],
    user_text: str,
    pinned_sections: Sequence[str] = (),
    min_score: Optional[float] = None,
) -> Dict[str, List[str]]:
    """Async variant of retrieve_grouped for request handlers.

    The store calls are blocking, so they run in the default executor.
    """
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(
        None,
        lambda: retrieve_grouped(
            store, client_id, bot_type, user_text,
            pinned_sections=pinned_sections, min_score=min_score,
        ),
    )
