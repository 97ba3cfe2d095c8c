"""
Prompt builder for the completion call.

Renders the rules prompt, the retrieved knowledge grouped by section and the
user's message into the exact two-message list sent to the completion API.
Rendering is deterministic: the same inputs always give the same messages.
"""

import logging
import math
from typing import Any, Dict, List, Mapping, Optional, Sequence

from tenantbot import config
from tenantbot.models.knowledge import Section, section_name

logger = logging.getLogger(__name__)

NO_DATA_PLACEHOLDER = "No relevant data found."
USER_MESSAGE_LABEL = "User message:"
TRIM_MARKER = "\n…[trimmed]"

# Opt-in budgeting
MIN_TRIM_TOKENS = 30  # below this a partial chunk is not worth adding
SHRUNK_MIN_DATA_TOKENS = 600
SHRUNK_MIN_CHUNK_TOKENS = 120

# Section order per bot variant
_RESTAURANT_SECTIONS = [
    Section.MENU, Section.OFFERS, Section.HOURS, Section.FAQS,
    Section.CONTACT, Section.PROFILE, Section.POLICIES, Section.OTHER,
]
_REALESTATE_SECTIONS = [
    Section.LISTINGS, Section.PAYMENT_PLANS, Section.OFFERS, Section.HOURS,
    Section.FAQS, Section.POLICIES, Section.PROFILE, Section.CONTACT, Section.OTHER,
]
# Generic business (pharmacy, clinic, anything else)
_DEFAULT_SECTIONS = [
    Section.OFFERS, Section.HOURS, Section.FAQS, Section.POLICIES,
    Section.PROFILE, Section.CONTACT, Section.OTHER,
]

_SECTIONS_BY_BOT_TYPE = {
    "restaurant": _RESTAURANT_SECTIONS,
    "realestate": _REALESTATE_SECTIONS,
}


def sections_for_bot_type(bot_type: Optional[str]) -> List[str]:
    """Section rendering order for a bot variant."""
    key = str(bot_type or "default").lower().strip()
    return [s.value for s in _SECTIONS_BY_BOT_TYPE.get(key, _DEFAULT_SECTIONS)]


def estimate_tokens(text: str = "") -> int:
    # ~4 chars per token; good enough for budget warnings
    return math.ceil(len(str(text or "")) / 4)


def trim_to_token_budget(text: str, budget_tokens: int) -> str:
    """Cut text to roughly `budget_tokens` and mark the cut."""
    if not text:
        return ""
    max_chars = max(0, budget_tokens * 4)
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + TRIM_MARKER


def _item_text(item: Any) -> str:
    if isinstance(item, Mapping):
        return str(item.get("text") or "")
    return str(item or "")


def _render_section(
    header: str,
    texts: List[str],
    used_tokens: int,
    max_data_tokens: Optional[int],
    per_chunk_max_tokens: Optional[int],
) -> str:
    header_cost = estimate_tokens(header)
    body = ""
    for text in texts:
        if per_chunk_max_tokens is not None and estimate_tokens(text) > per_chunk_max_tokens:
            text = trim_to_token_budget(text, per_chunk_max_tokens)
        addition = ("\n" if body else "") + text
        if max_data_tokens is None:
            body += addition
            continue

        spent = used_tokens + header_cost + estimate_tokens(body)
        if spent + estimate_tokens(addition) > max_data_tokens:
            # Fit what is left of the budget, then close the section
            remaining = max_data_tokens - spent
            if remaining > MIN_TRIM_TOKENS:
                separator = "\n" if body else ""
                budget = remaining - estimate_tokens(separator + TRIM_MARKER)
                trimmed = separator + trim_to_token_budget(text, budget)
                if spent + estimate_tokens(trimmed) <= max_data_tokens:
                    body += trimmed
            break
        body += addition
    return body


def build_data_block(
    grouped_chunks: Optional[Mapping[str, Sequence[Any]]],
    sections_order: Sequence[str],
    max_data_tokens: Optional[int] = None,
    per_chunk_max_tokens: Optional[int] = None,
) -> str:
    """Render the knowledge block, one upper-cased header per section.

    Sections missing from `grouped_chunks` (or empty) get the
    'No relevant data found.' placeholder.

    Budgets are off by default. With `per_chunk_max_tokens`, longer chunks
    are cut and marked '…[trimmed]'. With `max_data_tokens`, chunks are added
    in order until the budget runs out: the last one may be cut to fit, and
    sections that no longer fit are left out along with everything after
    them.
    """
    grouped_chunks = grouped_chunks or {}
    blocks = []
    used_tokens = 0
    for section in sections_order:
        name = section_name(section)
        header = f"{name.upper()}\n"
        texts = [_item_text(i) for i in grouped_chunks.get(name) or []]
        texts = [t for t in texts if t]

        if not texts:
            block = header + NO_DATA_PLACEHOLDER
            cost = estimate_tokens(block)
            if max_data_tokens is None or used_tokens + cost <= max_data_tokens:
                blocks.append(block)
                used_tokens += cost
            continue

        if max_data_tokens is not None and used_tokens + estimate_tokens(header) >= max_data_tokens:
            break

        body = _render_section(header, texts, used_tokens, max_data_tokens, per_chunk_max_tokens)
        if body:
            blocks.append(header + body)
            used_tokens += estimate_tokens(header + body)
    return "\n\n".join(blocks)


def _user_content(data_block: str, user_text: str) -> str:
    return f"{data_block}\n\n{USER_MESSAGE_LABEL}\n{user_text}"


def assemble(
    rules_prompt: str,
    grouped_chunks: Optional[Mapping[str, Sequence[Any]]],
    sections_order: Sequence[str],
    user_text: str,
    max_data_tokens: Optional[int] = None,
    per_chunk_max_tokens: Optional[int] = None,
) -> List[Dict[str, str]]:
    """Build the message list for the completion API.

    Args:
        rules_prompt: System prompt, used verbatim.
        grouped_chunks: Section -> chunk texts, as returned by the retriever.
        sections_order: Sections to render, in order (see sections_for_bot_type).
        user_text: The user's message, used verbatim.
        max_data_tokens: Optional token budget for the knowledge block.
        per_chunk_max_tokens: Optional token cap for any single chunk.

    Returns:
        [{"role": "system", ...}, {"role": "user", ...}] ready to send unmodified.

    Without budgets the knowledge block is rendered in full and an oversized
    prompt is only logged. With `max_data_tokens` set, a prompt over
    config.MAX_PROMPT_TOKENS is rebuilt once with the knowledge budget halved
    (at least SHRUNK_MIN_DATA_TOKENS) and the per-chunk cap cut to 70%
    (at least SHRUNK_MIN_CHUNK_TOKENS).
    """
    rules_prompt = "" if rules_prompt is None else str(rules_prompt)
    user_text = "" if user_text is None else str(user_text)

    data_block = build_data_block(grouped_chunks, sections_order, max_data_tokens, per_chunk_max_tokens)
    user_content = _user_content(data_block, user_text)

    total_tokens = estimate_tokens(rules_prompt) + estimate_tokens(user_content)
    if total_tokens > config.MAX_PROMPT_TOKENS:
        logger.warning(
            f"[PROMPT] PROMPT_RISK_LONG_MESSAGE: ~{total_tokens:,} tokens "
            f"(limit {config.MAX_PROMPT_TOKENS:,}). Reduce retrieved chunks or section caps."
        )
        if max_data_tokens is not None:
            shrunk_data = max(SHRUNK_MIN_DATA_TOKENS, int(max_data_tokens * 0.5))
            shrunk_chunk = None
            if per_chunk_max_tokens is not None:
                shrunk_chunk = max(SHRUNK_MIN_CHUNK_TOKENS, int(per_chunk_max_tokens * 0.7))
            data_block = build_data_block(grouped_chunks, sections_order, shrunk_data, shrunk_chunk)
            user_content = _user_content(data_block, user_text)
            logger.info(
                f"[PROMPT] Rebuilt knowledge block with budget {shrunk_data:,} tokens: "
                f"~{estimate_tokens(rules_prompt) + estimate_tokens(user_content):,} tokens total"
            )

    return [
        {"role": "system", "content": rules_prompt},
        {"role": "user", "content": user_content},
    ]
