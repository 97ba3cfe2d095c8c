"""
Responder module: retrieval + prompt assembly + OpenAI chat completion.

The assembled messages are handed to the completion API unmodified. Errors
from the API propagate to the caller, who owns retries and the fallback reply.
"""

import logging
from typing import Dict, List, Optional, Sequence

from openai import AsyncOpenAI

from tenantbot.rag.prompt_builder import assemble, sections_for_bot_type
from tenantbot.rag.retriever import retrieve

logger = logging.getLogger(__name__)


def _get_openai_client() -> AsyncOpenAI:
    """Get an AsyncOpenAI client using the configured API key.

    Returns:
        AsyncOpenAI client instance.

    Raises:
        ValueError: If OPENAI_API_KEY is not set.
    """
    from tenantbot import config

    if not config.OPENAI_API_KEY:
        raise ValueError("OPENAI_API_KEY not found in environment or tenantbot.config")

    return AsyncOpenAI(api_key=config.OPENAI_API_KEY)


async def generate_reply(
    messages: List[Dict[str, str]],
    client: Optional[AsyncOpenAI] = None,
    model: Optional[str] = None,
) -> str:
    """Send the messages to the chat completion API and return the reply text."""
    from tenantbot import config

    if client is None:
        client = _get_openai_client()
    model = model or config.OPENAI_MODEL

    response = await client.chat.completions.create(
        model=model,
        messages=messages,
    )

    reply = response.choices[0].message.content or ""
    usage = getattr(response, "usage", None)
    logger.info(
        f"[RESPONDER] Completion from {model}: {len(reply):,} chars"
        + (f", usage: {usage.total_tokens} tokens" if usage else "")
    )
    return reply


async def answer(
    store,
    client_id: str,
    bot_type: Optional[str],
    user_text: str,
    rules_prompt: str,
    sections_order: Optional[Sequence[str]] = None,
    client: Optional[AsyncOpenAI] = None,
    model: Optional[str] = None,
    max_data_tokens: Optional[int] = None,
    per_chunk_max_tokens: Optional[int] = None,
) -> str:
    """Answer a user message grounded on the tenant's knowledge.

    Args:
        store: KnowledgeStore to retrieve from.
        client_id: Tenant key.
        bot_type: Bot variant; also picks the default section order.
        user_text: The user's message.
        rules_prompt: System prompt for the bot.
        sections_order: Sections to render; defaults to sections_for_bot_type(bot_type).
        client: Optional pre-existing AsyncOpenAI client.
        model: Optional model override.
        max_data_tokens: Optional token budget for the knowledge block.
        per_chunk_max_tokens: Optional token cap for any single chunk.

    Returns:
        The assistant reply text.
    """
    grouped = await retrieve(store, client_id, bot_type, user_text)
    if sections_order is None:
        sections_order = sections_for_bot_type(bot_type)
    messages = assemble(
        rules_prompt, grouped, sections_order, user_text,
        max_data_tokens=max_data_tokens,
        per_chunk_max_tokens=per_chunk_max_tokens,
    )
    return await generate_reply(messages, client=client, model=model)
