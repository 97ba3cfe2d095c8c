#!/usr/bin/env python3
"""
Test script for the completion hand-off (OpenAI client mocked)
"""
import asyncio
import os
import tempfile
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from tenantbot.rag.chunk_store import KnowledgeStore
from tenantbot.rag.responder import _get_openai_client, answer, generate_reply


def _mock_openai(reply="Sure, we have pizza!"):
    response = MagicMock()
    response.choices = [MagicMock(message=MagicMock(content=reply))]
    response.usage.total_tokens = 42
    client = MagicMock()
    client.chat.completions.create = AsyncMock(return_value=response)
    return client


def test_generate_reply_sends_messages_unmodified():
    client = _mock_openai()
    messages = [{"role": "system", "content": "rules"}, {"role": "user", "content": "hi"}]

    reply = asyncio.run(generate_reply(messages, client=client, model="gpt-test"))

    assert reply == "Sure, we have pizza!"
    client.chat.completions.create.assert_awaited_once_with(model="gpt-test", messages=messages)


def test_answer_grounds_on_tenant_knowledge():
    tmp_dir = tempfile.mkdtemp(prefix="tenantbot_test_")
    store = KnowledgeStore(db_path=os.path.join(tmp_dir, "knowledge.db"))
    store.replace_chunks("c1", "restaurant", [("menu", "Margherita pizza 10"), ("hours", "Daily 12-23")])
    client = _mock_openai()

    reply = asyncio.run(answer(store, "c1", "restaurant", "pizza price?", "Be brief.", client=client))

    assert reply == "Sure, we have pizza!"
    sent = client.chat.completions.create.await_args.kwargs["messages"]
    assert sent[0] == {"role": "system", "content": "Be brief."}
    assert sent[1]["content"].startswith("MENU\nMargherita pizza 10\n\nOFFERS\nNo relevant data found.")
    assert sent[1]["content"].endswith("User message:\npizza price?")


def test_missing_api_key():
    with patch("tenantbot.config.OPENAI_API_KEY", None):
        with pytest.raises(ValueError):
            _get_openai_client()


if __name__ == "__main__":
    test_generate_reply_sends_messages_unmodified()
    test_answer_grounds_on_tenant_knowledge()
    test_missing_api_key()
    print("✅ ALL RESPONDER TESTS PASSED!")
