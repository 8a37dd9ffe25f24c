"""
Tests for the OpenAI responder wrapper and the system prompt.
"""

import asyncio
from datetime import UTC, datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest

from app.config import settings
from app.models.domain.profile_domain import Channel, Profile
from app.services.responder.openai_responder import FALLBACK_REPLY, OpenAIResponder
from app.services.responder.prompts import build_system_prompt


def _completion(content):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        usage=SimpleNamespace(total_tokens=42),
    )


@pytest.fixture
def openai_client():
    client = MagicMock()
    client.chat.completions.create = AsyncMock(return_value=_completion("  Sure, we open at 9.  "))
    return client


@pytest.mark.asyncio
async def test_generate_sends_history_in_order(openai_client):
    responder = OpenAIResponder(client=openai_client, model="gpt-4o-mini", timeout=5)
    history = [{"role": "user", "content": "Hi"}, {"role": "assistant", "content": "Hello!"}]

    reply = await responder.generate("system prompt", history, "When do you open?")

    assert reply == "Sure, we open at 9."
    messages = openai_client.chat.completions.create.await_args.kwargs["messages"]
    assert messages[0] == {"role": "system", "content": "system prompt"}
    assert messages[1:3] == history
    assert messages[-1] == {"role": "user", "content": "When do you open?"}


@pytest.mark.asyncio
async def test_unconfigured_client_falls_back(monkeypatch):
    monkeypatch.setattr(settings, "OPENAI_API_KEY", None)
    responder = OpenAIResponder()

    assert responder.is_configured() is False
    assert await responder.generate("system", [], "hello") == FALLBACK_REPLY


@pytest.mark.asyncio
async def test_api_error_falls_back(openai_client):
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    openai_client.chat.completions.create.side_effect = openai.APIConnectionError(request=request)

    responder = OpenAIResponder(client=openai_client, timeout=5)

    assert await responder.generate("system", [], "hello") == FALLBACK_REPLY


@pytest.mark.asyncio
async def test_empty_completion_falls_back(openai_client):
    openai_client.chat.completions.create.return_value = _completion("")

    responder = OpenAIResponder(client=openai_client, timeout=5)

    assert await responder.generate("system", [], "hello") == FALLBACK_REPLY


@pytest.mark.asyncio
async def test_timeout_falls_back(openai_client):
    async def slow(**kwargs):
        await asyncio.sleep(5)

    openai_client.chat.completions.create.side_effect = slow
    responder = OpenAIResponder(client=openai_client, timeout=0.01)

    assert await responder.generate("system", [], "hello") == FALLBACK_REPLY


def test_prompt_asks_only_for_missing_details():
    now = datetime(2025, 3, 3, 12, 0, tzinfo=UTC)
    known = Profile(id="p-1", owner_id="acct-1", name="Ana Lima", email="ana@example.com")
    partial = Profile(id="p-2", owner_id="acct-1", phone="15551234567")

    known_prompt = build_system_prompt(Channel.EMAIL, known, now, "Acme Dental", "Jamie")
    partial_prompt = build_system_prompt(Channel.VOICE, partial, now, "Acme Dental", "Jamie")

    assert "do not ask for them again" in known_prompt
    assert "name and email" in partial_prompt
    assert "spoken aloud" in partial_prompt
    assert "is_scheduling_request" in known_prompt
