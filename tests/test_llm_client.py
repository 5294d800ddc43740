"""Tests for the OpenAI-compatible LLM client."""
import sys
import types
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from attendry import llm_client
from attendry.llm_client import complete, get_client, get_model


class TestGetClient:
    def test_get_client_uses_openrouter_base_url(self):
        with patch("attendry.llm_client.settings") as mock_settings:
            mock_settings.openrouter_api_key = "sk-or-valid-key"
            mock_settings.openrouter_base_url = "https://openrouter.ai/api/v1"

            openai_module = types.ModuleType("openai")
            mock_openai = MagicMock()
            openai_module.AsyncOpenAI = mock_openai

            with patch.dict(sys.modules, {"openai": openai_module}):
                get_client()

            mock_openai.assert_called_once_with(
                api_key="sk-or-valid-key",
                base_url="https://openrouter.ai/api/v1",
            )

    def test_get_model_returns_extraction_model(self):
        with patch("attendry.llm_client.settings") as mock_settings:
            mock_settings.extraction_model = "google/gemini-2.0-flash-001"
            assert get_model() == "google/gemini-2.0-flash-001"


def _fake_client(create: AsyncMock) -> SimpleNamespace:
    return SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))


class TestComplete:
    @pytest.mark.asyncio
    async def test_complete_returns_message_content(self):
        response = SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content='[{"title": "x"}]'))],
            usage=SimpleNamespace(prompt_tokens=10, completion_tokens=5),
        )
        create = AsyncMock(return_value=response)

        with (
            patch.object(llm_client, "client", return_value=_fake_client(create)),
            patch("attendry.llm_client.log_llm_call") as log_call,
        ):
            text = await complete("user prompt", "system prompt", model="test/model", max_tokens=100)

        assert text == '[{"title": "x"}]'
        kwargs = create.await_args.kwargs
        assert kwargs["model"] == "test/model"
        assert kwargs["temperature"] == 0
        assert kwargs["messages"][0] == {"role": "system", "content": "system prompt"}
        assert log_call.call_args.kwargs["input_tokens"] == 10

    @pytest.mark.asyncio
    async def test_complete_returns_empty_string_without_choices(self):
        create = AsyncMock(return_value=SimpleNamespace(choices=[], usage=None))
        with patch.object(llm_client, "client", return_value=_fake_client(create)):
            assert await complete("p", "s", model="m") == ""

    @pytest.mark.asyncio
    async def test_complete_logs_and_reraises_errors(self):
        create = AsyncMock(side_effect=RuntimeError("gateway down"))
        with (
            patch.object(llm_client, "client", return_value=_fake_client(create)),
            patch("attendry.llm_client.log_llm_call") as log_call,
        ):
            with pytest.raises(RuntimeError):
                await complete("p", "s", model="m")

        assert log_call.call_args.kwargs["status"] == "error"
