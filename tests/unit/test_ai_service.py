"""Unit tests for AIService."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
from google.genai.errors import ClientError, ServerError

from ra_agent.agents.ai_service import (
    API_KEY_CONFIG,
    AIService,
    default_api_key,
    store_key_loader,
)
from ra_agent.errors import CollaboratorError


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _make_client_error(code: int) -> ClientError:
    return ClientError(code, {"error": {"message": "test"}})


def _make_server_error(code: int) -> ServerError:
    return ServerError(code, {"error": {"message": "test"}})


def _service(**kwargs) -> AIService:
    return AIService(model="m", api_key_loader=lambda: "k", **kwargs)


# ---------------------------------------------------------------------------
# API key loader tests
# ---------------------------------------------------------------------------

class TestApiKeyLoaders:
    def test_default_reads_env(self, monkeypatch):
        monkeypatch.setenv("GOOGLE_API_KEY", "test-key-123")
        assert default_api_key() == "test-key-123"

    def test_missing_key_raises(self, monkeypatch):
        monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
        with pytest.raises(RuntimeError, match="GOOGLE_API_KEY"):
            default_api_key()

    def test_store_key_used_without_env(self, monkeypatch, store):
        monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
        store.save_config(API_KEY_CONFIG, "saved-key")
        assert store_key_loader(store)() == "saved-key"

    def test_env_wins_over_store(self, monkeypatch, store):
        monkeypatch.setenv("GOOGLE_API_KEY", "env-key")
        store.save_config(API_KEY_CONFIG, "saved-key")
        assert store_key_loader(store)() == "env-key"

    def test_from_settings_fails_early(self, monkeypatch, settings):
        monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
        with pytest.raises(RuntimeError):
            AIService.from_settings(settings)


# ---------------------------------------------------------------------------
# Client lifecycle tests
# ---------------------------------------------------------------------------

class TestClientLifecycle:
    @patch("ra_agent.agents.ai_service.genai.Client")
    def test_created_on_first_call(self, mock_client_cls):
        svc = _service()
        client = svc.get_client()
        mock_client_cls.assert_called_once_with(api_key="k")
        assert client is mock_client_cls.return_value

    @patch("ra_agent.agents.ai_service.genai.Client")
    def test_reused_within_interval(self, mock_client_cls):
        svc = _service(refresh_interval_s=600.0)
        assert svc.get_client() is svc.get_client()
        assert mock_client_cls.call_count == 1

    @patch("ra_agent.agents.ai_service.genai.Client")
    @patch("ra_agent.agents.ai_service.time.monotonic")
    def test_recreated_after_interval(self, mock_mono, mock_client_cls):
        mock_mono.return_value = 0.0
        svc = _service(refresh_interval_s=10.0)
        svc.get_client()
        assert mock_client_cls.call_count == 1

        mock_mono.return_value = 11.0
        svc.get_client()
        assert mock_client_cls.call_count == 2


# ---------------------------------------------------------------------------
# Retry tests
# ---------------------------------------------------------------------------

class TestRetries:
    @patch("ra_agent.agents.ai_service.genai.Client")
    def test_401_triggers_refresh_and_retry(self, mock_client_cls):
        ok_resp = MagicMock(name="ok_response")
        mock_gen = mock_client_cls.return_value.models.generate_content
        mock_gen.side_effect = [_make_client_error(401), ok_resp]

        assert _service().generate_content("hi") is ok_resp
        assert mock_client_cls.call_count == 2

    @patch("ra_agent.agents.ai_service.genai.Client")
    def test_persistent_auth_error_raises(self, mock_client_cls):
        mock_client_cls.return_value.models.generate_content.side_effect = _make_client_error(403)
        with pytest.raises(ClientError):
            _service().generate_content("hi")
        assert mock_client_cls.call_count == 2

    @patch("ra_agent.agents.ai_service.time.sleep")
    @patch("ra_agent.agents.ai_service.genai.Client")
    def test_429_retried_then_succeeds(self, mock_client_cls, mock_sleep):
        ok_resp = MagicMock(name="ok")
        mock_gen = mock_client_cls.return_value.models.generate_content
        mock_gen.side_effect = [_make_server_error(429), _make_server_error(503), ok_resp]

        svc = _service(max_retries=5, base_delay_s=0.01, max_delay_s=0.1)
        assert svc.generate_content("hi") is ok_resp
        assert mock_sleep.call_count == 2

    @patch("ra_agent.agents.ai_service.time.sleep")
    @patch("ra_agent.agents.ai_service.genai.Client")
    def test_500_exhausts_retries(self, mock_client_cls, mock_sleep):
        mock_gen = mock_client_cls.return_value.models.generate_content
        mock_gen.side_effect = _make_server_error(500)

        with pytest.raises(ServerError):
            _service(max_retries=3, base_delay_s=0.01, max_delay_s=0.1).generate_content("hi")
        assert mock_gen.call_count == 4
        assert mock_sleep.call_count == 3

    @pytest.mark.parametrize("code", [400, 404])
    @patch("ra_agent.agents.ai_service.genai.Client")
    def test_fail_fast(self, mock_client_cls, code):
        mock_gen = mock_client_cls.return_value.models.generate_content
        mock_gen.side_effect = _make_client_error(code)
        with pytest.raises(ClientError):
            _service().generate_content("hi")
        assert mock_gen.call_count == 1


# ---------------------------------------------------------------------------
# Conversation tests
# ---------------------------------------------------------------------------

class TestSendMessage:
    @patch("ra_agent.agents.ai_service.genai.Client")
    def test_history_grows(self, mock_client_cls):
        mock_gen = mock_client_cls.return_value.models.generate_content
        mock_gen.side_effect = [MagicMock(text="first"), MagicMock(text="second")]

        svc = _service()
        assert svc.send_message("one") == "first"
        assert svc.send_message("two") == "second"

        assert [c.role for c in svc.history] == ["user", "model", "user", "model"]
        second_call = mock_gen.call_args_list[1].kwargs["contents"]
        assert len(second_call) == 3
        assert second_call[-1].parts[0].text == "two"

        svc.reset_history()
        assert svc.history == []

    @patch("ra_agent.agents.ai_service.genai.Client")
    def test_empty_reply_raises(self, mock_client_cls):
        mock_client_cls.return_value.models.generate_content.return_value = MagicMock(text="")
        svc = _service()
        with pytest.raises(CollaboratorError):
            svc.send_message("hi")
        assert svc.history == []
