"""Resilient GenAI chat service with key refresh, retry and conversation history.

``AIService`` wraps ``google.genai.Client`` with:
- A pluggable API-key loader (defaults to ``GOOGLE_API_KEY``, then the
  store's ``apiKey`` config entry when built with ``store_key_loader``)
- Lazy re-authentication on a configurable interval
- Immediate key refresh on 401/403 auth errors
- Exponential-backoff retry for transient errors (429, 5xx)
- Fail-fast on client errors (400, 404)
- A running conversation history, like a chat session
"""

from __future__ import annotations

import logging
import os
import random
import time
from typing import Any, Callable

from google import genai
from google.genai import types
from google.genai.errors import APIError, ClientError, ServerError

from ra_agent.config import Settings
from ra_agent.errors import CollaboratorError

logger = logging.getLogger(__name__)

API_KEY_CONFIG = "apiKey"

# ---------------------------------------------------------------------------
# API key loaders
# ---------------------------------------------------------------------------


def default_api_key() -> str:
    """Read GOOGLE_API_KEY from the environment."""
    key = os.environ.get("GOOGLE_API_KEY", "")
    if not key:
        raise RuntimeError(
            "GOOGLE_API_KEY environment variable is not set and no API key has "
            "been saved with `ra set-key`."
        )
    return key


def store_key_loader(store: Any) -> Callable[[], str]:
    """Key loader trying the environment first, then the store's config."""

    def _load() -> str:
        key = os.environ.get("GOOGLE_API_KEY", "")
        if key:
            return key
        saved = store.load_config(API_KEY_CONFIG)
        if saved:
            return str(saved)
        return default_api_key()

    return _load


# ---------------------------------------------------------------------------
# Retryable status codes
# ---------------------------------------------------------------------------

_AUTH_CODES = {401, 403}
_TRANSIENT_CODES = {429, 500, 502, 503, 504}
_FAIL_FAST_CODES = {400, 404}


class AIService:
    """Chat-style access to a Gemini model with automatic key refresh and retry."""

    def __init__(
        self,
        *,
        model: str = "gemini-2.5-flash",
        temperature: float = 0.0,
        api_key_loader: Callable[[], str] | None = None,
        refresh_interval_s: float = 600.0,
        max_retries: int = 5,
        base_delay_s: float = 1.0,
        max_delay_s: float = 60.0,
    ) -> None:
        self.model = model
        self.temperature = temperature
        self.refresh_interval_s = refresh_interval_s
        self.max_retries = max_retries
        self.base_delay_s = base_delay_s
        self.max_delay_s = max_delay_s
        self.history: list[types.Content] = []

        self._api_key_loader = api_key_loader or default_api_key
        self._client: genai.Client | None = None
        self._created_at: float = 0.0  # monotonic timestamp

    @classmethod
    def from_settings(
        cls, settings: Settings, api_key_loader: Callable[[], str] | None = None
    ) -> AIService:
        """Build a service from settings, failing early when no key is available."""
        loader = api_key_loader or default_api_key
        loader()
        return cls(
            model=settings.model_name,
            temperature=settings.temperature,
            api_key_loader=loader,
            refresh_interval_s=settings.llm_refresh_interval_s,
            max_retries=settings.llm_max_retries,
            base_delay_s=settings.llm_base_delay_s,
            max_delay_s=settings.llm_max_delay_s,
        )

    # -- internal helpers ---------------------------------------------------

    def _create_client(self) -> genai.Client:
        client = genai.Client(api_key=self._api_key_loader())
        self._client = client
        self._created_at = time.monotonic()
        logger.debug("GenAI client created (refresh in %ss)", self.refresh_interval_s)
        return client

    def _ensure_client(self) -> genai.Client:
        """Return existing client or recreate if refresh interval has elapsed."""
        if (
            self._client is None
            or (time.monotonic() - self._created_at) >= self.refresh_interval_s
        ):
            return self._create_client()
        return self._client

    def _force_refresh(self) -> genai.Client:
        """Immediately recreate the client (e.g. after auth error)."""
        logger.info("Forcing GenAI client refresh (auth error)")
        return self._create_client()

    # -- public API ---------------------------------------------------------

    def get_client(self) -> genai.Client:
        """Return the current (or freshly-created) raw client."""
        return self._ensure_client()

    def generate_content(self, contents: Any) -> Any:
        """Call ``client.models.generate_content`` with retry logic.

        Raises on non-retryable errors; retries on transient/auth errors.
        """
        config = types.GenerateContentConfig(temperature=self.temperature)
        auth_retried = False

        for attempt in range(self.max_retries + 1):
            client = self._ensure_client()
            try:
                return client.models.generate_content(
                    model=self.model, contents=contents, config=config
                )

            except (ClientError, ServerError, APIError) as exc:
                code: int = exc.code

                if code in _FAIL_FAST_CODES:
                    raise

                # Auth errors: refresh key and retry once
                if code in _AUTH_CODES:
                    if auth_retried:
                        raise
                    auth_retried = True
                    logger.warning("Auth error %d; refreshing client and retrying", code)
                    self._force_refresh()
                    continue

                # Transient errors: exponential backoff with full jitter
                if code in _TRANSIENT_CODES:
                    if attempt >= self.max_retries:
                        raise
                    delay = random.uniform(
                        0, min(self.max_delay_s, self.base_delay_s * (2 ** attempt))
                    )
                    logger.warning(
                        "Transient error %d (attempt %d/%d); retrying in %.1fs",
                        code, attempt + 1, self.max_retries, delay,
                    )
                    time.sleep(delay)
                    continue

                raise

        raise RuntimeError("Exhausted retries in generate_content")  # pragma: no cover

    def send_message(self, prompt: str) -> str:
        """Send ``prompt`` after the conversation so far and return the reply text."""
        user_turn = types.Content(role="user", parts=[types.Part(text=prompt)])
        response = self.generate_content([*self.history, user_turn])
        text = getattr(response, "text", None)
        if not text:
            raise CollaboratorError(f"Empty response from {self.model}")

        self.history.append(user_turn)
        self.history.append(types.Content(role="model", parts=[types.Part(text=text)]))
        return text

    def reset_history(self) -> None:
        self.history.clear()
