"""
Certification Workflow Service
LLM Gateway.

Provider-agnostic chat router with:
    - Gemini provider (google-genai) when GEMINI_API_KEY is set
    - Deterministic local stub for development and tests
    - Auto-retry with exponential backoff
    - Token and latency logging

Usage:
    from app.ai.gateway import LLMGateway
    gw = LLMGateway()
    result = gw.chat([{"role": "user", "content": "..."}], purpose="question_generator")
"""

import json
import logging
import os
import re
import time
from abc import ABC, abstractmethod

from google import genai
from google.genai import types

from app.core.exceptions import AIUnavailableError

logger = logging.getLogger(__name__)


# ── Provider Abstract Base ────────────────────────────────────────────────────

class LLMProvider(ABC):
    """Abstract interface for LLM providers."""

    @abstractmethod
    def chat(self, messages: list, model: str, **kwargs) -> dict:
        """
        Send a chat completion request.

        Args:
            messages: List of {"role": "...", "content": "..."} dicts.
            model: Model identifier string.
            **kwargs: temperature, max_tokens.

        Returns:
            dict with keys: content, prompt_tokens, completion_tokens, model
        """
        ...


# ── Google Gemini Provider ───────────────────────────────────────────────────

class GeminiProvider(LLMProvider):
    """
    Google Gemini API provider.

    Models:
        - gemini-2.5-flash  (default; question generation)
        - gemini-2.5-pro

    Environment:
        GEMINI_API_KEY
    """

    def __init__(self, api_key: str | None = None):
        self.api_key = api_key or os.getenv("GEMINI_API_KEY", "")
        self._client = None

    def _get_client(self):
        if self._client is None:
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    def chat(self, messages: list, model: str = "gemini-2.5-flash", **kwargs) -> dict:
        client = self._get_client()

        # Separate system instruction from conversation messages
        system_parts = []
        contents = []
        for m in messages:
            if m["role"] == "system":
                system_parts.append(m["content"])
            else:
                # Gemini uses "user" and "model" roles
                role = "model" if m["role"] == "assistant" else "user"
                contents.append(
                    types.Content(
                        role=role,
                        parts=[types.Part(text=m["content"])],
                    )
                )

        config = types.GenerateContentConfig(
            temperature=kwargs.get("temperature", 0.3),
            max_output_tokens=kwargs.get("max_tokens", 4096),
        )
        if system_parts:
            config.system_instruction = "\n\n".join(system_parts)

        response = client.models.generate_content(
            model=model,
            contents=contents,
            config=config,
        )

        usage = response.usage_metadata
        prompt_tokens = getattr(usage, "prompt_token_count", 0) or 0
        completion_tokens = getattr(usage, "candidates_token_count", 0) or 0

        return {
            "content": response.text or "",
            "prompt_tokens": prompt_tokens,
            "completion_tokens": completion_tokens,
            "model": model,
        }


# ── Local Stub Provider (for dev/test without API keys) ──────────────────────

class LocalStubProvider(LLMProvider):
    """
    Local stub that returns deterministic responses for dev/testing.
    No API key required.
    """

    def chat(self, messages: list, model: str = "local-stub", **kwargs) -> dict:
        user_msg = ""
        for m in reversed(messages):
            if m["role"] == "user":
                user_msg = m["content"]
                break

        content = self._generate_stub_response(user_msg)

        return {
            "content": content,
            "prompt_tokens": len(user_msg.split()) * 2,  # rough estimate
            "completion_tokens": len(content.split()) * 2,
            "model": "local-stub",
        }

    @staticmethod
    def _generate_stub_response(user_msg: str) -> str:
        """Question set derived from the requirement line of the prompt."""
        match = re.search(r"Requirement:\s*(.+)", user_msg)
        subject = (match.group(1).strip() if match else user_msg.strip())[:120] or "this requirement"

        return json.dumps([
            {
                "question": f"Do you confirm compliance with: {subject}?",
                "type": "yes_no",
                "allow_comments": True,
                "required": True,
            },
            {
                "question": "How frequently is this control performed?",
                "type": "dropdown",
                "options": ["Daily", "Weekly", "Monthly", "Quarterly"],
                "required": True,
            },
            {
                "question": "Describe any exceptions identified during the period.",
                "type": "text",
                "required": False,
            },
        ])


# ── LLM Gateway (Main Interface) ─────────────────────────────────────────────

class LLMGateway:
    """
    Central gateway for all LLM calls.

    Features:
        - Provider routing based on model name
        - Auto-retry with exponential backoff
        - Usage logging

    When the model's provider has no credentials the gateway answers from
    the local stub if ``allow_stub`` is set, otherwise it raises
    AIUnavailableError.
    """

    # Model → provider mapping
    PROVIDER_MAP = {
        "gemini-2.5-flash": "gemini",
        "gemini-2.5-pro": "gemini",
        "gemini-2.0-flash": "gemini",
        "local-stub": "local",
    }

    DEFAULT_CHAT_MODEL = os.getenv("LLM_DEFAULT_CHAT_MODEL", "gemini-2.5-flash")

    def __init__(
        self,
        *,
        default_model: str | None = None,
        allow_stub: bool = True,
        max_retries: int = 3,
        backoff_seconds: float = 1.0,
    ):
        self.default_model = default_model or self.DEFAULT_CHAT_MODEL
        self.allow_stub = allow_stub
        self.max_retries = max(1, max_retries)
        self.backoff_seconds = backoff_seconds
        self._providers: dict[str, LLMProvider] = {}
        self._init_providers()

    @classmethod
    def from_config(cls, config) -> "LLMGateway":
        return cls(
            default_model=config.get("LLM_DEFAULT_CHAT_MODEL"),
            allow_stub=config.get("LLM_ALLOW_STUB", True),
            max_retries=config.get("LLM_MAX_RETRIES", 3),
            backoff_seconds=config.get("LLM_RETRY_BACKOFF_SECONDS", 1.0),
        )

    def _init_providers(self):
        """Initialize available providers based on environment."""
        self._providers["local"] = LocalStubProvider()
        if os.getenv("GEMINI_API_KEY"):
            self._providers["gemini"] = GeminiProvider()

    def _get_provider(self, model: str) -> tuple[LLMProvider, str]:
        """Resolve model to (provider, provider_name)."""
        provider_name = self.PROVIDER_MAP.get(model, "local")

        if provider_name in self._providers:
            return self._providers[provider_name], provider_name

        if not self.allow_stub:
            raise AIUnavailableError(f"Provider '{provider_name}' is not configured for model '{model}'")

        logger.warning(
            "Provider '%s' not available (no API key?). Falling back to local stub for model '%s'.",
            provider_name, model,
        )
        return self._providers["local"], "local"

    def chat(self, messages: list, model: str | None = None, *, purpose: str = "", **kwargs) -> dict:
        """
        Send a chat completion request with retry.

        Returns:
            dict: {content, prompt_tokens, completion_tokens, model, latency_ms, provider}

        Raises:
            AIUnavailableError: no provider configured and stub not allowed.
            RuntimeError: every attempt failed.
        """
        model = model or self.default_model
        provider, provider_name = self._get_provider(model)

        last_error = None
        for attempt in range(1, self.max_retries + 1):
            start_time = time.time()
            try:
                result = provider.chat(messages, model, **kwargs)
            except Exception as e:
                last_error = e
                logger.warning("LLM call attempt %d/%d failed: %s", attempt, self.max_retries, e)
                if attempt < self.max_retries and self.backoff_seconds > 0:
                    time.sleep(min(self.backoff_seconds * 2 ** (attempt - 1), 4))
                continue

            result["latency_ms"] = int((time.time() - start_time) * 1000)
            result["provider"] = provider_name
            logger.info(
                "LLM call ok purpose=%s provider=%s model=%s tokens=%d+%d latency=%dms",
                purpose, provider_name, result.get("model", model),
                result.get("prompt_tokens", 0), result.get("completion_tokens", 0),
                result["latency_ms"],
            )
            return result

        raise RuntimeError(f"LLM call failed after {self.max_retries} retries: {last_error}")
