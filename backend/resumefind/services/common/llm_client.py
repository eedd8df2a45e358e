# resumefind/services/common/llm_client.py
"""Unified LLM chat client for resume feedback, supporting both Ollama and OpenAI,
plus prompt loading from resumefind/prompts."""
from __future__ import annotations
import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

import requests
from openai import OpenAI, APIError

from resumefind.core.config import Settings

logger = logging.getLogger("ai.llm")


# Default Ollama chat options
DEFAULT_CHAT_OPTIONS: Dict[str, Any] = {
    "temperature": 0.3,
    "seed": 7,
    "repeat_penalty": 1.05,
    "num_ctx": 8192,
    "num_predict": 4000,
}

PROMPTS_DIR = Path(__file__).resolve().parents[2] / "prompts"


class LLMUnavailable(RuntimeError):
    """The configured provider could not produce a completion."""


def load_prompt(relative_path: str) -> str:
    """
    Load a prompt file from resumefind/prompts/<relative_path>.
    Falls back to the basename directly under resumefind/prompts.
    """
    path = PROMPTS_DIR / relative_path
    if path.exists():
        text = path.read_text(encoding="utf-8")
        logger.debug("Loaded prompt: %s (%d chars)", relative_path, len(text))
        return text
    alt = PROMPTS_DIR / Path(relative_path).name
    if alt.exists():
        text = alt.read_text(encoding="utf-8")
        logger.debug("Loaded prompt by basename fallback: %s (%d chars)", alt.name, len(text))
        return text
    raise FileNotFoundError(f"Prompt file not found. Tried: {path} and {alt}")


class LLMClient:
    """
    Chat wrapper over Ollama or OpenAI.

    Provider selection:
      - If LLM_CHAT_MODEL and OLLAMA_BASE_URL are set → Ollama
      - Else if OPENAI_MODEL and OPENAI_API_KEY are set → OpenAI
      - Otherwise the client is unconfigured and callers use their fallback path
    """

    def __init__(self, settings: Settings, *, provider: Optional[str] = None, model: Optional[str] = None):
        self.ollama_base_url = settings.OLLAMA_BASE_URL
        self.api_key = settings.OPENAI_API_KEY
        if provider:
            self.provider: Optional[str] = provider.lower()
        elif settings.LLM_CHAT_MODEL and settings.OLLAMA_BASE_URL:
            self.provider = "ollama"
        elif settings.OPENAI_MODEL and settings.OPENAI_API_KEY:
            self.provider = "openai"
        else:
            self.provider = None
            logger.warning("No LLM provider configured; feedback will use the fallback template")

        if self.provider == "ollama":
            self.model = model or settings.LLM_CHAT_MODEL or "llama3.2"
        elif self.provider == "openai":
            self.model = model or settings.OPENAI_MODEL
        elif self.provider is None:
            self.model = None
        else:
            raise ValueError(f"Unknown provider: {self.provider}")

        self.default_options = DEFAULT_CHAT_OPTIONS.copy()
        self._openai: Optional[OpenAI] = None
        self._lock = threading.Lock()
        if self.provider:
            logger.info("LLM client initialized with %s: %s", self.provider, self.model)

    @property
    def is_configured(self) -> bool:
        return self.provider is not None and bool(self.model)

    def _get_openai_client(self) -> OpenAI:
        if self._openai is not None:
            return self._openai
        with self._lock:
            if self._openai is None:
                if not self.api_key:
                    raise LLMUnavailable("OPENAI_API_KEY is not set. Please add it to your environment or .env file.")
                self._openai = OpenAI(api_key=self.api_key)
                logger.info("OpenAI client initialized")
        return self._openai

    def chat_text(
        self,
        messages: List[Dict[str, str]],
        timeout: float = 60,
        *,
        options: Optional[Dict[str, Any]] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        """Run a chat completion expecting plain text output. Raises LLMUnavailable."""
        if not self.is_configured:
            raise LLMUnavailable("No LLM provider configured")
        if self.provider == "ollama":
            return self._chat_text_ollama(messages, timeout, options=options)
        return self._chat_text_openai(messages, timeout, max_tokens=max_tokens)

    # ===== Ollama Implementation =====
    def _chat_text_ollama(self, messages: List[Dict[str, str]], timeout: float, *, options: Optional[Dict[str, Any]] = None) -> str:
        merged_options = self.default_options.copy()
        if options:
            merged_options.update(options)
        payload = {
            "model": self.model,
            "messages": messages,
            "stream": False,
            "options": merged_options,
            "keep_alive": "30m",
        }
        url = f"{self.ollama_base_url.rstrip('/')}/api/chat"
        try:
            response = requests.post(url, json=payload, timeout=timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            logger.exception("Ollama chat_text error: %s", e)
            raise LLMUnavailable(f"Ollama chat failed: {e}") from e

        try:
            body = response.json()
        except ValueError as e:  # requests' JSONDecodeError subclasses ValueError
            logger.error("Ollama returned a non-JSON body: %s", e)
            raise LLMUnavailable(f"Ollama returned invalid JSON: {e}") from e
        content = (body.get("message") or {}).get("content", "").strip()
        logger.debug("Ollama chat_text received %d chars", len(content))
        return content

    # ===== OpenAI Implementation =====
    def _chat_text_openai(self, messages: List[Dict[str, str]], timeout: float, *, max_tokens: Optional[int] = None) -> str:
        client = self._get_openai_client()
        kwargs: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "timeout": timeout,
        }
        if max_tokens is not None:
            kwargs["max_tokens"] = max_tokens
        try:
            resp = client.chat.completions.create(**kwargs)
        except APIError as e:
            logger.exception("OpenAI API error in chat_text: %s", e)
            raise LLMUnavailable(f"OpenAI chat failed: {e}") from e
        content = (resp.choices[0].message.content or "").strip()
        logger.debug("OpenAI chat_text received %d chars", len(content))
        return content
