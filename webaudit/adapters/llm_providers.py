from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

import requests

from webaudit.adapters.http_common import json_body, send
from webaudit.domain.errors import AuthenticationError, ParseError
from webaudit.ports.analyzers import AIProvider

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = "You are a senior website auditor. Be concrete and practical."


class OpenAIChatProvider(AIProvider):
    label = "OpenAI"
    endpoint = "https://api.openai.com/v1/chat/completions"

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4",
        connect_timeout: float = 10.0,
        session: Optional[requests.Session] = None,
        max_tokens: int = 2000,
    ):
        self.api_key = api_key
        self.model = model
        self.connect_timeout = connect_timeout
        self.session = session or requests.Session()
        self.max_tokens = max_tokens

    def generate(self, prompt: str, timeout: float) -> str:
        if not self.api_key:
            raise AuthenticationError("OpenAI API key is not configured")
        response = send(
            self.session, "POST", self.endpoint, self.label, (self.connect_timeout, timeout),
            headers={"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"},
            json={
                "model": self.model,
                "messages": [
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                "max_tokens": self.max_tokens,
                "temperature": 0.7,
            },
        )
        data = json_body(response, self.label)
        try:
            return data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as e:
            raise ParseError(f"{self.label} response has no message content") from e


class AnthropicMessagesProvider(AIProvider):
    label = "Claude"
    endpoint = "https://api.anthropic.com/v1/messages"
    api_version = "2023-06-01"

    def __init__(
        self,
        api_key: str,
        model: str = "claude-3-opus-20240229",
        connect_timeout: float = 10.0,
        session: Optional[requests.Session] = None,
        max_tokens: int = 2000,
    ):
        self.api_key = api_key
        self.model = model
        self.connect_timeout = connect_timeout
        self.session = session or requests.Session()
        self.max_tokens = max_tokens

    def generate(self, prompt: str, timeout: float) -> str:
        if not self.api_key:
            raise AuthenticationError("Anthropic API key is not configured")
        response = send(
            self.session, "POST", self.endpoint, self.label, (self.connect_timeout, timeout),
            headers={
                "x-api-key": self.api_key,
                "anthropic-version": self.api_version,
                "content-type": "application/json",
            },
            json={
                "model": self.model,
                "max_tokens": self.max_tokens,
                "system": SYSTEM_PROMPT,
                "messages": [{"role": "user", "content": prompt}],
            },
        )
        data = json_body(response, self.label)
        blocks = data.get("content")
        if not isinstance(blocks, list):
            raise ParseError(f"{self.label} response has no content blocks")
        return "".join(b.get("text", "") for b in blocks if isinstance(b, dict) and b.get("type") == "text")


def build_providers(
    names: Sequence[str],
    keys: Dict[str, str],
    models: Dict[str, str],
    connect_timeout: float,
    session: Optional[requests.Session] = None,
) -> List[AIProvider]:
    """Providers named in config, skipping the ones without an API key."""
    factories: Dict[str, Any] = {"openai": OpenAIChatProvider, "anthropic": AnthropicMessagesProvider}
    out: List[AIProvider] = []
    for name in names:
        factory = factories.get(name)
        if factory is None:
            logger.warning("Unknown AI provider %r in config; ignored", name)
            continue
        if not keys.get(name):
            logger.info("AI provider %s has no API key; skipped", name)
            continue
        kwargs = {"api_key": keys[name], "connect_timeout": connect_timeout, "session": session}
        if models.get(name):
            kwargs["model"] = models[name]
        out.append(factory(**kwargs))
    return out
