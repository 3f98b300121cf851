"""LLM collaborator for prompt hooks.

The engine treats the model as opaque I/O: it sends the rendered prompt and
expects a JSON object back. `HttpPromptEvaluator` talks to any OpenAI
compatible chat completions endpoint.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any, Protocol

import httpx

from hookline.core.hooks.types import InvocationContext

logger = logging.getLogger(__name__)

ARGUMENTS_PLACEHOLDER = "$ARGUMENTS"

SYSTEM_PROMPT = (
    "You are evaluating a hook in an AI coding assistant. Reply with a single "
    'JSON object: {"decision": "approve" | "block", "reason": string, '
    '"continue": boolean (optional), "stopReason": string (optional), '
    '"systemMessage": string (optional)}. Do not add any other text.'
)


def render_prompt(template: str, context: InvocationContext) -> str:
    """Substitute the payload into a prompt template.

    The payload JSON replaces `$ARGUMENTS`; templates without the placeholder
    get the payload appended.
    """
    payload = context.to_json()
    if ARGUMENTS_PLACEHOLDER in template:
        return template.replace(ARGUMENTS_PLACEHOLDER, payload)
    return f"{template}\n\n{payload}"


class PromptEvaluator(Protocol):
    async def evaluate(self, prompt: str) -> str:
        """Send a prompt and return the raw text of the model's answer."""
        ...


class HttpPromptEvaluator:
    """Calls a chat completions endpoint and returns the message content.

    `timeout` bounds each HTTP request. When None, the only deadline is the
    timeout of the prompt hook being evaluated.
    """

    def __init__(
        self,
        endpoint: str,
        model: str,
        api_key: str | None = None,
        api_key_env: str | None = None,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.endpoint = endpoint
        self.model = model
        self._api_key = api_key
        self._api_key_env = api_key_env
        self._timeout = timeout
        self._client = client
        self._owns_client = client is None

    async def __aenter__(self) -> HttpPromptEvaluator:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client and self._client:
            await self._client.aclose()
            self._client = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout),
                limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
            )
            self._owns_client = True
        return self._client

    def build_headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        api_key = self._api_key
        if api_key is None and self._api_key_env:
            api_key = os.environ.get(self._api_key_env)
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        return headers

    def build_body(self, prompt: str) -> dict[str, Any]:
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            "temperature": 0,
            "response_format": {"type": "json_object"},
        }

    @staticmethod
    def parse_response(data: dict[str, Any]) -> str:
        if "error" in data:
            error = data["error"]
            message = error.get("message") if isinstance(error, dict) else error
            raise ValueError(f"Prompt evaluation failed: {message}")
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise ValueError(f"Unexpected completion payload: {data!r}") from e
        return content or ""

    async def evaluate(self, prompt: str) -> str:
        client = self._get_client()
        response = await client.post(
            self.endpoint,
            content=json.dumps(self.build_body(prompt)).encode(),
            headers=self.build_headers(),
        )
        response.raise_for_status()
        return self.parse_response(response.json())
