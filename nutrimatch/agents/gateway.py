"""Chat gateway over the Ollama client, plus the JSON decoding boundary."""

import json
import logging
import re
from typing import Any, TypeVar

import ollama
from pydantic import TypeAdapter, ValidationError

from nutrimatch.core.errors import GatewayError, NutriMatchError
from nutrimatch.core.settings import LLMSettings

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ── Gateway ──────────────────────────────────────────────────────────


class LLMGateway:
    """One system + user chat turn against the configured model."""

    def __init__(self, settings: LLMSettings, client: ollama.Client | None = None):
        self.settings = settings
        self._client = client

    @property
    def model(self) -> str:
        return self.settings.model

    def _get_client(self) -> ollama.Client:
        if self._client is None:
            self.settings.check_credentials()
            headers = {}
            if self.settings.api_key:
                headers["Authorization"] = f"Bearer {self.settings.api_key}"
            self._client = ollama.Client(
                host=self.settings.host, headers=headers, timeout=self.settings.timeout
            )
        return self._client

    def complete(
        self,
        system: str,
        user: str,
        temperature: float | None = None,
        schema: dict | None = None,
    ) -> str:
        """Return the assistant's text. Transport and API failures raise GatewayError.

        Missing credentials raise UpstreamConfigurationError before any call.
        """
        client = self._get_client()
        kwargs: dict[str, Any] = {
            "model": self.settings.model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            "options": {
                "temperature": self.settings.temperature if temperature is None else temperature
            },
        }
        if schema is not None:
            kwargs["format"] = schema

        try:
            response = client.chat(**kwargs)
        except Exception as exc:
            logger.warning("LLM gateway call failed [model: %s]: %s", self.settings.model, exc)
            raise GatewayError(f"LLM gateway error [model: {self.settings.model}]: {exc}") from exc

        content = response.message.content or ""
        logger.debug("Raw LLM response: %s", content)
        return content


# ── Decoding Boundary ────────────────────────────────────────────────

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*\n?|\n?\s*```")
_THINK_RE = re.compile(r"<think>.*?</think>", re.DOTALL)


def strip_wrappers(content: str) -> str:
    """Remove <think> traces and markdown code fences around a JSON payload."""
    content = _THINK_RE.sub("", content)
    content = _FENCE_RE.sub("", content)
    return content.strip()


def decode_json_payload(
    content: str,
    target: Any,
    error_cls: type[NutriMatchError],
) -> Any:
    """Decode LLM text into ``target`` (a model or type), or raise ``error_cls``.

    Decodes the raw text first. If that fails, strips known wrappers once and
    retries. A second failure raises.
    """
    adapter = TypeAdapter(target)
    try:
        return adapter.validate_python(json.loads(content))
    except (ValueError, ValidationError):
        pass

    cleaned = strip_wrappers(content)
    try:
        return adapter.validate_python(json.loads(cleaned))
    except ValueError as exc:
        # ValidationError subclasses ValueError
        logger.warning("Could not decode LLM output: %s", exc)
        raise error_cls(f"Failed to parse AI response: {exc}") from exc
