"""
LLM client abstraction.

Provides a unified interface for an OpenAI-compatible chat completions API.
Requests are sent with httpx; failures are reported as error responses
rather than raised, so callers can fall back without try/except noise.
"""

import ast
import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Any

import httpx
from pydantic import BaseModel, Field

from voice_coach.config import get_settings

logger = logging.getLogger(__name__)

# Default chat model
DEFAULT_CHAT_MODEL = "gpt-5-nano"

JSON_OBJECT_FORMAT = {"type": "json_object"}


class ChatMessage(BaseModel):
    """A message in a chat request."""

    role: str = Field(..., description="Role of the speaker (system, user, assistant)")
    content: str = Field(..., description="Message content")


class LLMResponse(BaseModel):
    """Response from an LLM."""

    content: str = Field(..., description="Generated text content")
    finish_reason: str = Field(default="stop", description="Reason for completion")
    usage: dict[str, int] = Field(
        default_factory=dict,
        description="Token usage information",
    )
    model: str = Field(default="", description="Model used for generation")
    raw_response: dict[str, Any] = Field(
        default_factory=dict,
        description="Raw response from the API",
    )
    request_payload: dict[str, Any] = Field(
        default_factory=dict,
        description="Exact payload that was sent",
    )

    @property
    def failed(self) -> bool:
        return self.finish_reason == "error"


class ChatCompletionError(Exception):
    """Exception raised when the chat completions API fails."""

    def __init__(self, message: str, status_code: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class LLMClientBase(ABC):
    """Abstract base class for LLM clients."""

    @property
    @abstractmethod
    def model(self) -> str:
        """Model name used for requests."""
        ...

    @abstractmethod
    async def chat(
        self,
        messages: list[ChatMessage],
        response_format: dict[str, str] | None = None,
        **kwargs: Any,
    ) -> LLMResponse:
        """
        Generate a chat completion.

        Args:
            messages: Conversation messages.
            response_format: Structural output flag, e.g. ``{"type": "json_object"}``.
            **kwargs: Additional model-specific parameters.

        Returns:
            Generated response; ``finish_reason == "error"`` on failure.
        """
        ...


class LLMClient(LLMClientBase):
    """
    OpenAI-compatible chat completions client.

    Posts to ``{base_url}/chat/completions`` and returns the first choice.
    """

    def __init__(
        self,
        model: str | None = None,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize the chat client.

        Args:
            model: Model name (defaults to settings).
            api_key: Bearer token (defaults to settings).
            base_url: API base URL (defaults to settings).
            timeout: Request timeout in seconds (defaults to settings).
            transport: Optional httpx transport, used by tests.
        """
        settings = get_settings()
        self._model = model or settings.openai_model or DEFAULT_CHAT_MODEL
        self._api_key = api_key if api_key is not None else settings.openai_api_key
        self._base_url = base_url or settings.openai_base_url
        self._timeout = timeout or settings.llm_timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

        logger.info(f"Initialized chat client with model: {self._model}")

    @property
    def model(self) -> str:
        """Get the model name."""
        return self._model

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _post_chat(self, payload: dict[str, Any]) -> dict[str, Any]:
        """
        Send one chat completions request.

        Raises:
            ChatCompletionError: On missing credentials, transport errors or non-2xx status.
        """
        if not self._api_key:
            raise ChatCompletionError("API key not configured")

        client = await self._get_client()
        try:
            res = await client.post(
                "/chat/completions",
                json=payload,
                headers={"Authorization": f"Bearer {self._api_key}"},
            )
        except httpx.HTTPError as e:
            raise ChatCompletionError(f"Chat request failed: {e}") from e

        if res.status_code >= 400:
            raise ChatCompletionError(
                f"Chat API responded with status {res.status_code}",
                status_code=res.status_code,
                body=res.text,
            )

        try:
            return res.json()
        except ValueError as e:
            raise ChatCompletionError("Chat API returned a non-JSON body", status_code=res.status_code, body=res.text) from e

    async def chat(
        self,
        messages: list[ChatMessage],
        response_format: dict[str, str] | None = None,
        **kwargs: Any,
    ) -> LLMResponse:
        """
        Generate a chat completion.

        Args:
            messages: Conversation messages.
            response_format: Structural output flag.
            **kwargs: Extra request fields (temperature, max_tokens, ...).

        Returns:
            Generated response.
        """
        payload: dict[str, Any] = {
            "model": self._model,
            "messages": [m.model_dump() for m in messages],
        }
        if response_format:
            payload["response_format"] = response_format
        payload.update({k: v for k, v in kwargs.items() if v is not None})

        try:
            data = await self._post_chat(payload)
        except ChatCompletionError as e:
            logger.error(f"Chat completion failed: {e} status={e.status_code} body={e.body[:500]}")
            return LLMResponse(
                content="",
                finish_reason="error",
                model=self._model,
                raw_response={"error": str(e), "status_code": e.status_code, "body": e.body},
                request_payload=payload,
            )

        choices = data.get("choices") or [{}]
        choice = choices[0] if isinstance(choices[0], dict) else {}
        content = (choice.get("message") or {}).get("content") or ""
        usage = {k: v for k, v in (data.get("usage") or {}).items() if isinstance(v, int)}

        return LLMResponse(
            content=content,
            finish_reason=choice.get("finish_reason") or "stop",
            usage=usage,
            model=data.get("model") or self._model,
            raw_response=data,
            request_payload=payload,
        )


def _extract_json_block(content: str) -> str:
    """Return the first balanced {...} or [...] block, or the whole string."""
    start_idx = content.find("{")
    if start_idx == -1:
        start_idx = content.find("[")
    if start_idx == -1:
        return content

    open_bracket = content[start_idx]
    close_bracket = "}" if open_bracket == "{" else "]"
    bracket_count = 0
    for i, char in enumerate(content[start_idx:], start=start_idx):
        if char == open_bracket:
            bracket_count += 1
        elif char == close_bracket:
            bracket_count -= 1
            if bracket_count == 0:
                return content[start_idx : i + 1]
    return content[start_idx:]


def _fix_json_string(json_str: str) -> str:
    """
    Attempt to fix common JSON issues from LLM output.

    Args:
        json_str: Raw JSON string that may have issues.

    Returns:
        Cleaned JSON string.
    """
    if not json_str:
        return ""

    result = json_str.strip()

    # Strip common fenced blocks.
    result = re.sub(r"^```(?:json)?\s*", "", result, flags=re.IGNORECASE)
    result = re.sub(r"\s*```$", "", result)

    # Normalize curly quotes.
    result = (
        result.replace("“", '"')
        .replace("”", '"')
        .replace("‘", "'")
        .replace("’", "'")
    )

    # Remove trailing commas before closing braces/brackets.
    result = re.sub(r",(\s*[}\]])", r"\1", result)

    # Convert Python literals to JSON literals.
    result = re.sub(r"\bNone\b", "null", result)
    result = re.sub(r"\bTrue\b", "true", result)
    result = re.sub(r"\bFalse\b", "false", result)

    # Quote bare keys right after { or , so values are left alone.
    result = re.sub(
        r"([\{,]\s*)([A-Za-z_][A-Za-z0-9_\-]*)(\s*:)",
        r'\1"\2"\3',
        result,
    )

    if result.count("'") > 0 and result.count('"') == 0:
        result = result.replace("'", '"')

    return result


def _coerce_to_json_types(obj: Any) -> Any:
    """Coerce a Python literal (from ``ast.literal_eval``) to JSON-safe types."""
    if obj is ...:
        return None
    if obj is None or isinstance(obj, (str, int, float, bool)):
        return obj
    if isinstance(obj, dict):
        return {str(k): _coerce_to_json_types(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple, set)):
        return [_coerce_to_json_types(v) for v in obj]
    return str(obj)


def _parse_json_loose(raw: str) -> Any:
    """Parse JSON with best-effort repair. Returns None when nothing parses."""
    if not raw:
        return None

    cleaned = _fix_json_string(raw)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass

    try:
        obj = ast.literal_eval(raw.strip())
    except Exception:
        try:
            obj = ast.literal_eval(cleaned)
        except Exception:
            return None

    if not isinstance(obj, (dict, list, tuple, set)):
        return None

    try:
        return json.loads(json.dumps(_coerce_to_json_types(obj)))
    except (TypeError, ValueError):
        return None


def parse_json_object(content: str) -> tuple[dict[str, Any] | None, str | None]:
    """
    Parse a model reply that should be a single JSON object.

    Strict parsing is tried first; on failure a repair pass handles fenced
    blocks, trailing commas, bare keys and Python literals.

    Args:
        content: Raw content string from the model.

    Returns:
        ``(parsed, None)`` on success, ``(None, error_message)`` otherwise.
    """
    text = (content or "").strip()
    if not text:
        return None, "Empty content"

    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as e:
        strict_error = str(e)
        parsed = _parse_json_loose(_extract_json_block(_fix_json_string(text)))
        if parsed is None:
            logger.warning(f"Failed to parse JSON from response: {strict_error}")
            logger.debug(f"Response content: {text[:500]}")
            return None, strict_error

    if not isinstance(parsed, dict):
        return None, f"Expected a JSON object, got {type(parsed).__name__}"
    return parsed, None
