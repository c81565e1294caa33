"""
Async HTTP clients for the two LLM backend families.

Design constraints:
- Do NOT use vendor SDKs; talk to the REST APIs with httpx
- Return the raw text payload; parsing belongs to the caller
- Raise BackendHTTPError for non-2xx responses so classify() can read the
  vendor's status code and status text; transport errors propagate as-is
- Keep credentials out of URLs (headers only) so that error messages and
  logs never contain them

Each `generate()` call opens its own AsyncClient; cancelling the awaiting
task aborts the in-flight request.
"""
import base64
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import httpx

from eduquest.core.config import Settings
from eduquest.core.logging import get_logger
from eduquest.core.metrics import record_llm_error, record_llm_request
from eduquest.services.ai.errors import BackendHTTPError, MalformedResponseError
from eduquest.services.ai.providers import ProviderDescriptor, ProviderKind

logger = get_logger(__name__)


@dataclass(frozen=True)
class Attachment:
    """Binary input sent alongside the prompt (image or PDF)."""

    mime_type: str
    data: bytes

    @property
    def base64_data(self) -> str:
        return base64.b64encode(self.data).decode("ascii")

    @classmethod
    def from_data_url(cls, data_url: str) -> "Attachment":
        """Parse a `data:<mime>;base64,<payload>` URL."""
        header, _, payload = data_url.partition(",")
        if not header.startswith("data:") or not payload:
            raise ValueError("Invalid data URL; could not extract base64 data.")
        mime_type = header[len("data:"):].split(";")[0]
        return cls(mime_type=mime_type, data=base64.b64decode(payload))


def _error_from_response(response: httpx.Response) -> BackendHTTPError:
    """Build a BackendHTTPError from a vendor error body."""
    message = f"LLM API request failed with status {response.status_code}"
    status_text: Optional[str] = None
    try:
        body = response.json()
    except ValueError:
        body = None

    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            message = str(error.get("message") or message)
            status = error.get("status") or error.get("type")
            status_text = str(status) if status else None
        elif isinstance(error, str):
            message = error

    return BackendHTTPError(message, response.status_code, status_text)


class BaseLLMClient:
    """Shared plumbing: POST, latency metrics, error mapping."""

    kind: ProviderKind

    def __init__(
        self,
        credential: str,
        api_base: str,
        model: str,
        timeout_seconds: float = 300.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.credential = credential
        self.api_base = api_base.rstrip("/")
        self.model = model
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        raise NotImplementedError

    async def _post(self, path: str, json_payload: Dict[str, Any], model: str) -> Dict[str, Any]:
        """Low-level POST helper returning the decoded JSON body."""
        url = f"{self.api_base}{path}"
        start = time.monotonic()
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_seconds,
                transport=self._transport,
            ) as client:
                response = await client.post(url, headers=self._headers(), json=json_payload)
        except httpx.TimeoutException as exc:
            record_llm_error(self.kind.value, "timeout")
            logger.warning(
                "llm_timeout",
                provider_kind=self.kind.value,
                model=model,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise
        except httpx.HTTPError as exc:
            record_llm_error(self.kind.value, "transport_error")
            logger.warning(
                "llm_transport_error",
                provider_kind=self.kind.value,
                model=model,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise
        finally:
            record_llm_request(self.kind.value, model, time.monotonic() - start)

        if response.is_error:
            error = _error_from_response(response)
            record_llm_error(self.kind.value, "http_error")
            logger.warning(
                "llm_http_error",
                provider_kind=self.kind.value,
                model=model,
                status_code=error.status_code,
                status_text=error.status_text,
                error=error.message,
            )
            raise error

        try:
            return response.json()
        except ValueError as exc:
            raise MalformedResponseError(
                "LLM API returned a non-JSON body.",
                raw_output=response.text,
            ) from exc

    async def generate(
        self,
        prompt: str,
        *,
        response_schema: Optional[Dict[str, Any]] = None,
        json_output: bool = False,
        attachments: Sequence[Attachment] = (),
        model: Optional[str] = None,
    ) -> str:
        raise NotImplementedError


class GeminiClient(BaseLLMClient):
    """Primary family: Gemini generateContent REST API."""

    kind = ProviderKind.PRIMARY

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-goog-api-key": self.credential,
        }

    async def generate(
        self,
        prompt: str,
        *,
        response_schema: Optional[Dict[str, Any]] = None,
        json_output: bool = False,
        attachments: Sequence[Attachment] = (),
        model: Optional[str] = None,
    ) -> str:
        model = model or self.model
        parts: List[Dict[str, Any]] = [{"text": prompt}]
        for attachment in attachments:
            parts.append({
                "inline_data": {
                    "mime_type": attachment.mime_type,
                    "data": attachment.base64_data,
                }
            })

        payload: Dict[str, Any] = {"contents": [{"role": "user", "parts": parts}]}
        if json_output or response_schema:
            generation_config: Dict[str, Any] = {"responseMimeType": "application/json"}
            if response_schema:
                generation_config["responseSchema"] = response_schema
            payload["generationConfig"] = generation_config

        data = await self._post(f"/models/{model}:generateContent", payload, model)

        candidates = data.get("candidates") or []
        if not candidates:
            feedback = data.get("promptFeedback") or {}
            raise MalformedResponseError(
                f"Gemini returned no candidates (blockReason={feedback.get('blockReason')}).",
                raw_output=str(data),
            )
        content_parts = (candidates[0].get("content") or {}).get("parts") or []
        text = "".join(part.get("text", "") for part in content_parts)
        if not text.strip():
            raise MalformedResponseError("Gemini returned an empty response.", raw_output=str(data))
        return text


class OpenAIClient(BaseLLMClient):
    """Secondary family: OpenAI chat completions REST API."""

    kind = ProviderKind.SECONDARY

    def __init__(self, *args: Any, vision_model: Optional[str] = None, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.vision_model = vision_model or self.model

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.credential}",
        }

    async def generate(
        self,
        prompt: str,
        *,
        response_schema: Optional[Dict[str, Any]] = None,
        json_output: bool = False,
        attachments: Sequence[Attachment] = (),
        model: Optional[str] = None,
    ) -> str:
        if attachments:
            model = model or self.vision_model
            content: Any = [{"type": "text", "text": prompt}]
            for attachment in attachments:
                if not attachment.mime_type.startswith("image/"):
                    raise ValueError(f"OpenAI backend does not accept {attachment.mime_type} attachments.")
                content.append({
                    "type": "image_url",
                    "image_url": {"url": f"data:{attachment.mime_type};base64,{attachment.base64_data}"},
                })
        else:
            model = model or self.model
            content = prompt

        payload: Dict[str, Any] = {
            "model": model,
            "messages": [{"role": "user", "content": content}],
            "temperature": 0.5,
        }
        # JSON mode only emits objects; array-shaped answers arrive wrapped.
        if json_output or response_schema:
            payload["response_format"] = {"type": "json_object"}

        data = await self._post("/chat/completions", payload, model)

        text = (
            (data.get("choices") or [{}])[0]
            .get("message", {})
            .get("content")
        )
        if not text:
            raise MalformedResponseError("OpenAI returned an empty response.", raw_output=str(data))
        return text


def create_client(
    provider: ProviderDescriptor,
    settings: Settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> BaseLLMClient:
    """Instantiate the backend client for a provider descriptor."""
    if provider.kind is ProviderKind.PRIMARY:
        return GeminiClient(
            provider.credential,
            api_base=settings.gemini_api_base,
            model=settings.gemini_model,
            timeout_seconds=settings.http_timeout_seconds,
            transport=transport,
        )
    return OpenAIClient(
        provider.credential,
        api_base=settings.openai_api_base,
        model=settings.openai_model,
        timeout_seconds=settings.http_timeout_seconds,
        transport=transport,
        vision_model=settings.openai_vision_model,
    )
