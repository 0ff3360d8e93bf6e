from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from .image_conditioning import ImageConditioner, normalize_media_type, strip_data_uri
from .model_output import extract_reply_text
from .prompt_assembly import (
    LOCAL_ANALYSIS_SYSTEM_PROMPT,
    build_checklist_request_text,
    build_checklist_system_prompt,
)
from .settings import ServerSettings

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"


class VisionProviderError(RuntimeError):
    """An upstream provider failed.

    ``status_code`` mirrors the provider's HTTP status, or is ``None`` when the
    provider could not be reached. ``payload`` holds the provider's error body.
    """

    def __init__(self, message: str, *, status_code: int | None = None, payload: Any = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload


class ProviderCredentialError(ValueError):
    pass


@dataclass
class ImageInput:
    base64_data: str
    media_type: str = "image/jpeg"

    @classmethod
    def from_payload(cls, payload: Any) -> "ImageInput | None":
        """Build from a client ``{base64Data, mediaType}`` object; ``None`` when no image is present."""
        if not isinstance(payload, dict):
            return None
        raw_data = payload.get("base64Data")
        if not isinstance(raw_data, str) or not raw_data.strip():
            return None
        return cls(
            base64_data=strip_data_uri(raw_data),
            media_type=normalize_media_type(payload.get("mediaType")),
        )


@dataclass
class VisionProviderResult:
    text: str
    model_used: str
    request_metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class ChecklistReply:
    provider_label: str
    raw_text: str
    model_used: str


@dataclass
class _ProviderResponse:
    status_code: int
    text: str

    def json(self) -> Any:
        return json.loads(self.text)

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


class _BaseVisionProvider:
    route_id: str = ""
    label: str = ""
    checklist_label: str = ""
    checklist_min_items: int | None = None

    def __init__(
        self,
        *,
        base_url: str,
        default_model: str,
        timeout_seconds: float,
        conditioner: ImageConditioner,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.strip().rstrip("/")
        self.default_model = default_model.strip()
        self.timeout_seconds = timeout_seconds
        self.conditioner = conditioner
        self.transport = transport

    async def analyze(
        self,
        *,
        prompt: str,
        image: ImageInput | None = None,
        api_key: str | None = None,
    ) -> VisionProviderResult:
        raise NotImplementedError

    async def parse_checklist(
        self,
        *,
        image: ImageInput,
        checklist_name: str | None = None,
        api_key: str | None = None,
        model_override: str | None = None,
    ) -> ChecklistReply:
        raise NotImplementedError

    async def _post_json(
        self,
        *,
        url: str,
        headers: dict[str, str],
        request_payload: dict[str, Any],
    ) -> _ProviderResponse:
        normalized_headers = dict(headers)
        normalized_headers.setdefault("Content-Type", "application/json")
        normalized_headers.setdefault("Accept", "application/json")

        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout_seconds),
                transport=self.transport,
            ) as client:
                response = await client.post(url, headers=normalized_headers, json=request_payload)
        except httpx.HTTPError as exc:
            logger.warning("%s request to %s failed: %s", self.label, url, exc)
            raise VisionProviderError(f"{self.label} request failed: {exc}") from exc

        return _ProviderResponse(status_code=int(response.status_code), text=response.text)


class CloudVisionProvider(_BaseVisionProvider):
    """Anthropic Messages API, keyed per request by the caller."""

    route_id = "cloud"
    label = "Claude"
    checklist_label = "Claude 雲端"
    CREDENTIAL_PREFIX = "sk-ant-api03-"

    def __init__(self, *, max_tokens: int = 4000, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.max_tokens = max_tokens

    @classmethod
    def from_settings(
        cls,
        settings: ServerSettings,
        *,
        conditioner: ImageConditioner,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "CloudVisionProvider":
        return cls(
            base_url=settings.cloud_base_url,
            default_model=settings.cloud_model,
            timeout_seconds=settings.request_timeout_seconds,
            conditioner=conditioner,
            transport=transport,
        )

    @property
    def messages_url(self) -> str:
        if self.base_url.endswith("/v1"):
            return f"{self.base_url}/messages"
        return f"{self.base_url}/v1/messages"

    @classmethod
    def validate_api_key(cls, api_key: Any) -> str:
        if not isinstance(api_key, str) or not api_key:
            raise ProviderCredentialError("An API key is required for the cloud provider.")
        if not api_key.startswith(cls.CREDENTIAL_PREFIX):
            raise ProviderCredentialError("The API key format is invalid.")
        return api_key

    async def forward_messages(self, *, api_key: Any, request_data: dict[str, Any]) -> Any:
        """Send a client-built Messages request after conditioning its embedded images.

        Returns the provider's JSON reply untouched. Failures raise
        ``VisionProviderError`` carrying the provider's status and body.
        """
        key = self.validate_api_key(api_key)
        image_count = await self.conditioner.condition_messages(request_data.get("messages"))
        logger.info("Forwarding cloud request with %s image(s)", image_count)
        return await self._send(key, request_data)

    async def analyze(
        self,
        *,
        prompt: str,
        image: ImageInput | None = None,
        api_key: str | None = None,
    ) -> VisionProviderResult:
        key = self.validate_api_key(api_key)
        request_payload = {
            "model": self.default_model,
            "max_tokens": self.max_tokens,
            "messages": [
                {
                    "role": "user",
                    "content": await self._build_content(prompt, image),
                }
            ],
        }
        payload = await self._send(key, request_payload)
        return VisionProviderResult(
            text=_join_content_text(payload),
            model_used=self.default_model,
            request_metadata={
                "provider": self.route_id,
                "endpoint": self.messages_url,
                "model": self.default_model,
                "image_count": 1 if image else 0,
            },
        )

    async def parse_checklist(
        self,
        *,
        image: ImageInput,
        checklist_name: str | None = None,
        api_key: str | None = None,
        model_override: str | None = None,
    ) -> ChecklistReply:
        key = self.validate_api_key(api_key)
        model_used = (model_override or self.default_model).strip()
        request_payload = {
            "model": model_used,
            "max_tokens": self.max_tokens,
            "messages": [
                {
                    "role": "user",
                    "content": await self._build_content(build_checklist_request_text(checklist_name), image),
                }
            ],
        }
        payload = await self._send(key, request_payload)
        return ChecklistReply(
            provider_label=self.checklist_label,
            raw_text=_join_content_text(payload),
            model_used=model_used,
        )

    async def _build_content(self, prompt: str, image: ImageInput | None) -> list[dict[str, Any]]:
        content: list[dict[str, Any]] = [{"type": "text", "text": prompt}]
        if image is not None:
            content.append(
                {
                    "type": "image",
                    "source": {
                        "type": "base64",
                        "media_type": image.media_type,
                        "data": await self.conditioner.condition_async(image.base64_data, image.media_type),
                    },
                }
            )
        return content

    async def _send(self, api_key: str, request_payload: dict[str, Any]) -> Any:
        response = await self._post_json(
            url=self.messages_url,
            headers={
                "x-api-key": api_key,
                "anthropic-version": ANTHROPIC_VERSION,
            },
            request_payload=request_payload,
        )
        try:
            payload = response.json()
        except ValueError as exc:
            raise VisionProviderError(
                f"Claude response was not valid JSON: {exc}",
                status_code=response.status_code if not response.ok else 502,
                payload={"error": response.text[:2000] or "Empty response from Claude"},
            ) from exc

        if not response.ok:
            logger.warning("Claude request failed with status %s", response.status_code)
            raise VisionProviderError(
                f"Claude request failed ({response.status_code})",
                status_code=response.status_code,
                payload=payload,
            )
        return payload


class LocalVisionProvider(_BaseVisionProvider):
    """Ollama chat API on the local machine. No credential required."""

    route_id = "local"
    label = "Ollama"
    checklist_label = "Ollama"

    def __init__(self, *, checklist_model: str = "", checklist_min_items: int | None = 8, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.checklist_model = checklist_model.strip() or self.default_model
        self.checklist_min_items = checklist_min_items

    @classmethod
    def from_settings(
        cls,
        settings: ServerSettings,
        *,
        conditioner: ImageConditioner,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "LocalVisionProvider":
        return cls(
            base_url=settings.local_base_url,
            default_model=settings.local_model,
            checklist_model=settings.checklist_model,
            checklist_min_items=settings.local_min_items,
            timeout_seconds=settings.request_timeout_seconds,
            conditioner=conditioner,
            transport=transport,
        )

    @property
    def chat_url(self) -> str:
        return f"{self.base_url}/api/chat"

    async def analyze(
        self,
        *,
        prompt: str,
        image: ImageInput | None = None,
        api_key: str | None = None,
    ) -> VisionProviderResult:
        request_payload = {
            "model": self.default_model,
            "stream": False,
            "messages": [
                {"role": "system", "content": LOCAL_ANALYSIS_SYSTEM_PROMPT},
                await self._build_user_message(prompt, image),
            ],
        }
        response = await self._post_json(url=self.chat_url, headers={}, request_payload=request_payload)
        payload = _parse_json_or_none(response.text)
        if not response.ok:
            raise self._error_from_response(response, payload)

        return VisionProviderResult(
            text=extract_reply_text(payload),
            model_used=self.default_model,
            request_metadata={
                "provider": self.route_id,
                "endpoint": self.chat_url,
                "model": self.default_model,
                "image_count": 1 if image else 0,
            },
        )

    async def parse_checklist(
        self,
        *,
        image: ImageInput,
        checklist_name: str | None = None,
        api_key: str | None = None,
        model_override: str | None = None,
    ) -> ChecklistReply:
        model_used = (model_override or "").strip() or self.checklist_model
        min_items = self.checklist_min_items or 0
        request_payload = {
            "model": model_used,
            "stream": False,
            "messages": [
                {"role": "system", "content": build_checklist_system_prompt(min_items=min_items)},
                await self._build_user_message(
                    build_checklist_request_text(checklist_name, min_items=min_items),
                    image,
                ),
            ],
        }
        response = await self._post_json(url=self.chat_url, headers={}, request_payload=request_payload)
        payload = _parse_json_or_none(response.text)
        if not response.ok:
            raise self._error_from_response(response, payload)
        if payload is None:
            raise VisionProviderError(
                "Local model reply could not be parsed.",
                status_code=502,
                payload={"error": "Local model reply could not be parsed.", "raw": response.text},
            )

        return ChecklistReply(
            provider_label=self.checklist_label,
            raw_text=extract_reply_text(payload),
            model_used=model_used,
        )

    async def _build_user_message(self, prompt: str, image: ImageInput | None) -> dict[str, Any]:
        message: dict[str, Any] = {"role": "user", "content": prompt}
        if image is not None:
            message["images"] = [
                await self.conditioner.condition_async(strip_data_uri(image.base64_data), image.media_type)
            ]
        return message

    def _error_from_response(self, response: _ProviderResponse, payload: Any) -> VisionProviderError:
        detail = _extract_error_detail(response, payload)
        logger.warning("Local model request failed (%s): %s", response.status_code, detail)
        return VisionProviderError(
            f"Local model request failed ({response.status_code}): {detail}",
            status_code=response.status_code,
            payload={"error": detail},
        )


def build_default_providers(
    settings: ServerSettings,
    *,
    conditioners: dict[str, ImageConditioner],
    transport: httpx.AsyncBaseTransport | None = None,
) -> dict[str, _BaseVisionProvider]:
    return {
        "cloud": CloudVisionProvider.from_settings(
            settings,
            conditioner=conditioners["cloud"],
            transport=transport,
        ),
        "local": LocalVisionProvider.from_settings(
            settings,
            conditioner=conditioners["local"],
            transport=transport,
        ),
    }


def _parse_json_or_none(raw_text: str) -> Any:
    try:
        return json.loads(raw_text)
    except ValueError:
        return None


def _join_content_text(payload: Any) -> str:
    if not isinstance(payload, dict):
        return ""
    content = payload.get("content")
    if not isinstance(content, list):
        return ""
    chunks = [
        item["text"]
        for item in content
        if isinstance(item, dict) and isinstance(item.get("text"), str)
    ]
    return "\n".join(chunks)


def _extract_error_detail(response: _ProviderResponse, payload: Any) -> str:
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict):
            message = error.get("message")
            if isinstance(message, str) and message:
                return message
        if isinstance(error, str) and error:
            return error
    body = response.text.strip()
    return body[:300] if body else "Local model error"
