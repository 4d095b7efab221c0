"""Provider request construction.

A request is one of two closed shapes, text-only or text plus one inline
image. Provider differences (endpoint, web-search support) come from the
model profile, not from branching per vendor.
"""

import base64
from collections.abc import Mapping
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field

from .errors import MissingCredentialError, UnsupportedMediaError
from .models import PromptRequest
from .registry import ModelProfile


class _Payload(BaseModel):
    model_config = ConfigDict(frozen=True)

    model: str
    provider: str
    endpoint: str
    prompt: str
    max_tokens: int
    api_key: str = Field(repr=False)
    web_search_options: dict | None = None

    def headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _content(self):
        return self.prompt

    def body(self) -> dict:
        body = {
            "model": self.model,
            "messages": [{"role": "user", "content": self._content()}],
            "max_tokens": self.max_tokens,
        }
        if self.web_search_options:
            body["web_search_options"] = dict(self.web_search_options)
        return body


class TextPayload(_Payload):
    kind: Literal["text"] = "text"


class VisionPayload(_Payload):
    kind: Literal["vision"] = "vision"
    image_b64: str = Field(repr=False)
    media_type: str = "image/jpeg"

    def _content(self):
        return [
            {"type": "text", "text": self.prompt},
            {
                "type": "image_url",
                "image_url": {"url": f"data:{self.media_type};base64,{self.image_b64}"},
            },
        ]


ProviderPayload = Annotated[TextPayload | VisionPayload, Field(discriminator="kind")]


def build(
    request: PromptRequest,
    profile: ModelProfile,
    credentials: Mapping[str, str],
    search_options: dict | None = None,
) -> TextPayload | VisionPayload:
    """Build the provider payload for one request.

    Raises UnsupportedMediaError for an image bound to a non-vision model and
    MissingCredentialError when the profile's provider has no API key.
    """
    if request.image is not None and not profile.supports_vision:
        raise UnsupportedMediaError(profile.identifier)

    api_key = (credentials.get(profile.provider) or "").strip()
    if not api_key:
        raise MissingCredentialError(profile.provider, profile.identifier)

    options = None
    if request.web_search and profile.web_search and search_options:
        options = {k: v for k, v in search_options.items() if v}

    common = dict(
        model=request.model_id,
        provider=profile.provider,
        endpoint=profile.endpoint,
        prompt=request.prompt,
        max_tokens=request.max_tokens,
        api_key=api_key,
        web_search_options=options or None,
    )
    if request.image is None:
        return TextPayload(**common)
    return VisionPayload(
        **common,
        image_b64=base64.b64encode(request.image).decode("ascii"),
        media_type=request.image_media_type,
    )
