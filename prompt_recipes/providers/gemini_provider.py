"""Hosted model provider backed by the Gemini API (google-genai).

The provider is unavailable when no API key is configured. There is nothing to
download, so availability is either ``available`` or ``unavailable``.
"""

from typing import AsyncIterator, Optional

from google import genai
from google.genai import types

from prompt_recipes.models.models import Availability, CapabilityDescriptor
from prompt_recipes.providers.base import ModelProvider, ModelSession, PromptPart


class GeminiSession(ModelSession):
    """Multi-turn Gemini conversation kept client-side as a list of contents."""

    def __init__(self, client: genai.Client, model: str, temperature: float, top_k: int) -> None:
        self._client = client
        self._model = model
        self._config = types.GenerateContentConfig(temperature=temperature, top_k=top_k)
        self._contents: list[types.Content] = []
        self._pending: list[types.Part] = []
        self._destroyed = False

    def _next_contents(self, text: str) -> list[types.Content]:
        if self._destroyed:
            raise RuntimeError("Session has been destroyed")
        parts = self._pending
        self._pending = []
        if text:
            parts.append(types.Part.from_text(text=text))
        self._contents.append(types.Content(role="user", parts=parts))
        return self._contents

    def _remember(self, text: str) -> None:
        self._contents.append(types.Content(role="model", parts=[types.Part.from_text(text=text)]))

    async def append(self, parts: list[PromptPart]) -> None:
        for part in parts:
            if part.type == "image":
                self._pending.append(types.Part.from_bytes(data=part.content.data, mime_type=part.content.mime_type))
            else:
                self._pending.append(types.Part.from_text(text=part.content))

    async def prompt(self, text: str) -> str:
        response = await self._client.aio.models.generate_content(
            model=self._model,
            contents=self._next_contents(text),
            config=self._config,
        )
        content = response.text or ""
        self._remember(content)
        return content

    async def prompt_streaming(self, text: str) -> AsyncIterator[str]:
        stream = await self._client.aio.models.generate_content_stream(
            model=self._model,
            contents=self._next_contents(text),
            config=self._config,
        )
        received: list[str] = []
        async for chunk in stream:
            if chunk.text:
                received.append(chunk.text)
                yield chunk.text
        self._remember("".join(received))

    async def destroy(self) -> None:
        self._destroyed = True
        self._contents.clear()
        self._pending = []


class GeminiProvider(ModelProvider):
    """Gemini API. Requires GEMINI_API_KEY."""

    name = "gemini"

    def __init__(self, api_key: str, model: str, client: Optional[genai.Client] = None) -> None:
        self._model = model
        self._client = client or (genai.Client(api_key=api_key) if api_key else None)

    @property
    def model(self) -> str:
        return self._model

    def is_supported(self) -> bool:
        return self._client is not None

    async def availability(self) -> Availability:
        return Availability.AVAILABLE if self._client is not None else Availability.UNAVAILABLE

    async def capabilities(self) -> CapabilityDescriptor:
        return CapabilityDescriptor(model=self._model, features=["prompt", "streaming", "multimodal"])

    async def create_session(self, temperature: float, top_k: int) -> ModelSession:
        if self._client is None:
            raise RuntimeError("Gemini client not configured")
        return GeminiSession(self._client, self._model, temperature, top_k)
