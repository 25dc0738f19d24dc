"""On-device model provider backed by a local Ollama server.

Availability mapping:
- server unreachable → unavailable
- model not pulled → downloadable
- pull started by this provider still running → downloading
- model present → available

Creating a session for a model that is not pulled yet starts the pull and
waits for it, so the first session doubles as the download trigger.
"""

import asyncio
from typing import AsyncIterator, Optional

import ollama

from prompt_recipes.core.policy import safe_execute_async
from prompt_recipes.models.models import Availability, CapabilityDescriptor
from prompt_recipes.providers.base import ModelProvider, ModelSession, PromptPart
from prompt_recipes.utils.logger import logger


def _normalize_model_name(name: str) -> str:
    # Ollama lists untagged models as "<name>:latest"
    return name if ":" in name else f"{name}:latest"


def _entry_name(entry) -> Optional[str]:
    if isinstance(entry, dict):
        return entry.get("model") or entry.get("name")
    return getattr(entry, "model", None) or getattr(entry, "name", None)


class OllamaSession(ModelSession):
    """Chat history plus sampling options for one Ollama conversation."""

    def __init__(self, client: ollama.AsyncClient, model: str, temperature: float, top_k: int) -> None:
        self._client = client
        self._model = model
        self._options = {"temperature": temperature, "top_k": top_k}
        self._messages: list[dict] = []
        self._pending: Optional[dict] = None
        self._destroyed = False

    def _check_open(self) -> None:
        if self._destroyed:
            raise RuntimeError("Session has been destroyed")

    def _next_messages(self, text: str) -> list[dict]:
        message = self._pending or {"role": "user", "content": ""}
        self._pending = None
        if text:
            message["content"] = f"{message['content']}\n{text}" if message["content"] else text
        self._messages.append(message)
        return self._messages

    async def append(self, parts: list[PromptPart]) -> None:
        self._check_open()
        message = self._pending or {"role": "user", "content": ""}
        for part in parts:
            if part.type == "image":
                message.setdefault("images", []).append(part.content.data)
            else:
                message["content"] = f"{message['content']}\n{part.content}" if message["content"] else part.content
        self._pending = message

    async def prompt(self, text: str) -> str:
        self._check_open()
        response = await self._client.chat(
            model=self._model,
            messages=self._next_messages(text),
            options=self._options,
        )
        content = response["message"]["content"]
        self._messages.append({"role": "assistant", "content": content})
        return content

    async def prompt_streaming(self, text: str) -> AsyncIterator[str]:
        self._check_open()
        stream = await self._client.chat(
            model=self._model,
            messages=self._next_messages(text),
            options=self._options,
            stream=True,
        )
        received: list[str] = []
        async for part in stream:
            chunk = part["message"]["content"]
            if chunk:
                received.append(chunk)
                yield chunk
        self._messages.append({"role": "assistant", "content": "".join(received)})

    async def destroy(self) -> None:
        self._destroyed = True
        self._messages.clear()
        self._pending = None


class OllamaProvider(ModelProvider):
    """Local Ollama daemon. Pulls the configured model on first use."""

    name = "ollama"

    def __init__(self, host: str, model: str, client: Optional[ollama.AsyncClient] = None) -> None:
        self._model = model
        self._client = client or ollama.AsyncClient(host=host)
        self._pull_task: Optional[asyncio.Task] = None

    @property
    def model(self) -> str:
        return self._model

    def is_supported(self) -> bool:
        return self._client is not None

    async def _installed_models(self) -> Optional[set[str]]:
        listing = await safe_execute_async(
            self._client.list(),
            "Ollama server unreachable",
            log_level="debug",
            default_return=None,
        )
        if listing is None:
            return None
        entries = listing["models"] if isinstance(listing, dict) else listing.models
        return {_normalize_model_name(name) for name in map(_entry_name, entries) if name}

    async def availability(self) -> Availability:
        if self._pull_task is not None and not self._pull_task.done():
            return Availability.DOWNLOADING

        installed = await self._installed_models()
        if installed is None:
            return Availability.UNAVAILABLE
        if _normalize_model_name(self._model) in installed:
            return Availability.AVAILABLE
        return Availability.DOWNLOADABLE

    async def capabilities(self) -> CapabilityDescriptor:
        return CapabilityDescriptor(model=self._model, features=["prompt", "streaming", "multimodal"])

    async def _pull(self) -> None:
        logger.info(f"Pulling Ollama model {self._model}")
        await self._client.pull(self._model)
        logger.info(f"Ollama model {self._model} ready")

    async def ensure_model(self) -> None:
        """Start (or join) a pull of the configured model and wait for it."""
        if self._pull_task is None or self._pull_task.done():
            self._pull_task = asyncio.ensure_future(self._pull())
        # Shield so a caller timing out does not abort the shared download
        await asyncio.shield(self._pull_task)

    async def create_session(self, temperature: float, top_k: int) -> ModelSession:
        if await self.availability() in (Availability.DOWNLOADABLE, Availability.DOWNLOADING):
            await self.ensure_model()
        return OllamaSession(self._client, self._model, temperature, top_k)
