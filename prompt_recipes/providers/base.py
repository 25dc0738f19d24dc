"""Model provider interface.

A provider is the host capability behind the engine: it reports availability,
describes itself, and creates sessions. A session holds one conversation with
the model and must be destroyed by whoever created it.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import AsyncIterator, Literal, Union

from prompt_recipes.models.models import Availability, CapabilityDescriptor
from prompt_recipes.utils.images import ImagePayload


@dataclass(frozen=True)
class PromptPart:
    """One piece of content appended to a session before prompting."""

    type: Literal["text", "image"]
    content: Union[str, ImagePayload]
    role: str = "user"


class ModelSession(ABC):
    """A single conversation with the model."""

    @abstractmethod
    async def prompt(self, text: str) -> str:
        """Submit ``text`` (may be empty after ``append``) and return the full response."""

    @abstractmethod
    def prompt_streaming(self, text: str) -> AsyncIterator[str]:
        """Submit ``text`` and yield response chunks as they arrive."""

    @abstractmethod
    async def append(self, parts: list[PromptPart]) -> None:
        """Attach text and image parts to the next prompt."""

    @abstractmethod
    async def destroy(self) -> None:
        """Release the session. Further prompts fail."""


class ModelProvider(ABC):
    """Host capability that creates model sessions."""

    name: str = "provider"

    @property
    @abstractmethod
    def model(self) -> str:
        """Identifier of the model sessions are created against."""

    @abstractmethod
    def is_supported(self) -> bool:
        """Whether the capability entry point exists at all."""

    @abstractmethod
    async def availability(self) -> Availability:
        """Current availability of the model."""

    async def capabilities(self) -> CapabilityDescriptor:
        return CapabilityDescriptor(model=self.model)

    @abstractmethod
    async def create_session(self, temperature: float, top_k: int) -> ModelSession:
        """Create a new session with the given sampling parameters."""


def get_provider(cfg) -> ModelProvider:
    """Create the provider selected by ``cfg.MODEL_PROVIDER``.

    Args:
        cfg: Application config.

    Returns:
        OllamaProvider (default) or GeminiProvider.

    Raises:
        ValueError: Unknown provider name.
    """
    if cfg.MODEL_PROVIDER == "ollama":
        from prompt_recipes.providers.ollama_provider import OllamaProvider

        return OllamaProvider(host=cfg.OLLAMA_HOST, model=cfg.OLLAMA_MODEL)
    if cfg.MODEL_PROVIDER == "gemini":
        from prompt_recipes.providers.gemini_provider import GeminiProvider

        return GeminiProvider(api_key=cfg.GEMINI_API_KEY, model=cfg.GEMINI_MODEL)
    raise ValueError(f"Unknown MODEL_PROVIDER: {cfg.MODEL_PROVIDER}")
