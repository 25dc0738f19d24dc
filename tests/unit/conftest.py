"""Shared fixtures for unit tests.

FakeProvider / FakeSession stand in for a real model back-end so the engine
can be exercised without a running Ollama server or a Gemini key.
"""

import asyncio
from typing import AsyncIterator, Optional

import pytest

from prompt_recipes.core.errors import ErrorHandler
from prompt_recipes.core.executor import PromptExecutor
from prompt_recipes.core.model_client import ModelClient
from prompt_recipes.core.policy import RetryPolicy
from prompt_recipes.models.models import Availability, Recipe
from prompt_recipes.providers.base import ModelProvider, ModelSession, PromptPart


class FakeSession(ModelSession):
    def __init__(self, provider: "FakeProvider", temperature: float, top_k: int) -> None:
        self.provider = provider
        self.temperature = temperature
        self.top_k = top_k
        self.parts: list[PromptPart] = []
        self.destroy_calls = 0

    async def prompt(self, text: str) -> str:
        self.provider.prompts.append(text)
        if self.provider.prompt_delay:
            await asyncio.sleep(self.provider.prompt_delay)
        if self.provider.prompt_errors:
            raise self.provider.prompt_errors.pop(0)
        return self.provider.response

    async def prompt_streaming(self, text: str) -> AsyncIterator[str]:
        self.provider.prompts.append(text)
        for index, chunk in enumerate(self.provider.chunks):
            if self.provider.stream_error is not None and index == self.provider.stream_error_at:
                raise self.provider.stream_error
            await asyncio.sleep(0)
            yield chunk

    async def append(self, parts: list[PromptPart]) -> None:
        self.parts.extend(parts)

    async def destroy(self) -> None:
        self.destroy_calls += 1
        self.provider.released += 1
        if self.provider.destroy_error is not None:
            raise self.provider.destroy_error


class FakeProvider(ModelProvider):
    """Scriptable provider.

    ``statuses`` is consumed one per availability() call, then ``status`` is
    returned forever.
    """

    name = "fake"

    def __init__(
        self,
        status: Availability = Availability.AVAILABLE,
        statuses: Optional[list[Availability]] = None,
        supported: bool = True,
        response: str = "Hello from the model",
        chunks: tuple[str, ...] = ("Hel", "lo ", "world"),
    ) -> None:
        self.status = status
        self.statuses = list(statuses or [])
        self.supported = supported
        self.response = response
        self.chunks = chunks
        self.prompt_errors: list[Exception] = []
        self.prompt_delay = 0.0
        self.stream_error: Optional[Exception] = None
        self.stream_error_at = 0
        self.session_error: Optional[Exception] = None
        self.availability_error: Optional[Exception] = None
        self.destroy_error: Optional[Exception] = None
        self.sessions: list[FakeSession] = []
        self.prompts: list[str] = []
        self.availability_calls = 0
        self.released = 0

    @property
    def model(self) -> str:
        return "fake-model"

    def is_supported(self) -> bool:
        return self.supported

    async def availability(self) -> Availability:
        self.availability_calls += 1
        if self.availability_error is not None:
            raise self.availability_error
        if self.statuses:
            return self.statuses.pop(0)
        return self.status

    async def create_session(self, temperature: float, top_k: int) -> ModelSession:
        if self.session_error is not None:
            raise self.session_error
        session = FakeSession(self, temperature, top_k)
        self.sessions.append(session)
        return session


@pytest.fixture
def provider():
    """Fake provider with default scripting."""
    return FakeProvider()


@pytest.fixture
def client(provider):
    """ModelClient over the fake provider with fast polling."""
    return ModelClient(provider, poll_interval=0.001)


@pytest.fixture
def make_client():
    """Factory returning (ModelClient, FakeProvider) for a scripted provider."""

    def _make(**kwargs):
        fake = FakeProvider(**kwargs)
        return ModelClient(fake, poll_interval=0.001), fake

    return _make


@pytest.fixture
def fast_retry():
    """Retry policy with millisecond delays."""
    return RetryPolicy(max_retries=3, base_delay_ms=1, max_delay_ms=2)


@pytest.fixture
def handler():
    """Fresh error handler."""
    return ErrorHandler()


@pytest.fixture
def executor(client, fast_retry, handler):
    """Executor over the fake provider without a store."""
    return PromptExecutor(client, retry_policy=fast_retry, handler=handler)


@pytest.fixture
def recipe():
    """Summarize recipe using the user_input placeholder."""
    return Recipe(
        id="summarize",
        name="Summarize",
        description="Summarize any text",
        prompt="Summarize: {user_input}",
        tags=["writing"],
    )
