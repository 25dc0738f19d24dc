"""Pytest configuration and fixtures for integration tests.

These tests talk to a real model provider: a local Ollama server
(MODEL_PROVIDER=ollama, the default) or the Gemini API (MODEL_PROVIDER=gemini
with GEMINI_API_KEY). They are skipped when the selected provider is not
reachable.
"""

import asyncio
import os
from pathlib import Path

import pytest
from dotenv import load_dotenv

from prompt_recipes.models.models import Availability


def pytest_configure(config):
    """Load .env before the package reads its configuration."""
    env_path = Path(__file__).parent.parent.parent / ".env"
    load_dotenv(env_path)

    # Keep integration runs fast and deterministic
    os.environ.setdefault("TEMPERATURE", "0.0")
    os.environ.setdefault("MAX_RETRIES", "1")
    os.environ.setdefault("EXECUTION_TIMEOUT_MS", "120000")

    print("\n" + "=" * 70)
    print(f"Model provider: {os.getenv('MODEL_PROVIDER', 'ollama')}")
    print(f"Environment loaded from: {env_path}")
    print("=" * 70 + "\n")


@pytest.fixture(scope="session", autouse=True)
def check_provider():
    """Skip the session unless the configured provider can serve prompts.

    A model that is merely downloadable counts as reachable; the first
    execution pulls it.
    """
    from prompt_recipes.providers.base import get_provider
    from prompt_recipes.utils.config import config

    if config.MODEL_PROVIDER == "gemini" and not config.GEMINI_API_KEY:
        pytest.skip("Integration tests skipped. Missing GEMINI_API_KEY.", allow_module_level=True)

    status = asyncio.run(get_provider(config).availability())
    if status == Availability.UNAVAILABLE:
        pytest.skip(
            f"Integration tests skipped. Provider {config.MODEL_PROVIDER} is not reachable.",
            allow_module_level=True,
        )


@pytest.fixture
def executor():
    """Fresh executor per test so provider clients bind to the test's event loop."""
    from prompt_recipes.core.executor import build_executor
    from prompt_recipes.core.recipe_store import InMemoryRecipeStore
    from prompt_recipes.utils.config import config

    return build_executor(config, store=InMemoryRecipeStore())
