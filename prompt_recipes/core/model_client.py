"""Model capability client.

Drives a provider through availability → initialization → session
creation → execution → release. Every execution method releases its session
exactly once, on success, on failure and when a stream is abandoned.

Availability state machine:
- unavailable → downloadable | downloading | available
- downloading → downloading | available (polled at a fixed interval)
- available and unavailable are terminal
"""

import asyncio
from contextlib import aclosing
from typing import AsyncIterator, Optional

from prompt_recipes.core.errors import AppError, ErrorCode
from prompt_recipes.core.policy import safe_execute_async
from prompt_recipes.models.models import (
    Availability,
    CapabilityDescriptor,
    ConnectionTestResult,
    DownloadResult,
)
from prompt_recipes.prompts.prompts import CONNECTION_TEST_PROMPT, DOWNLOAD_TRIGGER_PROMPT
from prompt_recipes.providers.base import ModelProvider, ModelSession, PromptPart
from prompt_recipes.utils.images import ImagePayload
from prompt_recipes.utils.logger import logger


class ModelClient:
    """Lifecycle wrapper around a ``ModelProvider``.

    Args:
        provider: Host capability.
        poll_interval: Seconds between availability polls while downloading.
        default_temperature: Used when a call does not pass a temperature.
        default_top_k: Used when a call does not pass top_k.
    """

    def __init__(
        self,
        provider: ModelProvider,
        poll_interval: float = 1.0,
        default_temperature: float = 0.7,
        default_top_k: int = 40,
    ) -> None:
        self.provider = provider
        self.poll_interval = poll_interval
        self.default_temperature = default_temperature
        self.default_top_k = default_top_k
        self._capabilities: Optional[CapabilityDescriptor] = None

    @property
    def is_initialized(self) -> bool:
        return self._capabilities is not None

    async def is_available(self) -> bool:
        """Cheap check: True when the model is available or can be downloaded. Never raises."""
        if not self.provider.is_supported():
            return False
        status = await safe_execute_async(
            self.provider.availability(),
            "Availability check",
            log_level="debug",
            default_return=Availability.UNAVAILABLE,
        )
        return status in (Availability.AVAILABLE, Availability.DOWNLOADABLE)

    async def _wait_while_downloading(self, status: Availability) -> Availability:
        while status == Availability.DOWNLOADING:
            logger.info("Model is downloading, waiting...")
            await asyncio.sleep(self.poll_interval)
            status = await self.provider.availability()
        return status

    async def initialize(self) -> CapabilityDescriptor:
        """Full handshake. Idempotent: later calls return the cached descriptor.

        Raises:
            AppError: API_NOT_AVAILABLE if the provider is not supported,
                MODEL_UNAVAILABLE if availability is ``unavailable``,
                DOWNLOAD_FAILED if a download ends in any other state than
                ``available``, INITIALIZATION_FAILED for unexpected errors.
        """
        if self._capabilities is not None:
            return self._capabilities

        if not self.provider.is_supported():
            raise AppError(f"Model provider '{self.provider.name}' is not available", ErrorCode.API_NOT_AVAILABLE)

        try:
            status = await self.provider.availability()
            if status == Availability.UNAVAILABLE:
                raise AppError(
                    f"Model {self.provider.model} is not available on this device", ErrorCode.MODEL_UNAVAILABLE
                )

            if status == Availability.DOWNLOADING:
                status = await self._wait_while_downloading(status)
                if status != Availability.AVAILABLE:
                    raise AppError(f"Model download failed (status: {status.value})", ErrorCode.DOWNLOAD_FAILED)

            if status == Availability.DOWNLOADABLE:
                logger.info(f"Model {self.provider.model} will be downloaded on first session")

            self._capabilities = await safe_execute_async(
                self.provider.capabilities(),
                "Read capability descriptor",
                log_level="debug",
                default_return=CapabilityDescriptor(model=self.provider.model),
            )
        except AppError:
            raise
        except Exception as e:
            raise AppError("Failed to initialize model client", ErrorCode.INITIALIZATION_FAILED, original_error=e) from e

        logger.info(f"Model client initialized ({self.provider.name}: {self._capabilities.model})")
        return self._capabilities

    def get_capabilities(self) -> Optional[CapabilityDescriptor]:
        return self._capabilities

    async def create_session(self, temperature: Optional[float] = None, top_k: Optional[int] = None) -> ModelSession:
        """Create a session, initializing the client first if needed.

        Raises:
            AppError: Initialization errors unchanged, SESSION_CREATION_FAILED otherwise.
        """
        if self._capabilities is None:
            await self.initialize()

        try:
            return await self.provider.create_session(
                temperature=self.default_temperature if temperature is None else temperature,
                top_k=self.default_top_k if top_k is None else top_k,
            )
        except AppError:
            raise
        except Exception as e:
            raise AppError(f"Failed to create session: {e}", ErrorCode.SESSION_CREATION_FAILED, original_error=e) from e

    async def _release(self, session: ModelSession) -> None:
        await safe_execute_async(session.destroy(), "Release model session", log_level="warning")

    async def execute_prompt(
        self, prompt: str, temperature: Optional[float] = None, top_k: Optional[int] = None
    ) -> str:
        """Run ``prompt`` in a fresh session and return the complete response."""
        session = await self.create_session(temperature, top_k)
        try:
            return await session.prompt(prompt)
        except AppError:
            raise
        except Exception as e:
            raise AppError(f"Failed to execute prompt: {e}", ErrorCode.PROMPT_EXECUTION_FAILED, original_error=e) from e
        finally:
            await self._release(session)

    async def execute_prompt_streaming(
        self, prompt: str, temperature: Optional[float] = None, top_k: Optional[int] = None
    ) -> AsyncIterator[str]:
        """Yield response chunks for ``prompt``. The session is released when iteration ends or is abandoned."""
        session = await self.create_session(temperature, top_k)
        try:
            async with aclosing(session.prompt_streaming(prompt)) as chunks:
                async for chunk in chunks:
                    yield chunk
        except AppError:
            raise
        except Exception as e:
            raise AppError(
                f"Failed to execute streaming prompt: {e}", ErrorCode.STREAMING_EXECUTION_FAILED, original_error=e
            ) from e
        finally:
            await self._release(session)

    @staticmethod
    def _multimodal_parts(text: str, image: Optional[ImagePayload]) -> list[PromptPart]:
        parts = []
        if text:
            parts.append(PromptPart(type="text", content=text))
        if image is not None:
            parts.append(PromptPart(type="image", content=image))
        return parts

    async def execute_multimodal_prompt(
        self,
        text: str,
        image: Optional[ImagePayload] = None,
        temperature: Optional[float] = None,
        top_k: Optional[int] = None,
    ) -> str:
        """Attach text and an optional image to a fresh session, then prompt."""
        session = await self.create_session(temperature, top_k)
        try:
            await session.append(self._multimodal_parts(text, image))
            return await session.prompt("")
        except AppError:
            raise
        except Exception as e:
            raise AppError(
                f"Failed to execute multimodal prompt: {e}", ErrorCode.MULTIMODAL_EXECUTION_FAILED, original_error=e
            ) from e
        finally:
            await self._release(session)

    async def execute_multimodal_prompt_streaming(
        self,
        text: str,
        image: Optional[ImagePayload] = None,
        temperature: Optional[float] = None,
        top_k: Optional[int] = None,
    ) -> AsyncIterator[str]:
        session = await self.create_session(temperature, top_k)
        try:
            await session.append(self._multimodal_parts(text, image))
            async with aclosing(session.prompt_streaming("")) as chunks:
                async for chunk in chunks:
                    yield chunk
        except AppError:
            raise
        except Exception as e:
            raise AppError(
                f"Failed to execute multimodal streaming prompt: {e}",
                ErrorCode.MULTIMODAL_STREAMING_EXECUTION_FAILED,
                original_error=e,
            ) from e
        finally:
            await self._release(session)

    async def test_connection(self) -> ConnectionTestResult:
        """Round-trip a short prompt. Never raises."""
        try:
            if not await self.is_available():
                return ConnectionTestResult(available=False, error="Model capability not available")
            await self.initialize()
            response = await self.execute_prompt(CONNECTION_TEST_PROMPT)
            logger.info(f"Connection test response: {response}")
            return ConnectionTestResult(available=True, capabilities=self._capabilities)
        except Exception as e:
            logger.warning(f"Connection test failed: {e}")
            return ConnectionTestResult(available=False, error=str(e))

    async def trigger_download(self) -> DownloadResult:
        """Force the downloadable → available transition outside of an execution. Never raises."""
        try:
            if not self.provider.is_supported():
                return DownloadResult(success=False, status=Availability.UNAVAILABLE, error="Model capability not available")

            status = await self.provider.availability()
            if status == Availability.AVAILABLE:
                return DownloadResult(success=True, status=status)
            if status == Availability.UNAVAILABLE:
                return DownloadResult(success=False, status=status, error="Model is not available on this device")

            if status == Availability.DOWNLOADABLE:
                logger.info(f"Triggering download of {self.provider.model}")
                session = await self.provider.create_session(
                    temperature=self.default_temperature, top_k=self.default_top_k
                )
                try:
                    await session.prompt(DOWNLOAD_TRIGGER_PROMPT)
                except Exception as e:
                    # First prompt may fail while the model is still materializing
                    logger.info(f"Expected error while model downloads: {e}")
                finally:
                    await self._release(session)
                status = await self.provider.availability()

            status = await self._wait_while_downloading(status)
            if status == Availability.AVAILABLE:
                return DownloadResult(success=True, status=status)
            return DownloadResult(success=False, status=status, error=f"Download ended in state: {status.value}")
        except Exception as e:
            logger.warning(f"Model download failed: {e}")
            return DownloadResult(success=False, status=Availability.UNAVAILABLE, error=str(e))
