"""Recipe execution orchestrator.

Every call runs strictly in the order validate → sanitize/interpolate → availability check →
create session → execute → release, records its outcome in a bounded history
keyed by a fresh session id, and returns (or, for streams, exposes) an
``ExecutionResult``.

Non-streaming capability calls are wrapped in ``with_retry(with_timeout(...))``.
Streams are not retried: chunks already delivered to the caller cannot be
taken back.
"""

import math
import random
import string
import time
from collections import OrderedDict
from contextlib import aclosing
from pathlib import Path
from typing import AsyncIterator, Awaitable, Callable, Optional

from prompt_recipes.core.errors import AppError, ErrorCode, ErrorHandler, error_handler
from prompt_recipes.core.interpolation import interpolate_prompt, sanitize_input
from prompt_recipes.core.model_client import ModelClient
from prompt_recipes.core.policy import RetryPolicy, safe_execute_sync, with_retry, with_timeout
from prompt_recipes.core.recipe_store import RecipeStore
from prompt_recipes.models.models import (
    ConnectionTestResult,
    ExecutionOptions,
    ExecutionResult,
    ExecutionStats,
    Recipe,
    SanitizationOptions,
    now_ms,
)
from prompt_recipes.providers.base import get_provider
from prompt_recipes.utils.images import ImagePayload, load_image
from prompt_recipes.utils.logger import logger


def estimate_tokens(prompt: str, response: str) -> int:
    """Approximate token count: one token per four characters, rounded up."""
    return math.ceil(len(prompt + response) / 4)


def generate_session_id() -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"session_{now_ms()}_{suffix}"


class ExecutionStream:
    """Lazy, single-pass stream of response chunks for one execution.

    Iterate with ``async for``. ``aclose()`` or leaving an ``async with`` block
    releases the model session immediately. A bare ``break`` only stops
    iteration: the session stays held until the stream object is dropped and
    the event loop finalizes it, so callers that stop early should use
    ``aclose()`` or ``async with``. In both cases the generation already in
    flight is not interrupted and the execution is recorded as abandoned.
    After the last chunk, ``result`` holds the terminal ``ExecutionResult``.

    Example:
        >>> async with executor.execute_recipe_streaming(recipe, "text") as stream:
        ...     async for chunk in stream:
        ...         print(chunk, end="")
        >>> stream.result.response
    """

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        self.result: Optional[ExecutionResult] = None
        self.partial_response = ""
        self.tokens_used = 0
        self._chunks: Optional[AsyncIterator[str]] = None

    def _attach(self, chunks: AsyncIterator[str]) -> "ExecutionStream":
        self._chunks = chunks
        return self

    def __aiter__(self) -> "ExecutionStream":
        return self

    async def __anext__(self) -> str:
        return await self._chunks.__anext__()

    async def aclose(self) -> None:
        await self._chunks.aclose()

    async def __aenter__(self) -> "ExecutionStream":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def collect(self) -> ExecutionResult:
        """Consume the remaining chunks and return the terminal result."""
        async with self:
            async for _ in self:
                pass
        return self.result


class PromptExecutor:
    """Executes recipes and ad hoc prompts against a model client.

    Args:
        client: Model capability client.
        store: Optional recipe store, required by ``execute_stored_recipe``.
        retry_policy: Retry budget for non-streaming calls.
        default_options: Options used when a call passes none.
        max_history: Maximum number of execution records kept.
        handler: Error classifier.
    """

    def __init__(
        self,
        client: ModelClient,
        store: Optional[RecipeStore] = None,
        retry_policy: Optional[RetryPolicy] = None,
        default_options: Optional[ExecutionOptions] = None,
        max_history: int = 100,
        handler: ErrorHandler = error_handler,
    ) -> None:
        self.client = client
        self.store = store
        self.retry_policy = retry_policy or RetryPolicy()
        self.default_options = default_options or ExecutionOptions()
        self.max_history = max_history
        self.handler = handler
        self._history: OrderedDict[str, ExecutionResult] = OrderedDict()

    # ------------------------------------------------------------------
    # Shared steps
    # ------------------------------------------------------------------

    def _record(self, session_id: str, result: ExecutionResult) -> ExecutionResult:
        self._history[session_id] = result
        while len(self._history) > self.max_history:
            self._history.popitem(last=False)
        return result

    def _succeed(self, session_id: str, started: float, prompt: str, response: str) -> ExecutionResult:
        return self._record(
            session_id,
            ExecutionResult(
                success=True,
                response=response,
                execution_time=int((time.monotonic() - started) * 1000),
                tokens_used=estimate_tokens(prompt, response),
                session_id=session_id,
            ),
        )

    def _fail(self, session_id: str, started: float, error: BaseException) -> ExecutionResult:
        return self._record(
            session_id,
            ExecutionResult(
                success=False,
                error=str(error) or type(error).__name__,
                execution_time=int((time.monotonic() - started) * 1000),
                session_id=session_id,
            ),
        )

    def _classify(self, error: Exception, code: ErrorCode, message: str) -> AppError:
        if isinstance(error, AppError):
            return error
        return AppError(f"{message}: {error}", code, original_error=error)

    async def _ensure_available(self) -> None:
        if not await self.client.is_available():
            raise AppError(
                "AI client is not available. Please check your model provider settings.",
                ErrorCode.AI_CLIENT_NOT_AVAILABLE,
            )

    async def _run_guarded(self, operation: Callable[[], Awaitable[str]], timeout_ms: int, context: str) -> str:
        return await with_retry(
            lambda: with_timeout(operation, timeout_ms, context, handler=self.handler),
            context,
            policy=self.retry_policy,
            handler=self.handler,
        )

    def _resolve_guide(self, options: ExecutionOptions) -> Optional[str]:
        if options.guide is not None:
            return options.guide
        return self.store.get_guide() if self.store is not None else None

    def _prepare_prompt(self, recipe: Recipe, user_input: str, options: ExecutionOptions) -> str:
        return interpolate_prompt(recipe.prompt, user_input, options.sanitization, self._resolve_guide(options))

    # ------------------------------------------------------------------
    # Non-streaming
    # ------------------------------------------------------------------

    async def execute_recipe(
        self, recipe: Recipe, user_input: str, options: Optional[ExecutionOptions] = None
    ) -> ExecutionResult:
        """Execute ``recipe`` with ``user_input`` and return the complete result.

        Raises:
            AppError: INVALID_INPUTS, interpolation errors, AI_CLIENT_NOT_AVAILABLE,
                the classified capability error, or EXECUTION_FAILED. The failure
                is recorded in history before it is raised.
        """
        options = options or self.default_options
        session_id = generate_session_id()
        started = time.monotonic()

        try:
            if recipe is None or not user_input:
                raise AppError("Recipe and user input are required", ErrorCode.INVALID_INPUTS)

            prompt = self._prepare_prompt(recipe, user_input, options)
            await self._ensure_available()

            logger.info(f"Executing recipe: {recipe.name}", extra={"session_id": session_id, "recipe_id": recipe.id})
            response = await self._run_guarded(
                lambda: self.client.execute_prompt(prompt, temperature=options.temperature, top_k=options.top_k),
                options.timeout,
                "Recipe execution",
            )
            return self._succeed(session_id, started, prompt, response)
        except Exception as e:
            error = self._classify(e, ErrorCode.EXECUTION_FAILED, "Failed to execute recipe")
            self._fail(session_id, started, error)
            if error is e:
                raise
            raise error from e

    async def execute_recipe_multimodal(
        self,
        recipe: Recipe,
        user_input: str = "",
        image: "ImagePayload | bytes | str | Path | None" = None,
        options: Optional[ExecutionOptions] = None,
    ) -> ExecutionResult:
        """Execute ``recipe`` with text, an image, or both.

        The image is attached to the session, not interpolated into the template.
        Without text the recipe prompt is sent as is (plus the guide).
        """
        options = options or self.default_options
        session_id = generate_session_id()
        started = time.monotonic()

        try:
            if recipe is None or (not user_input and image is None):
                raise AppError("Recipe and either text or an image are required", ErrorCode.INVALID_INPUTS)

            text = self._prepare_multimodal_text(recipe, user_input, options)
            payload = await load_image(image) if image is not None else None
            await self._ensure_available()

            logger.info(
                f"Executing multimodal recipe: {recipe.name} (image: {payload is not None})",
                extra={"session_id": session_id, "recipe_id": recipe.id},
            )
            response = await self._run_guarded(
                lambda: self.client.execute_multimodal_prompt(
                    text, payload, temperature=options.temperature, top_k=options.top_k
                ),
                options.timeout,
                "Multimodal recipe execution",
            )
            return self._succeed(session_id, started, text, response)
        except Exception as e:
            error = self._classify(e, ErrorCode.EXECUTION_FAILED, "Failed to execute multimodal recipe")
            self._fail(session_id, started, error)
            if error is e:
                raise
            raise error from e

    def _prepare_multimodal_text(self, recipe: Recipe, user_input: str, options: ExecutionOptions) -> str:
        if user_input:
            return self._prepare_prompt(recipe, user_input, options)
        guide = self._resolve_guide(options)
        return f"{guide.strip()}\n\n{recipe.prompt}" if guide and guide.strip() else recipe.prompt

    async def execute_custom_prompt(
        self, prompt: str, options: Optional[ExecutionOptions] = None
    ) -> ExecutionResult:
        """Execute an ad hoc prompt, bypassing recipe validation.

        The prompt is sanitized only when ``options.sanitization`` is set.
        """
        options = options or self.default_options
        session_id = generate_session_id()
        started = time.monotonic()

        try:
            if not isinstance(prompt, str) or not prompt:
                raise AppError("Prompt is required", ErrorCode.INVALID_INPUTS)

            final_prompt = sanitize_input(prompt, options.sanitization) if options.sanitization else prompt
            logger.info("Executing custom prompt", extra={"session_id": session_id})
            response = await self._run_guarded(
                lambda: self.client.execute_prompt(final_prompt, temperature=options.temperature, top_k=options.top_k),
                options.timeout,
                "Custom prompt execution",
            )
            return self._succeed(session_id, started, final_prompt, response)
        except Exception as e:
            error = self._classify(e, ErrorCode.CUSTOM_EXECUTION_FAILED, "Failed to execute custom prompt")
            self._fail(session_id, started, error)
            if error is e:
                raise
            raise error from e

    async def execute_stored_recipe(
        self, recipe_id: str, user_input: str, options: Optional[ExecutionOptions] = None
    ) -> ExecutionResult:
        """Resolve ``recipe_id`` through the store, execute it and stamp its last-used time.

        Raises:
            AppError: RECIPE_NOT_FOUND if the store has no such recipe, otherwise
                whatever ``execute_recipe`` raises.
        """
        if self.store is None:
            raise AppError("No recipe store configured", ErrorCode.STORAGE_NOT_AVAILABLE)

        recipe = self.store.get(recipe_id)
        if recipe is None:
            raise AppError(f"Recipe not found: {recipe_id}", ErrorCode.RECIPE_NOT_FOUND)

        result = await self.execute_recipe(recipe, user_input, options)
        safe_execute_sync(lambda: self.store.save(recipe.with_last_used()), f"Update last used time of {recipe_id}")
        return result

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    def execute_recipe_streaming(
        self, recipe: Recipe, user_input: str, options: Optional[ExecutionOptions] = None
    ) -> ExecutionStream:
        """Stream the response of ``recipe`` chunk by chunk.

        Nothing runs until the stream is iterated. Failures are raised from the
        iteration with the same codes as ``execute_recipe``, except that
        unclassified capability errors surface as STREAMING_EXECUTION_FAILED.
        """
        options = options or self.default_options
        stream = ExecutionStream(generate_session_id())

        def start(prompt: str) -> AsyncIterator[str]:
            return self.client.execute_prompt_streaming(prompt, temperature=options.temperature, top_k=options.top_k)

        async def prepare() -> str:
            if recipe is None or not user_input:
                raise AppError("Recipe and user input are required", ErrorCode.INVALID_INPUTS)
            prompt = self._prepare_prompt(recipe, user_input, options)
            await self._ensure_available()
            logger.info(
                f"Executing recipe (streaming): {recipe.name}",
                extra={"session_id": stream.session_id, "recipe_id": recipe.id},
            )
            return prompt

        return stream._attach(self._stream(stream, prepare, start, ErrorCode.STREAMING_EXECUTION_FAILED))

    def execute_recipe_multimodal_streaming(
        self,
        recipe: Recipe,
        user_input: str = "",
        image: "ImagePayload | bytes | str | Path | None" = None,
        options: Optional[ExecutionOptions] = None,
    ) -> ExecutionStream:
        options = options or self.default_options
        stream = ExecutionStream(generate_session_id())
        payload: list[Optional[ImagePayload]] = [None]

        def start(text: str) -> AsyncIterator[str]:
            return self.client.execute_multimodal_prompt_streaming(
                text, payload[0], temperature=options.temperature, top_k=options.top_k
            )

        async def prepare() -> str:
            if recipe is None or (not user_input and image is None):
                raise AppError("Recipe and either text or an image are required", ErrorCode.INVALID_INPUTS)
            text = self._prepare_multimodal_text(recipe, user_input, options)
            payload[0] = await load_image(image) if image is not None else None
            await self._ensure_available()
            logger.info(
                f"Executing multimodal recipe (streaming): {recipe.name}",
                extra={"session_id": stream.session_id, "recipe_id": recipe.id},
            )
            return text

        return stream._attach(self._stream(stream, prepare, start, ErrorCode.MULTIMODAL_STREAMING_EXECUTION_FAILED))

    async def _stream(
        self,
        stream: ExecutionStream,
        prepare: Callable[[], Awaitable[str]],
        start: Callable[[str], AsyncIterator[str]],
        failure_code: ErrorCode,
    ) -> AsyncIterator[str]:
        started = time.monotonic()
        prompt = ""
        chunks: list[str] = []

        try:
            prompt = await prepare()
            async with aclosing(start(prompt)) as source:
                async for chunk in source:
                    chunks.append(chunk)
                    stream.partial_response = "".join(chunks)
                    stream.tokens_used = estimate_tokens(prompt, stream.partial_response)
                    yield chunk
        except GeneratorExit:
            # Caller stopped iterating; the session was released by aclosing above
            self._fail(stream.session_id, started, AppError("Streaming abandoned by caller", failure_code))
            raise
        except Exception as e:
            error = self.handler.handle_error(
                self._classify(e, failure_code, "Failed to execute recipe with streaming"), "Streaming execution"
            )
            self._fail(stream.session_id, started, error)
            if error is e:
                raise
            raise error from e

        stream.result = self._succeed(stream.session_id, started, prompt, "".join(chunks))

    # ------------------------------------------------------------------
    # History & diagnostics
    # ------------------------------------------------------------------

    def get_execution_history(self, session_id: str) -> Optional[ExecutionResult]:
        return self._history.get(session_id)

    def get_all_execution_history(self) -> dict[str, ExecutionResult]:
        return dict(self._history)

    def clear_execution_history(self) -> None:
        self._history.clear()

    def get_execution_stats(self) -> ExecutionStats:
        """Statistics derived from the current history."""
        results = list(self._history.values())
        if not results:
            return ExecutionStats()

        successful = [r for r in results if r.success]
        return ExecutionStats(
            total_executions=len(results),
            successful_executions=len(successful),
            failed_executions=len(results) - len(successful),
            average_execution_time=sum(r.execution_time for r in results) / len(results),
            total_tokens_used=sum(r.tokens_used or 0 for r in results),
        )

    async def test_connection(self) -> ConnectionTestResult:
        return await self.client.test_connection()


def default_execution_options(cfg) -> ExecutionOptions:
    """Execution options populated from config."""
    return ExecutionOptions(
        temperature=cfg.TEMPERATURE,
        top_k=cfg.TOP_K,
        timeout=cfg.EXECUTION_TIMEOUT_MS,
        sanitization=SanitizationOptions(max_length=cfg.MAX_INPUT_LENGTH),
    )


def build_executor(cfg, store: Optional[RecipeStore] = None, client: Optional[ModelClient] = None) -> PromptExecutor:
    """Composition root: wire provider, client and executor from config.

    Args:
        cfg: Application config (see ``prompt_recipes.utils.config``).
        store: Optional recipe store.
        client: Pre-built client, e.g. one wrapping a fake provider in tests.

    Returns:
        A ready-to-use PromptExecutor. Nothing is contacted until the first call.
    """
    client = client or ModelClient(
        get_provider(cfg),
        poll_interval=cfg.DOWNLOAD_POLL_INTERVAL,
        default_temperature=cfg.TEMPERATURE,
        default_top_k=cfg.TOP_K,
    )
    return PromptExecutor(
        client,
        store=store,
        retry_policy=RetryPolicy.from_config(cfg),
        default_options=default_execution_options(cfg),
        max_history=cfg.MAX_HISTORY_ENTRIES,
    )
