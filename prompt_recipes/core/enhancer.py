"""LLM-assisted rewriting of recipe prompts.

The enhancer sends a meta-prompt to the model, cleans the answer and makes
sure the result still has an input slot. It never raises: every failure is
reported through ``EnhancementResult.error``.
"""

import re
from typing import Optional

from prompt_recipes.core.interpolation import INPUT_PLACEHOLDERS, extract_placeholders
from prompt_recipes.core.model_client import ModelClient
from prompt_recipes.core.policy import with_timeout
from prompt_recipes.models.models import EnhancementResult
from prompt_recipes.prompts.prompts import get_enhancement_prompt
from prompt_recipes.utils.logger import logger


_INPUT_WORD = re.compile(r"\b(input|text|content|data)\b", re.IGNORECASE)

# (substrings, improvement description), checked against the enhanced prompt
_IMPROVEMENT_HINTS = (
    (("Please", "please"), "Added polite and clear language"),
    (("format", "structure"), "Specified output format requirements"),
    (("specific", "detailed"), "Made instructions more specific and actionable"),
    (("context", "background"), "Added helpful context for better results"),
)


def clean_enhanced_prompt(enhanced_prompt: str, original_prompt: str) -> str:
    """Strip wrapping quotes and guarantee an input placeholder.

    If the original used ``{user_input}`` and the model dropped every
    placeholder, the slot is re-attached after words like "input" or "text".
    If no input alias remains at all, `` {user_input}`` is appended.
    """
    cleaned = enhanced_prompt.strip()
    for quote in ('"', "'"):
        if len(cleaned) >= 2 and cleaned.startswith(quote) and cleaned.endswith(quote):
            cleaned = cleaned[1:-1]

    if (
        extract_placeholders(original_prompt)
        and not extract_placeholders(cleaned)
        and "{user_input}" in original_prompt
        and any(word in cleaned.lower() for word in ("input", "text", "content"))
    ):
        cleaned = _INPUT_WORD.sub(r"\1: {user_input}", cleaned)

    if not any(f"{{{alias}}}" in cleaned for alias in INPUT_PLACEHOLDERS if alias != "userInput"):
        cleaned = f"{cleaned} {{user_input}}"

    return cleaned


def extract_improvements(original: str, enhanced: str) -> list[str]:
    """Describe what changed, for display next to the enhanced prompt."""
    improvements = []
    if len(enhanced) > len(original) * 1.2:
        improvements.append("Added more specific instructions and context")
    for hints, description in _IMPROVEMENT_HINTS:
        if any(hint in enhanced for hint in hints):
            improvements.append(description)
    return improvements or ["Improved clarity and effectiveness"]


class PromptEnhancer:
    """Rewrites prompts through the model client.

    Args:
        client: Model client used for the meta-prompt.
        temperature: Sampling temperature. Default: 0.3 (consistent rewrites).
        top_k: Top-K sampling. Default: 40.
        timeout_ms: Deadline for the rewrite. Default: 30s.
        init_timeout_ms: Deadline for client initialization. Default: 10s.
    """

    def __init__(
        self,
        client: ModelClient,
        temperature: float = 0.3,
        top_k: int = 40,
        timeout_ms: int = 30000,
        init_timeout_ms: int = 10000,
    ) -> None:
        self.client = client
        self.temperature = temperature
        self.top_k = top_k
        self.timeout_ms = timeout_ms
        self.init_timeout_ms = init_timeout_ms

    async def enhance_prompt(
        self,
        original_prompt: str,
        temperature: Optional[float] = None,
        top_k: Optional[int] = None,
    ) -> EnhancementResult:
        if not original_prompt or not original_prompt.strip():
            return EnhancementResult(
                success=False, original_prompt=original_prompt or "", error="Original prompt cannot be empty"
            )

        try:
            if not await self.client.is_available():
                return EnhancementResult(
                    success=False,
                    original_prompt=original_prompt,
                    error="AI client is not available. Please check your model provider settings.",
                )

            try:
                await with_timeout(self.client.initialize, self.init_timeout_ms, "Enhancer initialization")
            except Exception as e:
                logger.warning(f"Failed to initialize model client for enhancement: {e}")
                return EnhancementResult(
                    success=False,
                    original_prompt=original_prompt,
                    error="Failed to initialize AI client. Please try again.",
                )

            logger.debug(f"Enhancing prompt: {original_prompt}")
            meta_prompt = get_enhancement_prompt(original_prompt)
            enhanced = await with_timeout(
                lambda: self.client.execute_prompt(
                    meta_prompt,
                    temperature=self.temperature if temperature is None else temperature,
                    top_k=self.top_k if top_k is None else top_k,
                ),
                self.timeout_ms,
                "Prompt enhancement",
            )

            cleaned = clean_enhanced_prompt(enhanced, original_prompt)
            logger.info("Prompt enhanced successfully")
            return EnhancementResult(
                success=True,
                original_prompt=original_prompt,
                enhanced_prompt=cleaned,
                improvements=extract_improvements(original_prompt, cleaned),
            )
        except Exception as e:
            logger.warning(f"Prompt enhancement failed: {e}")
            return EnhancementResult(success=False, original_prompt=original_prompt, error=str(e))

    async def test_enhancement(self) -> bool:
        result = await self.enhance_prompt("Make this better")
        return result.success
