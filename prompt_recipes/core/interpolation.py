"""Sanitization and placeholder interpolation for recipe prompts.

Core Functions:
- sanitize_input(): Truncate, strip tags and escape raw user text
- interpolate_prompt(): Substitute sanitized input into the five alias slots, prepend guide
- interpolate_multiple_inputs(): Substitute a name -> value map into {name} slots
- extract_placeholders() / validate_placeholders(): Inspect template slots
- preview_interpolation(): Show the final prompt without executing it

All functions are pure. Truncation and unresolved placeholders are reported
through the module logger as warnings, never as failures.
"""

import re
from typing import Mapping, Optional

from prompt_recipes.core.errors import AppError, ErrorCode
from prompt_recipes.models.models import InterpolationPreview, PlaceholderValidation, SanitizationOptions
from prompt_recipes.utils.logger import logger


# Aliases of the single user-input slot, in substitution order
INPUT_PLACEHOLDERS = ("user_input", "userInput", "input", "text", "content")

_ALIAS_PATTERN = re.compile(r"\{(" + "|".join(INPUT_PLACEHOLDERS) + r")\}")
_PLACEHOLDER_PATTERN = re.compile(r"\{([^}]+)\}")
_TAG_PATTERN = re.compile(r"<[^>]*>")

# Backslash first so the escapes below are not escaped twice
_ESCAPES = (
    ("\\", "\\\\"),
    ('"', '\\"'),
    ("\n", "\\n"),
    ("\r", "\\r"),
    ("\t", "\\t"),
)
_ESCAPE_MAP = dict(_ESCAPES)


def _escape_within(text: str, max_length: int) -> tuple[str, bool]:
    """Escape ``text`` keeping the result within ``max_length``.

    An escape sequence is never split: if the next character (escaped) would
    overflow the limit, output stops before it.
    """
    parts: list[str] = []
    length = 0
    for char in text:
        piece = _ESCAPE_MAP.get(char, char)
        if length + len(piece) > max_length:
            return "".join(parts), True
        parts.append(piece)
        length += len(piece)
    return "".join(parts), False


def sanitize_input(user_input: str, options: Optional[SanitizationOptions] = None) -> str:
    """Normalize raw user text before it reaches a template.

    Steps, in order: truncate to ``max_length``, strip ``<...>`` tags unless
    ``allow_html``, then escape backslash, double quote, newline, carriage
    return and tab when ``escape_special_chars`` is set. The result never
    exceeds ``max_length``, escapes included.

    Args:
        user_input: Raw user text.
        options: Sanitization options. Defaults apply when None.

    Returns:
        Sanitized text.

    Raises:
        AppError: INVALID_INPUT if ``user_input`` is not a string.
    """
    if not isinstance(user_input, str):
        raise AppError("User input must be a string", ErrorCode.INVALID_INPUT)

    opts = options or SanitizationOptions()
    sanitized = user_input
    truncated = False

    if len(sanitized) > opts.max_length:
        sanitized = sanitized[: opts.max_length]
        truncated = True

    if not opts.allow_html:
        sanitized = _TAG_PATTERN.sub("", sanitized)

    if opts.escape_special_chars:
        sanitized, overflow = _escape_within(sanitized, opts.max_length)
        truncated = truncated or overflow

    if truncated:
        logger.warning(f"Input truncated to {opts.max_length} characters")

    return sanitized


def unescape_special_chars(text: str) -> str:
    """Reverse the escaping applied by ``sanitize_input``."""
    result: list[str] = []
    reverse = {escaped[1]: raw for raw, escaped in _ESCAPES}
    i = 0
    while i < len(text):
        if text[i] == "\\" and i + 1 < len(text) and text[i + 1] in reverse:
            result.append(reverse[text[i + 1]])
            i += 2
        else:
            result.append(text[i])
            i += 1
    return "".join(result)


def _check_template(template) -> None:
    if not isinstance(template, str) or not template:
        raise AppError("Invalid prompt template", ErrorCode.INVALID_TEMPLATE)


def _warn_unresolved(placeholders: list[str]) -> None:
    if placeholders:
        logger.warning(f"Unreplaced placeholders found: {', '.join('{' + p + '}' for p in placeholders)}")


def interpolate_prompt(
    template: str,
    user_input: str,
    options: Optional[SanitizationOptions] = None,
    guide: Optional[str] = None,
) -> str:
    """Build the final prompt from a recipe template and live user input.

    Every occurrence of ``{user_input}``, ``{userInput}``, ``{input}``,
    ``{text}`` and ``{content}`` is replaced by the sanitized input in a single
    pass, so braces inside the input are never substituted again. When the
    template has none of these slots, the input is appended after a single
    space. A non-empty guide is trimmed and prepended, separated by a blank line.

    Args:
        template: Recipe prompt template.
        user_input: Raw user text.
        options: Sanitization options. Defaults apply when None.
        guide: Optional persistent context block.

    Returns:
        Interpolated prompt.

    Raises:
        AppError: INVALID_TEMPLATE for an empty or non-string template,
            INVALID_INPUT for non-string input, INTERPOLATION_FAILED otherwise.
    """
    _check_template(template)
    if not isinstance(user_input, str):
        raise AppError("User input must be a string", ErrorCode.INVALID_INPUT)

    try:
        sanitized = sanitize_input(user_input, options)
        interpolated, replaced = _ALIAS_PATTERN.subn(lambda _: sanitized, template)

        _warn_unresolved([p for p in extract_placeholders(template) if p not in INPUT_PLACEHOLDERS])

        # Input is never dropped: append when no slot matched
        if replaced == 0:
            interpolated = f"{template} {sanitized}"

        if guide and guide.strip():
            interpolated = f"{guide.strip()}\n\n{interpolated}"

        return interpolated
    except AppError:
        raise
    except Exception as e:
        raise AppError("Failed to interpolate prompt", ErrorCode.INTERPOLATION_FAILED, original_error=e) from e


def interpolate_multiple_inputs(
    template: str,
    inputs: Mapping[str, str],
    options: Optional[SanitizationOptions] = None,
) -> str:
    """Substitute each ``{key}`` slot with the sanitized value of ``inputs[key]``.

    Non-string values are skipped with a warning. Unlike ``interpolate_prompt``
    nothing is appended when a slot is missing.

    Raises:
        AppError: INVALID_TEMPLATE for a bad template, INVALID_INPUTS if
            ``inputs`` is not a mapping.
    """
    _check_template(template)
    if not isinstance(inputs, Mapping):
        raise AppError("Inputs must be a mapping of names to values", ErrorCode.INVALID_INPUTS)

    try:
        values: dict[str, str] = {}
        for key, value in inputs.items():
            if not isinstance(value, str):
                logger.warning(f"Skipping non-string input for key: {key}")
                continue
            values[key] = sanitize_input(value, options)

        interpolated = _PLACEHOLDER_PATTERN.sub(lambda m: values.get(m.group(1), m.group(0)), template)

        _warn_unresolved([p for p in extract_placeholders(template) if p not in values])
        return interpolated
    except AppError:
        raise
    except Exception as e:
        raise AppError("Failed to interpolate multiple inputs", ErrorCode.INTERPOLATION_FAILED, original_error=e) from e


def extract_placeholders(template: str) -> list[str]:
    """Names of all ``{name}`` slots in ``template``, in order, duplicates kept."""
    if not isinstance(template, str) or not template:
        return []
    return _PLACEHOLDER_PATTERN.findall(template)


def validate_placeholders(template: str, provided_inputs: list[str]) -> PlaceholderValidation:
    required = extract_placeholders(template)
    missing = [p for p in required if p not in provided_inputs]
    extra = [name for name in provided_inputs if name not in required]
    return PlaceholderValidation(is_valid=not missing, missing=missing, extra=extra)


def preview_interpolation(
    template: str,
    user_input: str,
    options: Optional[SanitizationOptions] = None,
) -> InterpolationPreview:
    """Show what ``interpolate_prompt`` would produce, without a guide."""
    return InterpolationPreview(
        original=template,
        interpolated=interpolate_prompt(template, user_input, options),
        placeholders=extract_placeholders(template),
        sanitized_input=sanitize_input(user_input, options),
    )
