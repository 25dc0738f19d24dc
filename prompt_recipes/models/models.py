"""Data models and schemas for the Prompt Recipes engine.

Defines Pydantic models for recipes, execution options/results and the
capability client's status objects.
All models use Pydantic v2 for strict validation.
"""

import re
import time
from enum import Enum
from typing import List, Literal, Optional, Annotated

from pydantic import BaseModel, Field, field_validator, model_validator, ConfigDict


RecipeInputType = Literal["text", "image", "both"]

# Characters rejected in recipe names and tags
_INVALID_NAME_CHARS = re.compile(r'[<>:"/\\|?*]')


def now_ms() -> int:
    """Current wall-clock time as epoch milliseconds."""
    return int(time.time() * 1000)


class Recipe(BaseModel):
    """A stored, reusable prompt template plus metadata.

    Recipes are immutable: updates produce a new object via ``model_copy``
    (see ``with_last_used``), never in-place field mutation.

    camelCase aliases (``originalPrompt``, ``inputType``, ``createdAt``,
    ``lastUsedAt``) are accepted so exported records load unchanged.
    """

    model_config = ConfigDict(str_strip_whitespace=True, frozen=True, populate_by_name=True)

    id: Annotated[str, Field(min_length=1, description="Unique recipe identifier")]
    name: Annotated[str, Field(min_length=1, max_length=100, description="Display name (1-100 chars)")]
    description: Annotated[str, Field("", max_length=500, description="Purpose and expected output (max 500 chars)")]
    prompt: Annotated[
        str, Field(min_length=1, max_length=10000, description="Current prompt template, may contain placeholders")
    ]
    original_prompt: Annotated[
        str,
        Field(
            min_length=1,
            max_length=10000,
            alias="originalPrompt",
            description="Template before enhancement, retained for provenance",
        ),
    ]
    input_type: Annotated[
        Optional[RecipeInputType],
        Field(None, alias="inputType", description="Input hint: text, image or both (determined dynamically if absent)"),
    ]
    tags: Annotated[List[str], Field(default_factory=list, max_length=10, description="Tags (max 10, 50 chars each)")]
    pinned: Annotated[bool, Field(False, description="Whether the recipe is pinned")]
    created_at: Annotated[int, Field(default_factory=now_ms, alias="createdAt", description="Creation time (epoch ms)")]
    last_used_at: Annotated[
        Optional[int], Field(None, alias="lastUsedAt", description="Last execution time (epoch ms), None if never used")
    ]

    @model_validator(mode="before")
    @classmethod
    def default_original_prompt(cls, data):
        """Use the current prompt as the original when none is recorded."""
        if isinstance(data, dict) and not (data.get("original_prompt") or data.get("originalPrompt")):
            data = dict(data)
            # An empty alias key would otherwise shadow the default
            data.pop("originalPrompt", None)
            data["original_prompt"] = data.get("prompt")
        return data

    @field_validator("name")
    @classmethod
    def validate_name(cls, name: str) -> str:
        if _INVALID_NAME_CHARS.search(name):
            raise ValueError("Name contains invalid characters")
        return name

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, tags: List[str]) -> List[str]:
        """Each tag must be non-empty, at most 50 chars, without reserved characters."""
        cleaned = []
        for tag in tags:
            tag = tag.strip()
            if not tag:
                raise ValueError("Tags cannot be empty")
            if len(tag) > 50:
                raise ValueError(f'Tag "{tag}" must be no more than 50 characters long')
            if _INVALID_NAME_CHARS.search(tag):
                raise ValueError(f'Tag "{tag}" contains invalid characters')
            cleaned.append(tag)
        return cleaned

    def with_last_used(self, timestamp: Optional[int] = None) -> "Recipe":
        """Return a copy of this recipe stamped with a new last-used time."""
        return self.model_copy(update={"last_used_at": timestamp if timestamp is not None else now_ms()})


class SanitizationOptions(BaseModel):
    """Options applied to raw user text before interpolation."""

    max_length: Annotated[int, Field(10000, ge=1, description="Maximum input length, longer input is truncated")]
    allow_html: Annotated[bool, Field(False, description="Keep <...> tag-like substrings")]
    escape_special_chars: Annotated[
        bool, Field(True, description="Escape backslash, quote, newline, carriage return and tab")
    ]


class ExecutionOptions(BaseModel):
    """Per-call execution options. Never persisted."""

    temperature: Annotated[float, Field(0.7, ge=0.0, le=2.0, description="Sampling temperature")]
    top_k: Annotated[int, Field(40, ge=1, description="Top-K sampling")]
    timeout: Annotated[int, Field(30000, ge=1, description="Deadline per attempt in milliseconds")]
    sanitization: Annotated[
        Optional[SanitizationOptions], Field(None, description="Sanitization options (defaults apply when None)")
    ]
    guide: Annotated[Optional[str], Field(None, description="Persistent context block prepended to the prompt")]


class ExecutionResult(BaseModel):
    """Outcome of one execution. Immutable once produced."""

    model_config = ConfigDict(frozen=True)

    success: bool
    response: Annotated[Optional[str], Field(None, description="Model response (present iff success)")]
    error: Annotated[Optional[str], Field(None, description="Human-readable error (present iff failure)")]
    execution_time: Annotated[int, Field(ge=0, description="Wall-clock execution time in milliseconds")]
    tokens_used: Annotated[Optional[int], Field(None, ge=0, description="Approximate tokens, ceil(chars / 4)")]
    session_id: Annotated[Optional[str], Field(None, description="History key of this execution")]

    @model_validator(mode="after")
    def validate_outcome_fields(self) -> "ExecutionResult":
        """A success carries a response and no error, a failure the opposite."""
        if self.success and (self.response is None or self.error is not None):
            raise ValueError("Successful results must have a response and no error")
        if not self.success and (self.error is None or self.response is not None):
            raise ValueError("Failed results must have an error and no response")
        return self


class ExecutionStats(BaseModel):
    """Aggregate statistics derived from execution history."""

    total_executions: int = 0
    successful_executions: int = 0
    failed_executions: int = 0
    average_execution_time: float = 0.0
    total_tokens_used: int = 0


class Availability(str, Enum):
    """Availability of the model capability."""

    UNAVAILABLE = "unavailable"
    DOWNLOADABLE = "downloadable"
    DOWNLOADING = "downloading"
    AVAILABLE = "available"


class CapabilityDescriptor(BaseModel):
    """What the initialized capability can do."""

    can_use_ai: bool = True
    model: Optional[str] = None
    features: List[str] = Field(default_factory=lambda: ["prompt", "streaming"])


class DownloadResult(BaseModel):
    """Outcome of a proactive model download."""

    success: bool
    status: Availability
    error: Optional[str] = None


class ConnectionTestResult(BaseModel):
    """Outcome of a capability round-trip test."""

    available: bool
    capabilities: Optional[CapabilityDescriptor] = None
    error: Optional[str] = None


class InterpolationPreview(BaseModel):
    """Preview of an interpolation without executing it."""

    original: str
    interpolated: str
    placeholders: List[str]
    sanitized_input: str


class PlaceholderValidation(BaseModel):
    """Comparison of template placeholders with provided input names."""

    is_valid: bool
    missing: List[str]
    extra: List[str]


class EnhancementResult(BaseModel):
    """Outcome of an LLM-assisted prompt enhancement."""

    success: bool
    original_prompt: str
    enhanced_prompt: Optional[str] = None
    improvements: List[str] = Field(default_factory=list)
    error: Optional[str] = None


class ErrorAction(BaseModel):
    """An action offered to the user alongside an error."""

    label: str
    action: str
    primary: bool = False


class ErrorDisplay(BaseModel):
    """User-facing rendering of a classified error."""

    title: str
    message: str
    actions: List[ErrorAction]
