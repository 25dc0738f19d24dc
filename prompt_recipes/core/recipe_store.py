"""Recipe lookup for the execution engine.

The engine only needs ``get`` to resolve a recipe and ``save`` to stamp its
last-used time. ``JsonFileRecipeStore`` reads the export written by the host
application: either a bare JSON array of recipes or an object of the form
``{"recipes": [...], "guide": {"content": "..."}}``.
"""

import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterable, Optional

from pydantic import ValidationError

from prompt_recipes.core.errors import AppError, ErrorCode
from prompt_recipes.models.models import Recipe
from prompt_recipes.utils.logger import logger


class RecipeStore(ABC):
    @abstractmethod
    def get(self, recipe_id: str) -> Optional[Recipe]:
        """Recipe with ``recipe_id`` or None."""

    @abstractmethod
    def save(self, recipe: Recipe) -> None:
        """Insert or replace the whole recipe record."""

    @abstractmethod
    def list(self) -> list[Recipe]:
        """All recipes, pinned first, then most recently used."""

    def get_guide(self) -> Optional[str]:
        return None


def _sort_key(recipe: Recipe):
    return (not recipe.pinned, -(recipe.last_used_at or 0), recipe.name.lower())


class InMemoryRecipeStore(RecipeStore):
    def __init__(self, recipes: Iterable[Recipe] = (), guide: Optional[str] = None) -> None:
        self._recipes: dict[str, Recipe] = {recipe.id: recipe for recipe in recipes}
        self._guide = guide

    def get(self, recipe_id: str) -> Optional[Recipe]:
        return self._recipes.get(recipe_id)

    def save(self, recipe: Recipe) -> None:
        self._recipes[recipe.id] = recipe

    def list(self) -> list[Recipe]:
        return sorted(self._recipes.values(), key=_sort_key)

    def get_guide(self) -> Optional[str]:
        return self._guide


class JsonFileRecipeStore(InMemoryRecipeStore):
    """Recipes loaded from a JSON export and written back on ``save``.

    Invalid records are skipped with a warning so one bad entry does not hide
    the rest of the collection.

    Args:
        path: Export file. A missing file yields an empty store.
        guide_path: Optional plain-text file overriding the exported guide.

    Raises:
        AppError: STORAGE_NOT_AVAILABLE if the file exists but is not valid JSON,
            or if ``guide_path`` cannot be read.
    """

    def __init__(self, path: str | Path, guide_path: Optional[str | Path] = None) -> None:
        self.path = Path(path)
        data = self._read()
        records = data.get("recipes", []) if isinstance(data, dict) else data

        recipes = []
        for record in records:
            try:
                recipes.append(Recipe.model_validate(record))
            except ValidationError as e:
                logger.warning(f"Skipping invalid recipe {record.get('id', '?') if isinstance(record, dict) else '?'}: {e}")

        guide = None
        if isinstance(data, dict) and isinstance(data.get("guide"), dict):
            guide = data["guide"].get("content")
        if guide_path is not None:
            guide = self._read_guide(Path(guide_path))

        super().__init__(recipes, guide)
        self._raw = data if isinstance(data, dict) else None
        logger.debug(f"Loaded {len(recipes)} recipes from {self.path}")

    def _read(self):
        if not self.path.exists():
            logger.info(f"Recipe file {self.path} not found, starting with an empty collection")
            return []
        try:
            return json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise AppError(
                f"Failed to load recipes from {self.path}: {e}", ErrorCode.STORAGE_NOT_AVAILABLE, original_error=e
            ) from e

    @staticmethod
    def _read_guide(guide_path: Path) -> str:
        try:
            return guide_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise AppError(
                f"Failed to load guide from {guide_path}: {e}", ErrorCode.STORAGE_NOT_AVAILABLE, original_error=e
            ) from e

    def save(self, recipe: Recipe) -> None:
        super().save(recipe)
        records = [r.model_dump(by_alias=True) for r in self._recipes.values()]
        payload = {**self._raw, "recipes": records} if self._raw is not None else records
        self.path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
