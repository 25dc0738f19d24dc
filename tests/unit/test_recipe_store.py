"""Unit tests for recipe stores.

Tests cover:
- In-memory store lookup, saving, ordering and guides
- JSON file loading in array and object layouts
- Guide files and invalid records or JSON
- Writing recipes back while keeping the guide
"""

import json

import pytest

from prompt_recipes.core.errors import AppError, ErrorCode
from prompt_recipes.core.recipe_store import InMemoryRecipeStore, JsonFileRecipeStore
from prompt_recipes.models.models import Recipe


def make_recipe(recipe_id, name=None, pinned=False, last_used_at=None):
    """Build a recipe with an id-derived name and prompt."""
    return Recipe(
        id=recipe_id,
        name=name or recipe_id.title(),
        prompt=f"{recipe_id}: {{user_input}}",
        pinned=pinned,
        last_used_at=last_used_at,
    )


class TestInMemoryRecipeStore:
    """Test the in-memory store."""

    def test_get_and_save(self):
        """Saved recipes should replace stored ones by id."""
        store = InMemoryRecipeStore([make_recipe("a")])
        assert store.get("a").id == "a"
        assert store.get("missing") is None

        store.save(make_recipe("a").with_last_used(10))
        assert store.get("a").last_used_at == 10

    def test_list_order(self):
        """Pinned first, then most recently used, then by name."""
        store = InMemoryRecipeStore(
            [
                make_recipe("old", last_used_at=1),
                make_recipe("never"),
                make_recipe("recent", last_used_at=5),
                make_recipe("pinned", pinned=True),
            ]
        )
        assert [r.id for r in store.list()] == ["pinned", "recent", "old", "never"]

    def test_guide(self):
        """Guide should be None unless provided."""
        assert InMemoryRecipeStore().get_guide() is None
        assert InMemoryRecipeStore(guide="Be brief.").get_guide() == "Be brief."


class TestJsonFileRecipeStore:
    """Test loading and writing the recipe export file."""

    def test_missing_file_is_empty(self, tmp_path):
        """A missing file should load as an empty store."""
        store = JsonFileRecipeStore(tmp_path / "recipes.json")
        assert store.list() == []
        assert store.get_guide() is None

    def test_loads_array(self, tmp_path):
        """A top-level array should load as recipes."""
        path = tmp_path / "recipes.json"
        path.write_text(json.dumps([{"id": "a", "name": "A", "prompt": "Do {input}"}]))

        store = JsonFileRecipeStore(path)

        assert store.get("a").prompt == "Do {input}"
        assert store.get("a").original_prompt == "Do {input}"

    def test_loads_object_with_guide(self, tmp_path):
        """An object layout should load recipes and guide content."""
        path = tmp_path / "recipes.json"
        path.write_text(
            json.dumps(
                {
                    "recipes": [{"id": "a", "name": "A", "prompt": "Do {input}", "lastUsedAt": 3}],
                    "guide": {"content": "Answer in English."},
                }
            )
        )

        store = JsonFileRecipeStore(path)

        assert store.get("a").last_used_at == 3
        assert store.get_guide() == "Answer in English."

    def test_guide_file_overrides(self, tmp_path):
        """A guide file should override the stored guide."""
        path = tmp_path / "recipes.json"
        path.write_text(json.dumps({"recipes": [], "guide": {"content": "stored"}}))
        guide_path = tmp_path / "guide.md"
        guide_path.write_text("from file", encoding="utf-8")

        assert JsonFileRecipeStore(path, guide_path=guide_path).get_guide() == "from file"

    def test_guide_file_missing(self, tmp_path):
        """An unreadable guide file should raise STORAGE_NOT_AVAILABLE."""
        path = tmp_path / "recipes.json"
        path.write_text("[]")

        with pytest.raises(AppError) as exc_info:
            JsonFileRecipeStore(path, guide_path=tmp_path / "missing_guide.txt")
        assert exc_info.value.code == ErrorCode.STORAGE_NOT_AVAILABLE
        assert isinstance(exc_info.value.original_error, FileNotFoundError)

    def test_skips_invalid_records(self, tmp_path):
        """Invalid records should be skipped."""
        path = tmp_path / "recipes.json"
        path.write_text(
            json.dumps(
                [
                    {"id": "good", "name": "Good", "prompt": "Do {input}"},
                    {"id": "bad", "name": "Bad/Name", "prompt": "Do {input}"},
                    {"id": "empty", "name": "Empty", "prompt": ""},
                ]
            )
        )

        store = JsonFileRecipeStore(path)

        assert [r.id for r in store.list()] == ["good"]

    def test_invalid_json(self, tmp_path):
        """Malformed JSON should raise STORAGE_NOT_AVAILABLE."""
        path = tmp_path / "recipes.json"
        path.write_text("{not json")

        with pytest.raises(AppError) as exc_info:
            JsonFileRecipeStore(path)
        assert exc_info.value.code == ErrorCode.STORAGE_NOT_AVAILABLE

    def test_save_writes_back_array(self, tmp_path):
        """Saving should keep the array layout and aliases."""
        path = tmp_path / "recipes.json"
        path.write_text(json.dumps([{"id": "a", "name": "A", "prompt": "Do {input}"}]))
        store = JsonFileRecipeStore(path)

        store.save(store.get("a").with_last_used(42))

        written = json.loads(path.read_text())
        assert isinstance(written, list)
        assert written[0]["lastUsedAt"] == 42
        assert written[0]["originalPrompt"] == "Do {input}"
        assert JsonFileRecipeStore(path).get("a").last_used_at == 42

    def test_save_keeps_guide_object(self, tmp_path):
        """Saving should keep the guide in the object layout."""
        path = tmp_path / "recipes.json"
        path.write_text(json.dumps({"recipes": [], "guide": {"content": "keep me"}}))
        store = JsonFileRecipeStore(path)

        store.save(make_recipe("new"))

        written = json.loads(path.read_text())
        assert written["guide"] == {"content": "keep me"}
        assert written["recipes"][0]["id"] == "new"
