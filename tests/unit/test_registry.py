"""Tests for the in-memory simulation registry."""

import json

import pytest

from simforge.registry import SimulationRegistry, get_registry


@pytest.fixture
def registry(config_factory):
    """Registry with three configurations across two categories."""
    registry = SimulationRegistry()
    registry.register(config_factory(name="AI Investment ROI", category="Finance", version="1.2.0", tags=["ai"]))
    registry.register(
        config_factory(
            name="Team Scaling",
            category="Operations",
            description="Hiring plan with ramp-up",
            version="1.10.0",
        ),
        tags=["hiring"],
    )
    registry.register(config_factory(name="Cloud Costs", category="Finance", version="2.0.0", tags=["ai", "cloud"]))
    return registry


class TestRegister:
    """Tests for register() and lookup."""

    def test_register_returns_slug(self, config_factory):
        registry = SimulationRegistry()
        assert registry.register(config_factory(name="Team Scaling: 2025")) == "team-scaling-2025"
        assert "team-scaling-2025" in registry
        assert len(registry) == 1

    def test_duplicate_rejected(self, registry, config_factory):
        with pytest.raises(ValueError, match="already registered"):
            registry.register(config_factory(name="AI Investment ROI"))

    def test_replace(self, registry, config_factory):
        replacement = config_factory(name="AI Investment ROI", description="new")
        registry.register(replacement, replace=True)
        assert registry.get("ai-investment-roi").description == "new"

    def test_unusable_name(self, config_factory):
        with pytest.raises(ValueError, match="usable id"):
            SimulationRegistry().register(config_factory(name="!!!"))

    def test_get_missing(self, registry):
        assert registry.get("nope") is None

    def test_get_by_name(self, registry):
        assert registry.get_by_name("team scaling").category == "Operations"
        assert registry.get_by_name("unknown") is None

    def test_tags_merged(self, registry):
        assert registry.get_entry("ai-investment-roi").tags == ("ai",)
        assert registry.get_entry("team-scaling").tags == ("hiring",)

    def test_unregister(self, registry):
        assert registry.unregister("cloud-costs") is True
        assert registry.unregister("cloud-costs") is False
        assert len(registry) == 2

    def test_clear(self, registry):
        registry.clear()
        assert len(registry) == 0


class TestSearch:
    """Tests for search() and list()."""

    def test_list_sorted_by_name(self, registry):
        assert [m["name"] for m in registry.list()] == ["AI Investment ROI", "Cloud Costs", "Team Scaling"]

    def test_query_matches_name_and_description(self, registry):
        assert [m["id"] for m in registry.search(query="roi")] == ["ai-investment-roi"]
        assert [m["id"] for m in registry.search(query="RAMP")] == ["team-scaling"]

    def test_category(self, registry):
        assert {m["id"] for m in registry.search(category="Finance")} == {"ai-investment-roi", "cloud-costs"}

    def test_tags_any(self, registry):
        assert {m["id"] for m in registry.search(tags=["cloud", "hiring"])} == {"cloud-costs", "team-scaling"}

    def test_version_sorted_numerically(self, registry):
        versions = [m["version"] for m in registry.search(sort_by="version")]
        assert versions == ["1.2.0", "1.10.0", "2.0.0"]

    def test_descending(self, registry):
        names = [m["name"] for m in registry.search(sort_order="desc")]
        assert names == ["Team Scaling", "Cloud Costs", "AI Investment ROI"]

    def test_bad_sort(self, registry):
        with pytest.raises(ValueError, match="sort_by"):
            registry.search(sort_by="price")
        with pytest.raises(ValueError, match="sort_order"):
            registry.search(sort_order="up")

    def test_metadata(self, registry):
        metadata = registry.search(query="cloud")[0]
        assert metadata == {
            "id": "cloud-costs",
            "name": "Cloud Costs",
            "category": "Finance",
            "description": "Return on a single investment",
            "version": "2.0.0",
            "tags": ["ai", "cloud"],
        }

    def test_categories_and_tags(self, registry):
        assert registry.categories() == ["Finance", "Operations"]
        assert registry.tags() == ["ai", "cloud", "hiring"]


class TestLoadDirectory:
    """Tests for load_directory()."""

    def test_loads_valid_skips_invalid(self, tmp_path, roi_config, caplog):
        (tmp_path / "a_roi.json").write_text(roi_config.to_json())
        (tmp_path / "b_broken.json").write_text(json.dumps({"name": "Broken"}))
        (tmp_path / "c_not_json.json").write_text("{not json")
        (tmp_path / "notes.txt").write_text("ignored")

        registry = SimulationRegistry()
        assert registry.load_directory(tmp_path) == ["investment-roi"]
        assert "Skipping invalid configuration b_broken.json" in caplog.text
        assert "Skipping invalid configuration c_not_json.json" in caplog.text


def test_get_registry_singleton():
    assert get_registry() is get_registry()
