"""In-memory simulation registry.

Keeps validated ScenarioConfigs by id (the slug of their name) so callers
can list, search and fetch configurations without touching the loader.

Usage:
    from simforge.registry import get_registry

    registry = get_registry()
    registry.register(config, tags=["finance"])
    registry.search(query="roi", sort_by="name")
    config = registry.get("ai-investment-roi")
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from simforge.models.scenario import ScenarioConfig, load_scenario_config

logger = logging.getLogger(__name__)

SORT_FIELDS = ("name", "category", "version")


@dataclass(frozen=True)
class RegistryEntry:
    """A registered configuration and its search tags."""

    id: str
    config: ScenarioConfig
    tags: tuple[str, ...] = ()

    def metadata(self) -> dict:
        data = self.config.metadata()
        data["tags"] = list(self.tags)
        return data


def _version_key(version: str) -> tuple[int, ...]:
    return tuple(int(part) for part in version.split("."))


class SimulationRegistry:
    """Thread-safe in-memory registry of simulation configurations."""

    def __init__(self):
        self._entries: dict[str, RegistryEntry] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, simulation_id: object) -> bool:
        return simulation_id in self._entries

    def register(self, config: ScenarioConfig, tags: Optional[list[str]] = None, replace: bool = False) -> str:
        """Register a configuration, return its id.

        Args:
            config: Validated configuration
            tags: Extra search tags, merged with config.tags
            replace: Overwrite an existing entry with the same id

        Raises:
            ValueError: If the id is already registered and replace is False,
                or the name has no characters usable in an id
        """
        simulation_id = config.id
        if not simulation_id:
            raise ValueError(f"Simulation name '{config.name}' does not produce a usable id")
        merged = tuple(dict.fromkeys([*config.tags, *(tags or [])]))
        with self._lock:
            if simulation_id in self._entries and not replace:
                raise ValueError(f"Simulation with id '{simulation_id}' is already registered")
            self._entries[simulation_id] = RegistryEntry(id=simulation_id, config=config, tags=merged)
        logger.debug(f"Registered simulation '{simulation_id}'")
        return simulation_id

    def get(self, simulation_id: str) -> Optional[ScenarioConfig]:
        """Get a configuration by id, or None if not registered."""
        entry = self._entries.get(simulation_id)
        return entry.config if entry else None

    def get_by_name(self, name: str) -> Optional[ScenarioConfig]:
        """Get a configuration by name (case-insensitive)."""
        name_lower = name.lower()
        for entry in list(self._entries.values()):
            if entry.config.name.lower() == name_lower:
                return entry.config
        return None

    def get_entry(self, simulation_id: str) -> Optional[RegistryEntry]:
        return self._entries.get(simulation_id)

    def unregister(self, simulation_id: str) -> bool:
        """Remove a configuration.

        Returns:
            True if removed, False if not registered
        """
        with self._lock:
            return self._entries.pop(simulation_id, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def list(self) -> list[dict]:
        """Metadata of every registered simulation, sorted by name."""
        return self.search()

    def search(
        self,
        query: Optional[str] = None,
        category: Optional[str] = None,
        tags: Optional[list[str]] = None,
        sort_by: str = "name",
        sort_order: str = "asc",
    ) -> list[dict]:
        """Search registered simulations.

        Args:
            query: Case-insensitive substring of name or description
            category: Exact category
            tags: Match entries carrying any of these tags
            sort_by: "name", "category" or "version"
            sort_order: "asc" or "desc"

        Returns:
            Metadata dicts of the matching simulations

        Raises:
            ValueError: For an unknown sort field or order
        """
        if sort_by not in SORT_FIELDS:
            raise ValueError(f"sort_by must be one of {', '.join(SORT_FIELDS)}, got {sort_by!r}")
        if sort_order not in ("asc", "desc"):
            raise ValueError(f"sort_order must be 'asc' or 'desc', got {sort_order!r}")

        entries = list(self._entries.values())
        if query:
            needle = query.lower()
            entries = [
                e
                for e in entries
                if needle in e.config.name.lower() or needle in e.config.description.lower()
            ]
        if category:
            entries = [e for e in entries if e.config.category == category]
        if tags:
            wanted = set(tags)
            entries = [e for e in entries if wanted.intersection(e.tags)]

        if sort_by == "version":
            entries.sort(key=lambda e: _version_key(e.config.version), reverse=sort_order == "desc")
        else:
            entries.sort(key=lambda e: getattr(e.config, sort_by).lower(), reverse=sort_order == "desc")
        return [entry.metadata() for entry in entries]

    def categories(self) -> list[str]:
        """Sorted distinct categories."""
        return sorted({entry.config.category for entry in self._entries.values()})

    def tags(self) -> list[str]:
        """Sorted distinct tags."""
        return sorted({tag for entry in self._entries.values() for tag in entry.tags})

    def load_directory(self, path: str | Path, replace: bool = False) -> list[str]:
        """Register every *.json configuration in a directory.

        Files that fail schema validation are skipped with a warning.

        Returns:
            Ids registered, in file name order
        """
        registered = []
        for file_path in sorted(Path(path).glob("*.json")):
            try:
                config = load_scenario_config(file_path)
            except (ValidationError, ValueError) as exc:
                logger.warning(f"Skipping invalid configuration {file_path.name}: {exc}")
                continue
            registered.append(self.register(config, replace=replace))
        return registered


_default_registry: Optional[SimulationRegistry] = None


def get_registry() -> SimulationRegistry:
    """Get the process-wide default registry."""
    global _default_registry
    if _default_registry is None:
        _default_registry = SimulationRegistry()
    return _default_registry
