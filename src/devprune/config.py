"""Persistent configuration for devprune: locations, detection rules and scan settings."""

import json
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field, ValidationError

from devprune.errors import ConfigurationError
from devprune.models import CustomCacheLocation, ProjectType, ScanLocation, StaticLocationType
from devprune.project_types import DEFAULT_RULES, ProjectTypeRule

log = logging.getLogger(__name__)

CONFIG_FILENAME = "config.json"
CONFIG_DIR_ENV = "DEVPRUNE_HOME"


def get_config_dir() -> Path:
    """Directory holding config and history (``$DEVPRUNE_HOME`` or ~/.devprune)."""
    return Path(os.path.expanduser(os.environ.get(CONFIG_DIR_ENV, "~/.devprune")))


class AppConfig(BaseModel):
    """Everything devprune persists between runs."""

    version: int = 1
    scan_locations: list[ScanLocation] = Field(default_factory=list)
    max_depth: int = Field(10, ge=1, description="Maximum directory depth below a location")
    max_workers: int = Field(4, ge=1, description="Worker pool size for scanning and deleting")
    type_precedence: list[ProjectType] = Field(
        default_factory=list,
        description="Ecosystems tried first when several share a folder name",
    )
    enabled_types: list[ProjectType] = Field(
        default_factory=list, description="Ecosystems to detect (empty = all)"
    )
    excluded_paths: list[str] = Field(
        default_factory=list, description="Subtrees never scanned"
    )
    static_locations: list[StaticLocationType] = Field(
        default_factory=lambda: list(StaticLocationType),
        description="Global caches reported by the caches command",
    )
    custom_cache_locations: list[CustomCacheLocation] = Field(
        default_factory=list, description="User-defined cache directories"
    )
    rules: list[ProjectTypeRule] = Field(
        default_factory=list,
        description="Build folder detection table (empty = built-in defaults)",
    )

    def enabled_locations(self) -> list[ScanLocation]:
        return [loc for loc in self.scan_locations if loc.is_enabled]

    def detection_rules(self) -> list[ProjectTypeRule]:
        """The rule table in effect: the user's, else the built-in one."""
        return self.rules or list(DEFAULT_RULES)

    def enabled_custom_caches(self) -> list[CustomCacheLocation]:
        return [loc for loc in self.custom_cache_locations if loc.is_enabled]


class ConfigStore:
    """Load/save AppConfig as JSON and edit its locations and rules."""

    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = path or get_config_dir() / CONFIG_FILENAME

    def load(self) -> AppConfig:
        """Load configuration; a missing file yields defaults."""
        if not self.path.exists():
            return AppConfig()
        try:
            with open(self.path) as f:
                return AppConfig.model_validate(json.load(f))
        except (json.JSONDecodeError, ValidationError) as e:
            raise ConfigurationError(f"Invalid configuration file {self.path}: {e}") from e
        except OSError as e:
            raise ConfigurationError(f"Cannot read configuration file {self.path}: {e}") from e

    def save(self, config: AppConfig) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w") as f:
                json.dump(config.model_dump(mode="json"), f, indent=2)
        except OSError as e:
            raise ConfigurationError(f"Cannot write configuration file {self.path}: {e}") from e

    def add_location(self, path: str, name: Optional[str] = None) -> ScanLocation:
        """
        Add a scan location.

        Args:
            path: Directory to scan (~ and relative paths are resolved)
            name: Display name (default: the directory name)

        Returns:
            The new ScanLocation

        Raises:
            ConfigurationError: If the path is not a directory or already configured
        """
        resolved = os.path.abspath(os.path.expanduser(path))
        if not os.path.isdir(resolved):
            raise ConfigurationError(f"Not a directory: {resolved}")

        config = self.load()
        if any(loc.path == resolved for loc in config.scan_locations):
            raise ConfigurationError(f"Location already configured: {resolved}")

        location = ScanLocation(name=name or Path(resolved).name or resolved, path=resolved)
        config.scan_locations.append(location)
        self.save(config)
        log.info("Added scan location %s", resolved)
        return location

    def remove_location(self, location_id: UUID) -> ScanLocation:
        config = self.load()
        location = self._find(config, location_id)
        config.scan_locations = [loc for loc in config.scan_locations if loc.id != location_id]
        self.save(config)
        return location

    def toggle_location(self, location_id: UUID) -> ScanLocation:
        config = self.load()
        location = self._find(config, location_id)
        location.is_enabled = not location.is_enabled
        self.save(config)
        return location

    def update_location(self, updated: ScanLocation) -> ScanLocation:
        config = self.load()
        self._find(config, updated.id)
        config.scan_locations = [
            updated if loc.id == updated.id else loc for loc in config.scan_locations
        ]
        self.save(config)
        return updated

    def mark_scanned(self, location_id: UUID, when: Optional[datetime] = None) -> None:
        """Record a completed scan of a location. Unknown IDs are ignored."""
        config = self.load()
        for loc in config.scan_locations:
            if loc.id == location_id:
                loc.last_scanned = when or datetime.now()
                self.save(config)
                return

    def enabled_locations(self) -> list[ScanLocation]:
        return self.load().enabled_locations()

    def find_location(self, id_or_prefix: str) -> ScanLocation:
        """Resolve a location from a full ID, an ID prefix or its path."""
        config = self.load()
        needle = id_or_prefix.strip()
        resolved = os.path.abspath(os.path.expanduser(needle))
        matches = [
            loc
            for loc in config.scan_locations
            if str(loc.id).startswith(needle.lower()) or loc.path == resolved
        ]
        if len(matches) != 1:
            reason = "ambiguous" if matches else "unknown"
            raise ConfigurationError(f"{reason.capitalize()} scan location: {id_or_prefix}")
        return matches[0]

    @staticmethod
    def _find(config: AppConfig, location_id: UUID) -> ScanLocation:
        for loc in config.scan_locations:
            if loc.id == location_id:
                return loc
        raise ConfigurationError(f"Unknown scan location: {location_id}")

    # Detection rules

    def customize_rules(self) -> list[ProjectTypeRule]:
        """Write the built-in rule table into the config file for editing."""
        config = self.load()
        if not config.rules:
            config.rules = [rule.model_copy(deep=True) for rule in DEFAULT_RULES]
            self.save(config)
        return config.rules

    def reset_rules(self) -> None:
        """Drop custom rules and go back to the built-in table."""
        config = self.load()
        config.rules = []
        self.save(config)
        log.info("Detection rules reset to defaults")

    # Custom cache locations

    def add_custom_cache(
        self, path: str, name: Optional[str] = None, pattern: Optional[str] = None
    ) -> CustomCacheLocation:
        """
        Add a user-defined cache directory.

        Raises:
            ConfigurationError: If the path is not a directory or already configured
        """
        resolved = os.path.abspath(os.path.expanduser(path))
        if not os.path.isdir(resolved):
            raise ConfigurationError(f"Not a directory: {resolved}")

        config = self.load()
        if any(loc.path == resolved for loc in config.custom_cache_locations):
            raise ConfigurationError(f"Cache location already configured: {resolved}")

        location = CustomCacheLocation(
            name=name or Path(resolved).name or resolved,
            path=resolved,
            pattern=pattern or None,
        )
        config.custom_cache_locations.append(location)
        self.save(config)
        log.info("Added custom cache location %s", resolved)
        return location

    def remove_custom_cache(self, id_or_prefix: str) -> CustomCacheLocation:
        config = self.load()
        location = self._find_custom_cache(config, id_or_prefix)
        config.custom_cache_locations = [
            loc for loc in config.custom_cache_locations if loc.id != location.id
        ]
        self.save(config)
        return location

    def mark_caches_scanned(self, cache_ids: list[UUID], when: Optional[datetime] = None) -> None:
        """Record a completed check of custom caches. Unknown IDs are ignored."""
        ids = set(cache_ids)
        config = self.load()
        touched = False
        for loc in config.custom_cache_locations:
            if loc.id in ids:
                loc.last_scanned = when or datetime.now()
                touched = True
        if touched:
            self.save(config)

    @staticmethod
    def _find_custom_cache(config: AppConfig, id_or_prefix: str) -> CustomCacheLocation:
        needle = id_or_prefix.strip()
        resolved = os.path.abspath(os.path.expanduser(needle))
        matches = [
            loc
            for loc in config.custom_cache_locations
            if str(loc.id).startswith(needle.lower()) or loc.path == resolved
        ]
        if len(matches) != 1:
            reason = "ambiguous" if matches else "unknown"
            raise ConfigurationError(f"{reason.capitalize()} cache location: {id_or_prefix}")
        return matches[0]
