"""Build folder detection rules for devprune.

Detection is driven by an ordered rule table. Each rule pairs one or more
literal folder names with the ecosystem that produces them and a validation
step that looks for a marker (``Package.swift``, ``Cargo.toml``, an
``.xcodeproj`` bundle, ...) next to the folder. The first rule whose name
matches and whose validation passes wins, so rule order decides between
ecosystems sharing a folder name such as ``build`` or ``.build``.
"""

import logging
import os
from enum import Enum
from pathlib import Path
from typing import Iterable, NamedTuple, Optional

from pydantic import BaseModel, Field

from devprune.models import ProjectType

log = logging.getLogger(__name__)


class ValidationMode(str, Enum):
    """How a rule confirms that a matching folder really is a build artifact."""

    ALWAYS_VALID = "always_valid"  # Folder name alone is enough (e.g. __pycache__)
    PARENT_DIRECTORY = "parent_directory"  # Markers in the immediate parent
    PARENT_HIERARCHY = "parent_hierarchy"  # Markers in the parent or up to N levels above
    DIRECTORY_ENUMERATION = "directory_enumeration"  # Parent holds an entry with given extension


class ValidationRules(BaseModel):
    """Marker requirements for a rule."""

    mode: ValidationMode
    max_search_depth: int = Field(5, ge=1, description="Levels to walk up in parent_hierarchy mode")
    any_of_files: list[str] = Field(default_factory=list, description="At least one must exist")
    all_of_files: list[str] = Field(default_factory=list, description="All must exist")
    required_directories: list[str] = Field(default_factory=list, description="All must be dirs")
    file_extensions: list[str] = Field(
        default_factory=list, description="Extensions for directory_enumeration mode (no dot)"
    )


class ProjectTypeRule(BaseModel):
    """One row of the detection table."""

    project_type: ProjectType
    folder_names: list[str]
    validation: ValidationRules


class Classification(NamedTuple):
    project_type: ProjectType
    project_root: Path


_PYTHON_MARKERS = ["pyproject.toml", "setup.py", "setup.cfg", "requirements.txt", "Pipfile", "tox.ini"]

# Order matters: more specific ecosystems come first for shared folder names.
DEFAULT_RULES: list[ProjectTypeRule] = [
    ProjectTypeRule(
        project_type=ProjectType.SWIFT_PACKAGE,
        folder_names=[".build"],
        validation=ValidationRules(
            mode=ValidationMode.PARENT_DIRECTORY,
            any_of_files=["Package.swift"],
        ),
    ),
    ProjectTypeRule(
        project_type=ProjectType.IOS,
        folder_names=["build", ".build", "DerivedData"],
        validation=ValidationRules(
            mode=ValidationMode.DIRECTORY_ENUMERATION,
            file_extensions=["xcodeproj", "xcworkspace"],
        ),
    ),
    ProjectTypeRule(
        project_type=ProjectType.FLUTTER,
        folder_names=["build", ".dart_tool"],
        validation=ValidationRules(
            mode=ValidationMode.PARENT_DIRECTORY,
            any_of_files=["pubspec.yaml"],
        ),
    ),
    ProjectTypeRule(
        project_type=ProjectType.ANDROID,
        folder_names=["build", ".gradle"],
        validation=ValidationRules(
            mode=ValidationMode.PARENT_HIERARCHY,
            max_search_depth=2,
            any_of_files=[
                "build.gradle",
                "build.gradle.kts",
                "settings.gradle",
                "settings.gradle.kts",
            ],
        ),
    ),
    ProjectTypeRule(
        project_type=ProjectType.NODE,
        folder_names=["node_modules", ".next", ".nuxt", ".turbo", ".parcel-cache"],
        validation=ValidationRules(
            mode=ValidationMode.PARENT_DIRECTORY,
            any_of_files=["package.json"],
        ),
    ),
    ProjectTypeRule(
        project_type=ProjectType.RUST,
        folder_names=["target"],
        validation=ValidationRules(
            mode=ValidationMode.PARENT_DIRECTORY,
            any_of_files=["Cargo.toml"],
        ),
    ),
    ProjectTypeRule(
        project_type=ProjectType.JAVA_MAVEN,
        folder_names=["target"],
        validation=ValidationRules(
            mode=ValidationMode.PARENT_DIRECTORY,
            any_of_files=["pom.xml"],
        ),
    ),
    ProjectTypeRule(
        project_type=ProjectType.PYTHON,
        folder_names=["__pycache__", ".pytest_cache", ".mypy_cache", ".ruff_cache"],
        validation=ValidationRules(mode=ValidationMode.ALWAYS_VALID),
    ),
    ProjectTypeRule(
        project_type=ProjectType.PYTHON,
        folder_names=[".venv", "venv", ".tox"],
        validation=ValidationRules(
            mode=ValidationMode.PARENT_DIRECTORY,
            any_of_files=_PYTHON_MARKERS,
        ),
    ),
    ProjectTypeRule(
        project_type=ProjectType.GO,
        folder_names=["vendor"],
        validation=ValidationRules(
            mode=ValidationMode.PARENT_DIRECTORY,
            any_of_files=["go.mod"],
        ),
    ),
    ProjectTypeRule(
        project_type=ProjectType.RUBY,
        folder_names=[".bundle", "vendor"],
        validation=ValidationRules(
            mode=ValidationMode.PARENT_DIRECTORY,
            any_of_files=["Gemfile"],
        ),
    ),
    ProjectTypeRule(
        project_type=ProjectType.DOTNET,
        folder_names=["bin", "obj"],
        validation=ValidationRules(
            mode=ValidationMode.DIRECTORY_ENUMERATION,
            file_extensions=["csproj", "fsproj", "vbproj", "sln"],
        ),
    ),
    ProjectTypeRule(
        project_type=ProjectType.UNITY,
        folder_names=["Library", "Temp"],
        validation=ValidationRules(
            mode=ValidationMode.PARENT_DIRECTORY,
            required_directories=["Assets", "ProjectSettings"],
        ),
    ),
]


def get_rules_for_type(project_type: ProjectType) -> list[ProjectTypeRule]:
    """Get the default rules for one ecosystem."""
    return [r for r in DEFAULT_RULES if r.project_type == project_type]


def all_folder_names() -> frozenset[str]:
    """Every folder name any default rule matches."""
    return frozenset(name for rule in DEFAULT_RULES for name in rule.folder_names)


def _requirements_met(directory: Path, rules: ValidationRules) -> bool:
    if rules.any_of_files and not any((directory / f).exists() for f in rules.any_of_files):
        return False
    if rules.all_of_files and not all((directory / f).exists() for f in rules.all_of_files):
        return False
    return all((directory / d).is_dir() for d in rules.required_directories)


def _has_entry_with_extension(directory: Path, extensions: Iterable[str]) -> bool:
    suffixes = {f".{ext.lstrip('.')}" for ext in extensions}
    try:
        with os.scandir(directory) as entries:
            for entry in entries:
                if entry.name.startswith("."):
                    continue
                if os.path.splitext(entry.name)[1] in suffixes:
                    return True
    except OSError:
        log.debug("Cannot list %s for project markers", directory)
    return False


def find_project_root(build_folder: Path, rules: ValidationRules) -> Optional[Path]:
    """
    Validate a candidate build folder against marker rules.

    Args:
        build_folder: Directory whose name matched the rule
        rules: Validation rules of that rule

    Returns:
        The directory holding the project markers, or None if validation fails
    """
    parent = build_folder.parent

    if rules.mode == ValidationMode.ALWAYS_VALID:
        return parent

    if rules.mode == ValidationMode.PARENT_DIRECTORY:
        return parent if _requirements_met(parent, rules) else None

    if rules.mode == ValidationMode.PARENT_HIERARCHY:
        current = parent
        for _ in range(rules.max_search_depth):
            if _requirements_met(current, rules):
                return current
            if current.parent == current:
                break
            current = current.parent
        return None

    if rules.mode == ValidationMode.DIRECTORY_ENUMERATION:
        if not rules.file_extensions:
            return None
        return parent if _has_entry_with_extension(parent, rules.file_extensions) else None

    return None


class ProjectTypeClassifier:
    """Classify directories as build folders using an ordered rule table.

    ``precedence`` reorders the table by ecosystem (stable for ecosystems
    not listed), which is how ties between ecosystems that share a folder
    name are configured. ``enabled_types`` limits detection to a subset.
    """

    def __init__(
        self,
        rules: Optional[Iterable[ProjectTypeRule]] = None,
        precedence: Optional[Iterable[ProjectType]] = None,
        enabled_types: Optional[Iterable[ProjectType]] = None,
    ) -> None:
        ordered = list(DEFAULT_RULES if rules is None else rules)

        if precedence:
            rank = {ptype: i for i, ptype in enumerate(precedence)}
            ordered.sort(key=lambda r: rank.get(r.project_type, len(rank)))

        if enabled_types:
            enabled = set(enabled_types)
            ordered = [r for r in ordered if r.project_type in enabled]

        self._rules = tuple(ordered)
        self._folder_names = frozenset(name for rule in self._rules for name in rule.folder_names)

    @property
    def rules(self) -> tuple[ProjectTypeRule, ...]:
        return self._rules

    @property
    def folder_names(self) -> frozenset[str]:
        return self._folder_names

    def matches_name(self, name: str) -> bool:
        """Cheap pre-check: could a directory with this name be a build folder?"""
        return name in self._folder_names

    def classify(self, path: str | Path) -> Optional[Classification]:
        """Return the first validated match for ``path``, or None."""
        path = Path(path)
        name = path.name
        if name not in self._folder_names:
            return None

        for rule in self._rules:
            if name not in rule.folder_names:
                continue
            project_root = find_project_root(path, rule.validation)
            if project_root is not None:
                return Classification(rule.project_type, project_root)

        return None
