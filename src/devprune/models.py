"""Data models for devprune."""

import threading
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, PrivateAttr

from devprune.errors import PartialDeletionFailureError


def format_size(size_bytes: int) -> str:
    """Format bytes to human-readable string (decimal units like macOS)."""
    if size_bytes >= 1000**3:
        return f"{size_bytes / (1000**3):.1f} GB"
    elif size_bytes >= 1000**2:
        return f"{size_bytes / (1000**2):.1f} MB"
    elif size_bytes >= 1000:
        return f"{size_bytes / 1000:.1f} KB"
    else:
        return f"{size_bytes} B"


class ProjectType(str, Enum):
    """Ecosystem a build folder belongs to."""

    ANDROID = "android"
    IOS = "ios"
    SWIFT_PACKAGE = "swift_package"
    FLUTTER = "flutter"
    NODE = "node"
    RUST = "rust"
    PYTHON = "python"
    GO = "go"
    JAVA_MAVEN = "java_maven"
    RUBY = "ruby"
    DOTNET = "dotnet"
    UNITY = "unity"

    @property
    def display_name(self) -> str:
        return _PROJECT_TYPE_INFO[self][0]

    @property
    def icon_name(self) -> str:
        return _PROJECT_TYPE_INFO[self][1]

    @property
    def build_folder_names(self) -> tuple[str, ...]:
        """Literal directory names this ecosystem produces."""
        return _PROJECT_TYPE_INFO[self][2]


# display name, icon, build folder names
_PROJECT_TYPE_INFO: dict[ProjectType, tuple[str, str, tuple[str, ...]]] = {
    ProjectType.ANDROID: ("Android", "app.badge.fill", ("build", ".gradle")),
    ProjectType.IOS: ("iOS/Xcode", "apple.logo", ("build", ".build", "DerivedData")),
    ProjectType.SWIFT_PACKAGE: ("Swift Package", "shippingbox.fill", (".build",)),
    ProjectType.FLUTTER: ("Flutter", "wind", ("build", ".dart_tool")),
    ProjectType.NODE: (
        "Node.js",
        "atom",
        ("node_modules", ".next", ".nuxt", ".turbo", ".parcel-cache"),
    ),
    ProjectType.RUST: ("Rust", "gearshape.2.fill", ("target",)),
    ProjectType.PYTHON: (
        "Python",
        "chevron.left.forwardslash.chevron.right",
        ("__pycache__", ".pytest_cache", ".mypy_cache", ".ruff_cache", ".venv", "venv", ".tox"),
    ),
    ProjectType.GO: ("Go", "g.square.fill", ("vendor",)),
    ProjectType.JAVA_MAVEN: ("Java/Maven", "cup.and.saucer.fill", ("target",)),
    ProjectType.RUBY: ("Ruby", "diamond.fill", (".bundle", "vendor")),
    ProjectType.DOTNET: (".NET", "number.square.fill", ("bin", "obj")),
    ProjectType.UNITY: ("Unity", "cube.transparent.fill", ("Library", "Temp")),
}


class StaticLocationType(str, Enum):
    """Well-known global cache directories outside project trees."""

    DERIVED_DATA = "derived_data"
    GRADLE_CACHE = "gradle_cache"
    COCOAPODS_CACHE = "cocoapods_cache"
    NPM_CACHE = "npm_cache"
    YARN_CACHE = "yarn_cache"
    CARTHAGE_CACHE = "carthage_cache"

    @property
    def display_name(self) -> str:
        return _STATIC_LOCATION_INFO[self][0]

    @property
    def description(self) -> str:
        return _STATIC_LOCATION_INFO[self][1]

    @property
    def default_path(self) -> Path:
        return Path.home() / _STATIC_LOCATION_INFO[self][2]


_STATIC_LOCATION_INFO: dict[StaticLocationType, tuple[str, str, str]] = {
    StaticLocationType.DERIVED_DATA: (
        "DerivedData",
        "Xcode build artifacts and indexes",
        "Library/Developer/Xcode/DerivedData",
    ),
    StaticLocationType.GRADLE_CACHE: (
        "Gradle Cache",
        "Gradle dependencies and build cache",
        ".gradle/caches",
    ),
    StaticLocationType.COCOAPODS_CACHE: (
        "CocoaPods Cache",
        "CocoaPods specs and pods cache",
        "Library/Caches/CocoaPods",
    ),
    StaticLocationType.NPM_CACHE: ("npm Cache", "npm package cache", ".npm"),
    StaticLocationType.YARN_CACHE: ("Yarn Cache", "Yarn package cache", "Library/Caches/Yarn"),
    StaticLocationType.CARTHAGE_CACHE: (
        "Carthage Cache",
        "Carthage build cache",
        "Library/Caches/org.carthage.CarthageKit",
    ),
}


class ScanLocation(BaseModel):
    """A configured root directory to scan."""

    id: UUID = Field(default_factory=uuid4)
    name: str = Field(..., description="Display name")
    path: str = Field(..., description="Absolute path of the root")
    is_enabled: bool = Field(True, description="Whether the location takes part in scans")
    last_scanned: Optional[datetime] = Field(None, description="End of the last completed scan")


class BuildFolder(BaseModel):
    """A detected build artifact directory."""

    id: UUID = Field(default_factory=uuid4)
    path: str = Field(..., description="Absolute path of the build folder")
    project_type: ProjectType
    size_bytes: int = Field(..., ge=0, description="Total size of regular files in bytes")
    size_is_partial: bool = Field(
        False, description="Some entries could not be read while computing the size"
    )
    project_name: str = Field(..., description="Name of the owning project directory")
    last_modified: datetime
    exists: bool = Field(True, description="Whether the folder was present when last checked")
    is_selected: bool = False

    @property
    def display_name(self) -> str:
        return self.project_name

    @property
    def item_type(self) -> str:
        return "Build Folder"

    @property
    def type_tag(self) -> str:
        return self.project_type.display_name

    @property
    def size_human(self) -> str:
        return format_size(self.size_bytes)


class StaticLocationSubItem(BaseModel):
    """An entry directly inside a cache directory."""

    name: str
    path: str
    size_bytes: int = Field(0, ge=0)
    last_modified: Optional[datetime] = None


class StaticLocation(BaseModel):
    """A global cache directory such as DerivedData, or a user-defined one.

    Built-in caches carry a ``type``; user-defined caches have no type and
    are identified by ``name``.
    """

    id: UUID = Field(default_factory=uuid4)
    type: Optional[StaticLocationType] = None
    name: Optional[str] = Field(None, description="Display name of a user-defined cache")
    path: str
    size_bytes: int = Field(0, ge=0)
    size_is_partial: bool = False
    last_modified: datetime = Field(default_factory=datetime.now)
    exists: bool = True
    is_selected: bool = False
    sub_items: list[StaticLocationSubItem] = Field(default_factory=list)

    @property
    def is_custom(self) -> bool:
        return self.type is None

    @property
    def display_name(self) -> str:
        if self.name:
            return self.name
        return self.type.display_name if self.type else Path(self.path).name

    @property
    def item_type(self) -> str:
        return "Custom Cache" if self.is_custom else "System Cache"

    @property
    def type_tag(self) -> str:
        return self.type.display_name if self.type else "Custom Cache"

    @property
    def size_human(self) -> str:
        return format_size(self.size_bytes)


class CustomCacheLocation(BaseModel):
    """A user-defined cache directory reported alongside the built-in ones."""

    id: UUID = Field(default_factory=uuid4)
    name: str = Field(..., description="Display name")
    path: str = Field(..., description="Absolute path of the cache directory")
    pattern: Optional[str] = Field(
        None, description="Glob for the entries to list inside the cache, e.g. 'cache-*'"
    )
    is_enabled: bool = True
    date_added: datetime = Field(default_factory=datetime.now)
    last_scanned: Optional[datetime] = None


class ScanResult(BaseModel):
    """Build folders found under a single root.

    Only the ``is_selected`` flags change after creation. Selection changes
    go through the helpers below so that ``selected_folders()`` always sees
    a consistent snapshot.
    """

    root_path: str
    scan_date: datetime = Field(default_factory=datetime.now)
    build_folders: list[BuildFolder] = Field(default_factory=list)
    scan_duration: float = Field(0.0, description="Seconds spent scanning this root")

    _lock: Any = PrivateAttr(default_factory=threading.Lock)

    @property
    def total_size(self) -> int:
        return sum(f.size_bytes for f in self.build_folders)

    @property
    def selected_size(self) -> int:
        with self._lock:
            return sum(f.size_bytes for f in self.build_folders if f.is_selected)

    @property
    def selected_count(self) -> int:
        with self._lock:
            return sum(1 for f in self.build_folders if f.is_selected)

    def toggle_selection(self, folder_id: UUID) -> bool:
        """Flip the selection of one folder and return its new state."""
        with self._lock:
            for folder in self.build_folders:
                if folder.id == folder_id:
                    folder.is_selected = not folder.is_selected
                    return folder.is_selected
        raise KeyError(folder_id)

    def set_selected(self, folder_ids: Iterable[UUID], selected: bool = True) -> None:
        ids = set(folder_ids)
        with self._lock:
            for folder in self.build_folders:
                if folder.id in ids:
                    folder.is_selected = selected

    def select_all(self) -> None:
        with self._lock:
            for folder in self.build_folders:
                folder.is_selected = True

    def deselect_all(self) -> None:
        with self._lock:
            for folder in self.build_folders:
                folder.is_selected = False

    def selected_folders(self) -> list[BuildFolder]:
        """Copies of the currently selected folders, taken atomically."""
        with self._lock:
            return [f.model_copy(deep=True) for f in self.build_folders if f.is_selected]

    def remove_folders(self, folder_ids: Iterable[UUID]) -> int:
        """Drop folders (e.g. after deletion) and return how many were removed."""
        ids = set(folder_ids)
        with self._lock:
            before = len(self.build_folders)
            self.build_folders = [f for f in self.build_folders if f.id not in ids]
            return before - len(self.build_folders)


class ScanWarning(BaseModel):
    """A root that produced no results for a non-fatal reason."""

    location_id: UUID
    root_path: str
    kind: str = Field(..., description="inaccessible, not_found, network_unsupported or error")
    message: str


class ScanSession(BaseModel):
    """Complete output of one scan over several locations."""

    started_at: datetime = Field(default_factory=datetime.now)
    duration: float = 0.0
    results: list[ScanResult] = Field(default_factory=list)
    warnings: list[ScanWarning] = Field(default_factory=list)

    @property
    def build_folders(self) -> list[BuildFolder]:
        return [f for r in self.results for f in r.build_folders]

    @property
    def total_size(self) -> int:
        return sum(r.total_size for r in self.results)

    @property
    def selected_size(self) -> int:
        return sum(r.selected_size for r in self.results)

    def selected_folders(self) -> list[BuildFolder]:
        return [f for r in self.results for f in r.selected_folders()]

    def remove_folders(self, folder_ids: Iterable[UUID]) -> int:
        ids = set(folder_ids)
        return sum(r.remove_folders(ids) for r in self.results)


class DeletionFailureReason(str, Enum):
    """Why a single item could not be moved to the trash."""

    PERMISSION_DENIED = "permission_denied"
    PATH_NOT_FOUND = "path_not_found"
    FOLDER_IN_USE = "folder_in_use"
    OUT_OF_DISK_SPACE = "out_of_disk_space"
    NETWORK_DRIVE_UNSUPPORTED = "network_drive_unsupported"
    NOT_A_DIRECTORY = "not_a_directory"
    CLASSIFICATION_CHANGED = "classification_changed"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"


class DeletionOutcome(BaseModel):
    """Result of deleting one item. Exactly one of success or a failure reason."""

    item_id: UUID
    path: str
    name: str
    item_type: str = "Build Folder"
    type_tag: Optional[str] = None
    size_bytes: int = 0
    success: bool
    reason: Optional[DeletionFailureReason] = None
    message: Optional[str] = None
    recovery_suggestion: Optional[str] = None

    @property
    def is_resolved(self) -> bool:
        """True when nothing is left to do for this item."""
        return self.success or self.reason == DeletionFailureReason.PATH_NOT_FOUND


class CleanedItem(BaseModel):
    """An item removed during a cleaning session."""

    id: UUID = Field(default_factory=uuid4)
    name: str
    item_type: str = Field(..., description="'Build Folder', 'System Cache' or 'Custom Cache'")
    project_type: Optional[str] = Field(None, description="Ecosystem display name, if any")
    size: int
    path: str


class CleaningSession(BaseModel):
    """Summary of one completed deletion pass. Never mutated after creation."""

    id: UUID = Field(default_factory=uuid4)
    timestamp: datetime = Field(default_factory=datetime.now)
    total_size: int = 0
    item_count: int = 0
    duration: float = 0.0
    items: list[CleanedItem] = Field(default_factory=list)


class DeletionReport(BaseModel):
    """Outcomes of a deletion pass, one per input item, in input order."""

    started_at: datetime = Field(default_factory=datetime.now)
    duration: float = 0.0
    dry_run: bool = False
    cancelled: bool = Field(False, description="The pass was cancelled or interrupted")
    outcomes: list[DeletionOutcome] = Field(default_factory=list)
    session: Optional[CleaningSession] = None

    @property
    def succeeded(self) -> list[DeletionOutcome]:
        return [o for o in self.outcomes if o.success]

    @property
    def failed(self) -> list[DeletionOutcome]:
        return [o for o in self.outcomes if not o.success]

    @property
    def actionable_failures(self) -> list[DeletionOutcome]:
        """Failures that still need attention (vanished folders are already resolved)."""
        return [o for o in self.outcomes if not o.is_resolved]

    @property
    def success_count(self) -> int:
        return len(self.succeeded)

    @property
    def failure_count(self) -> int:
        return len(self.failed)

    @property
    def bytes_freed(self) -> int:
        return sum(o.size_bytes for o in self.outcomes if o.success)

    @property
    def is_partial_failure(self) -> bool:
        return bool(self.succeeded) and bool(self.actionable_failures)

    @property
    def is_total_failure(self) -> bool:
        return not self.succeeded and bool(self.actionable_failures)

    def failure_error(self) -> Optional[PartialDeletionFailureError]:
        """Aggregate error for a mixed batch, or None."""
        if not self.is_partial_failure:
            return None
        return PartialDeletionFailureError([o.path for o in self.actionable_failures])


class CleaningStatistics(BaseModel):
    """Aggregate statistics over all recorded sessions."""

    total_size_cleaned: int = 0
    session_count: int = 0
    total_items_cleaned: int = 0

    @property
    def average_size_per_session(self) -> int:
        return self.total_size_cleaned // self.session_count if self.session_count else 0

    @property
    def average_items_per_session(self) -> float:
        return self.total_items_cleaned / self.session_count if self.session_count else 0.0

    @classmethod
    def from_sessions(cls, sessions: Iterable[CleaningSession]) -> "CleaningStatistics":
        sessions = list(sessions)
        return cls(
            total_size_cleaned=sum(s.total_size for s in sessions),
            session_count=len(sessions),
            total_items_cleaned=sum(s.item_count for s in sessions),
        )
