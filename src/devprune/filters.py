"""In-memory filtering and sorting of scan results.

Everything here is pure: no I/O, no mutation of the items passed in.
Filters compose by conjunction, so applying them in any order gives the
same set, and applying one twice is the same as applying it once.
"""

from datetime import datetime
from enum import Enum
from typing import Iterable, Optional, Sequence, TypeVar, Union

from pydantic import BaseModel, Field

from devprune.models import BuildFolder, ProjectType, StaticLocation

Item = Union[BuildFolder, StaticLocation]
T = TypeVar("T", BuildFolder, StaticLocation)

GB = 1000**3


class ComparisonOperator(str, Enum):
    EQUAL = "="
    LESS_THAN = "<"
    LESS_THAN_OR_EQUAL = "<="
    GREATER_THAN = ">"
    GREATER_THAN_OR_EQUAL = ">="

    def compare(self, lhs: int, rhs: int) -> bool:
        if self is ComparisonOperator.EQUAL:
            return lhs == rhs
        if self is ComparisonOperator.LESS_THAN:
            return lhs < rhs
        if self is ComparisonOperator.LESS_THAN_OR_EQUAL:
            return lhs <= rhs
        if self is ComparisonOperator.GREATER_THAN:
            return lhs > rhs
        return lhs >= rhs


class FilterPreset(BaseModel):
    """Named composite size/age predicate. Unset bounds are ignored."""

    id: str
    name: str
    description: str
    min_size_bytes: Optional[int] = Field(None, description="Size must be >= this")
    max_size_bytes: Optional[int] = Field(None, description="Size must be < this")
    older_than_days: Optional[int] = Field(None, description="Age in days must be > this")
    newer_than_days: Optional[int] = Field(None, description="Age in days must be < this")

    def matches(self, item: Item, now: Optional[datetime] = None) -> bool:
        if self.min_size_bytes is not None and item.size_bytes < self.min_size_bytes:
            return False
        if self.max_size_bytes is not None and item.size_bytes >= self.max_size_bytes:
            return False
        if self.older_than_days is not None or self.newer_than_days is not None:
            age = age_in_days(item, now)
            if self.older_than_days is not None and age <= self.older_than_days:
                return False
            if self.newer_than_days is not None and age >= self.newer_than_days:
                return False
        return True


PRESETS: dict[str, FilterPreset] = {
    "all": FilterPreset(
        id="all",
        name="All Items",
        description="Show all build folders and caches",
    ),
    "large": FilterPreset(
        id="large",
        name="Large (>1GB)",
        description="Show items larger than 1 GB",
        min_size_bytes=1 * GB,
    ),
    "very_large": FilterPreset(
        id="very_large",
        name="Huge (>5GB)",
        description="Show items larger than 5 GB",
        min_size_bytes=5 * GB,
    ),
    "old": FilterPreset(
        id="old",
        name="Old (>30 days)",
        description="Show items not modified in 30+ days",
        older_than_days=30,
    ),
    "recent": FilterPreset(
        id="recent",
        name="Recent (<7 days)",
        description="Show items modified in the last 7 days",
        newer_than_days=7,
    ),
}


def get_preset(preset_id: str) -> Optional[FilterPreset]:
    """Get a preset by ID."""
    return PRESETS.get(preset_id)


class FilterCriteria(BaseModel):
    """Active filters. ``None`` means the filter is off."""

    project_type: Optional[ProjectType] = None
    preset: Optional[str] = None
    size_threshold: Optional[int] = Field(None, ge=0, description="Bytes")
    size_operator: ComparisonOperator = ComparisonOperator.GREATER_THAN_OR_EQUAL
    age_threshold_days: Optional[int] = Field(None, ge=0)
    age_operator: ComparisonOperator = ComparisonOperator.GREATER_THAN_OR_EQUAL


def _local_date(value: datetime):
    return value.astimezone().date() if value.tzinfo is not None else value.date()


def age_in_days(item: Item, now: Optional[datetime] = None) -> int:
    """Whole calendar days between the item's last modification and ``now``."""
    now = now or datetime.now()
    return (_local_date(now) - _local_date(item.last_modified)).days


def by_project_type(items: Iterable[T], project_type: Optional[ProjectType]) -> list[T]:
    """Keep items of one ecosystem. ``None`` (all types) keeps everything."""
    if project_type is None:
        return list(items)
    return [i for i in items if getattr(i, "project_type", None) == project_type]


def by_preset(
    items: Iterable[T],
    preset: Union[FilterPreset, str],
    now: Optional[datetime] = None,
    presets: Optional[dict[str, FilterPreset]] = None,
) -> list[T]:
    """Keep items matching a named preset (or a preset object)."""
    if isinstance(preset, str):
        table = PRESETS if presets is None else presets
        if preset not in table:
            raise KeyError(f"Unknown filter preset: {preset}")
        preset = table[preset]
    return [i for i in items if preset.matches(i, now)]


def by_size(items: Iterable[T], threshold: int, operator: ComparisonOperator) -> list[T]:
    return [i for i in items if operator.compare(i.size_bytes, threshold)]


def by_age(
    items: Iterable[T],
    days_threshold: int,
    operator: ComparisonOperator,
    now: Optional[datetime] = None,
) -> list[T]:
    now = now or datetime.now()
    return [i for i in items if operator.compare(age_in_days(i, now), days_threshold)]


def sort_items(items: Iterable[T]) -> list[T]:
    """Existing items first, then by size, largest first."""
    return sorted(items, key=lambda i: (not i.exists, -i.size_bytes))


def apply_filters(
    items: Sequence[T],
    criteria: FilterCriteria,
    now: Optional[datetime] = None,
    presets: Optional[dict[str, FilterPreset]] = None,
) -> list[T]:
    """
    Apply every active filter in ``criteria`` and sort the survivors.

    Args:
        items: Build folders and/or static locations
        criteria: Active filters
        now: Evaluation time for age-based filters (default: now)
        presets: Preset table (default: PRESETS)

    Returns:
        Matching items, existing first and largest first
    """
    now = now or datetime.now()
    result: list[T] = list(items)

    result = by_project_type(result, criteria.project_type)
    if criteria.preset:
        result = by_preset(result, criteria.preset, now, presets)
    if criteria.size_threshold is not None:
        result = by_size(result, criteria.size_threshold, criteria.size_operator)
    if criteria.age_threshold_days is not None:
        result = by_age(result, criteria.age_threshold_days, criteria.age_operator, now)

    return sort_items(result)


_SIZE_UNITS = {"": 1, "K": 1000, "M": 1000**2, "G": 1000**3, "T": 1000**4}


def parse_size(text: str) -> int:
    """
    Parse human-readable sizes such as 500M, 40MB or 1.5G into bytes.

    Units are decimal to match how sizes are displayed.

    Raises:
        ValueError: If the text is not a size
    """
    raw = text.strip().upper().replace(" ", "")
    if raw.endswith("B"):
        raw = raw[:-1]
    unit = raw[-1:] if raw[-1:] in _SIZE_UNITS else ""
    number = raw[: len(raw) - len(unit)]
    try:
        value = float(number)
    except ValueError as e:
        raise ValueError(f"Invalid size value: {text}") from e
    if value < 0:
        raise ValueError(f"Size cannot be negative: {text}")
    return int(value * _SIZE_UNITS[unit])
