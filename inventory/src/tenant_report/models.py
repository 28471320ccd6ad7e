from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Dict, Mapping, Tuple


class FilterKind(str, Enum):
    """
    Which clusterobjects documents count as a tenant's attached clusters.
    """

    TELEPORT_ATTACHED = "teleport-attached"
    TELEPORT_DETACHED = "teleport-detached"
    STATUS_SUCCESS = "status-success"
    ALL = "all"
    ALL_MINUS_TEST = "all-minus-test"

    @classmethod
    def parse(cls, value: str) -> "FilterKind":
        raw = str(value or "").strip().lower()
        for kind in cls:
            if kind.value == raw:
                return kind
        choices = ", ".join(k.value for k in cls)
        raise ValueError(f"Unknown filter '{value}' (expected one of: {choices})")


DETAIL_STATUS_TIME = ("status", "create_time")
DETAIL_NAME_TIME = ("name", "create_time")

_DETAIL_FIELDS: Dict[FilterKind, Tuple[str, ...]] = {
    FilterKind.TELEPORT_ATTACHED: DETAIL_STATUS_TIME,
    FilterKind.TELEPORT_DETACHED: DETAIL_STATUS_TIME,
    FilterKind.STATUS_SUCCESS: DETAIL_NAME_TIME,
    FilterKind.ALL: DETAIL_NAME_TIME,
    FilterKind.ALL_MINUS_TEST: (),
}

# The unfiltered discount variant always sees the built-in test cluster.
_COUNT_OFFSETS: Dict[FilterKind, int] = {
    FilterKind.ALL_MINUS_TEST: 1,
}

_DEFAULT_SHEETS: Dict[FilterKind, str] = {
    FilterKind.TELEPORT_ATTACHED: "pvtIP",
    FilterKind.TELEPORT_DETACHED: "Non-pvtIP",
    FilterKind.STATUS_SUCCESS: "Success",
    FilterKind.ALL: "All",
    FilterKind.ALL_MINUS_TEST: "AllClusters",
}

_DEFAULT_LABELS: Dict[FilterKind, str] = {
    FilterKind.TELEPORT_ATTACHED: "after Private IP release",
    FilterKind.TELEPORT_DETACHED: "before Private IP release",
    FilterKind.STATUS_SUCCESS: "with a successful connection",
    FilterKind.ALL: "in total",
    FilterKind.ALL_MINUS_TEST: "excluding the test cluster",
}


@dataclass(frozen=True)
class ReportDefinition:
    filter: FilterKind
    sheet: str
    label: str

    @classmethod
    def for_filter(cls, kind: FilterKind, *, sheet: str | None = None, label: str | None = None) -> "ReportDefinition":
        return cls(
            filter=kind,
            sheet=sheet or _DEFAULT_SHEETS[kind],
            label=label or _DEFAULT_LABELS[kind],
        )

    @property
    def detail_fields(self) -> Tuple[str, ...]:
        return _DETAIL_FIELDS[self.filter]

    @property
    def count_only(self) -> bool:
        return not self.detail_fields

    @property
    def count_offset(self) -> int:
        return _COUNT_OFFSETS.get(self.filter, 0)


DEFAULT_REPORTS: Tuple[ReportDefinition, ...] = (
    ReportDefinition.for_filter(FilterKind.TELEPORT_ATTACHED),
    ReportDefinition.for_filter(FilterKind.TELEPORT_DETACHED),
)


@dataclass(frozen=True)
class DetailRecord:
    name: str = ""
    status: str = ""
    create_time: str = ""

    def summary(self, fields: Tuple[str, ...]) -> str:
        return " ".join(f"{f}={getattr(self, f) or '-'}" for f in fields)


@dataclass(frozen=True)
class NamespaceResult:
    namespace: str
    count: int
    records: Tuple[DetailRecord, ...] = ()

    def __post_init__(self) -> None:
        if self.count < 0:
            raise ValueError(f"count must be non-negative, got {self.count} for {self.namespace}")


@dataclass(frozen=True)
class SkippedNamespace:
    namespace: str
    reason: str


@dataclass(frozen=True)
class AggregateReport:
    definition: ReportDefinition
    results: Mapping[str, NamespaceResult] = field(default_factory=dict)
    skipped: Tuple[SkippedNamespace, ...] = ()

    def __post_init__(self) -> None:
        # Read-only view; sinks must not change the aggregated state.
        object.__setattr__(self, "results", MappingProxyType(dict(self.results)))

    @property
    def total(self) -> int:
        return len(self.results)

    def sorted_results(self) -> Tuple[NamespaceResult, ...]:
        return tuple(self.results[ns] for ns in sorted(self.results))
