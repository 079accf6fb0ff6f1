"""
Domain types for the displayName fan-out.

Documents:
  users/{uid}        — source of truth (displayName, stats.*)
  works/{post_id}    — cached copy of the owner's displayName
  questions/{post_id}

Jobs and accumulators here are ephemeral: created per invocation, never
persisted.
"""
from dataclasses import dataclass, field
from typing import Any, Mapping

MISSING = object()


def get_field(data: Mapping[str, Any] | None, path: str, default: Any = None) -> Any:
    """Read a dotted field path ("stats.worksCount") from nested mappings."""
    current: Any = data
    for part in path.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return default
        current = current[part]
    return current


@dataclass(frozen=True)
class DocumentRef:
    collection: str
    id: str

    @property
    def path(self) -> str:
        return f"{self.collection}/{self.id}"


@dataclass
class Document:
    ref: DocumentRef
    data: dict[str, Any]

    @property
    def id(self) -> str:
        return self.ref.id

    def get(self, path: str, default: Any = None) -> Any:
        return get_field(self.data, path, default)


@dataclass(frozen=True)
class PropagationTrigger:
    user_id: str
    new_display_name: str


@dataclass(frozen=True)
class PropagationJob:
    owner_user_id: str
    new_display_name: str
    target_collections: tuple[str, ...]


@dataclass(frozen=True)
class PendingWrite:
    ref: DocumentRef
    fields: Mapping[str, Any]


@dataclass
class FanoutPlan:
    """Writes a job needs, plus how many documents each query matched."""

    job: PropagationJob
    writes: list[PendingWrite] = field(default_factory=list)
    scanned: dict[str, int] = field(default_factory=dict)
    pending: dict[str, int] = field(default_factory=dict)


@dataclass
class CommitSummary:
    committed_count: int = 0
    batch_count: int = 0


@dataclass
class UserFailure:
    user_id: str
    error: str


@dataclass
class BackfillStats:
    """Aggregate statistics from a live backfill run."""

    users: int = 0
    batches: int = 0
    scanned: dict[str, int] = field(default_factory=dict)
    updated: dict[str, int] = field(default_factory=dict)
    errors: list[UserFailure] = field(default_factory=list)

    @property
    def total_updated(self) -> int:
        return sum(self.updated.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "users": self.users,
            "batches": self.batches,
            "scanned": dict(self.scanned),
            "updated": dict(self.updated),
            "total_updated": self.total_updated,
            "errors": [{"user_id": e.user_id, "error": e.error} for e in self.errors],
        }


@dataclass
class DryRunReport:
    users: int = 0
    scanned: dict[str, int] = field(default_factory=dict)
    needs_update: int = 0
    unit_cost_usd: float = 0.0

    @property
    def estimated_writes(self) -> int:
        # One document update per diverging post.
        return self.needs_update

    @property
    def estimated_cost_usd(self) -> float:
        return self.estimated_writes * self.unit_cost_usd

    def to_dict(self) -> dict[str, Any]:
        return {
            "users": self.users,
            "scanned": dict(self.scanned),
            "needs_update": self.needs_update,
            "estimated_writes": self.estimated_writes,
            "estimated_cost_usd": round(self.estimated_cost_usd, 4),
        }


@dataclass
class StatsReport:
    users: int = 0
    mismatched: int = 0
    corrected: int = 0
    batches: int = 0
    dry_run: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "users": self.users,
            "mismatched": self.mismatched,
            "corrected": self.corrected,
            "batches": self.batches,
            "dry_run": self.dry_run,
        }
