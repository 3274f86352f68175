"""
Algorithm Version Registry
==========================
Maps each outcome-memory operation to the version of the estimator or
aggregator that serves it. The active version is stamped on every response
and audit row, so a stored probability can always be traced back to the
exact rule set (sample floor, clamp bounds, dedup policy) that produced it.

Versions are appended, never edited in place; deprecating a version swaps in
a copy carrying ``deprecated_at``.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Dict, List, Optional


@dataclass(frozen=True)
class AlgorithmVersionDescriptor:
    version: str
    description: str
    effective_from: datetime = field(default_factory=datetime.utcnow)
    deprecated_at: Optional[datetime] = None

    @property
    def active(self) -> bool:
        return self.deprecated_at is None and self.effective_from <= datetime.utcnow()


def _initial(version: str, description: str) -> List[AlgorithmVersionDescriptor]:
    return [AlgorithmVersionDescriptor(version=version, description=description)]


_REGISTRY: Dict[str, List[AlgorithmVersionDescriptor]] = {
    "register_action": _initial(
        "1.0.0",
        "Catalog insert; action_type is the only field the engines read.",
    ),
    "record_event": _initial(
        "1.0.0",
        "Validated append to the lifecycle ledger; derived keys rejected.",
    ),
    "record_outcome": _initial(
        "1.0.0",
        "outcome_recorded append with success/partial/failed/abandoned outcome.",
    ),
    "execution_probability": _initial(
        "1.0.0",
        "Per-instance dedup, per-type completion rate, 3-attempt floor, "
        "default 0.7, clamp to [0.05, 0.95].",
    ),
    "execution_probabilities": _initial(
        "1.0.0",
        "Batch estimate over one ledger snapshot and one aggregation.",
    ),
    "outcome_stats": _initial(
        "1.0.0",
        "Per-type attempts/completions/skips, recorded outcomes, inter-event delays.",
    ),
    "friction_penalties": _initial(
        "1.0.0",
        "0.5 failure rate + 0.3 delay factor (2..14 days) + 0.2 abandon rate, "
        "3-outcome floor, default 0.1.",
    ),
}


def get_current_version(operation: str) -> AlgorithmVersionDescriptor:
    """
    Latest active version for *operation*. Raises ``KeyError`` for unknown
    operations and ``RuntimeError`` when every version is deprecated or
    scheduled for the future.
    """
    versions = _REGISTRY.get(operation)
    if not versions:
        raise KeyError(f"Unknown operation: {operation}")

    candidates = [v for v in versions if v.active]
    if not candidates:
        raise RuntimeError(f"No active algorithm version for operation '{operation}'")
    return max(candidates, key=lambda v: v.effective_from)


def register_version(
    operation: str,
    version: str,
    description: str,
    effective_from: Optional[datetime] = None,
) -> AlgorithmVersionDescriptor:
    desc = AlgorithmVersionDescriptor(
        version=version,
        description=description,
        effective_from=effective_from or datetime.utcnow(),
    )
    _REGISTRY.setdefault(operation, []).append(desc)
    return desc


def deprecate_version(operation: str, version: str) -> None:
    versions = _REGISTRY.get(operation, [])
    for i, v in enumerate(versions):
        if v.version == version and v.deprecated_at is None:
            versions[i] = replace(v, deprecated_at=datetime.utcnow())
            return
    raise KeyError(f"Active version '{version}' not found for operation '{operation}'")


def list_versions(operation: str) -> List[AlgorithmVersionDescriptor]:
    return list(_REGISTRY.get(operation, []))
