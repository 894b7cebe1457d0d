from __future__ import annotations

from collections.abc import Mapping

from sitecounts.schemas.items import StatusCounts

ANY_STATUS = "any"


def count_by_status(status_counts: Mapping[str, int], status_filter: str = ANY_STATUS) -> int:
    """Total across all statuses for ``"any"``, else the one status (0 if absent)."""
    for status, count in status_counts.items():
        if count < 0:
            raise ValueError(f"status count must be >= 0, got {status}={count}")

    if status_filter == ANY_STATUS:
        return sum(status_counts.values())
    return status_counts.get(status_filter, 0)


def count_resources(
    counts_by_type: Mapping[str, StatusCounts],
    status_filter: str = ANY_STATUS,
) -> dict[str, int]:
    return {
        resource_type: count_by_status(status_counts, status_filter)
        for resource_type, status_counts in counts_by_type.items()
    }
