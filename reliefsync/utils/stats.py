# file: reliefsync/utils/stats.py

from typing import Any, Dict, Iterable, Sequence


def count_by_status(items: Iterable[Any], statuses: Sequence[str]) -> Dict[str, int]:
    """
    Counts items per status. Every item lands in exactly one bucket (statuses
    outside `statuses` go to "other"), so the buckets always add up to "total".
    """
    stats = {"total": 0, **{status: 0 for status in statuses}, "other": 0}
    for item in items:
        status = item.get("status") if isinstance(item, dict) else getattr(item, "status", None)
        stats["total"] += 1
        if status in stats and status not in ("total", "other"):
            stats[status] += 1
        else:
            stats["other"] += 1
    return stats


def status_sum(stats: Dict[str, int]) -> int:
    return sum(count for key, count in stats.items() if key != "total")
