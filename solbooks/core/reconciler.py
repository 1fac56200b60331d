"""
Merge freshly fetched candidates into the persisted record set.
"""

from typing import Dict, Iterable, List, Tuple

from .models import Record


def reconcile(candidates: Iterable[Record], existing: Iterable[Record]) -> List[Record]:
    """
    Produce the canonical record set.

    Candidates take on the user-owned fields (category, notes, classified) of
    the stored record with the same (signature, mint) key. Stored records with
    no matching candidate are kept unchanged, so nothing is ever removed here.
    The first record seen for a key wins, candidates before stored records.

    Args:
        candidates: Records produced by the current refresh
        existing: Previously persisted records

    Returns:
        Deduplicated records sorted newest first
    """
    existing = list(existing)
    stored: Dict[Tuple[str, str], Record] = {}
    for record in existing:
        stored.setdefault(record.key, record)

    merged: Dict[Tuple[str, str], Record] = {}
    for candidate in candidates:
        if candidate.key in merged:
            continue
        previous = stored.get(candidate.key)
        merged[candidate.key] = candidate.with_user_fields(previous) if previous else candidate

    for record in existing:
        merged.setdefault(record.key, record)

    # Ties are broken by key so the output order is deterministic
    return sorted(merged.values(), key=lambda r: (r.timestamp, r.key), reverse=True)
