"""Category vote sanitisation and tallying."""
from typing import Dict, Iterable, List

import config


def sanitize_category_name(name) -> str:
    if not isinstance(name, str):
        return ""
    return name.strip()[:config.MAX_CATEGORY_NAME_LENGTH]


def sanitize_selections(categories: Iterable, limit: int = config.MAX_CATEGORY_SELECTIONS) -> List[str]:
    """Clean a raw vote list: trimmed, truncated, deduplicated, at most ``limit`` long."""
    selections: List[str] = []
    used = set()
    for raw in categories:
        if len(selections) >= limit:
            break
        name = sanitize_category_name(raw)
        if not name or name in used:
            continue
        selections.append(name)
        used.add(name)
    return selections


def tally_votes(votes: Dict[str, List[str]]) -> List[dict]:
    """Count each category across all vote sets, most votes first, ties by name."""
    counts: Dict[str, int] = {}
    for selection in votes.values():
        for category in selection:
            key = sanitize_category_name(category)
            if not key:
                continue
            counts[key] = counts.get(key, 0) + 1
    ordered = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    return [{"category": name, "count": count} for name, count in ordered]
