"""Removes repeated ip/domain match values from a routing rule list."""

import copy
from typing import Any

from .types import Rule

MATCH_FIELDS = ("domain", "ip")


def remove_duplicate_rules(rules: list[Rule]) -> list[Rule]:
    """Drop match values already seen in an earlier rule.

    domain and ip values share one namespace. A rule whose match lists all
    become empty is dropped; rules that never had match lists are kept as-is.
    The input list is not modified.
    """
    seen: set = set()
    result: list[Rule] = []

    for original in rules:
        if not isinstance(original, dict):
            result.append(copy.deepcopy(original))
            continue
        rule = copy.deepcopy(original)
        had_matches = False
        has_matches = False

        for key in MATCH_FIELDS:
            values = rule.get(key)
            if not isinstance(values, list):
                continue
            had_matches = True
            kept = []
            for value in values:
                marker = _hashable(value)
                if marker in seen:
                    continue
                seen.add(marker)
                kept.append(value)
            rule[key] = kept
            if kept:
                has_matches = True

        if had_matches and not has_matches:
            continue
        result.append(rule)

    return result


def _hashable(value: Any) -> tuple[str, Any]:
    # Keyed by type so 1, 1.0 and True stay distinct
    if isinstance(value, (str, int, float, bool)) or value is None:
        return type(value).__name__, value
    return type(value).__name__, repr(value)


def dedupe_document(document: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of document with routing.rules deduplicated."""
    routing = document.get("routing")
    if not isinstance(routing, dict) or not isinstance(routing.get("rules"), list):
        return document
    return {
        **document,
        "routing": {**routing, "rules": remove_duplicate_rules(routing["rules"])},
    }
