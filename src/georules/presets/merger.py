"""Document merger - combines the upstream config with overrides and rules."""

import copy
import logging
from typing import Any, Callable

from ..countries import country_name
from .types import JsonValue, Rule

logger = logging.getLogger("georules")

DOMAIN_STRATEGY = "IPIfNonMatch"

# Post-processing hook: (document, iso) -> document
Transform = Callable[[dict[str, Any], str], dict[str, Any]]


def merge_document(
    upstream: dict[str, Any],
    override: dict[str, JsonValue],
    rules: list[Rule],
    iso: str,
) -> dict[str, Any]:
    """Build the response document.

    Override keys replace upstream keys, then routing is replaced entirely
    by the assembled rules. Remarks always come from the upstream document
    when it has them, with the country name appended when a country was
    resolved.
    """
    merged = {**upstream, **override}
    if "remarks" in upstream:
        suffix = f" ({country_name(iso)})" if iso else ""
        merged["remarks"] = f"{upstream['remarks']}{suffix}"
    merged["routing"] = {
        "domainStrategy": DOMAIN_STRATEGY,
        "rules": rules,
    }
    return merged


def apply_transform(
    transform: Transform | None,
    document: dict[str, Any],
    iso: str,
) -> dict[str, Any]:
    """Run the post-processing hook, falling back to the input on any failure."""
    if transform is None:
        return document
    try:
        result = transform(copy.deepcopy(document), iso)
    except Exception as e:
        logger.error(f"Transform failed: {e}")
        return document
    if not isinstance(result, dict):
        logger.error(f"Transform returned {type(result).__name__}, expected an object")
        return document
    return result
