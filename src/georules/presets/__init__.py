"""Rule presets: loading, resolution, merging and deduplication."""

from .composer import Composition, RuleComposer
from .dedup import dedupe_document, remove_duplicate_rules
from .loader import PresetLoader, expand_includes, flatten_rule_array, load_presets
from .merger import Transform, apply_transform, merge_document
from .resolver import PresetResolver, build_geoip_rule, build_tld_rule
from .types import (
    JsonValue,
    PresetIndex,
    RequestContext,
    ReversePreset,
    Rule,
    TagPreset,
)

__all__ = [
    # Types
    "JsonValue",
    "Rule",
    "TagPreset",
    "ReversePreset",
    "PresetIndex",
    "RequestContext",
    # Loader
    "PresetLoader",
    "load_presets",
    "expand_includes",
    "flatten_rule_array",
    # Resolver
    "PresetResolver",
    "build_tld_rule",
    "build_geoip_rule",
    # Merger
    "Transform",
    "merge_document",
    "apply_transform",
    # Dedup
    "remove_duplicate_rules",
    "dedupe_document",
    # Composer
    "RuleComposer",
    "Composition",
]
