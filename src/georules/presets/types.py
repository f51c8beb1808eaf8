"""Preset data structures shared by the loader, resolver and merger."""

from dataclasses import dataclass, field
from typing import Any, Union

# Arbitrary JSON as produced by json.loads
JsonValue = Union[None, bool, int, float, str, list["JsonValue"], dict[str, "JsonValue"]]

# A routing rule object, e.g. {"type": "field", "domain": [...], "outboundTag": "direct"}
Rule = dict[str, Any]


@dataclass(frozen=True)
class TagPreset:
    """Rules attached to a tag name.

    `base` always applies when the tag is active. `country` entries replace
    `default` when the resolved country has one.
    """

    name: str
    base: tuple[Rule, ...] = ()
    default: tuple[Rule, ...] = ()
    country: dict[str, tuple[Rule, ...]] = field(default_factory=dict)

    def rules_for(self, iso: str) -> tuple[Rule, ...]:
        """Return base rules followed by the country (or default) rules."""
        return self.base + self.country.get(iso, self.default)


@dataclass(frozen=True)
class ReversePreset:
    """Rules applied to every country except those in `exclude`."""

    name: str
    exclude: frozenset[str]
    rules: tuple[Rule, ...] = ()

    def applies_to(self, iso: str) -> bool:
        return iso not in self.exclude


@dataclass
class PresetIndex:
    """Everything loaded from the rules and overrides directories.

    Populated once at startup and read-only afterwards.
    """

    rules: dict[str, tuple[Rule, ...]] = field(default_factory=dict)
    overrides: dict[str, dict[str, JsonValue]] = field(default_factory=dict)
    tags: dict[str, TagPreset] = field(default_factory=dict)
    reverse: list[ReversePreset] = field(default_factory=list)
    # (path, error message) for every file that failed to load
    failures: list[tuple[str, str]] = field(default_factory=list)


@dataclass
class RequestContext:
    """Per-request inputs to rule composition."""

    subscription_id: str
    country: str = ""  # resolved ISO code, "" when unknown
    tags: list[str] = field(default_factory=list)  # query tags first, then panel tags

    @property
    def is_eu(self) -> bool:
        return self.country == "EU"
