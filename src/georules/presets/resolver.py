"""Preset resolver - selects and orders the rules that apply to a request."""

import copy

from ..countries import country_tlds, to_ascii_domain
from .types import JsonValue, PresetIndex, RequestContext, Rule

DIRECT_OUTBOUND = "direct"

BASE_PRESET = "BASE"
DEFAULT_PRESET = "DEFAULT"
EU_PRESET = "EU"


def build_direct_domain_rule(domains: list[str]) -> Rule:
    return {
        "type": "field",
        "domain": [f"domain:{d}" for d in domains],
        "outboundTag": DIRECT_OUTBOUND,
    }


def build_tld_rule(tlds: tuple[str, ...] | list[str]) -> Rule | None:
    """Build a direct rule matching every domain under the given TLDs."""
    if not tlds:
        return None
    return build_direct_domain_rule([to_ascii_domain(t) for t in tlds])


def build_geoip_rule(iso: str) -> Rule:
    return {
        "type": "field",
        "ip": [f"geoip:{iso.lower()}"],
        "outboundTag": DIRECT_OUTBOUND,
    }


class PresetResolver:
    """Orders preset rules for a request.

    Rule order, highest priority first:
        1. direct route for the service's own public domain
        2. BASE
        3. tag rules, in activation order (base, then country or default)
        4. same-country direct rules (TLD domains, then geoip)
        5. reverse presets not excluding the country, in load order
        6. EU, only when the resolved code is EU
        7. the country preset, or DEFAULT

    Returned rules are deep copies; the index is never modified.
    """

    def __init__(
        self,
        index: PresetIndex,
        public_url: str | None = None,
        direct_same_country: bool = True,
    ):
        self.index = index
        self.public_url = public_url
        self.direct_same_country = direct_same_country

    def self_direct_rules(self) -> list[Rule]:
        if not self.public_url:
            return []
        return [build_direct_domain_rule([self.public_url])]

    def tag_rules(self, ctx: RequestContext) -> list[Rule]:
        rules: list[Rule] = []
        # A tag listed twice contributes twice; dedup happens on match values later
        for tag in ctx.tags:
            preset = self.index.tags.get(tag)
            if preset is not None:
                rules.extend(preset.rules_for(ctx.country))
        return rules

    def same_country_rules(self, ctx: RequestContext) -> list[Rule]:
        if not (ctx.country and self.direct_same_country):
            return []
        rules: list[Rule] = []
        tld_rule = build_tld_rule(country_tlds(ctx.country))
        if tld_rule:
            rules.append(tld_rule)
        rules.append(build_geoip_rule(ctx.country))
        return rules

    def reverse_rules(self, ctx: RequestContext) -> list[Rule]:
        if not ctx.country:
            return []
        rules: list[Rule] = []
        for preset in self.index.reverse:
            if preset.applies_to(ctx.country):
                rules.extend(preset.rules)
        return rules

    def country_rules(self, ctx: RequestContext) -> list[Rule]:
        presets = self.index.rules
        if ctx.country and ctx.country in presets:
            return list(presets[ctx.country])
        return list(presets.get(DEFAULT_PRESET, ()))

    def resolve_rules(self, ctx: RequestContext) -> list[Rule]:
        """Return the ordered rule list for a request."""
        rules: list[Rule] = []
        rules.extend(self.self_direct_rules())
        rules.extend(self.index.rules.get(BASE_PRESET, ()))
        rules.extend(self.tag_rules(ctx))
        rules.extend(self.same_country_rules(ctx))
        rules.extend(self.reverse_rules(ctx))
        if ctx.is_eu:
            rules.extend(self.index.rules.get(EU_PRESET, ()))
        rules.extend(self.country_rules(ctx))
        return copy.deepcopy(rules)

    def resolve_override(self, ctx: RequestContext) -> dict[str, JsonValue]:
        """Return the override fragment for the country, DEFAULT, or {}."""
        overrides = self.index.overrides
        if ctx.country and ctx.country in overrides:
            return copy.deepcopy(overrides[ctx.country])
        return copy.deepcopy(overrides.get(DEFAULT_PRESET, {}))
