"""Tests for rule assembly order, override selection and same-country rules.

Order scenarios are in tests/fixtures/compose_scenarios.yaml.
"""

from pathlib import Path

import pytest
import yaml

from conftest import field_rule, write_tree
from georules.presets import (
    JsonValue,
    PresetIndex,
    PresetResolver,
    RequestContext,
    ReversePreset,
    TagPreset,
    build_geoip_rule,
    build_tld_rule,
    load_presets,
    remove_duplicate_rules,
)

FIXTURES_DIR = Path(__file__).parent / "fixtures"


def load_fixture(name: str) -> dict:
    """Load a YAML test fixture."""
    path = FIXTURES_DIR / f"{name}.yaml"
    with open(path) as f:
        return yaml.safe_load(f)


SCENARIOS = load_fixture("compose_scenarios")


@pytest.mark.parametrize(
    "test_case",
    SCENARIOS["tests"],
    ids=[t["name"] for t in SCENARIOS["tests"]],
)
def test_compose_scenario(test_case, rules_dir):
    """Resolved and deduplicated rules match the expected list."""
    write_tree(rules_dir, test_case["files"])
    resolver = PresetResolver(
        load_presets(rules_dir),
        direct_same_country=test_case.get("direct_same_country", True),
    )
    ctx = RequestContext(
        subscription_id="sub",
        country=test_case.get("country", ""),
        tags=test_case.get("tags", []),
    )
    rules = remove_duplicate_rules(resolver.resolve_rules(ctx))
    assert rules == test_case["expected"]


def make_index() -> PresetIndex:
    return PresetIndex(
        rules={
            "BASE": (field_rule(ip=["base"]),),
            "DEFAULT": (field_rule(domain=["default"]),),
            "EU": (field_rule(domain=["eu"]),),
            "DE": (field_rule(domain=["de-rule"]),),
        },
        overrides={
            "DEFAULT": {"log": {"loglevel": "none"}},
            "DE": {"log": {"loglevel": "warning"}},
        },
        tags={
            "t": TagPreset(
                name="t",
                base=(field_rule(domain=["tag-base"]),),
                default=(field_rule(domain=["tag-default"]),),
                country={"DE": (field_rule(domain=["tag-de"]),)},
            ),
        },
        reverse=[
            ReversePreset(name="!RU", exclude=frozenset({"RU"}), rules=(field_rule(domain=["not-ru"]),)),
            ReversePreset(name="!DE", exclude=frozenset({"DE"}), rules=(field_rule(domain=["not-de"]),)),
        ],
    )


def match_values(rules):
    return [(r.get("domain") or r.get("ip"))[0] for r in rules]


class TestResolveRules:
    def test_full_order(self):
        """Every contribution appears in priority order."""
        resolver = PresetResolver(make_index(), public_url="sub.example.com")
        ctx = RequestContext("sub", country="DE", tags=["t"])
        assert match_values(resolver.resolve_rules(ctx)) == [
            "domain:sub.example.com",
            "base",
            "tag-base",
            "tag-de",
            "domain:de",
            "geoip:de",
            "not-ru",
            "de-rule",
        ]

    def test_unresolved_country(self):
        """No country: DEFAULT rules, no same-country, reverse or EU rules."""
        resolver = PresetResolver(make_index())
        ctx = RequestContext("sub", country="", tags=["t"])
        assert match_values(resolver.resolve_rules(ctx)) == [
            "base", "tag-base", "tag-default", "default",
        ]

    def test_eu_code(self):
        """EU rules come after reverse presets and again as the country preset."""
        resolver = PresetResolver(make_index(), direct_same_country=False)
        ctx = RequestContext("sub", country="EU")
        assert match_values(resolver.resolve_rules(ctx)) == [
            "base", "not-ru", "not-de", "eu", "eu",
        ]

    def test_eu_rules_skipped_for_member_country(self):
        resolver = PresetResolver(make_index(), direct_same_country=False)
        ctx = RequestContext("sub", country="FR")
        assert "eu" not in match_values(resolver.resolve_rules(ctx))

    def test_unknown_tags_ignored(self):
        resolver = PresetResolver(make_index(), direct_same_country=False)
        ctx = RequestContext("sub", country="DE", tags=["missing", "t"])
        assert match_values(resolver.resolve_rules(ctx))[:3] == ["base", "tag-base", "tag-de"]

    def test_tag_listed_twice_contributes_twice(self):
        resolver = PresetResolver(make_index(), direct_same_country=False)
        ctx = RequestContext("sub", country="FR", tags=["t", "t"])
        values = match_values(resolver.resolve_rules(ctx))
        assert values.count("tag-base") == 2
        assert values.count("tag-default") == 2

    def test_result_is_a_copy(self):
        """Mutating resolved rules never touches the index."""
        index = make_index()
        resolver = PresetResolver(index, direct_same_country=False)
        rules = resolver.resolve_rules(RequestContext("sub", country="DE"))
        rules[0]["ip"].append("mutated")
        rules.clear()
        assert index.rules["BASE"] == (field_rule(ip=["base"]),)
        again = resolver.resolve_rules(RequestContext("sub", country="DE"))
        assert again[0] == field_rule(ip=["base"])

    def test_empty_index(self):
        resolver = PresetResolver(PresetIndex(), direct_same_country=False)
        assert resolver.resolve_rules(RequestContext("sub", country="DE")) == []

    def test_country_without_tlds_gets_only_geoip_rule(self):
        resolver = PresetResolver(PresetIndex())
        rules = resolver.resolve_rules(RequestContext("sub", country="XK"))
        assert rules == [build_geoip_rule("XK")]


class TestResolveOverride:
    def test_country_override(self):
        resolver = PresetResolver(make_index())
        assert resolver.resolve_override(RequestContext("sub", country="DE")) == {
            "log": {"loglevel": "warning"},
        }

    def test_default_override(self):
        resolver = PresetResolver(make_index())
        assert resolver.resolve_override(RequestContext("sub", country="FR")) == {
            "log": {"loglevel": "none"},
        }
        assert resolver.resolve_override(RequestContext("sub")) == {
            "log": {"loglevel": "none"},
        }

    def test_no_overrides(self):
        resolver = PresetResolver(PresetIndex())
        assert resolver.resolve_override(RequestContext("sub", country="DE")) == {}

    def test_override_typed_as_json_object(self):
        assert PresetResolver.resolve_override.__annotations__["return"] == dict[str, JsonValue]
        assert PresetIndex.__annotations__["overrides"] == dict[str, dict[str, JsonValue]]

    def test_override_is_a_copy(self):
        index = make_index()
        override = PresetResolver(index).resolve_override(RequestContext("sub", country="DE"))
        override["log"]["loglevel"] = "debug"
        assert index.overrides["DE"]["log"]["loglevel"] == "warning"


class TestSameCountryRules:
    def test_tld_rule(self):
        assert build_tld_rule(("de",)) == {
            "type": "field",
            "domain": ["domain:de"],
            "outboundTag": "direct",
        }

    def test_tld_rule_punycode(self):
        rule = build_tld_rule(("ru", "su", "рф"))
        assert rule["domain"] == ["domain:ru", "domain:su", "domain:xn--p1ai"]

    def test_tld_rule_strips_leading_dot(self):
        assert build_tld_rule([".uk"])["domain"] == ["domain:uk"]

    def test_no_tlds_no_rule(self):
        assert build_tld_rule(()) is None

    def test_geoip_rule_lowercases(self):
        assert build_geoip_rule("GB") == {
            "type": "field",
            "ip": ["geoip:gb"],
            "outboundTag": "direct",
        }

    def test_gb_uses_uk_tld(self):
        resolver = PresetResolver(PresetIndex())
        rules = resolver.resolve_rules(RequestContext("sub", country="GB"))
        assert rules[0]["domain"] == ["domain:uk"]

    def test_disabled(self):
        resolver = PresetResolver(PresetIndex(), direct_same_country=False)
        assert resolver.resolve_rules(RequestContext("sub", country="DE")) == []
