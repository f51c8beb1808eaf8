"""Tests for the presets command-line utility (python -m georules.presets)."""

import json

import pytest

from conftest import field_rule, write_tree
from georules.presets.cli import format_summary, main
from georules.presets import load_presets


@pytest.fixture
def tree(rules_dir, overrides_dir):
    write_tree(rules_dir, {
        "BASE.json": [field_rule(ip=["a"])],
        "DE.json": [field_rule(domain=["x"])],
        "!RU,BY.json": [field_rule("block", domain=["r"])],
        "tags/streaming/base.json": [field_rule(domain=["s"])],
        "tags/streaming/US.json": [field_rule(domain=["u"])],
    })
    write_tree(overrides_dir, {"DEFAULT.json": {"log": {"loglevel": "none"}}})
    return rules_dir, overrides_dir


class TestValidate:
    def test_summary(self, tree):
        rules_dir, overrides_dir = tree
        lines = format_summary(load_presets(rules_dir, overrides_dir))
        assert "rules     BASE: 1 rule(s)" in lines
        assert "reverse   !RU,BY: 1 rule(s), all except BY,RU" in lines
        assert "tag       streaming: base 1, default 0, countries US" in lines
        assert "override  DEFAULT" in lines

    def test_passes(self, tree, capsys):
        rules_dir, overrides_dir = tree
        assert main(["validate", str(rules_dir), "--overrides", str(overrides_dir)]) == 0
        assert "Validation passed" in capsys.readouterr().out

    def test_fails_on_broken_file(self, tree, capsys):
        rules_dir, _ = tree
        (rules_dir / "FR.json").write_text("[{")
        assert main(["validate", str(rules_dir), "-q"]) == 1
        captured = capsys.readouterr()
        assert "FR.json" in captured.err
        assert "1 file(s) could not be loaded" in captured.out


class TestCompose:
    def test_compose_country_and_tag(self, tree, capsys):
        rules_dir, overrides_dir = tree
        code = main([
            "compose", str(rules_dir), "--overrides", str(overrides_dir),
            "--country", "us", "--tag", "streaming", "--no-same-country",
        ])
        assert code == 0
        doc = json.loads(capsys.readouterr().out)
        assert doc["log"] == {"loglevel": "none"}
        assert doc["routing"]["rules"] == [
            field_rule(ip=["a"]),
            field_rule(domain=["s"]),
            field_rule(domain=["u"]),
            field_rule("block", domain=["r"]),
        ]

    def test_compose_with_upstream(self, tree, tmp_path, capsys):
        rules_dir, _ = tree
        upstream = tmp_path / "sub.json"
        upstream.write_text(json.dumps({"remarks": "Bob", "outbounds": []}))
        code = main([
            "compose", str(rules_dir), "--country", "DE",
            "--upstream", str(upstream), "--public-url", "sub.example.com",
        ])
        assert code == 0
        doc = json.loads(capsys.readouterr().out)
        assert doc["remarks"] == "Bob (Germany)"
        assert doc["outbounds"] == []
        assert doc["routing"]["rules"][0]["domain"] == ["domain:sub.example.com"]

    def test_compose_invalid_upstream(self, tree, tmp_path, capsys):
        rules_dir, _ = tree
        upstream = tmp_path / "sub.json"
        upstream.write_text("nope")
        assert main(["compose", str(rules_dir), "--upstream", str(upstream)]) == 2
        assert "invalid JSON" in capsys.readouterr().err

    def test_compose_missing_upstream(self, tree, tmp_path):
        rules_dir, _ = tree
        assert main(["compose", str(rules_dir), "--upstream", str(tmp_path / "x.json")]) == 2
