"""Shared test fixtures."""

import json
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


def write_json(path: Path, data) -> Path:
    """Write data as JSON, creating parent directories."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, ensure_ascii=False), encoding="utf-8")
    return path


def write_tree(root: Path, files: dict) -> Path:
    """Create files from a {relative path: JSON data or raw text} mapping."""
    for rel, content in files.items():
        path = root / rel
        if isinstance(content, str):
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content, encoding="utf-8")
        else:
            write_json(path, content)
    return root


def field_rule(outbound="proxy", ip=None, domain=None):
    """Build a routing rule the way preset files spell them."""
    rule = {"type": "field"}
    if domain is not None:
        rule["domain"] = list(domain)
    if ip is not None:
        rule["ip"] = list(ip)
    rule["outboundTag"] = outbound
    return rule


@pytest.fixture
def rules_dir(tmp_path):
    """Empty rules directory."""
    path = tmp_path / "rules"
    path.mkdir()
    return path


@pytest.fixture
def overrides_dir(tmp_path):
    """Empty overrides directory."""
    path = tmp_path / "overrides"
    path.mkdir()
    return path
