"""Preset store - loads rule, override, tag and reverse presets from disk.

Layout of a rules tree:

    rules/
        BASE.json           always applied
        DEFAULT.json        applied when no country preset matches
        EU.json             applied when the resolved code is exactly EU
        DE.json             applied for DE
        !RU,BY.json         reverse preset: applied unless country is RU or BY
        includes/           targets of "@include <name>" directives
        tags/<tag>/         base.json, default.json, <ISO>.json
    overrides/
        DEFAULT.json        top-level fields merged into the document
        DE.json

Any JSON file may contain "@include <name>" string literals. Each one is
replaced by the trimmed text of includes/<name>.json before parsing.
"""

import json
import logging
import re
from pathlib import Path
from typing import Any

from .types import PresetIndex, ReversePreset, Rule, TagPreset

logger = logging.getLogger("georules")

INCLUDES_DIRNAME = "includes"
TAGS_DIRNAME = "tags"
REVERSE_MARKER = "!"
EMPTY_OBJECT = "{}"

INCLUDE_RE = re.compile(r'"@include\s+([A-Za-z0-9._-]+)"')


def expand_includes(text: str, includes_dir: Path, seen: frozenset[Path] = frozenset()) -> str:
    """Replace every "@include <name>" literal with the referenced file's text.

    Included text is expanded recursively. A file already being expanded
    further up the chain, a missing file, or an unreadable file all become
    "{}".
    """

    def substitute(match: re.Match) -> str:
        name = match.group(1)
        file_name = name if name.endswith(".json") else f"{name}.json"
        full_path = (includes_dir / file_name).absolute()
        if full_path in seen:
            logger.warning(f"Include cycle detected at {full_path}")
            return EMPTY_OBJECT
        if not full_path.is_file():
            logger.warning(f"Include not found: {full_path}")
            return EMPTY_OBJECT
        try:
            content = full_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.error(f"Include failed for {full_path}: {e}")
            return EMPTY_OBJECT
        return expand_includes(content, includes_dir, seen | {full_path}).strip()

    return INCLUDE_RE.sub(substitute, text)


def flatten_rule_array(items: list) -> list:
    """Splice nested arrays into their parent so included arrays become siblings."""
    out = []
    for item in items:
        if isinstance(item, list):
            out.extend(flatten_rule_array(item))
        else:
            out.append(item)
    return out


def _is_json(path: Path) -> bool:
    return path.is_file() and path.suffix.lower() == ".json"


def _json_files(directory: Path) -> list[Path]:
    return sorted(p for p in directory.iterdir() if _is_json(p))


class PresetLoader:
    """Builds a PresetIndex from a rules directory and an overrides directory.

    A file that cannot be read or parsed is logged and skipped; missing
    directories simply contribute nothing.

    Example:
        index = PresetLoader("rules", "overrides").load()
        index.rules["BASE"]
    """

    def __init__(self, rules_dir: str | Path, overrides_dir: str | Path | None = None):
        self.rules_dir = Path(rules_dir)
        self.overrides_dir = Path(overrides_dir) if overrides_dir else None
        self.includes_dir = self.rules_dir / INCLUDES_DIRNAME
        self.tags_dir = self.rules_dir / TAGS_DIRNAME

    def parse_file(self, path: Path, expect_array: bool = False) -> Any:
        """Read a JSON file, expanding includes first.

        Raises:
            OSError, UnicodeDecodeError: file could not be read
            json.JSONDecodeError: expanded text is not valid JSON
            ValueError: expect_array is set and the document is not an array
        """
        raw = path.read_text(encoding="utf-8")
        parsed = json.loads(expand_includes(raw, self.includes_dir))
        if expect_array:
            if not isinstance(parsed, list):
                raise ValueError(f"expected a JSON array, got {type(parsed).__name__}")
            return flatten_rule_array(parsed)
        return parsed

    def _load_rules(self, path: Path, index: PresetIndex) -> tuple[Rule, ...] | None:
        try:
            return tuple(self.parse_file(path, expect_array=True))
        except (OSError, UnicodeDecodeError, ValueError) as e:
            # json.JSONDecodeError is a ValueError
            logger.error(f"Failed to load {path}: {e}")
            index.failures.append((str(path), str(e)))
            return None

    def load_rule_presets(self, index: PresetIndex) -> None:
        if not self.rules_dir.is_dir():
            logger.info(f"No rules directory at {self.rules_dir}")
            return
        for path in _json_files(self.rules_dir):
            name = path.stem
            rules = self._load_rules(path, index)
            if rules is None:
                continue
            if name.startswith(REVERSE_MARKER):
                exclude = frozenset(
                    code.strip().upper()
                    for code in name[len(REVERSE_MARKER):].split(",")
                    if code.strip()
                )
                index.reverse.append(ReversePreset(name=name, exclude=exclude, rules=rules))
                logger.info(f"Loaded reverse rules {name}")
            else:
                code = name.upper()
                index.rules[code] = rules
                logger.info(f"Loaded rules for {code}")

    def load_override_presets(self, index: PresetIndex) -> None:
        if self.overrides_dir is None or not self.overrides_dir.is_dir():
            logger.info("No overrides directory found - skipping overrides")
            return
        for path in _json_files(self.overrides_dir):
            code = path.stem.upper()
            try:
                override = self.parse_file(path)
                if not isinstance(override, dict):
                    raise ValueError(f"expected a JSON object, got {type(override).__name__}")
            except (OSError, UnicodeDecodeError, ValueError) as e:
                logger.error(f"Failed to load {path}: {e}")
                index.failures.append((str(path), str(e)))
                continue
            index.overrides[code] = override
            logger.info(f"Loaded overrides for {code}")

    def load_tag_preset(self, tag_path: Path, index: PresetIndex) -> TagPreset:
        base: tuple[Rule, ...] = ()
        default: tuple[Rule, ...] = ()
        country: dict[str, tuple[Rule, ...]] = {}
        for path in _json_files(tag_path):
            rules = self._load_rules(path, index)
            if rules is None:
                continue
            slot = path.stem.lower()
            if slot == "base":
                base = rules
            elif slot == "default":
                default = rules
            else:
                country[path.stem.upper()] = rules
        return TagPreset(name=tag_path.name, base=base, default=default, country=country)

    def load_tag_presets(self, index: PresetIndex) -> None:
        if not self.tags_dir.is_dir():
            logger.info("No tags directory found - skipping tag presets")
            return
        for tag_path in sorted(self.tags_dir.iterdir()):
            if not tag_path.is_dir():
                continue
            index.tags[tag_path.name] = self.load_tag_preset(tag_path, index)
            logger.info(f"Loaded tag preset {tag_path.name}")

    def load(self) -> PresetIndex:
        index = PresetIndex()
        self.load_rule_presets(index)
        self.load_override_presets(index)
        self.load_tag_presets(index)
        return index


def load_presets(rules_dir: str | Path, overrides_dir: str | Path | None = None) -> PresetIndex:
    """Load every preset under rules_dir and overrides_dir."""
    return PresetLoader(rules_dir, overrides_dir).load()
