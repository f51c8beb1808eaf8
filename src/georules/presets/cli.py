#!/usr/bin/env python3
"""Command-line utility to check a rules tree and preview composed configs.

Usage:
    python -m georules.presets validate rules/ [--overrides overrides/]
    python -m georules.presets compose rules/ --country DE [--tag streaming]
        [--upstream sub.json] [--public-url sub.example.com] [--no-same-country]

Exit codes:
    0 - All files loaded (validate) / document printed (compose)
    1 - Some preset files failed to load
    2 - File not found or invalid JSON input
"""

import argparse
import json
import sys
from pathlib import Path

from .composer import RuleComposer
from .loader import load_presets
from .types import PresetIndex, RequestContext


def format_summary(index: PresetIndex) -> list[str]:
    """Describe the loaded presets, one line per preset."""
    lines = []
    for code, rules in index.rules.items():
        lines.append(f"rules     {code}: {len(rules)} rule(s)")
    for preset in index.reverse:
        exclude = ",".join(sorted(preset.exclude))
        lines.append(f"reverse   {preset.name}: {len(preset.rules)} rule(s), all except {exclude}")
    for name, tag in index.tags.items():
        countries = ",".join(sorted(tag.country)) or "-"
        lines.append(
            f"tag       {name}: base {len(tag.base)}, default {len(tag.default)}, "
            f"countries {countries}"
        )
    for code in index.overrides:
        lines.append(f"override  {code}")
    return lines


def cmd_validate(args) -> int:
    index = load_presets(args.rules_dir, args.overrides)
    if not args.quiet:
        for line in format_summary(index):
            print(line)
    for path, error in index.failures:
        print(f"{path}: {error}", file=sys.stderr)
    if index.failures:
        print(f"\nValidation failed: {len(index.failures)} file(s) could not be loaded")
        return 1
    if not args.quiet:
        print("\nValidation passed")
    return 0


def cmd_compose(args) -> int:
    upstream = {}
    if args.upstream:
        try:
            upstream = json.loads(Path(args.upstream).read_text(encoding="utf-8"))
        except OSError as e:
            print(f"Error: cannot read {args.upstream}: {e}", file=sys.stderr)
            return 2
        except json.JSONDecodeError as e:
            print(f"Error: invalid JSON in {args.upstream}: {e}", file=sys.stderr)
            return 2
        if not isinstance(upstream, dict):
            print(f"Error: {args.upstream} must contain a JSON object", file=sys.stderr)
            return 2

    index = load_presets(args.rules_dir, args.overrides)
    for path, error in index.failures:
        print(f"warning: {path}: {error}", file=sys.stderr)

    composer = RuleComposer(
        index,
        public_url=args.public_url,
        direct_same_country=not args.no_same_country,
    )
    ctx = RequestContext(
        subscription_id=args.subscription,
        country=(args.country or "").upper(),
        tags=args.tag,
    )
    print(composer.compose(upstream, ctx).to_json())
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m georules.presets",
        description="Validate rule presets and preview composed configs",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    validate = sub.add_parser("validate", help="Load a rules tree and report problems")
    validate.add_argument("rules_dir", type=Path)
    validate.add_argument("--overrides", type=Path, help="Overrides directory")
    validate.add_argument("-q", "--quiet", action="store_true", help="Only print errors")
    validate.set_defaults(func=cmd_validate)

    compose = sub.add_parser("compose", help="Print the composed config for a request")
    compose.add_argument("rules_dir", type=Path)
    compose.add_argument("--overrides", type=Path, help="Overrides directory")
    compose.add_argument("--country", default="", help="Resolved ISO country code")
    compose.add_argument("--tag", action="append", default=[], help="Active tag (repeatable)")
    compose.add_argument("--upstream", help="Upstream subscription JSON file")
    compose.add_argument("--public-url", help="Public domain of the service")
    compose.add_argument("--no-same-country", action="store_true",
                         help="Skip same-country direct rules")
    compose.add_argument("--subscription", default="preview", help="Subscription ID")
    compose.set_defaults(func=cmd_compose)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
