"""Rule composer - the per-request pipeline from presets to response body.

The RuleComposer has no I/O. Callers supply the upstream document and a
RequestContext whose country and tags have already been resolved.
"""

import json
from dataclasses import dataclass
from typing import Any

from .dedup import dedupe_document
from .merger import Transform, apply_transform, merge_document
from .resolver import PresetResolver
from .types import JsonValue, PresetIndex, RequestContext, Rule


@dataclass
class Composition:
    """Result of composing a response for one request.

    Attributes:
        rules: Assembled rule list before the transform and deduplication
        override: Override fragment merged into the document
        document: Final document (transformed and deduplicated)
    """

    rules: list[Rule]
    override: dict[str, JsonValue]
    document: dict[str, Any]

    def to_json(self) -> str:
        return json.dumps(self.document, indent=2, ensure_ascii=False)


class RuleComposer:
    """Composes routing configs from a PresetIndex.

    Example:
        index = load_presets("rules", "overrides")
        composer = RuleComposer(index, public_url="sub.example.com")
        ctx = RequestContext(subscription_id="abc", country="DE", tags=["streaming"])
        body = composer.compose(upstream_doc, ctx).to_json()
    """

    def __init__(
        self,
        index: PresetIndex,
        public_url: str | None = None,
        direct_same_country: bool = True,
        transform: Transform | None = None,
    ):
        self.index = index
        self.resolver = PresetResolver(
            index,
            public_url=public_url,
            direct_same_country=direct_same_country,
        )
        self.transform = transform

    def compose(self, upstream: dict[str, Any], ctx: RequestContext) -> Composition:
        rules = self.resolver.resolve_rules(ctx)
        override = self.resolver.resolve_override(ctx)
        merged = merge_document(upstream, override, list(rules), ctx.country)
        transformed = apply_transform(self.transform, merged, ctx.country)
        return Composition(
            rules=rules,
            override=override,
            document=dedupe_document(transformed),
        )
