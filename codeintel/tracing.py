"""
Tracing context threaded through the pipeline.

Carries a logger whose records are tagged with the upload being
processed (repository, commit, root), so every line emitted while
handling one upload can be correlated.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, MutableMapping, Optional, Tuple

logger = logging.getLogger("codeintel")


class TaggedLogger(logging.LoggerAdapter):
    """LoggerAdapter that merges its tags with per-call ``extra`` fields."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        tags = {**self.extra, **kwargs.pop("extra", {})}
        kwargs["extra"] = {"tags": tags}
        if tags:
            rendered = " ".join(f"{k}={v}" for k, v in tags.items())
            msg = f"{msg} [{rendered}]"
        return msg, kwargs


@dataclass(frozen=True)
class TracingContext:
    """Logger and tags for one unit of work."""

    tags: Dict[str, Any] = field(default_factory=dict)
    base: logging.Logger = logger

    @property
    def logger(self) -> TaggedLogger:
        return TaggedLogger(self.base, dict(self.tags))


def add_tags(ctx: Optional[TracingContext], tags: Mapping[str, Any]) -> TracingContext:
    """Return a copy of ``ctx`` with ``tags`` added."""
    ctx = ctx or TracingContext()
    return TracingContext(tags={**ctx.tags, **tags}, base=ctx.base)
