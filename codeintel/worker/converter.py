"""
Converter contract.

The worker never parses bundles itself. A converter turns a raw bundle
into a self-contained queryable database at ``dest_path`` and reports the
packages the bundle exports and references.
"""

from __future__ import annotations

import importlib
import inspect
from typing import Any, Optional, Protocol, runtime_checkable

from ..faults import ConverterNotFoundFault
from ..store.models import ConversionResult
from ..tracing import TracingContext

__all__ = ["Converter", "ConversionResult", "load_converter"]


@runtime_checkable
class Converter(Protocol):
    """
    Bundle-to-database conversion.

    Implementations must not leave a partial file at ``dest_path`` when
    they fail; the orchestrator removes it as well. A bundle that cannot
    be converted should raise ``ConversionFault``, which the worker does
    not retry.
    """

    async def convert(
        self,
        source_path: str,
        dest_path: str,
        ctx: Optional[TracingContext] = None,
    ) -> ConversionResult:
        ...


def load_converter(path: str) -> Converter:
    """
    Resolve a converter from a ``module:attribute`` import path.

    The attribute may be a converter instance, or a class / factory taking
    no arguments that returns one.
    """
    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise ConverterNotFoundFault(path, "expected 'module:attribute'")

    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise ConverterNotFoundFault(path, str(exc)) from exc

    target: Any = getattr(module, attr, None)
    if target is None:
        raise ConverterNotFoundFault(path, f"module has no attribute '{attr}'")

    if inspect.isclass(target) or (callable(target) and not hasattr(target, "convert")):
        target = target()

    if not isinstance(target, Converter):
        raise ConverterNotFoundFault(path, "object has no 'convert' method")
    return target
