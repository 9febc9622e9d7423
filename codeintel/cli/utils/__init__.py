"""CLI utilities."""

from .colors import success, error, warning, info, section, kv, _CHECK, _CROSS

__all__ = ["success", "error", "warning", "info", "section", "kv", "_CHECK", "_CROSS"]
