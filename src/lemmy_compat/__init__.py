"""Lemmy legacy API compatibility proxy."""

from importlib import import_module

__all__ = ["__version__", "create_app", "ProxySettings"]
__version__ = "0.1.0"

from .config import ProxySettings


def create_app(*args, **kwargs):
    """Lazy import wrapper to avoid package-level import cycles."""

    module = import_module(".app", __name__)
    return module.create_app(*args, **kwargs)
