"""Operator CLI for the check-in processor."""

from importlib import import_module
from types import ModuleType


def __getattr__(name: str) -> ModuleType:
    # ``cli.app`` stays the module so tests can patch its factories by path.
    if name == "app":
        return import_module("cli.app")
    raise AttributeError(name)


__all__: list[str] = []
