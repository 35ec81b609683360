"""Block-oriented key/value state store front end: types, errors, config, handles and recovery."""

__version__ = "0.1.0"

__all__ = [
    "types",
    "errors",
    "interfaces",
    "config",
    "facade",
    "block",
    "recovery",
    "benchmark",
]