"""
Core package init for the dwell-time engine.

Makes the `dwelltime` modules importable without requiring an editable install.
"""

__all__ = [
    "attribution",
    "config",
    "detectors",
    "engine",
    "recognition",
    "scheduler",
    "tracking",
    "io_utils",
    "types",
]
