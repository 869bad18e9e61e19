"""
Core package init for the face verification ensemble engine.

Makes the `faceverify` modules importable without requiring an editable install.
"""

__all__ = [
    "audit",
    "config",
    "detectors",
    "ensemble",
    "errors",
    "io_utils",
    "metrics",
    "quality",
    "recognition",
    "types",
]
