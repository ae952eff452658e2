"""Domain package marker for mypy to prevent duplicate module name inference.
Exports models and errors for convenience.
"""

from . import errors, models  # noqa: F401

__all__ = ["models", "errors"]
