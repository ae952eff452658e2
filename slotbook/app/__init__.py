"""Application package.

Explicit initializer for `slotbook.app`: exposes the db helpers and the
domain models under short names.
"""

from .core import db
from .domain import models

__all__ = ["db", "models"]
