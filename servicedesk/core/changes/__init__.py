"""Change request intake, edits and revision."""

from .service import ChangeService, ChangeValidationError

__all__ = ["ChangeService", "ChangeValidationError"]
