"""Error types raised by the theme service."""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class ThemeServiceError(Exception):
    """Base exception carrying a stable error code for API/UI mapping."""

    code: str = "THEME_SERVICE_ERROR"
    default_message: str = "The theme operation failed."

    def __init__(self, message: str = "", *, details: Optional[Dict[str, Any]] = None) -> None:
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging or API display."""
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class ThemeValidationError(ThemeServiceError, ValueError):
    """Raised when theme metadata (e.g. the name) is unusable."""

    code = "THEME_INVALID"
    default_message = "The theme is invalid."


class TokenValidationError(ThemeServiceError, ValueError):
    """Raised when a strict token submission needed silent corrections."""

    code = "TOKENS_INVALID"
    default_message = "The theme tokens are incomplete or contain invalid values."

    def __init__(self, issues: List[str], message: str = "") -> None:
        self.issues = list(issues)
        super().__init__(message, details={"issues": self.issues})


class ThemeConflictError(ThemeServiceError):
    """Raised when a theme name is already taken within the owner's namespace."""

    code = "THEME_NAME_CONFLICT"
    default_message = "A theme with this name already exists."


class ThemeNotFoundError(ThemeServiceError, LookupError):
    """Raised when a theme does not exist or is not owned by the caller."""

    code = "THEME_NOT_FOUND"
    default_message = "Theme not found."


class InvariantRepairError(ThemeServiceError):
    """Raised when the default-theme bookkeeping fails after the primary write."""

    code = "INVARIANT_REPAIR_FAILED"
    default_message = "The theme was written but the default theme could not be reconciled."
