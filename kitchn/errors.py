from typing import Optional


class KitchnError(Exception):
    """Base error surfaced to API callers as ``{"success": false, ...}``."""

    status_code = 400

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict:
        body = {"success": False, "error": self.message}
        if self.code:
            body["code"] = self.code
        return body


class ValidationFailed(KitchnError):
    status_code = 400


class Unauthorized(KitchnError):
    status_code = 401


class Forbidden(KitchnError):
    status_code = 403


class NotFound(KitchnError):
    status_code = 404


class Conflict(KitchnError):
    status_code = 409


class PayloadTooLarge(KitchnError):
    status_code = 413


class ConfigurationError(KitchnError):
    status_code = 500


class ExternalServiceError(KitchnError):
    status_code = 502


class UnsupportedDocument(ValidationFailed):
    """Uploaded file type has no text extractor."""


class RecipeValidationError(ValidationFailed):
    """Raised before any storage call when the form cannot be saved."""


class RecipeSaveError(KitchnError):
    """A storage step of the recipe save failed.

    ``message`` is the underlying error text, unchanged. Rows written by the
    steps that already succeeded are left in place unless the store ran the
    save atomically.
    """

    status_code = 500

    def __init__(
        self, message: str, *, step: str, cleanup_failed: bool = False
    ) -> None:
        super().__init__(message, code="save_failed")
        self.step = step
        self.cleanup_failed = cleanup_failed

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["step"] = self.step
        body["cleanup_failed"] = self.cleanup_failed
        return body
