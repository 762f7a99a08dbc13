from __future__ import annotations

from typing import Any, Dict, List, Optional


class AppHarborError(Exception):
    """Registry error rendered by the API as {code, message, user_message, details}."""

    code = "APPHARBOR_ERROR"
    status_code = 400

    def __init__(
        self,
        message: str,
        *,
        details: Optional[Dict[str, Any]] = None,
        user_message: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = dict(details or {})
        self.user_message = user_message or message

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "user_message": self.user_message,
            "details": self.details,
        }


class NotFoundError(AppHarborError):
    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, resource: str, identifier: str, **kwargs: Any):
        super().__init__(
            f"{resource} '{identifier}' not found",
            details={"resource": resource, "id": identifier, **kwargs},
        )


class ConflictError(AppHarborError):
    code = "CONFLICT"
    status_code = 409

    def __init__(self, message: str, **kwargs: Any):
        super().__init__(message, details=kwargs)


class ValidationError(AppHarborError):
    """Carries every collected error; `message` is the summary."""

    code = "VALIDATION_ERROR"
    status_code = 422

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        errors: Optional[List[str]] = None,
        **kwargs: Any,
    ):
        self.errors: List[str] = list(errors or [message])
        details: Dict[str, Any] = {"field": field} if field else {}
        details["errors"] = self.errors
        details.update(kwargs)
        super().__init__(
            message,
            details=details,
            user_message=f"Validation failed: {message}",
        )


class CompatibilityError(AppHarborError):
    """Raised by install/update when the preflight verdict is not ok."""

    code = "INCOMPATIBLE"
    status_code = 409

    def __init__(self, action: str, check: Any):
        self.check = check
        super().__init__(
            f"Cannot {action}: {', '.join(check.reasons)}",
            details=check.to_dict(),
        )


class DeploymentError(AppHarborError):
    code = "DEPLOYMENT_REJECTED"
    status_code = 409

    def __init__(self, message: str, **kwargs: Any):
        super().__init__(message, details=kwargs)


class ExtensionSecurityError(AppHarborError):
    code = "EXTENSION_PATH_REJECTED"
    status_code = 403

    def __init__(self, implementation_url: str, prefix: str):
        super().__init__(
            f"Invalid extension path. Must start with {prefix}",
            details={"implementation_url": implementation_url, "prefix": prefix},
            user_message="Extension could not be loaded",
        )


class ConfigurationError(AppHarborError):
    code = "CONFIGURATION_ERROR"
    status_code = 500

    def __init__(self, message: str, config_key: Optional[str] = None, **kwargs: Any):
        details: Dict[str, Any] = {"config_key": config_key} if config_key else {}
        details.update(kwargs)
        super().__init__(
            message, details=details, user_message="System configuration error"
        )
