from appharbor.exceptions.handlers import (
    AppHarborError,
    CompatibilityError,
    ConfigurationError,
    ConflictError,
    DeploymentError,
    ExtensionSecurityError,
    NotFoundError,
    ValidationError,
)

__all__ = [
    "AppHarborError",
    "NotFoundError",
    "ConflictError",
    "ValidationError",
    "CompatibilityError",
    "DeploymentError",
    "ExtensionSecurityError",
    "ConfigurationError",
]
