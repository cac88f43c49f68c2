"""
Error types for credential classification and digest resolution.

Every failure carries an ErrorKind so callers can branch on what went wrong
without comparing message strings, plus actionable guidance for humans.
"""

from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorCategory(Enum):
    """Categories of errors for better error handling"""
    CLASSIFICATION = "classification"
    CONNECTION = "connection"
    AUTHENTICATION = "authentication"
    CONFIGURATION = "configuration"
    REFERENCE = "reference"
    UNKNOWN = "unknown"


class ErrorKind(Enum):
    """Closed set of failures raised by the classifier and the resolver"""

    # Classification-time
    MALFORMED_INPUT = "unable to unmarshal credentials from string"
    MISSING_REGISTRY = "registry name can't be empty"
    MISSING_USERNAME = "username can't be empty"
    MISSING_PASSWORD = "password can't be empty"
    MISSING_IDENTITY = "identity can't be empty"
    MISSING_ARM_RESOURCE = "armResource can't be empty"
    UNCLASSIFIABLE_CREDENTIAL = "unable to classify credential into opaque, vault or msi"

    # Resolution-time
    CREDENTIAL_RESOLUTION_FAILED = "error fetching credentials for"
    INVALID_REFERENCE = "failed to parse the reference"
    RESOLUTION_FAILED = "failed to resolve the reference"

    @property
    def message(self) -> str:
        return self.value


class ActionableError(Exception):
    """Exception with actionable guidance for users"""

    def __init__(self, message: str, category: ErrorCategory = ErrorCategory.UNKNOWN,
                 suggestions: Optional[List[str]] = None, details: Optional[Dict[str, Any]] = None):
        """Initialize actionable error

        Args:
            message: Primary error message
            category: Error category for classification
            suggestions: List of suggested fixes
            details: Additional context information
        """
        self.message = message
        self.category = category
        self.suggestions = suggestions or []
        self.details = details or {}
        super().__init__(self.format_message())

    def format_message(self) -> str:
        """Format the complete error message with suggestions"""
        lines = [self.message]

        if self.suggestions:
            lines.append("\nSuggested fixes:")
            for i, suggestion in enumerate(self.suggestions, 1):
                lines.append(f"   {i}. {suggestion}")

        if self.details:
            lines.append("\nAdditional details:")
            for key, value in self.details.items():
                lines.append(f"   {key}: {value}")

        return "\n".join(lines)


class CredentialError(ActionableError):
    """Raised when a serialized credential cannot be turned into a RegistryCredential"""

    def __init__(self, kind: ErrorKind, detail: Optional[str] = None,
                 suggestions: Optional[List[str]] = None, details: Optional[Dict[str, Any]] = None):
        self.kind = kind
        message = kind.message if not detail else f"{kind.message}: {detail}"
        super().__init__(
            message,
            category=ErrorCategory.CLASSIFICATION,
            suggestions=suggestions,
            details=details,
        )


class ResolutionError(ActionableError):
    """Raised when an image reference cannot be resolved to a digest"""

    def __init__(self, kind: ErrorKind, subject: str, category: ErrorCategory = ErrorCategory.UNKNOWN,
                 suggestions: Optional[List[str]] = None, details: Optional[Dict[str, Any]] = None):
        self.kind = kind
        self.subject = subject
        super().__init__(
            f"{kind.message} '{subject}'",
            category=category,
            suggestions=suggestions,
            details=details,
        )


_FIELD_HINTS = {
    ErrorKind.MISSING_REGISTRY: "Set the 'registry' key to the registry login server (e.g. myregistry.azurecr.io)",
    ErrorKind.MISSING_USERNAME: "Set the 'username' key (a literal value or a vault secret ID)",
    ErrorKind.MISSING_PASSWORD: "Set the 'password' key (a literal value or a vault secret ID)",
    ErrorKind.MISSING_IDENTITY: "Set the 'identity' key to the client ID of the managed identity",
    ErrorKind.MISSING_ARM_RESOURCE: "Set the 'armResource' key to the registry's ARM resource ID",
    ErrorKind.UNCLASSIFIABLE_CREDENTIAL: (
        "Set both provider types to 'opaque', set either to 'vaultsecret', "
        "or leave both empty for a managed identity"
    ),
}


def create_credential_error(kind: ErrorKind, registry: str = "", detail: Optional[str] = None) -> CredentialError:
    """Create a classification error with a hint for the offending field"""
    suggestions = []
    hint = _FIELD_HINTS.get(kind)
    if hint:
        suggestions.append(hint)
    details = {"registry": registry} if registry else None
    return CredentialError(kind, detail=detail, suggestions=suggestions, details=details)


def create_credential_resolution_error(registry: str, reason: Optional[str] = None) -> ResolutionError:
    """Create actionable error for a registry whose credentials could not be resolved"""
    suggestions = [
        "Verify the credential for this registry was resolved before digest resolution",
        "For vault secrets, check the secret IDs and that the identity can read them",
        "For managed identities, verify the identity has AcrPull on the registry",
    ]
    details = {"registry": registry}
    if reason:
        details["reason"] = reason
    return ResolutionError(
        ErrorKind.CREDENTIAL_RESOLUTION_FAILED,
        registry,
        category=ErrorCategory.AUTHENTICATION,
        suggestions=suggestions,
        details=details,
    )


def create_registry_connection_error(registry_url: str, error: Exception) -> ActionableError:
    """Create actionable error for registry connection failures"""
    error_str = str(error).lower()

    suggestions = [
        f"Verify the registry URL is correct: {registry_url}",
        "Check network connectivity to the registry",
        "Verify firewall rules allow access to the registry",
        "Check if the registry service is running",
    ]

    if "timeout" in error_str or "timed out" in error_str:
        suggestions.insert(1, "Check if the registry is experiencing high load")
        suggestions.insert(2, "Increase skopeo.timeout in config.yaml")

    if "name resolution" in error_str or "dns" in error_str or "no such host" in error_str:
        suggestions.insert(1, "Verify DNS resolution for the registry hostname")
        suggestions.insert(2, "Check /etc/hosts if using local hostnames")

    if "x509" in error_str or "certificate" in error_str:
        suggestions.insert(1, "Set skopeo.tls_verify to false for registries with self-signed certificates")

    return ActionableError(
        message=f"Failed to connect to Docker registry at {registry_url}",
        category=ErrorCategory.CONNECTION,
        suggestions=suggestions,
        details={
            "registry_url": registry_url,
            "error_type": type(error).__name__,
            "error_message": str(error)
        }
    )


def create_registry_auth_error(registry_url: str, error: Exception) -> ActionableError:
    """Create actionable error for registry authentication failures"""
    suggestions = [
        "Verify a credential is configured for this registry",
        "Verify the password hasn't expired or been rotated",
        "Check if the registry requires different authentication (e.g., OAuth)",
    ]

    if "azurecr.io" in registry_url:
        suggestions.insert(0, "For managed identities, verify the identity has the AcrPull role on the registry")
        suggestions.insert(1, "Check the identity client ID in the credential's 'identity' key")

    return ActionableError(
        message=f"Failed to authenticate with Docker registry at {registry_url}",
        category=ErrorCategory.AUTHENTICATION,
        suggestions=suggestions,
        details={
            "registry_url": registry_url,
            "error_type": type(error).__name__,
            "error_message": str(error)
        }
    )


def create_config_error(field: str, value: Any, reason: str) -> ActionableError:
    """Create actionable error for configuration validation failures"""
    suggestions = [
        f"Check the '{field}' value in config.yaml",
        "Verify the value matches the expected format",
    ]

    if "timeout" in field.lower():
        suggestions.insert(1, "Time values must be positive numbers")
    elif "credential" in field.lower():
        suggestions.insert(1, "Configure at most one credential per registry host")

    return ActionableError(
        message=f"Configuration error: Invalid value for '{field}'",
        category=ErrorCategory.CONFIGURATION,
        suggestions=suggestions,
        details={
            "field": field,
            "value": value,
            "reason": reason
        }
    )
