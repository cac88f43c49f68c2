#!/usr/bin/env python3
"""
Configuration Manager for digest-pinner

This module handles loading and managing configuration from config.yaml
and environment variables.
"""

import json
import logging
import os
import re
from typing import Any, Dict, List

import yaml


class ConfigValidationError(Exception):
    """Raised when configuration validation fails"""


_TRUE_VALUES = ("true", "1", "yes")
_FALSE_VALUES = ("false", "0", "no")


def _parse_bool(value: Any, field: str) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise ConfigValidationError(f"{field} must be a boolean, got: {value} (type: {type(value).__name__})")


class ConfigManager:
    """Manages configuration for digest resolution"""

    def __init__(self, config_file: str = None, validate: bool = True):
        """Initialize ConfigManager

        Args:
            config_file: Path to configuration YAML file (defaults to config.yaml or CONFIG_FILE env var)
            validate: If True, validate configuration on initialization
        """
        # Allow override via environment variable for containerized deployments
        if config_file is None:
            config_file = os.environ.get("CONFIG_FILE", "config.yaml")
        self.config_file = config_file
        self.config = self._load_config()

        if validate:
            self.validate_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from YAML file with defaults"""
        default_config = {
            "skopeo": {
                "binary": "skopeo",
                "tls_verify": True,
                "timeout": 300,  # Timeout for each skopeo call in seconds
            },
            "azure": {
                "token_scope": "https://management.azure.com/.default",
                "exchange_timeout": 30,
            },
            "credentials": [],
            "logging": {"level": "INFO"},
        }

        try:
            if os.path.exists(self.config_file):
                with open(self.config_file, "r") as f:
                    user_config = yaml.safe_load(f) or {}
                return self._merge_config(default_config, user_config)
            else:
                logging.debug(f"Config file {self.config_file} not found, using defaults")
                return default_config
        except (OSError, yaml.YAMLError) as e:
            logging.error(f"Error loading config file: {e}")
            return default_config

    def _merge_config(self, default: Dict[str, Any], user: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively merge user config with defaults"""
        result = default.copy()
        for key, value in user.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_config(result[key], value)
            else:
                result[key] = value
        return result

    # Skopeo configuration
    def get_skopeo_binary(self) -> str:
        """Get skopeo executable from environment or config"""
        return os.environ.get("SKOPEO_BINARY") or self.config["skopeo"]["binary"]

    def get_skopeo_tls_verify(self) -> bool:
        """Get whether skopeo verifies registry TLS certificates"""
        value = os.environ.get("SKOPEO_TLS_VERIFY")
        if value is None:
            value = self.config["skopeo"].get("tls_verify", True)
        return _parse_bool(value, "skopeo.tls_verify")

    def get_skopeo_timeout(self) -> int:
        """Get timeout for skopeo calls, with type coercion"""
        timeout = os.environ.get("SKOPEO_TIMEOUT") or self.config["skopeo"].get("timeout", 300)
        try:
            return int(timeout)
        except (ValueError, TypeError):
            raise ConfigValidationError(
                f"skopeo.timeout must be an integer, got: {timeout} (type: {type(timeout).__name__})"
            )

    # Azure configuration
    def get_azure_token_scope(self) -> str:
        """Get the AAD scope requested for managed identity tokens"""
        return os.environ.get("AZURE_TOKEN_SCOPE") or self.config["azure"]["token_scope"]

    def get_azure_exchange_timeout(self) -> float:
        """Get timeout for the ACR token exchange, with type coercion"""
        timeout = self.config["azure"].get("exchange_timeout", 30)
        try:
            return float(timeout)
        except (ValueError, TypeError):
            raise ConfigValidationError(
                f"azure.exchange_timeout must be a number, got: {timeout} (type: {type(timeout).__name__})"
            )

    # Credentials
    def get_credentials(self) -> List[Any]:
        """Get serialized registry credentials.

        REGISTRY_CREDENTIALS (a JSON list) replaces the config list. Entries
        are JSON strings or mappings with the credential blob keys; they are
        classified by the caller.
        """
        raw = os.environ.get("REGISTRY_CREDENTIALS")
        if raw:
            try:
                credentials = json.loads(raw)
            except ValueError as e:
                raise ConfigValidationError(f"REGISTRY_CREDENTIALS must be a JSON list: {e}")
        else:
            credentials = self.config.get("credentials") or []

        if not isinstance(credentials, list):
            raise ConfigValidationError(
                f"credentials must be a list, got: {type(credentials).__name__}"
            )
        return credentials

    # Logging
    def get_log_level(self) -> str:
        return (os.environ.get("LOG_LEVEL") or self.config.get("logging", {}).get("level", "INFO")).upper()

    def validate_config(self) -> None:
        """Validate configuration values

        Raises:
            ConfigValidationError: If configuration is invalid
        """
        errors = []
        warnings = []

        binary = self.get_skopeo_binary()
        if not binary or not str(binary).strip():
            errors.append("skopeo.binary is required and cannot be empty")

        try:
            self.get_skopeo_tls_verify()
        except ConfigValidationError as e:
            errors.append(str(e))

        try:
            timeout = self.get_skopeo_timeout()
            if timeout < 1:
                errors.append(f"skopeo.timeout must be a positive integer (seconds), got: {timeout}")
            elif timeout > 3600:
                warnings.append(f"skopeo.timeout is very high ({timeout}s), resolutions may hang for a long time")
        except ConfigValidationError as e:
            errors.append(str(e))

        scope = self.get_azure_token_scope()
        if not self._is_valid_scope(scope):
            errors.append(f"azure.token_scope '{scope}' must be an https URL ending in /.default")

        try:
            exchange_timeout = self.get_azure_exchange_timeout()
            if exchange_timeout <= 0:
                errors.append(f"azure.exchange_timeout must be positive, got: {exchange_timeout}")
        except ConfigValidationError as e:
            errors.append(str(e))

        try:
            self.get_credentials()
        except ConfigValidationError as e:
            errors.append(str(e))

        if self.get_log_level() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            errors.append(f"logging.level '{self.get_log_level()}' is not a valid log level")

        # Log warnings
        for warning in warnings:
            logging.warning(f"Configuration warning: {warning}")

        # Raise error if there are validation errors
        if errors:
            error_msg = "Configuration validation failed:\n  " + "\n  ".join(errors)
            logging.error(error_msg)
            raise ConfigValidationError(error_msg)

    def _is_valid_scope(self, scope: str) -> bool:
        """Validate AAD scope format"""
        if not scope:
            return False
        return bool(re.match(r"^https://[^\s/]+(/[^\s]*)?/\.default$", scope))

    def print_config(self):
        """Print current configuration"""
        print("Current Configuration:")
        print(f"  Skopeo Binary: {self.get_skopeo_binary()}")
        print(f"  TLS Verify: {self.get_skopeo_tls_verify()}")
        print(f"  Timeout: {self.get_skopeo_timeout()}")
        print(f"  Azure Token Scope: {self.get_azure_token_scope()}")
        print(f"  Configured Credentials: {len(self.get_credentials())}")
        print(f"  Log Level: {self.get_log_level()}")


# Global config manager instance
# Validation can be disabled by setting SKIP_CONFIG_VALIDATION=true environment variable
# This is useful for testing or when you know the config is valid
config_manager = ConfigManager(
    validate=os.environ.get("SKIP_CONFIG_VALIDATION", "").lower() not in ("true", "1", "yes")
)
