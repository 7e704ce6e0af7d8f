"""
Configuration module for Paranoia Toolkit.

Provides the process-wide soft delete configuration (which field stores the
deletion timestamp and which named scope selects deleted records) and the
settings used to pick the default storage backend.
"""

import os
from enum import Enum
from typing import Any, Callable, ClassVar, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator


class StorageBackend(str, Enum):
    """Supported storage backends for documents."""

    MEMORY = "memory"
    SQL = "sql"
    MONGO = "mongo"


class ParanoiaConfiguration(BaseModel):
    """Soft delete configuration.

    One instance lives at process level (see :func:`get_configuration`). Every
    paranoid document type takes its own copy when it is defined, so later
    changes to the global instance never leak into types that already exist.

    Example:
        >>> from paranoia_toolkit import configure
        >>> configure(lambda c: setattr(c, "paranoid_field", "archived_at"))

    Environment Variables:
        - PARANOIA_PARANOID_FIELD
        - PARANOIA_PARANOID_SCOPE

    Note:
        Configuration is meant to be changed while types are being defined,
        not while requests are being served. Nothing here is locked.
    """

    model_config = ConfigDict(validate_assignment=True)

    DEFAULT_PARANOID_FIELD: ClassVar[str] = "deleted_at"
    DEFAULT_PARANOID_SCOPE: ClassVar[str] = "deleted"

    paranoid_field: str = Field(
        DEFAULT_PARANOID_FIELD, description="Field holding the deletion timestamp"
    )
    paranoid_scope: str = Field(
        DEFAULT_PARANOID_SCOPE, description="Name of the scope selecting deleted records"
    )

    @field_validator("paranoid_field", "paranoid_scope")
    @classmethod
    def validate_identifier(cls, v: str) -> str:
        """Ensure names can be used as document keys and scope names."""
        v = v.strip()
        if not v.isidentifier():
            raise ValueError(f"'{v}' is not a valid field or scope name")
        return v

    def copy_for_type(self) -> "ParanoiaConfiguration":
        """Return an independent copy for a single document type."""
        return self.model_copy()

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return self.model_dump()

    @classmethod
    def from_env(cls, prefix: str = "PARANOIA_") -> "ParanoiaConfiguration":
        """
        Load configuration from environment variables.

        Args:
            prefix: Prefix for environment variables

        Returns:
            Configuration instance
        """
        config_dict: Dict[str, Any] = {}
        for field_name in cls.model_fields:
            env_var = f"{prefix}{field_name.upper()}"
            if env_var in os.environ:
                config_dict[field_name] = os.environ[env_var]
        return cls.model_validate(config_dict)


class StorageSettings(BaseModel):
    """Settings for the default document database."""

    backend: StorageBackend = Field(
        StorageBackend.MEMORY, description="Storage backend for documents"
    )
    database_url: Optional[str] = Field(
        None,
        description="Connection string; defaults to in-memory SQLite or a local MongoDB",
    )
    database_name: str = Field(
        "paranoia", description="Database name for the MongoDB backends"
    )

    @classmethod
    def from_env(cls, prefix: str = "PARANOIA_") -> "StorageSettings":
        """Load storage settings from PARANOIA_BACKEND, PARANOIA_DATABASE_URL and
        PARANOIA_DATABASE_NAME."""
        settings: Dict[str, Any] = {}
        if f"{prefix}BACKEND" in os.environ:
            settings["backend"] = StorageBackend(os.environ[f"{prefix}BACKEND"].lower())
        if f"{prefix}DATABASE_URL" in os.environ:
            settings["database_url"] = os.environ[f"{prefix}DATABASE_URL"]
        if f"{prefix}DATABASE_NAME" in os.environ:
            settings["database_name"] = os.environ[f"{prefix}DATABASE_NAME"]
        return cls.model_validate(settings)


# Global configuration instance
_configuration: Optional[ParanoiaConfiguration] = None


def get_configuration() -> ParanoiaConfiguration:
    """
    Get the global configuration instance.

    Returns:
        Global configuration
    """
    global _configuration

    if _configuration is None:
        # Try to load from environment first
        try:
            _configuration = ParanoiaConfiguration.from_env()
        except ValidationError:
            _configuration = ParanoiaConfiguration()

    return _configuration


def set_configuration(configuration: ParanoiaConfiguration) -> None:
    """
    Set the global configuration instance.

    Args:
        configuration: Configuration to install
    """
    global _configuration
    _configuration = configuration


def reset_configuration() -> ParanoiaConfiguration:
    """Replace the global configuration with a fresh default instance."""
    global _configuration
    _configuration = ParanoiaConfiguration()
    return _configuration


def configure(
    mutator: Callable[[ParanoiaConfiguration], Any]
) -> ParanoiaConfiguration:
    """
    Change the global configuration in place.

    Args:
        mutator: Called with the current configuration

    Returns:
        The (mutated) global configuration

    Example:
        >>> def use_archive(config):
        ...     config.paranoid_field = "archived_at"
        ...     config.paranoid_scope = "archived"
        >>> configure(use_archive)
    """
    configuration = get_configuration()
    mutator(configuration)
    return configuration
