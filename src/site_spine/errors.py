"""
Structured error types for the deployment pipeline.

Every error carries a category, a retryable flag, free-form context and an
optional chained cause, so workers can log failures with full detail and
the API layer can map them to status codes.

Synchronous errors (raised before any job exists):
    ValidationError, AuthorizationError

Job errors (terminal for the job, record goes to Failed):
    NotFoundError, CredentialError, GenerationError, PublishError

Best-effort errors (logged, never block record deletion):
    RemoveError
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    VALIDATION = "VALIDATION"
    AUTH = "AUTH"
    NOT_FOUND = "NOT_FOUND"
    GENERATION = "GENERATION"
    STORAGE = "STORAGE"
    CONFIG = "CONFIG"
    INTERNAL = "INTERNAL"


class SiteSpineError(Exception):
    """Base exception for all site-spine errors."""

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        cause: BaseException | None = None,
        **context: Any,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.cause = cause
        self.context: dict[str, Any] = {k: v for k, v in context.items() if v is not None}
        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> SiteSpineError:
        """Add context fields and return self for chaining."""
        self.context.update({k: v for k, v in kwargs.items() if v is not None})
        return self

    def to_dict(self) -> dict[str, Any]:
        """Serialize for structured logging and API responses."""
        data: dict[str, Any] = {
            "error_type": type(self).__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        if self.context:
            data["context"] = dict(self.context)
        if self.cause is not None:
            data["cause"] = f"{type(self.cause).__name__}: {self.cause}"
        return data

    def __str__(self) -> str:
        return self.message

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, category={self.category.value})"


class ValidationError(SiteSpineError):
    """Bad batch, bad row or bad request. Raised before any job is created."""

    default_category = ErrorCategory.VALIDATION

    def __init__(self, message: str, *, details: dict[str, Any] | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        if self.details:
            data["details"] = self.details
        return data


class AuthorizationError(SiteSpineError):
    """Principal does not own the resource."""

    default_category = ErrorCategory.AUTH


class NotFoundError(SiteSpineError):
    """A referenced campaign, template, credential or record does not exist."""

    default_category = ErrorCategory.NOT_FOUND

    def __init__(self, resource: str, resource_id: str | None, message: str | None = None, **kwargs: Any):
        super().__init__(
            message or f"{resource} with ID {resource_id} not found.",
            resource=resource,
            resource_id=resource_id,
            **kwargs,
        )
        self.resource = resource
        self.resource_id = resource_id


class CredentialError(NotFoundError):
    """Credential exists but its secrets are missing or could not be decrypted."""

    def __init__(self, credential_id: str | None, missing: list[str], **kwargs: Any):
        super().__init__(
            "Credential",
            credential_id,
            message=(
                f"Credential {credential_id} is missing required secret fields: "
                f"{', '.join(missing)}"
            ),
            missing=missing,
            **kwargs,
        )
        self.missing = missing


class GenerationError(SiteSpineError):
    """Text-generation backend failed or returned an unusable payload."""

    default_category = ErrorCategory.GENERATION


class StorageError(SiteSpineError):
    """Storage backend failure tagged with platform, slug and backend code."""

    default_category = ErrorCategory.STORAGE

    def __init__(
        self,
        message: str,
        *,
        platform: str,
        slug: str | None = None,
        code: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, platform=platform, slug=slug, code=code, **kwargs)
        self.platform = platform
        self.slug = slug
        self.code = code


class PublishError(StorageError):
    """
    Storage backend rejected or failed an upload.

    ``site_id`` is set when the backend created a site before the upload
    failed, so a retry can publish into that site instead of a new one.
    """

    def __init__(self, message: str, *, site_id: str | None = None, **kwargs: Any):
        super().__init__(message, site_id=site_id, **kwargs)
        self.site_id = site_id


class RemoveError(StorageError):
    """Storage backend failed to remove a published artifact."""


class ConfigError(SiteSpineError):
    """Missing or invalid configuration for a variant or service."""

    default_category = ErrorCategory.CONFIG
