"""Base storage provider interface."""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator

from site_spine.errors import ConfigError, StorageError
from site_spine.models import Credential, Destination, Platform

INDEX_FILE = "index.html"


@dataclass
class PublishResult:
    """Outcome of a successful publish."""

    url: str
    key: str | None = None
    site_id: str | None = None
    site_name: str | None = None


def object_key(slug: str, root_folder: str | None = None) -> str:
    """Build ``{root folder}/{slug}/index.html`` with stray slashes removed."""
    parts = [p.strip("/") for p in (root_folder or "", slug) if p and p.strip("/")]
    return "/".join([*parts, INDEX_FILE])


@contextmanager
def config_errors_as(
    error_cls: type[StorageError], platform: Platform, slug: str | None
) -> Iterator[None]:
    """Report a ConfigError raised while preparing a publish or remove as ``error_cls``."""
    try:
        yield
    except ConfigError as e:
        raise error_cls(
            e.message, platform=platform.value, slug=slug, code="ConfigError", cause=e
        ) from e


class StorageProvider(ABC):
    """
    Abstract base class for publish targets.

    Providers never touch deployment records. They either return a
    PublishResult or raise PublishError / RemoveError with platform, slug
    and backend error code attached.
    """

    platform: Platform

    # Secret fields that must decrypt to a non-empty value before any call
    required_secrets: tuple[str, ...] = ()

    @abstractmethod
    def publish(
        self,
        html: str,
        slug: str,
        credential: Credential | None,
        destination: Destination,
        site_id: str | None = None,
    ) -> PublishResult:
        """
        Publish an artifact.

        Args:
            html: Final document body
            slug: Target path segment / site name
            credential: Opened (decrypted) credential, None for variants without one
            destination: Bucket / root folder / domain selection
            site_id: Provider-side identifier from an earlier publish, for redeploys

        Returns:
            PublishResult with the public URL
        """
        ...

    @abstractmethod
    def remove(
        self,
        slug: str,
        credential: Credential | None,
        destination: Destination,
        site_id: str | None = None,
    ) -> bool:
        """
        Remove a published artifact.

        Returns:
            True if something was removed, False if it was already absent
        """
        ...

    def list_buckets(self, credential: Credential) -> list[str]:
        """List buckets visible to the credential."""
        raise NotImplementedError(f"{self.platform.value} does not support bucket discovery")

    def list_prefixes(self, credential: Credential, bucket: str, prefix: str = "") -> list[str]:
        """List folder-like prefixes one level below ``prefix``."""
        raise NotImplementedError(f"{self.platform.value} does not support prefix discovery")

    def missing_secrets(self, credential: Credential | None) -> list[str]:
        """Names of required secret fields that are empty on an opened credential."""
        if not self.required_secrets:
            return []
        if credential is None:
            return list(self.required_secrets)
        return [name for name in self.required_secrets if not getattr(credential, name)]
