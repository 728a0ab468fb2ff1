"""Local filesystem hosting for user-registered custom domains."""

import shutil
from pathlib import Path

import structlog

from site_spine.errors import ConfigError, PublishError, RemoveError
from site_spine.models import Credential, Destination, Platform
from site_spine.providers.base import INDEX_FILE, PublishResult, StorageProvider, config_errors_as

logger = structlog.get_logger()


class LocalDomainProvider(StorageProvider):
    """
    Writes artifacts to ``{base_path}/{domain}/{slug}/index.html``.

    The web server in front of ``base_path`` serves each domain directory,
    so the public URL is ``https://{domain}/{slug}/``.
    """

    platform = Platform.CUSTOM_DOMAIN

    def __init__(self, base_path: str | Path = "/var/www"):
        self.base_path = Path(base_path).resolve()

    def _site_dir(self, destination: Destination, slug: str) -> tuple[str, Path]:
        domain = (destination.domain_name or "").strip().lower()
        if not domain:
            raise ConfigError("Custom domain hosting requires a domain name", slug=slug)

        site_dir = (self.base_path / domain / slug).resolve()

        # Security: ensure path is within base_path and below the domain directory
        try:
            relative = site_dir.relative_to(self.base_path)
        except ValueError:
            raise ConfigError(f"Invalid path: {domain}/{slug} (outside base directory)")
        if len(relative.parts) != 2:
            raise ConfigError(f"Invalid domain or slug: {domain}/{slug}")

        return domain, site_dir

    def publish(
        self,
        html: str,
        slug: str,
        credential: Credential | None,
        destination: Destination,
        site_id: str | None = None,
    ) -> PublishResult:
        with config_errors_as(PublishError, self.platform, slug):
            domain, site_dir = self._site_dir(destination, slug)
        index_path = site_dir / INDEX_FILE

        try:
            site_dir.mkdir(parents=True, exist_ok=True)
            index_path.write_text(html, encoding="utf-8")
        except OSError as e:
            raise PublishError(
                f"Writing {index_path} failed: {e}",
                platform=self.platform.value,
                slug=slug,
                code=type(e).__name__,
                cause=e,
            ) from e

        logger.info("local_site_written", domain=domain, slug=slug, size=len(html))
        return PublishResult(url=f"https://{domain}/{slug}/", key=str(index_path))

    def remove(
        self,
        slug: str,
        credential: Credential | None,
        destination: Destination,
        site_id: str | None = None,
    ) -> bool:
        """Delete the slug directory. Already-absent directories are not an error."""
        with config_errors_as(RemoveError, self.platform, slug):
            domain, site_dir = self._site_dir(destination, slug)

        if not site_dir.exists():
            return False

        try:
            shutil.rmtree(site_dir)
        except FileNotFoundError:
            return False
        except OSError as e:
            raise RemoveError(
                f"Removing {site_dir} failed: {e}",
                platform=self.platform.value,
                slug=slug,
                code=type(e).__name__,
                cause=e,
            ) from e

        logger.info("local_site_deleted", domain=domain, slug=slug)
        return True
