"""Netlify managed static hosting provider."""

import io
import random
import zipfile

import httpx
import structlog

from site_spine.errors import ConfigError, PublishError, RemoveError
from site_spine.models import Credential, Destination, Platform
from site_spine.providers.base import INDEX_FILE, PublishResult, StorageProvider, config_errors_as

logger = structlog.get_logger()

NAME_TAKEN_STATUS = 422

HEADERS_FILE = """/*
  Content-Type: text/html; charset=utf-8

/*.html
  Content-Type: text/html; charset=utf-8

/*.css
  Content-Type: text/css; charset=utf-8

/*.js
  Content-Type: application/javascript; charset=utf-8
"""

NETLIFY_TOML = """[build]
  publish = "."

[[headers]]
  for = "/*"
  [headers.values]
    Content-Type = "text/html; charset=utf-8"

[[headers]]
  for = "/*.html"
  [headers.values]
    Content-Type = "text/html; charset=utf-8"

[[headers]]
  for = "/*.css"
  [headers.values]
    Content-Type = "text/css; charset=utf-8"

[[headers]]
  for = "/*.js"
  [headers.values]
    Content-Type = "application/javascript; charset=utf-8"

[[headers]]
  for = "/*.xml"
  [headers.values]
    Content-Type = "application/xml; charset=utf-8"
"""


def build_bundle(html: str) -> bytes:
    """Zip the artifact together with the MIME-type configuration files."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as bundle:
        bundle.writestr(INDEX_FILE, html)
        bundle.writestr("_headers", HEADERS_FILE)
        bundle.writestr("netlify.toml", NETLIFY_TOML)
    return buffer.getvalue()


def site_url(name: str) -> str:
    return f"https://{name}.netlify.app"


class NetlifyProvider(StorageProvider):
    """
    Two-phase publish to Netlify.

    1. Create a site named after the slug. If the name is taken, retry once
       with a random numeric suffix.
    2. Upload a zip bundle as one atomic deploy.

    A publish with a known ``site_id`` skips phase 1 and redeploys into the
    existing site so the URL does not change.
    """

    platform = Platform.NETLIFY
    required_secrets = ("netlify_access_token",)

    def __init__(
        self,
        base_url: str = "https://api.netlify.com/api/v1",
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
        rng: random.Random | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._rng = rng or random.Random()

    def _client(self, credential: Credential | None) -> httpx.Client:
        if credential is None or not credential.netlify_access_token:
            raise ConfigError("Netlify requires an access token", platform=self.platform.value)
        return httpx.Client(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self._transport,
            headers={"Authorization": f"Bearer {credential.netlify_access_token}"},
        )

    def _fail(
        self, message: str, slug: str, error: Exception, site_id: str | None = None
    ) -> PublishError:
        code = None
        if isinstance(error, httpx.HTTPStatusError):
            code = str(error.response.status_code)
        logger.error("netlify_publish_failed", slug=slug, site_id=site_id, code=code, error=str(error))
        return PublishError(
            message, platform=self.platform.value, slug=slug, code=code, site_id=site_id, cause=error
        )

    def _create_site(self, client: httpx.Client, slug: str) -> tuple[str, str]:
        """Create the site, retrying once with a random suffix on a name collision."""
        name = slug
        response = client.post("/sites", json={"name": name})

        if response.status_code == NAME_TAKEN_STATUS:
            suffix = self._rng.randint(100, 9099)
            name = f"{slug}-{suffix}"
            logger.info("netlify_site_name_taken", slug=slug, retry_name=name)
            response = client.post("/sites", json={"name": name})

        response.raise_for_status()
        data = response.json()
        return data["id"], data.get("name") or name

    def _site_name(self, client: httpx.Client, site_id: str) -> str | None:
        """Name of an existing site, None if it was deleted."""
        response = client.get(f"/sites/{site_id}")
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return response.json()["name"]

    def publish(
        self,
        html: str,
        slug: str,
        credential: Credential | None,
        destination: Destination,
        site_id: str | None = None,
    ) -> PublishResult:
        with config_errors_as(PublishError, self.platform, slug):
            client = self._client(credential)

        with client:
            try:
                name = self._site_name(client, site_id) if site_id else None
                if name:
                    logger.info("netlify_site_reused", site_id=site_id, name=name)
                else:
                    if site_id:
                        logger.warning("netlify_site_missing", site_id=site_id, slug=slug)
                    site_id, name = self._create_site(client, slug)
                    logger.info("netlify_site_created", site_id=site_id, name=name)
            except (httpx.HTTPError, KeyError, ValueError) as e:
                raise self._fail(f"Failed to create Netlify site for {slug}: {e}", slug, e) from e

            try:
                response = client.post(
                    f"/sites/{site_id}/deploys",
                    content=build_bundle(html),
                    headers={"Content-Type": "application/zip"},
                )
                response.raise_for_status()
            except httpx.HTTPError as e:
                raise self._fail(
                    f"Failed to deploy content to Netlify site {site_id}: {e}", slug, e, site_id=site_id
                ) from e

        url = site_url(name)
        logger.info("netlify_deployed", site_id=site_id, url=url)
        return PublishResult(url=url, site_id=site_id, site_name=name)

    def remove(
        self,
        slug: str,
        credential: Credential | None,
        destination: Destination,
        site_id: str | None = None,
    ) -> bool:
        """Delete the whole site. A site that no longer exists counts as removed."""
        if not site_id:
            logger.warning("netlify_remove_without_site_id", slug=slug)
            return False

        with config_errors_as(RemoveError, self.platform, slug):
            client = self._client(credential)

        with client:
            try:
                response = client.delete(f"/sites/{site_id}")
                if response.status_code == 404:
                    return False
                response.raise_for_status()
            except httpx.HTTPError as e:
                code = str(e.response.status_code) if isinstance(e, httpx.HTTPStatusError) else None
                raise RemoveError(
                    f"Failed to delete Netlify site {site_id}: {e}",
                    platform=self.platform.value,
                    slug=slug,
                    code=code,
                    cause=e,
                ) from e

        logger.info("netlify_site_deleted", site_id=site_id, slug=slug)
        return True
