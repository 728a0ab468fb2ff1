"""S3-compatible object storage provider (AWS, DigitalOcean Spaces, Backblaze B2, Cloudflare R2)."""

from dataclasses import dataclass
from typing import Any, Callable

import boto3
import structlog
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from site_spine.errors import ConfigError, PublishError, RemoveError
from site_spine.models import Credential, Destination, Platform
from site_spine.providers.base import PublishResult, StorageProvider, config_errors_as, object_key

logger = structlog.get_logger()

R2_REGION = "auto"


@dataclass(frozen=True)
class S3Target:
    """Resolved connection details for one variant + credential."""

    region: str
    endpoint_url: str | None
    public_base: str


def resolve_target(platform: Platform, credential: Credential, bucket: str) -> S3Target:
    """
    Build region, endpoint and public URL base for a variant.

    Raises:
        ConfigError: region / account id missing for the variant
    """
    region = (credential.region or "").strip()

    if platform is Platform.CLOUDFLARE_R2:
        account_id = (credential.account_id or "").strip()
        if not account_id:
            raise ConfigError("Cloudflare R2 requires an account ID", platform=platform.value)
        endpoint = f"https://{account_id}.r2.cloudflarestorage.com"
        cdn_url = (credential.cdn_url or "").strip().rstrip("/")
        if cdn_url:
            public_base = cdn_url
        else:
            logger.warning(
                "r2_cdn_url_missing",
                credential_id=credential.id,
                message="falling back to non-public R2 endpoint URL",
            )
            public_base = f"{endpoint}/{bucket}"
        return S3Target(region=R2_REGION, endpoint_url=endpoint, public_base=public_base)

    if not region:
        raise ConfigError(f"{platform.value} requires a region", platform=platform.value)

    if platform is Platform.AWS_S3:
        return S3Target(
            region=region,
            endpoint_url=None,
            public_base=f"https://{bucket}.s3.{region}.amazonaws.com",
        )
    if platform is Platform.DIGITAL_OCEAN:
        return S3Target(
            region=region,
            endpoint_url=f"https://{region}.digitaloceanspaces.com",
            public_base=f"https://{bucket}.{region}.digitaloceanspaces.com",
        )
    if platform is Platform.BACKBLAZE:
        return S3Target(
            region=region,
            endpoint_url=f"https://s3.{region}.backblazeb2.com",
            public_base=f"https://{bucket}.s3.{region}.backblazeb2.com",
        )

    raise ConfigError(f"{platform.value} is not an S3-compatible platform", platform=platform.value)


def _error_code(error: Exception) -> str:
    if isinstance(error, ClientError):
        return error.response.get("Error", {}).get("Code", "Unknown")
    return type(error).__name__


class S3Provider(StorageProvider):
    """
    S3-compatible object storage provider.

    Objects are written to ``{root folder}/{slug}/index.html`` in the
    destination bucket. AWS and DigitalOcean objects are uploaded with a
    public-read ACL; Backblaze and R2 rely on bucket-level visibility.
    """

    required_secrets = ("access_key", "secret_key")
    _ACL_PLATFORMS = frozenset({Platform.AWS_S3, Platform.DIGITAL_OCEAN})

    def __init__(
        self,
        platform: Platform,
        timeout: float = 30.0,
        client_factory: Callable[..., Any] | None = None,
    ):
        if not platform.is_s3_compatible:
            raise ConfigError(f"{platform.value} is not an S3-compatible platform")
        self.platform = platform
        self.timeout = timeout
        self._client_factory = client_factory or boto3.client
        if platform is Platform.CLOUDFLARE_R2:
            self.required_secrets = ("access_key", "secret_key", "account_id")

    def _client(self, credential: Credential, target: S3Target):
        client_kwargs: dict[str, Any] = {
            "service_name": "s3",
            "region_name": target.region,
            "aws_access_key_id": credential.access_key,
            "aws_secret_access_key": credential.secret_key,
            "config": Config(
                signature_version="s3v4",
                connect_timeout=self.timeout,
                read_timeout=self.timeout,
                retries={"mode": "standard", "total_max_attempts": 1},
            ),
        }
        if target.endpoint_url:
            client_kwargs["endpoint_url"] = target.endpoint_url
        return self._client_factory(**client_kwargs)

    def _bucket(self, destination: Destination, slug: str | None) -> str:
        bucket = (destination.bucket_name or "").strip()
        if not bucket:
            raise ConfigError(
                f"{self.platform.value} publish requires a bucket name",
                platform=self.platform.value,
                slug=slug,
            )
        return bucket

    def publish(
        self,
        html: str,
        slug: str,
        credential: Credential | None,
        destination: Destination,
        site_id: str | None = None,
    ) -> PublishResult:
        """Upload the artifact as ``index.html`` under the slug folder."""
        with config_errors_as(PublishError, self.platform, slug):
            if credential is None:
                raise ConfigError(f"{self.platform.value} publish requires a credential")
            bucket = self._bucket(destination, slug)
            target = resolve_target(self.platform, credential, bucket)
        key = object_key(slug, destination.root_folder)

        extra_args: dict[str, Any] = {}
        if self.platform in self._ACL_PLATFORMS:
            extra_args["ACL"] = "public-read"

        try:
            self._client(credential, target).put_object(
                Bucket=bucket,
                Key=key,
                Body=html.encode("utf-8"),
                ContentType="text/html; charset=utf-8",
                **extra_args,
            )
        except (ClientError, BotoCoreError) as e:
            code = _error_code(e)
            logger.error(
                "s3_publish_failed",
                platform=self.platform.value,
                bucket=bucket,
                key=key,
                code=code,
            )
            raise PublishError(
                f"Upload to {self.platform.value} bucket {bucket} failed: {e}",
                platform=self.platform.value,
                slug=slug,
                code=code,
                cause=e,
            ) from e

        url = f"{target.public_base}/{key}"
        logger.info("s3_file_published", platform=self.platform.value, bucket=bucket, key=key)
        return PublishResult(url=url, key=key)

    def remove(
        self,
        slug: str,
        credential: Credential | None,
        destination: Destination,
        site_id: str | None = None,
    ) -> bool:
        """Delete the slug's ``index.html``. S3 deletes of absent keys succeed."""
        with config_errors_as(RemoveError, self.platform, slug):
            if credential is None:
                raise ConfigError(f"{self.platform.value} remove requires a credential")
            bucket = self._bucket(destination, slug)
            target = resolve_target(self.platform, credential, bucket)
        key = object_key(slug, destination.root_folder)

        try:
            self._client(credential, target).delete_object(Bucket=bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            raise RemoveError(
                f"Delete from {self.platform.value} bucket {bucket} failed: {e}",
                platform=self.platform.value,
                slug=slug,
                code=_error_code(e),
                cause=e,
            ) from e

        logger.info("s3_file_deleted", platform=self.platform.value, bucket=bucket, key=key)
        return True

    def list_buckets(self, credential: Credential) -> list[str]:
        target = resolve_target(self.platform, credential, bucket="")
        try:
            response = self._client(credential, target).list_buckets()
        except (ClientError, BotoCoreError) as e:
            raise PublishError(
                f"Listing buckets on {self.platform.value} failed: {e}",
                platform=self.platform.value,
                code=_error_code(e),
                cause=e,
            ) from e
        return [b["Name"] for b in response.get("Buckets", [])]

    def list_prefixes(self, credential: Credential, bucket: str, prefix: str = "") -> list[str]:
        prefix = prefix.lstrip("/")
        if prefix and not prefix.endswith("/"):
            prefix += "/"

        target = resolve_target(self.platform, credential, bucket)
        client = self._client(credential, target)
        paginator = client.get_paginator("list_objects_v2")

        prefixes: list[str] = []
        try:
            for page in paginator.paginate(Bucket=bucket, Prefix=prefix, Delimiter="/"):
                for entry in page.get("CommonPrefixes", []):
                    prefixes.append(entry["Prefix"])
        except (ClientError, BotoCoreError) as e:
            raise PublishError(
                f"Listing prefixes in {bucket} on {self.platform.value} failed: {e}",
                platform=self.platform.value,
                code=_error_code(e),
                cause=e,
            ) from e
        return prefixes
