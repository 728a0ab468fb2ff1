"""Storage providers: one interface, a closed set of variants."""

from typing import assert_never

from site_spine.models import Platform
from site_spine.providers.base import PublishResult, StorageProvider, object_key
from site_spine.providers.local import LocalDomainProvider
from site_spine.providers.netlify import NetlifyProvider
from site_spine.providers.s3 import S3Provider

__all__ = [
    "StorageProvider",
    "PublishResult",
    "S3Provider",
    "NetlifyProvider",
    "LocalDomainProvider",
    "object_key",
    "get_provider",
]


def get_provider(platform: Platform | str) -> StorageProvider:
    """Create the provider for a platform tag, configured from settings."""
    from site_spine.config import get_settings

    settings = get_settings()
    platform = Platform(platform)

    match platform:
        case Platform.AWS_S3 | Platform.DIGITAL_OCEAN | Platform.BACKBLAZE | Platform.CLOUDFLARE_R2:
            return S3Provider(platform, timeout=settings.storage_timeout)
        case Platform.NETLIFY:
            return NetlifyProvider(
                base_url=settings.netlify_api_base_url,
                timeout=settings.storage_timeout,
            )
        case Platform.CUSTOM_DOMAIN:
            return LocalDomainProvider(base_path=settings.local_hosting_base_path)
        case _:
            assert_never(platform)
