"""Tests for local custom-domain hosting."""

import pytest

from site_spine.errors import ConfigError, PublishError, RemoveError
from site_spine.models import Destination
from site_spine.providers import LocalDomainProvider


class TestLocalDomainProvider:
    """Tests for LocalDomainProvider."""

    def test_publish_writes_index(self, tmp_path):
        """Publishing writes domain/slug/index.html and returns the domain URL."""
        provider = LocalDomainProvider(tmp_path)

        result = provider.publish("<html>hi</html>", "shop", None, Destination(domain_name="Example.COM"))

        index = tmp_path / "example.com" / "shop" / "index.html"
        assert index.read_text(encoding="utf-8") == "<html>hi</html>"
        assert result.url == "https://example.com/shop/"

    def test_publish_overwrites(self, tmp_path):
        """A second publish replaces the file at the same path."""
        provider = LocalDomainProvider(tmp_path)
        destination = Destination(domain_name="example.com")

        provider.publish("v1", "shop", None, destination)
        provider.publish("v2", "shop", None, destination)

        assert (tmp_path / "example.com" / "shop" / "index.html").read_text(encoding="utf-8") == "v2"

    def test_remove_is_idempotent(self, tmp_path):
        """Removing twice succeeds; the second call reports nothing removed."""
        provider = LocalDomainProvider(tmp_path)
        destination = Destination(domain_name="example.com")
        provider.publish("x", "shop", None, destination)

        assert provider.remove("shop", None, destination) is True
        assert not (tmp_path / "example.com" / "shop").exists()
        assert provider.remove("shop", None, destination) is False

    def test_requires_domain(self, tmp_path):
        """A destination without a domain fails the publish."""
        with pytest.raises(PublishError) as exc_info:
            LocalDomainProvider(tmp_path).publish("x", "shop", None, Destination())

        assert exc_info.value.code == "ConfigError"
        assert isinstance(exc_info.value.__cause__, ConfigError)

    @pytest.mark.parametrize(
        "domain,slug",
        [("example.com", "../../etc"), ("..", "shop"), ("example.com", "a/b")],
    )
    def test_rejects_path_traversal(self, tmp_path, domain, slug):
        """Paths that escape the domain directory are rejected."""
        provider = LocalDomainProvider(tmp_path / "www")

        with pytest.raises(PublishError):
            provider.publish("x", slug, None, Destination(domain_name=domain))
        with pytest.raises(RemoveError):
            provider.remove(slug, None, Destination(domain_name=domain))
        assert not (tmp_path / "etc").exists()
