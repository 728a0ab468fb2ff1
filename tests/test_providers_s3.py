"""Tests for the S3-compatible provider."""

from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from site_spine.errors import ConfigError, PublishError, RemoveError
from site_spine.models import Credential, Destination, Platform
from site_spine.providers import S3Provider, object_key
from site_spine.providers.s3 import resolve_target


def _credential(platform=Platform.AWS_S3, **overrides) -> Credential:
    values = {"region": "us-east-1", "access_key": "ak", "secret_key": "sk"}
    values.update(overrides)
    return Credential(user_id="u", name="c", platform=platform, **values)


def _client_error(code: str, operation: str = "PutObject") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


@pytest.fixture
def s3_client():
    return MagicMock()


@pytest.fixture
def client_factory(s3_client):
    return MagicMock(return_value=s3_client)


class TestObjectKey:
    """Tests for object key construction."""

    def test_with_root_folder(self):
        """Root folder, slug and index.html are joined without stray slashes."""
        assert object_key("shop", "/promo/") == "promo/shop/index.html"

    def test_without_root_folder(self):
        """Missing root folder puts the slug at the bucket root."""
        assert object_key("shop", None) == "shop/index.html"
        assert object_key("shop", "") == "shop/index.html"


class TestResolveTarget:
    """Tests for per-variant endpoints and public URLs."""

    def test_aws(self):
        """AWS uses the default endpoint and virtual-hosted URLs."""
        target = resolve_target(Platform.AWS_S3, _credential(), "sites")

        assert target.endpoint_url is None
        assert target.public_base == "https://sites.s3.us-east-1.amazonaws.com"

    def test_digital_ocean(self):
        """DigitalOcean Spaces uses the regional endpoint."""
        target = resolve_target(Platform.DIGITAL_OCEAN, _credential(region="nyc3"), "sites")

        assert target.endpoint_url == "https://nyc3.digitaloceanspaces.com"
        assert target.public_base == "https://sites.nyc3.digitaloceanspaces.com"

    def test_backblaze(self):
        """Backblaze B2 uses its S3 endpoint."""
        target = resolve_target(Platform.BACKBLAZE, _credential(region="us-west-004"), "sites")

        assert target.endpoint_url == "https://s3.us-west-004.backblazeb2.com"
        assert target.public_base == "https://sites.s3.us-west-004.backblazeb2.com"

    def test_r2_with_cdn(self):
        """R2 uses the account endpoint and the configured CDN for public URLs."""
        credential = _credential(region=None, account_id="acct", cdn_url="https://cdn.example.com/")

        target = resolve_target(Platform.CLOUDFLARE_R2, credential, "sites")

        assert target.region == "auto"
        assert target.endpoint_url == "https://acct.r2.cloudflarestorage.com"
        assert target.public_base == "https://cdn.example.com"

    def test_r2_without_cdn_falls_back(self):
        """Without a CDN URL the endpoint URL is used."""
        target = resolve_target(
            Platform.CLOUDFLARE_R2, _credential(region=None, account_id="acct"), "sites"
        )

        assert target.public_base == "https://acct.r2.cloudflarestorage.com/sites"

    def test_r2_requires_account_id(self):
        """R2 without an account id is a configuration error."""
        with pytest.raises(ConfigError):
            resolve_target(Platform.CLOUDFLARE_R2, _credential(account_id=None), "sites")

    def test_region_required(self):
        """Region-based variants reject a blank region."""
        with pytest.raises(ConfigError):
            resolve_target(Platform.AWS_S3, _credential(region=" "), "sites")


class TestS3Provider:
    """Tests for publish / remove / discovery with a mocked client."""

    def test_publish_aws(self, client_factory, s3_client):
        """AWS upload is public-read HTML at the slug key."""
        provider = S3Provider(Platform.AWS_S3, client_factory=client_factory)

        result = provider.publish(
            "<html>x</html>", "shop", _credential(), Destination(bucket_name="sites", root_folder="promo")
        )

        assert result.url == "https://sites.s3.us-east-1.amazonaws.com/promo/shop/index.html"
        assert result.key == "promo/shop/index.html"
        s3_client.put_object.assert_called_once_with(
            Bucket="sites",
            Key="promo/shop/index.html",
            Body=b"<html>x</html>",
            ContentType="text/html; charset=utf-8",
            ACL="public-read",
        )
        kwargs = client_factory.call_args.kwargs
        assert kwargs["region_name"] == "us-east-1"
        assert kwargs["aws_access_key_id"] == "ak"
        assert "endpoint_url" not in kwargs

    def test_publish_backblaze_has_no_acl(self, client_factory, s3_client):
        """Backblaze relies on bucket visibility, so no ACL is sent."""
        provider = S3Provider(Platform.BACKBLAZE, client_factory=client_factory)

        provider.publish("<p/>", "shop", _credential(region="us-west-004"), Destination(bucket_name="b"))

        assert "ACL" not in s3_client.put_object.call_args.kwargs
        assert client_factory.call_args.kwargs["endpoint_url"] == "https://s3.us-west-004.backblazeb2.com"

    def test_publish_r2(self, client_factory, s3_client):
        """R2 publishes through the account endpoint with region auto."""
        provider = S3Provider(Platform.CLOUDFLARE_R2, client_factory=client_factory)
        credential = _credential(region=None, account_id="acct", cdn_url="https://cdn.example.com")

        result = provider.publish("<p/>", "shop", credential, Destination(bucket_name="b"))

        assert result.url == "https://cdn.example.com/shop/index.html"
        assert client_factory.call_args.kwargs["region_name"] == "auto"
        assert "ACL" not in s3_client.put_object.call_args.kwargs

    def test_r2_requires_account_secret(self):
        """R2 needs the account id as a secret in addition to the key pair."""
        provider = S3Provider(Platform.CLOUDFLARE_R2)

        assert provider.missing_secrets(_credential(account_id="")) == ["account_id"]

    def test_publish_requires_bucket(self, client_factory, s3_client):
        """A blank bucket fails the publish with the configuration problem as its cause."""
        provider = S3Provider(Platform.AWS_S3, client_factory=client_factory)

        with pytest.raises(PublishError) as exc_info:
            provider.publish("<p/>", "shop", _credential(), Destination(bucket_name=" "))

        assert exc_info.value.code == "ConfigError"
        assert exc_info.value.slug == "shop"
        assert isinstance(exc_info.value.__cause__, ConfigError)
        s3_client.put_object.assert_not_called()

    def test_publish_without_region(self, client_factory):
        """A region-based variant without a region fails as a publish error."""
        provider = S3Provider(Platform.DIGITAL_OCEAN, client_factory=client_factory)

        with pytest.raises(PublishError) as exc_info:
            provider.publish("<p/>", "shop", _credential(region=""), Destination(bucket_name="sites"))

        assert exc_info.value.platform == "digital_ocean"
        assert exc_info.value.code == "ConfigError"

    def test_remove_without_credential(self, client_factory):
        """Removing without a credential is a remove error."""
        provider = S3Provider(Platform.AWS_S3, client_factory=client_factory)

        with pytest.raises(RemoveError) as exc_info:
            provider.remove("shop", None, Destination(bucket_name="sites"))

        assert exc_info.value.code == "ConfigError"

    def test_publish_client_error(self, client_factory, s3_client):
        """Backend errors become PublishError with the backend code."""
        s3_client.put_object.side_effect = _client_error("AccessDenied")
        provider = S3Provider(Platform.AWS_S3, client_factory=client_factory)

        with pytest.raises(PublishError) as exc_info:
            provider.publish("<p/>", "shop", _credential(), Destination(bucket_name="sites"))

        assert exc_info.value.code == "AccessDenied"
        assert exc_info.value.slug == "shop"
        assert exc_info.value.platform == "aws_s3"

    def test_remove(self, client_factory, s3_client):
        """Remove deletes the slug's index.html."""
        provider = S3Provider(Platform.AWS_S3, client_factory=client_factory)

        assert provider.remove("shop", _credential(), Destination(bucket_name="sites", root_folder="p"))
        s3_client.delete_object.assert_called_once_with(Bucket="sites", Key="p/shop/index.html")

    def test_remove_client_error(self, client_factory, s3_client):
        """Delete failures become RemoveError."""
        s3_client.delete_object.side_effect = _client_error("NoSuchBucket", "DeleteObject")
        provider = S3Provider(Platform.AWS_S3, client_factory=client_factory)

        with pytest.raises(RemoveError) as exc_info:
            provider.remove("shop", _credential(), Destination(bucket_name="sites"))

        assert exc_info.value.code == "NoSuchBucket"

    def test_list_buckets(self, client_factory, s3_client):
        """Bucket names are returned in order."""
        s3_client.list_buckets.return_value = {"Buckets": [{"Name": "a"}, {"Name": "b"}]}
        provider = S3Provider(Platform.AWS_S3, client_factory=client_factory)

        assert provider.list_buckets(_credential()) == ["a", "b"]

    def test_list_prefixes(self, client_factory, s3_client):
        """Common prefixes across pages are collected one level deep."""
        paginator = MagicMock()
        paginator.paginate.return_value = [
            {"CommonPrefixes": [{"Prefix": "promo/a/"}]},
            {"CommonPrefixes": [{"Prefix": "promo/b/"}]},
            {},
        ]
        s3_client.get_paginator.return_value = paginator
        provider = S3Provider(Platform.AWS_S3, client_factory=client_factory)

        prefixes = provider.list_prefixes(_credential(), "sites", "/promo")

        assert prefixes == ["promo/a/", "promo/b/"]
        paginator.paginate.assert_called_once_with(Bucket="sites", Prefix="promo/", Delimiter="/")

    def test_rejects_non_s3_platform(self):
        """Constructing for a non-S3 variant is a configuration error."""
        with pytest.raises(ConfigError):
            S3Provider(Platform.NETLIFY)
