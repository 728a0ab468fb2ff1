"""Tests for the HTTP API."""

import pytest
from fastapi.testclient import TestClient

from site_spine.api.deps import get_app_context
from site_spine.api.main import app
from site_spine.models import Credential, Domain, Platform

USER = {"X-User-Id": "user-1"}
OTHER = {"X-User-Id": "user-2"}


@pytest.fixture
def client(app_context):
    app.dependency_overrides[get_app_context] = lambda: app_context
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _start_payload(template, credential, rows=None, **platform_config):
    config = {
        "platform": "aws_s3",
        "credential_id": credential.id,
        "bucket_name": "sites",
        "root_folder": "promo",
    }
    config.update(platform_config)
    return {
        "campaign_name": "Spring",
        "template_id": template.id,
        "platform_config": config,
        "rows": rows
        if rows is not None
        else [
            {"name": "Alpha", "sub_domain": "alpha", "affiliate_url": "https://example.com/a"},
            {"name": "Beta", "sub_domain": "beta", "affiliate_url": ""},
        ],
    }


class TestHealth:
    """Tests for the health endpoint."""

    def test_health(self, client):
        """Health reports backend and queue counts."""
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["backend"] == "local"
        assert data["queue"]["queued"] == 0


class TestPrincipal:
    """Tests for the request principal."""

    def test_missing_user_header(self, client):
        """Endpoints that need a principal reject anonymous requests."""
        assert client.get("/credentials").status_code == 401
        assert client.get("/deployments").status_code == 401


class TestCredentials:
    """Tests for credential endpoints."""

    def test_create_stores_sealed_secrets(self, client, app_context, vault):
        """Secrets are encrypted at rest and never returned."""
        response = client.post(
            "/credentials",
            headers=USER,
            json={
                "name": "aws",
                "platform": "aws_s3",
                "region": "us-east-1",
                "access_key": "AKIA1",
                "secret_key": "SECRET1",
            },
        )

        assert response.status_code == 201
        data = response.json()
        assert "access_key" not in data
        assert "secret_key" not in data

        stored = app_context.repos.credentials.get(data["id"])
        assert stored.user_id == "user-1"
        assert stored.access_key != "AKIA1"
        assert vault.decrypt(stored.access_key) == "AKIA1"

    def test_create_missing_fields(self, client):
        """Missing platform fields are a 400 with details."""
        response = client.post(
            "/credentials", headers=USER, json={"name": "do", "platform": "digital_ocean"}
        )

        assert response.status_code == 400
        details = response.json()["detail"]["details"]
        assert set(details) == {"region", "access_key", "secret_key"}

    def test_create_r2_requires_account_id(self, client):
        """R2 credentials need the account id."""
        response = client.post(
            "/credentials",
            headers=USER,
            json={"name": "r2", "platform": "cloudflare_r2", "access_key": "a", "secret_key": "s"},
        )

        assert response.status_code == 400
        assert set(response.json()["detail"]["details"]) == {"account_id"}

    def test_list_is_scoped_to_user(self, client, credential):
        """Each user only sees their own credentials."""
        mine = client.get("/credentials", headers=USER).json()
        theirs = client.get("/credentials", headers=OTHER).json()

        assert [c["id"] for c in mine] == [credential.id]
        assert theirs == []

    def test_delete_foreign_credential(self, client, credential):
        """Deleting another user's credential is forbidden."""
        response = client.delete(f"/credentials/{credential.id}", headers=OTHER)

        assert response.status_code == 403
        assert response.json()["detail"]["category"] == "AUTH"

    def test_delete_unknown_credential(self, client):
        """Unknown credentials are 404."""
        assert client.delete("/credentials/nope", headers=USER).status_code == 404

    def test_list_buckets(self, client, credential, provider, monkeypatch):
        """Bucket discovery opens the credential and asks the provider."""
        monkeypatch.setattr("site_spine.api.main.get_provider", lambda platform: provider)

        response = client.get(f"/credentials/{credential.id}/buckets", headers=USER)

        assert response.status_code == 200
        assert response.json() == ["bucket-a", "bucket-b"]

    def test_list_prefixes(self, client, credential, provider, monkeypatch):
        """Prefix discovery passes bucket and prefix through."""
        monkeypatch.setattr("site_spine.api.main.get_provider", lambda platform: provider)

        response = client.get(
            f"/credentials/{credential.id}/prefixes",
            headers=USER,
            params={"bucket": "sites", "prefix": "promo/"},
        )

        assert response.status_code == 200
        assert response.json() == ["promo/sites/"]

    def test_bucket_discovery_not_supported_for_netlify(self, client, app_context, vault):
        """Netlify credentials have no buckets."""
        from site_spine.vault import seal_credential

        netlify = Credential(user_id="user-1", name="n", platform=Platform.NETLIFY, netlify_access_token="t")
        app_context.repos.credentials.add(seal_credential(netlify, vault))

        response = client.get(f"/credentials/{netlify.id}/buckets", headers=USER)

        assert response.status_code == 400


class TestDomains:
    """Tests for domain registration."""

    def test_register_and_list(self, client):
        """Registered domains are normalized and listed for their owner."""
        response = client.post("/domains", headers=USER, json={"domain": " Example.COM "})

        assert response.status_code == 201
        assert response.json()["domain"] == "example.com"
        assert [d["domain"] for d in client.get("/domains", headers=USER).json()] == ["example.com"]
        assert client.get("/domains", headers=OTHER).json() == []

    def test_duplicate_domain(self, client):
        """A domain can only be registered once."""
        client.post("/domains", headers=USER, json={"domain": "example.com"})

        response = client.post("/domains", headers=OTHER, json={"domain": "example.com"})

        assert response.status_code == 400

    def test_delete_domain(self, client, app_context):
        """Owners can delete their domains; others cannot."""
        domain = app_context.repos.domains.add(Domain(user_id="user-1", domain="example.com"))

        assert client.delete(f"/domains/{domain.id}", headers=OTHER).status_code == 403
        assert client.delete(f"/domains/{domain.id}", headers=USER).status_code == 200
        assert app_context.repos.domains.get(domain.id) is None


class TestCampaigns:
    """Tests for starting campaigns."""

    def test_start_campaign(self, client, app_context, template, credential):
        """A valid batch returns the launch summary and queues jobs."""
        response = client.post("/campaigns/start", headers=USER, json=_start_payload(template, credential))

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["queued"] == 1
        assert data["skipped"] == [
            {"index": 1, "reason": "missing_required_fields", "missing": ["affiliate_url"]}
        ]
        assert app_context.queue.stats()["queued"] == 1

        campaigns = client.get("/campaigns", headers=USER).json()
        assert [c["id"] for c in campaigns] == [data["campaign_id"]]
        assert campaigns[0]["status"] == "processing"

    def test_start_with_foreign_credential(self, client, template, credential):
        """Using another user's credential is forbidden."""
        response = client.post(
            "/campaigns/start", headers=OTHER, json=_start_payload(template, credential)
        )

        assert response.status_code == 403

    def test_start_with_unknown_template(self, client, template, credential):
        """An unknown template is 404."""
        payload = _start_payload(template, credential)
        payload["template_id"] = "nope"

        assert client.post("/campaigns/start", headers=USER, json=payload).status_code == 404

    def test_start_with_no_rows(self, client, template, credential):
        """An empty batch is a validation error."""
        response = client.post(
            "/campaigns/start", headers=USER, json=_start_payload(template, credential, rows=[])
        )

        assert response.status_code == 400
        assert "rows" in response.json()["detail"]["details"]

    def test_unknown_platform(self, client, template, credential):
        """Platforms outside the supported set are rejected by the request schema."""
        response = client.post(
            "/campaigns/start",
            headers=USER,
            json=_start_payload(template, credential, platform="ftp"),
        )

        assert response.status_code == 422


class TestDeployments:
    """Tests for deployment record endpoints."""

    @pytest.fixture
    def live_record(self, client, app_context, template, credential):
        client.post("/campaigns/start", headers=USER, json=_start_payload(template, credential))
        app_context.worker_pool(max_concurrent=2).run_until_idle(timeout=10)
        return app_context.repos.deployments.list_for_user("user-1")[0]

    def test_list_and_get(self, client, live_record):
        """Records are listed for their owner and fetched with their artifact."""
        listed = client.get("/deployments", headers=USER).json()
        assert [r["id"] for r in listed] == [live_record.id]
        assert listed[0]["status"] == "Live"
        assert "html_content" not in listed[0]

        detail = client.get(f"/deployments/{live_record.id}", headers=USER).json()
        assert detail["url"] == "https://cdn.test/alpha/index.html"
        assert "<head>" in detail["html_content"]

    def test_status_filter(self, client, live_record):
        """The status filter narrows the list."""
        assert client.get("/deployments", headers=USER, params={"status": "Failed"}).json() == []
        assert len(client.get("/deployments", headers=USER, params={"status": "Live"}).json()) == 1

    def test_get_foreign_record(self, client, live_record):
        """Another user's record is forbidden."""
        assert client.get(f"/deployments/{live_record.id}", headers=OTHER).status_code == 403

    def test_get_unknown_record(self, client):
        """Unknown records are 404."""
        assert client.get("/deployments/nope", headers=USER).status_code == 404

    def test_update_header(self, client, provider, live_record):
        """A header update republishes with the new snippet at the same URL."""
        response = client.put(
            f"/deployments/{live_record.id}/header",
            headers=USER,
            json={"header_code": "<script>track()</script>"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["header_code"] == "<script>track()</script>"
        assert data["url"] == live_record.url
        assert "<script>track()</script>\n</head>" in provider.published[-1]["html"]

    def test_redeploy(self, client, provider, live_record):
        """Redeploy republishes the stored artifact."""
        response = client.post(f"/deployments/{live_record.id}/redeploy", headers=USER)

        assert response.status_code == 200
        assert response.json()["status"] == "Live"
        assert provider.published[-1]["html"] == live_record.html_content

    def test_redeploy_publish_failure(self, client, provider, live_record):
        """A storage failure on redeploy maps to 502."""
        provider.fail_slugs.add("alpha")

        response = client.post(f"/deployments/{live_record.id}/redeploy", headers=USER)

        assert response.status_code == 502
        assert response.json()["detail"]["category"] == "STORAGE"

    def test_delete(self, client, app_context, provider, live_record):
        """Deleting removes the artifact and the record."""
        response = client.delete(f"/deployments/{live_record.id}", headers=USER)

        assert response.status_code == 200
        assert provider.removed == ["alpha"]
        assert app_context.repos.deployments.get(live_record.id) is None

    def test_dashboard_stats(self, client, live_record):
        """Dashboard counts the user's records by status."""
        data = client.get("/dashboard/stats", headers=USER).json()

        assert data["total_websites_live"] == 1
        assert data["total_deployments"] == 1
        assert data["by_status"] == {"Pending": 0, "Live": 1, "Failed": 0}

        other = client.get("/dashboard/stats", headers=OTHER).json()
        assert other["total_deployments"] == 0


class TestTemplates:
    """Tests for template listing."""

    def test_list_templates(self, client, template):
        """Templates are listed with their required fields."""
        data = client.get("/templates", headers=USER).json()

        assert [t["id"] for t in data] == [template.id]
        assert data[0]["required_fields"] == ["name", "sub_domain", "affiliate_url"]
