"""Tests for the PostgreSQL repository layer."""

import pytest

from site_spine.errors import ValidationError
from site_spine.models import (
    Campaign,
    CampaignStatus,
    Credential,
    DeploymentRecord,
    DeploymentStatus,
    Destination,
    Domain,
    Platform,
    PromptMode,
    Template,
)
from site_spine.repositories.postgres import (
    PostgresCampaignRepository,
    PostgresCredentialRepository,
    PostgresDeploymentRepository,
    PostgresDomainRepository,
    PostgresTemplateRepository,
)


def _record(job_id="job-1", user_id="user-1", slug="shop", **overrides) -> DeploymentRecord:
    return DeploymentRecord(
        user_id=user_id,
        campaign_id="camp-1",
        product_name="Shop",
        slug=slug,
        platform=Platform.AWS_S3,
        destination=Destination(bucket_name="sites", root_folder="promo"),
        credential_id="cred-1",
        job_id=job_id,
        **overrides,
    )


class TestCredentialRepository:
    """Tests for PostgresCredentialRepository."""

    def test_round_trip(self, db_conn, clean_tables):
        """Sealed fields and optional columns come back as stored."""
        repo = PostgresCredentialRepository()
        credential = repo.add(
            Credential(
                user_id="user-1",
                name="netlify",
                platform=Platform.NETLIFY,
                netlify_access_token="sealed-token",
                site_id="site-9",
            )
        )

        loaded = repo.get(credential.id)

        assert loaded.platform is Platform.NETLIFY
        assert loaded.netlify_access_token == "sealed-token"
        assert loaded.site_id == "site-9"
        assert loaded.access_key is None

    def test_list_and_delete(self, db_conn, clean_tables):
        repo = PostgresCredentialRepository()
        mine = repo.add(Credential(user_id="user-1", name="a", platform=Platform.AWS_S3))
        repo.add(Credential(user_id="user-2", name="b", platform=Platform.AWS_S3))

        assert [c.id for c in repo.list_for_user("user-1")] == [mine.id]
        assert repo.delete(mine.id) is True
        assert repo.delete(mine.id) is False
        assert repo.get(mine.id) is None


class TestTemplateRepository:
    """Tests for PostgresTemplateRepository."""

    def test_required_fields_round_trip(self, db_conn, clean_tables):
        """The required field list survives the JSONB column in order."""
        repo = PostgresTemplateRepository()
        template = repo.add(
            Template(
                name="Product page",
                system_prompt="Write about {name}",
                required_fields=["name", "sub_domain", "affiliate_url"],
                prompt_mode=PromptMode.STRUCTURED,
            )
        )

        loaded = repo.get(template.id)

        assert loaded.required_fields == ["name", "sub_domain", "affiliate_url"]
        assert loaded.prompt_mode is PromptMode.STRUCTURED
        assert [t.id for t in repo.list_all()] == [template.id]

    def test_missing(self, db_conn, clean_tables):
        assert PostgresTemplateRepository().get("nope") is None


class TestCampaignRepository:
    """Tests for PostgresCampaignRepository."""

    def test_destination_round_trip(self, db_conn, clean_tables):
        """The destination survives the JSONB column."""
        repo = PostgresCampaignRepository()
        campaign = repo.add(
            Campaign(
                user_id="user-1",
                name="Spring",
                platform=Platform.CUSTOM_DOMAIN,
                template_id="tmpl-1",
                destination=Destination(domain_name="shop.example", use_dynamic_domain=True),
                total_jobs=3,
            )
        )

        loaded = repo.get(campaign.id)

        assert loaded.destination == Destination(domain_name="shop.example", use_dynamic_domain=True)
        assert loaded.total_jobs == 3
        assert loaded.status is CampaignStatus.PROCESSING

    def test_update_status(self, db_conn, clean_tables):
        repo = PostgresCampaignRepository()
        campaign = repo.add(
            Campaign(user_id="user-1", name="Spring", platform=Platform.AWS_S3, template_id="tmpl-1")
        )

        assert repo.update_status(campaign.id, CampaignStatus.COMPLETED) is True
        assert repo.get(campaign.id).status is CampaignStatus.COMPLETED
        assert repo.update_status("nope", CampaignStatus.FAILED) is False


class TestDeploymentRepository:
    """Tests for PostgresDeploymentRepository."""

    def test_save_transitions(self, db_conn, clean_tables):
        """Pending to Live is persisted along with its artifact."""
        repo = PostgresDeploymentRepository()
        record = repo.add(_record())

        repo.save(record.mark_live("https://cdn.test/shop/index.html", "<html></html>", "<meta>", site_id="s-1"))
        loaded = repo.get_by_job("job-1")

        assert loaded.id == record.id
        assert loaded.status is DeploymentStatus.LIVE
        assert loaded.url == "https://cdn.test/shop/index.html"
        assert loaded.html_content == "<html></html>"
        assert loaded.site_id == "s-1"
        assert loaded.destination == Destination(bucket_name="sites", root_folder="promo")

    def test_save_missing_record(self, db_conn, clean_tables):
        """Saving a record that was never added is an error, not a silent no-op."""
        with pytest.raises(KeyError):
            PostgresDeploymentRepository().save(_record().mark_failed("boom"))

    def test_list_and_count(self, db_conn, clean_tables):
        repo = PostgresDeploymentRepository()
        live = repo.add(_record("job-1", slug="a"))
        repo.save(live.mark_live("https://cdn.test/a", "", ""))
        failed = repo.add(_record("job-2", slug="b"))
        repo.save(failed.mark_failed("AccessDenied"))
        repo.add(_record("job-3", slug="c"))
        repo.add(_record("job-4", user_id="user-2", slug="d"))

        assert [r.id for r in repo.list_for_user("user-1", status=DeploymentStatus.LIVE)] == [live.id]
        assert len(repo.list_for_user("user-1")) == 3
        assert len(repo.list_for_campaign("camp-1")) == 4
        assert repo.count_by_status("user-1") == {"Pending": 1, "Live": 1, "Failed": 1}

    def test_delete(self, db_conn, clean_tables):
        repo = PostgresDeploymentRepository()
        record = repo.add(_record())

        assert repo.delete(record.id) is True
        assert repo.get(record.id) is None
        assert repo.get_by_job("job-1") is None


class TestDomainRepository:
    """Tests for PostgresDomainRepository."""

    def test_duplicate_domain_rejected(self, db_conn, clean_tables):
        """A domain can be registered once across all users."""
        repo = PostgresDomainRepository()
        repo.add(Domain(user_id="user-1", domain="Shop.Example"))

        with pytest.raises(ValidationError, match="already registered"):
            repo.add(Domain(user_id="user-2", domain="shop.example"))

    def test_owned_domains(self, db_conn, clean_tables):
        repo = PostgresDomainRepository()
        domain = repo.add(Domain(user_id="user-1", domain="shop.example"))
        repo.add(Domain(user_id="user-2", domain="other.example"))

        assert repo.owned_domains("user-1", {"SHOP.example", "other.example"}) == {"shop.example"}
        assert repo.delete(domain.id) is True
        assert repo.list_for_user("user-1") == []
