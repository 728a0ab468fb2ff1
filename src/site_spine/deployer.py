"""
Deployment pipeline - runs one deploy job from Pending to Live or Failed.

run_job:    create Pending record -> campaign -> template -> generate
            -> open credential -> publish -> Live
redeploy:   stored artifact (+ updated header snippet) -> publish -> Live
delete:     best-effort provider removal, then drop the record

Any failure while a record is Pending marks it Failed and re-raises so the
queue can do its own failure bookkeeping.
"""

from typing import Callable

import structlog

from site_spine.auth import require_owner
from site_spine.errors import CredentialError, NotFoundError, SiteSpineError, ValidationError
from site_spine.generator import HEADER_CODE_FIELD, ContentGenerator, inject_header
from site_spine.models import (
    CampaignStatus,
    Credential,
    DeployJob,
    DeploymentRecord,
    DeploymentStatus,
    Platform,
)
from site_spine.providers import StorageProvider, get_provider
from site_spine.repositories import Repositories
from site_spine.vault import CredentialVault, open_credential

logger = structlog.get_logger()


def _error_message(error: Exception) -> str:
    return str(error) or type(error).__name__


class DeploymentPipeline:
    """Generator -> provider -> record, for queued jobs and explicit redeploys."""

    def __init__(
        self,
        repos: Repositories,
        vault: CredentialVault,
        generator: ContentGenerator,
        provider_factory: Callable[[Platform], StorageProvider] = get_provider,
    ):
        self.repos = repos
        self.vault = vault
        self.generator = generator
        self.provider_factory = provider_factory

    # ------------------------------------------------------------------
    # Job execution
    # ------------------------------------------------------------------

    def run_job(self, job: DeployJob) -> DeploymentRecord:
        """
        Execute one job end to end.

        Returns the Live record. Raises whatever stopped the pipeline after
        the record has been marked Failed.
        """
        record = self._start_record(job)
        log = logger.bind(
            job_id=job.id,
            campaign_id=job.campaign_id,
            deployment_id=record.id,
            platform=job.platform.value,
        )
        log.info("deployment_started", slug=job.slug, attempt=job.attempts)

        html = ""
        header_code = str(job.row.get(HEADER_CODE_FIELD) or "").strip()
        try:
            campaign = self.repos.campaigns.get(job.campaign_id)
            if campaign is None:
                raise NotFoundError("Campaign", job.campaign_id)

            template = self.repos.templates.get(job.template_id)
            if template is None:
                raise NotFoundError("Template", job.template_id)

            html = self.generator.generate(template, job.row)

            provider = self.provider_factory(job.platform)
            credential = self._load_credential(job.credential_id, job.platform, provider)

            # A redelivered job publishes into the site its earlier attempt created
            result = provider.publish(
                html, job.slug, credential, job.destination, site_id=record.site_id
            )
        except Exception as e:
            record = self.repos.deployments.save(
                record.mark_failed(
                    _error_message(e),
                    html_content=html,
                    header_code=header_code,
                    site_id=getattr(e, "site_id", None),
                )
            )
            details = e.to_dict() if isinstance(e, SiteSpineError) else {"error_type": type(e).__name__}
            log.error("deployment_failed", error=_error_message(e), **details)
            self._rollup(job.campaign_id)
            raise

        record = self.repos.deployments.save(
            record.mark_live(result.url, html, header_code, site_id=result.site_id)
        )
        log.info("deployment_live", url=record.url)
        self._rollup(job.campaign_id)
        return record

    def _start_record(self, job: DeployJob) -> DeploymentRecord:
        """Pending record for the job; a redelivered job reuses its record."""
        existing = self.repos.deployments.get_by_job(job.id)
        if existing is not None:
            logger.info("deployment_record_reused", job_id=job.id, deployment_id=existing.id)
            return self.repos.deployments.save(existing.mark_pending())

        product_name = str(job.row.get("name") or "").strip() or job.slug
        return self.repos.deployments.add(
            DeploymentRecord(
                user_id=job.user_id,
                campaign_id=job.campaign_id,
                product_name=product_name,
                slug=job.slug,
                platform=job.platform,
                destination=job.destination,
                credential_id=job.credential_id,
                job_id=job.id,
            )
        )

    def _load_credential(
        self,
        credential_id: str | None,
        platform: Platform,
        provider: StorageProvider,
    ) -> Credential | None:
        """Fetch and open the credential; None for variants that need none."""
        if not platform.requires_credential:
            return None

        credential = self.repos.credentials.get(credential_id) if credential_id else None
        if credential is None:
            raise NotFoundError("Credential", credential_id)

        opened = open_credential(credential, self.vault)
        missing = provider.missing_secrets(opened)
        if missing:
            raise CredentialError(credential_id, missing)
        return opened

    def _rollup(self, campaign_id: str) -> None:
        """Close the campaign once every expected job has a terminal record."""
        campaign = self.repos.campaigns.get(campaign_id)
        if campaign is None or campaign.status is not CampaignStatus.PROCESSING:
            return

        records = self.repos.deployments.list_for_campaign(campaign_id)
        if len(records) < campaign.total_jobs:
            return
        if any(not r.status.is_terminal for r in records):
            return

        if all(r.status is DeploymentStatus.FAILED for r in records):
            status = CampaignStatus.FAILED
        else:
            status = CampaignStatus.COMPLETED

        self.repos.campaigns.update_status(campaign_id, status)
        logger.info(
            "campaign_finished",
            campaign_id=campaign_id,
            status=status.value,
            total=len(records),
            live=sum(1 for r in records if r.status is DeploymentStatus.LIVE),
        )

    # ------------------------------------------------------------------
    # Record operations
    # ------------------------------------------------------------------

    def get_owned(self, record_id: str, principal: str) -> DeploymentRecord:
        record = self.repos.deployments.get(record_id)
        if record is None:
            raise NotFoundError("Deployment", record_id)
        require_owner(principal, record.user_id, "Deployment", record_id)
        return record

    def redeploy(
        self,
        record_id: str,
        principal: str,
        header_code: str | None = None,
    ) -> DeploymentRecord:
        """
        Republish the stored artifact, optionally with a new header snippet.

        Generation is skipped. S3 and local variants overwrite the same key,
        Netlify redeploys into the stored site, so the URL does not change.
        """
        record = self.get_owned(record_id, principal)
        if not record.html_content:
            raise ValidationError(
                f"Deployment {record_id} has no generated content to redeploy",
                details={"deployment_id": record_id},
            )

        html = record.html_content
        new_header = record.header_code
        if header_code is not None:
            new_header = header_code.strip()
            html = inject_header(html, new_header, previous=record.header_code)

        record = self.repos.deployments.save(record.mark_pending())
        log = logger.bind(deployment_id=record.id, platform=record.platform.value)
        log.info("redeploy_started", slug=record.slug, header_updated=header_code is not None)

        try:
            provider = self.provider_factory(record.platform)
            credential = self._load_credential(record.credential_id, record.platform, provider)
            result = provider.publish(
                html, record.slug, credential, record.destination, site_id=record.site_id
            )
        except Exception as e:
            self.repos.deployments.save(
                record.mark_failed(
                    _error_message(e),
                    html_content=html,
                    header_code=new_header,
                    site_id=getattr(e, "site_id", None),
                )
            )
            log.error("redeploy_failed", error=_error_message(e), error_type=type(e).__name__)
            raise

        record = self.repos.deployments.save(
            record.mark_live(result.url, html, new_header, site_id=result.site_id)
        )
        log.info("redeploy_live", url=record.url)
        return record

    def delete(self, record_id: str, principal: str) -> bool:
        """Remove the published artifact if possible, then delete the record."""
        record = self.get_owned(record_id, principal)

        try:
            provider = self.provider_factory(record.platform)
            credential = self._load_credential(record.credential_id, record.platform, provider)
            removed = provider.remove(record.slug, credential, record.destination, site_id=record.site_id)
            logger.info("artifact_removed", deployment_id=record_id, removed=removed)
        except SiteSpineError as e:
            logger.warning("artifact_remove_failed", deployment_id=record_id, **e.to_dict())

        deleted = self.repos.deployments.delete(record_id)
        logger.info("deployment_deleted", deployment_id=record_id)
        return deleted
