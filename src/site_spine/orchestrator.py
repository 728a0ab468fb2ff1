"""
Campaign orchestrator - validates a batch and fans it out into deploy jobs.

Validation is all-or-nothing: a bad request, a missing template, a credential
the principal does not own or whose platform differs from the campaign's, or
(for custom domains) no registered domain rejects the whole batch before any
campaign or job exists. Only after that passes are individual rows skipped.
"""

import re
from dataclasses import dataclass, field
from typing import Any

import structlog

from site_spine.auth import require_owner
from site_spine.errors import AuthorizationError, NotFoundError, ValidationError
from site_spine.models import (
    Campaign,
    CampaignStatus,
    DeployJob,
    Destination,
    Platform,
    Template,
)
from site_spine.orchestration.queue import JobQueue
from site_spine.repositories import Repositories

logger = structlog.get_logger()

SLUG_FIELDS = ("sub_domain", "subDomain", "subdomain", "SubDomain")
DOMAIN_FIELD = "domain"

_SLUG = re.compile(r"^[a-z0-9](?:[a-z0-9._-]*[a-z0-9])?$")

# Skip reasons reported per row
EMPTY_ROW = "empty_row"
MISSING_FIELDS = "missing_required_fields"
INVALID_SLUG = "invalid_slug"
UNREGISTERED_DOMAIN = "unregistered_domain"


@dataclass
class CampaignRequest:
    """One batch submission."""

    name: str
    template_id: str
    platform: Platform | str
    rows: list[dict[str, Any]]
    credential_id: str | None = None
    destination: Destination = field(default_factory=Destination)


@dataclass
class SkippedRow:
    index: int
    reason: str
    missing: list[str] = field(default_factory=list)
    value: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"index": self.index, "reason": self.reason}
        if self.missing:
            data["missing"] = list(self.missing)
        if self.value is not None:
            data["value"] = self.value
        return data


@dataclass
class CampaignLaunchResult:
    campaign_id: str
    total: int
    queued: int
    skipped: list[SkippedRow] = field(default_factory=list)
    job_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "campaign_id": self.campaign_id,
            "total": self.total,
            "queued": self.queued,
            "skipped": [s.to_dict() for s in self.skipped],
            "job_ids": list(self.job_ids),
        }


def _blank(value: Any) -> bool:
    return value is None or str(value).strip() == ""


def missing_fields(row: dict[str, Any], required: list[str]) -> list[str]:
    """Required fields that are absent or blank in the row, in template order."""
    return [name for name in required if _blank(row.get(name))]


def extract_slug(row: dict[str, Any]) -> str:
    """Target slug from the row's sub-domain column, trimmed and lower-cased."""
    for name in SLUG_FIELDS:
        value = row.get(name)
        if not _blank(value):
            return str(value).strip().lower()
    return ""


def is_valid_slug(slug: str) -> bool:
    return bool(_SLUG.match(slug))


def _row_domain(row: dict[str, Any]) -> str:
    value = row.get(DOMAIN_FIELD)
    return "" if _blank(value) else str(value).strip().lower()


class CampaignOrchestrator:
    """Validates batches, creates campaigns and enqueues one job per valid row."""

    def __init__(self, repos: Repositories, queue: JobQueue):
        self.repos = repos
        self.queue = queue

    def start_campaign(self, principal: str, request: CampaignRequest) -> CampaignLaunchResult:
        """
        Validate the batch, create the campaign and enqueue its jobs.

        Raises:
            ValidationError: malformed request, platform mismatch, bad domain setup
            NotFoundError: template or credential does not exist
            AuthorizationError: credential or domain not owned by the principal
        """
        platform = self._validate_request(request)
        template = self.repos.templates.get(request.template_id)
        if template is None:
            raise NotFoundError("Template", request.template_id)

        destination = Destination.from_dict(request.destination.to_dict())
        allowed_domains: set[str] | None = None

        if platform is Platform.CUSTOM_DOMAIN:
            allowed_domains = self._check_domains(principal, request.rows, destination)
        else:
            self._check_credential(principal, request.credential_id, platform)

        skipped: list[SkippedRow] = []
        jobs_rows: list[tuple[dict[str, Any], str, Destination]] = []
        for index, row in enumerate(request.rows):
            outcome = self._accept_row(index, row, template, destination, allowed_domains)
            if isinstance(outcome, SkippedRow):
                logger.info("row_skipped", index=index, reason=outcome.reason, missing=outcome.missing)
                skipped.append(outcome)
            else:
                jobs_rows.append(outcome)

        campaign = Campaign(
            user_id=principal,
            name=request.name.strip(),
            platform=platform,
            template_id=template.id,
            credential_id=None if platform is Platform.CUSTOM_DOMAIN else request.credential_id,
            destination=destination,
            total_jobs=len(jobs_rows),
            status=CampaignStatus.PROCESSING if jobs_rows else CampaignStatus.FAILED,
        )
        self.repos.campaigns.add(campaign)

        job_ids = []
        for row, slug, job_destination in jobs_rows:
            job = DeployJob(
                user_id=principal,
                campaign_id=campaign.id,
                platform=platform,
                template_id=template.id,
                row=dict(row),
                slug=slug,
                credential_id=campaign.credential_id,
                destination=job_destination,
            )
            job_ids.append(self.queue.put(job))

        result = CampaignLaunchResult(
            campaign_id=campaign.id,
            total=len(request.rows),
            queued=len(job_ids),
            skipped=skipped,
            job_ids=job_ids,
        )
        logger.info(
            "campaign_started",
            campaign_id=campaign.id,
            platform=platform.value,
            total=result.total,
            queued=result.queued,
            skipped=len(skipped),
        )
        return result

    def _validate_request(self, request: CampaignRequest) -> Platform:
        errors: dict[str, str] = {}
        if _blank(request.name):
            errors["name"] = "campaign name is required"
        if _blank(request.template_id):
            errors["template_id"] = "template id is required"

        platform = None
        if _blank(request.platform):
            errors["platform"] = "platform is required"
        else:
            try:
                platform = Platform(request.platform)
            except ValueError:
                errors["platform"] = f"unsupported platform {request.platform!r}"

        if platform is not None and platform.requires_credential and _blank(request.credential_id):
            errors["credential_id"] = "credential id is required for this platform"
        if not isinstance(request.rows, list) or not request.rows:
            errors["rows"] = "rows must be a non-empty list"

        if errors:
            raise ValidationError("Invalid campaign request", details=errors)
        return platform

    def _check_credential(self, principal: str, credential_id: str, platform: Platform) -> None:
        credential = self.repos.credentials.get(credential_id)
        if credential is None:
            raise NotFoundError("Credential", credential_id)
        require_owner(principal, credential.user_id, "Credential", credential_id)
        if credential.platform is not platform:
            raise ValidationError(
                "Selected credential platform does not match selected platform",
                details={
                    "credential_platform": credential.platform.value,
                    "platform": platform.value,
                },
            )

    def _check_domains(
        self,
        principal: str,
        rows: list[dict[str, Any]],
        destination: Destination,
    ) -> set[str] | None:
        """Registered domains usable by this batch; None in single-domain mode."""
        if destination.use_dynamic_domain:
            csv_domains = {_row_domain(row) for row in rows if isinstance(row, dict)} - {""}
            if not csv_domains:
                raise ValidationError(
                    "Rows must contain a non-empty domain column for dynamic domain mode",
                    details={"field": DOMAIN_FIELD},
                )
            allowed = self.repos.domains.owned_domains(principal, csv_domains)
            if not allowed:
                raise AuthorizationError("None of the domains in the batch are registered to your account")
            return allowed

        domain = (destination.domain_name or "").strip().lower()
        if not domain:
            raise ValidationError(
                "A domain name is required for single domain mode",
                details={"domain_name": "required"},
            )
        if not self.repos.domains.owned_domains(principal, {domain}):
            raise AuthorizationError(
                f"Domain {domain} is not registered to your account",
                resource="Domain",
                resource_id=domain,
            )
        destination.domain_name = domain
        return None

    def _accept_row(
        self,
        index: int,
        row: Any,
        template: Template,
        destination: Destination,
        allowed_domains: set[str] | None,
    ) -> SkippedRow | tuple[dict[str, Any], str, Destination]:
        if not isinstance(row, dict) or not any(not _blank(v) for v in row.values()):
            return SkippedRow(index=index, reason=EMPTY_ROW)

        missing = missing_fields(row, template.required_fields)
        if missing:
            return SkippedRow(index=index, reason=MISSING_FIELDS, missing=missing)

        slug = extract_slug(row)
        if not is_valid_slug(slug):
            return SkippedRow(index=index, reason=INVALID_SLUG, value=slug)

        job_destination = destination
        if allowed_domains is not None:
            domain = _row_domain(row)
            if domain not in allowed_domains:
                return SkippedRow(index=index, reason=UNREGISTERED_DOMAIN, value=domain)
            job_destination = Destination(
                bucket_name=destination.bucket_name,
                root_folder=destination.root_folder,
                domain_name=domain,
                use_dynamic_domain=True,
            )

        return row, slug, job_destination
