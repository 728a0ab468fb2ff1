"""FastAPI application for Site Spine."""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

import structlog
from fastapi import FastAPI, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from site_spine import __version__
from site_spine.api.deps import Context, Principal
from site_spine.api.errors import site_spine_error_handler
from site_spine.auth import require_owner
from site_spine.config import get_settings
from site_spine.errors import NotFoundError, SiteSpineError, ValidationError
from site_spine.models import (
    Credential,
    DeploymentRecord,
    DeploymentStatus,
    Destination,
    Domain,
    Platform,
)
from site_spine.observability import configure_logging
from site_spine.orchestrator import CampaignRequest
from site_spine.providers import get_provider
from site_spine.vault import open_credential, seal_credential

logger = structlog.get_logger()


# =============================================================================
# Lifespan
# =============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: init/close resources."""
    settings = get_settings()
    configure_logging()
    if settings.repository_type == "postgres":
        from site_spine.db import close_pool, get_pool

        get_pool()  # Initialize connection pool
    logger.info("application_started", backend=settings.backend_type, repository=settings.repository_type)
    yield
    if settings.repository_type == "postgres":
        close_pool()
    logger.info("application_stopped")


# =============================================================================
# App Setup
# =============================================================================

app = FastAPI(
    title="Site Spine",
    description="Campaign deployment pipeline: generate pages and publish them to storage backends",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(SiteSpineError, site_spine_error_handler)


# =============================================================================
# Models
# =============================================================================


class HealthResponse(BaseModel):
    status: str
    version: str
    backend: str
    queue: dict[str, int]


class CredentialCreate(BaseModel):
    name: str
    platform: Platform
    region: str | None = None
    access_key: str | None = None
    secret_key: str | None = None
    account_id: str | None = None
    cdn_url: str | None = None
    netlify_access_token: str | None = None
    site_id: str | None = None


class CredentialResponse(BaseModel):
    id: str
    name: str
    platform: Platform
    region: str | None
    cdn_url: str | None
    site_id: str | None
    created_at: datetime


class DomainCreate(BaseModel):
    domain: str


class DomainResponse(BaseModel):
    id: str
    domain: str
    created_at: datetime


class PlatformConfig(BaseModel):
    platform: Platform
    credential_id: str | None = None
    bucket_name: str | None = None
    root_folder: str | None = None
    domain_name: str | None = None
    use_dynamic_domain: bool = False


class CampaignStartRequest(BaseModel):
    campaign_name: str
    template_id: str
    platform_config: PlatformConfig
    rows: list[dict[str, Any]] = Field(default_factory=list)


class CampaignResponse(BaseModel):
    id: str
    name: str
    platform: Platform
    template_id: str
    status: str
    total_jobs: int
    created_at: datetime


class DeploymentSummary(BaseModel):
    id: str
    campaign_id: str
    product_name: str
    slug: str
    platform: Platform
    url: str
    status: DeploymentStatus
    error_message: str | None
    created_at: datetime
    updated_at: datetime


class DeploymentDetail(DeploymentSummary):
    html_content: str
    header_code: str
    site_id: str | None


class HeaderUpdate(BaseModel):
    header_code: str = ""


class DashboardStats(BaseModel):
    total_websites_live: int
    total_deployments: int
    by_status: dict[str, int]


def _credential_response(credential: Credential) -> CredentialResponse:
    return CredentialResponse(**{k: v for k, v in credential.public_view().items() if k != "user_id"})


def _deployment_summary(record: DeploymentRecord) -> DeploymentSummary:
    return DeploymentSummary(**record.to_dict())


def _deployment_detail(record: DeploymentRecord) -> DeploymentDetail:
    return DeploymentDetail(**record.to_dict())


# =============================================================================
# Health
# =============================================================================


@app.get("/health", response_model=HealthResponse)
def health(ctx: Context):
    """Health check endpoint."""
    return HealthResponse(
        status="healthy",
        version=__version__,
        backend=ctx.settings.backend_type,
        queue=ctx.queue.stats(),
    )


# =============================================================================
# Credentials
# =============================================================================

# Plain (non-secret) fields that must be present per platform
_REQUIRED_PLAIN_FIELDS: dict[Platform, tuple[str, ...]] = {
    Platform.AWS_S3: ("region",),
    Platform.DIGITAL_OCEAN: ("region",),
    Platform.BACKBLAZE: ("region",),
}


@app.post("/credentials", response_model=CredentialResponse, status_code=201)
def create_credential(request: CredentialCreate, ctx: Context, principal: Principal):
    """Store a credential. Secret fields are sealed before they reach the repository."""
    if not request.platform.requires_credential:
        raise ValidationError(f"{request.platform.value} does not use credentials")

    data = request.model_dump()
    provider = get_provider(request.platform)
    required = (*_REQUIRED_PLAIN_FIELDS.get(request.platform, ()), *provider.required_secrets)
    missing = [name for name in required if not (data.get(name) or "").strip()]
    if missing:
        raise ValidationError(
            f"Missing fields for {request.platform.value} credential",
            details={name: "required" for name in missing},
        )

    credential = Credential(user_id=principal, **data)
    ctx.repos.credentials.add(seal_credential(credential, ctx.vault))
    return _credential_response(credential)


@app.get("/credentials", response_model=list[CredentialResponse])
def list_credentials(ctx: Context, principal: Principal):
    """List the principal's credentials without any secret field."""
    return [_credential_response(c) for c in ctx.repos.credentials.list_for_user(principal)]


def _owned_credential(ctx, credential_id: str, principal: str) -> Credential:
    credential = ctx.repos.credentials.get(credential_id)
    if credential is None:
        raise NotFoundError("Credential", credential_id)
    require_owner(principal, credential.user_id, "Credential", credential_id)
    return credential


@app.delete("/credentials/{credential_id}")
def delete_credential(credential_id: str, ctx: Context, principal: Principal):
    """Delete a credential. Records that reference it fail on their next publish."""
    _owned_credential(ctx, credential_id, principal)
    ctx.repos.credentials.delete(credential_id)
    logger.info("credential_deleted", credential_id=credential_id)
    return {"deleted": True, "credential_id": credential_id}


@app.get("/credentials/{credential_id}/buckets", response_model=list[str])
def list_buckets(credential_id: str, ctx: Context, principal: Principal):
    """List buckets visible to an S3-compatible credential."""
    credential = _owned_credential(ctx, credential_id, principal)
    if not credential.platform.is_s3_compatible:
        raise ValidationError(f"{credential.platform.value} does not support bucket discovery")
    opened = open_credential(credential, ctx.vault)
    return get_provider(credential.platform).list_buckets(opened)


@app.get("/credentials/{credential_id}/prefixes", response_model=list[str])
def list_prefixes(
    credential_id: str,
    ctx: Context,
    principal: Principal,
    bucket: str = Query(..., min_length=1),
    prefix: str = Query(""),
):
    """List folder-like prefixes in a bucket one level below ``prefix``."""
    credential = _owned_credential(ctx, credential_id, principal)
    if not credential.platform.is_s3_compatible:
        raise ValidationError(f"{credential.platform.value} does not support prefix discovery")
    opened = open_credential(credential, ctx.vault)
    return get_provider(credential.platform).list_prefixes(opened, bucket, prefix)


# =============================================================================
# Domains
# =============================================================================


@app.post("/domains", response_model=DomainResponse, status_code=201)
def create_domain(request: DomainCreate, ctx: Context, principal: Principal):
    """Register a custom domain for local hosting."""
    if not request.domain.strip():
        raise ValidationError("Domain is required", details={"domain": "required"})
    domain = ctx.repos.domains.add(Domain(user_id=principal, domain=request.domain))
    return DomainResponse(id=domain.id, domain=domain.domain, created_at=domain.created_at)


@app.get("/domains", response_model=list[DomainResponse])
def list_domains(ctx: Context, principal: Principal):
    return [
        DomainResponse(id=d.id, domain=d.domain, created_at=d.created_at)
        for d in ctx.repos.domains.list_for_user(principal)
    ]


@app.delete("/domains/{domain_id}")
def delete_domain(domain_id: str, ctx: Context, principal: Principal):
    domain = ctx.repos.domains.get(domain_id)
    if domain is None:
        raise NotFoundError("Domain", domain_id)
    require_owner(principal, domain.user_id, "Domain", domain_id)
    ctx.repos.domains.delete(domain_id)
    return {"deleted": True, "domain_id": domain_id}


# =============================================================================
# Templates
# =============================================================================


class TemplateResponse(BaseModel):
    id: str
    name: str
    required_fields: list[str]
    prompt_mode: str
    thumbnail_url: str


@app.get("/templates", response_model=list[TemplateResponse])
def list_templates(ctx: Context, principal: Principal):
    return [
        TemplateResponse(
            id=t.id,
            name=t.name,
            required_fields=t.required_fields,
            prompt_mode=t.prompt_mode.value,
            thumbnail_url=t.thumbnail_url,
        )
        for t in ctx.repos.templates.list_all()
    ]


# =============================================================================
# Campaigns
# =============================================================================


@app.post("/campaigns/start")
def start_campaign(request: CampaignStartRequest, ctx: Context, principal: Principal):
    """Validate a batch and enqueue one deploy job per valid row."""
    config = request.platform_config
    result = ctx.orchestrator.start_campaign(
        principal,
        CampaignRequest(
            name=request.campaign_name,
            template_id=request.template_id,
            platform=config.platform,
            rows=request.rows,
            credential_id=config.credential_id,
            destination=Destination(
                bucket_name=config.bucket_name,
                root_folder=config.root_folder,
                domain_name=config.domain_name,
                use_dynamic_domain=config.use_dynamic_domain,
            ),
        ),
    )
    return {
        "success": True,
        "message": f"Campaign started with {result.queued} sites queued",
        **result.to_dict(),
    }


@app.get("/campaigns", response_model=list[CampaignResponse])
def list_campaigns(ctx: Context, principal: Principal):
    return [
        CampaignResponse(
            id=c.id,
            name=c.name,
            platform=c.platform,
            template_id=c.template_id,
            status=c.status.value,
            total_jobs=c.total_jobs,
            created_at=c.created_at,
        )
        for c in ctx.repos.campaigns.list_for_user(principal)
    ]


# =============================================================================
# Deployments
# =============================================================================


@app.get("/deployments", response_model=list[DeploymentSummary])
def list_deployments(
    ctx: Context,
    principal: Principal,
    status: DeploymentStatus | None = Query(None),
):
    """List the principal's deployment records, newest first."""
    return [_deployment_summary(r) for r in ctx.repos.deployments.list_for_user(principal, status=status)]


@app.get("/deployments/{record_id}", response_model=DeploymentDetail)
def get_deployment(record_id: str, ctx: Context, principal: Principal):
    return _deployment_detail(ctx.pipeline.get_owned(record_id, principal))


@app.put("/deployments/{record_id}/header", response_model=DeploymentDetail)
def update_header(record_id: str, request: HeaderUpdate, ctx: Context, principal: Principal):
    """Replace the injected header snippet and republish."""
    record = ctx.pipeline.redeploy(record_id, principal, header_code=request.header_code)
    return _deployment_detail(record)


@app.post("/deployments/{record_id}/redeploy", response_model=DeploymentDetail)
def redeploy(record_id: str, ctx: Context, principal: Principal):
    """Republish the stored artifact to the same location."""
    return _deployment_detail(ctx.pipeline.redeploy(record_id, principal))


@app.delete("/deployments/{record_id}")
def delete_deployment(record_id: str, ctx: Context, principal: Principal):
    """Remove the published artifact (best effort) and delete the record."""
    ctx.pipeline.delete(record_id, principal)
    return {"deleted": True, "deployment_id": record_id}


# =============================================================================
# Dashboard
# =============================================================================


@app.get("/dashboard/stats", response_model=DashboardStats)
def dashboard_stats(ctx: Context, principal: Principal):
    counts = ctx.repos.deployments.count_by_status(principal)
    return DashboardStats(
        total_websites_live=counts[DeploymentStatus.LIVE.value],
        total_deployments=sum(counts.values()),
        by_status=counts,
    )
