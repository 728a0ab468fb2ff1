"""Domain models for campaigns, jobs and deployment records."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import ulid


def new_id() -> str:
    return str(ulid.new())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Platform(str, Enum):
    """Storage / hosting variant selectable per campaign."""

    AWS_S3 = "aws_s3"
    DIGITAL_OCEAN = "digital_ocean"
    BACKBLAZE = "backblaze"
    CLOUDFLARE_R2 = "cloudflare_r2"
    NETLIFY = "netlify"
    CUSTOM_DOMAIN = "custom_domain"

    @property
    def is_s3_compatible(self) -> bool:
        return self in S3_PLATFORMS

    @property
    def requires_credential(self) -> bool:
        return self is not Platform.CUSTOM_DOMAIN


S3_PLATFORMS = frozenset(
    {Platform.AWS_S3, Platform.DIGITAL_OCEAN, Platform.BACKBLAZE, Platform.CLOUDFLARE_R2}
)


class CampaignStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class DeploymentStatus(str, Enum):
    """Lifecycle of a deployment record."""

    PENDING = "Pending"
    LIVE = "Live"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        return self is not DeploymentStatus.PENDING


class PromptMode(str, Enum):
    """How a template turns a row into a generation request."""

    PLACEHOLDER = "placeholder"
    STRUCTURED = "structured"


# Credential fields that are only ever stored encrypted
SECRET_FIELDS = ("access_key", "secret_key", "netlify_access_token", "account_id")


@dataclass
class Credential:
    """Provider credential. Secret fields hold ciphertext unless opened by the vault."""

    user_id: str
    name: str
    platform: Platform
    region: str | None = None
    access_key: str | None = None
    secret_key: str | None = None
    account_id: str | None = None
    cdn_url: str | None = None
    netlify_access_token: str | None = None
    site_id: str | None = None
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)

    def public_view(self) -> dict[str, Any]:
        """Credential metadata without any secret field."""
        data = asdict(self)
        for name in SECRET_FIELDS:
            data.pop(name, None)
        data["platform"] = self.platform.value
        return data


@dataclass
class Template:
    name: str
    system_prompt: str
    required_fields: list[str] = field(default_factory=list)
    prompt_mode: PromptMode = PromptMode.PLACEHOLDER
    added_by: str | None = None
    thumbnail_url: str = ""
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        # Unique, display order preserved
        seen: dict[str, None] = {}
        for name in self.required_fields:
            name = str(name).strip()
            if name:
                seen.setdefault(name, None)
        self.required_fields = list(seen)


@dataclass
class Destination:
    """Where a campaign's artifacts land inside the selected variant."""

    bucket_name: str | None = None
    root_folder: str | None = None
    domain_name: str | None = None
    use_dynamic_domain: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> Destination:
        data = data or {}
        return cls(
            bucket_name=data.get("bucket_name"),
            root_folder=data.get("root_folder"),
            domain_name=data.get("domain_name"),
            use_dynamic_domain=bool(data.get("use_dynamic_domain", False)),
        )


@dataclass
class Campaign:
    user_id: str
    name: str
    platform: Platform
    template_id: str
    credential_id: str | None = None
    destination: Destination = field(default_factory=Destination)
    status: CampaignStatus = CampaignStatus.PROCESSING
    total_jobs: int = 0
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class DeployJob:
    """
    One unit of queued work: publish one row of one campaign.

    Carries IDs and the raw row only, never decrypted secrets.
    """

    user_id: str
    campaign_id: str
    platform: Platform
    template_id: str
    row: dict[str, Any]
    slug: str
    credential_id: str | None = None
    destination: Destination = field(default_factory=Destination)
    attempts: int = 0
    id: str = field(default_factory=new_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "campaign_id": self.campaign_id,
            "platform": self.platform.value,
            "template_id": self.template_id,
            "credential_id": self.credential_id,
            "row": dict(self.row),
            "slug": self.slug,
            "destination": self.destination.to_dict(),
            "attempts": self.attempts,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DeployJob:
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            campaign_id=data["campaign_id"],
            platform=Platform(data["platform"]),
            template_id=data["template_id"],
            credential_id=data.get("credential_id"),
            row=dict(data.get("row") or {}),
            slug=data["slug"],
            destination=Destination.from_dict(data.get("destination")),
            attempts=int(data.get("attempts", 0)),
        )


@dataclass
class DeploymentRecord:
    """Tracks one published artifact through Pending -> Live | Failed."""

    user_id: str
    campaign_id: str
    product_name: str
    slug: str
    platform: Platform
    destination: Destination = field(default_factory=Destination)
    credential_id: str | None = None
    url: str = ""
    status: DeploymentStatus = DeploymentStatus.PENDING
    html_content: str = ""
    header_code: str = ""
    site_id: str | None = None
    error_message: str | None = None
    job_id: str | None = None
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def mark_pending(self) -> DeploymentRecord:
        return replace(self, status=DeploymentStatus.PENDING, error_message=None, updated_at=utcnow())

    def mark_live(
        self,
        url: str,
        html_content: str,
        header_code: str,
        site_id: str | None = None,
    ) -> DeploymentRecord:
        return replace(
            self,
            status=DeploymentStatus.LIVE,
            url=url,
            html_content=html_content,
            header_code=header_code,
            site_id=site_id or self.site_id,
            error_message=None,
            updated_at=utcnow(),
        )

    def mark_failed(
        self,
        error_message: str,
        html_content: str | None = None,
        header_code: str | None = None,
        site_id: str | None = None,
    ) -> DeploymentRecord:
        """Failed, keeping any artifact and provider site created before the failure for a later retry."""
        return replace(
            self,
            status=DeploymentStatus.FAILED,
            error_message=error_message,
            html_content=self.html_content if html_content is None else html_content,
            header_code=self.header_code if header_code is None else header_code,
            site_id=site_id or self.site_id,
            updated_at=utcnow(),
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["platform"] = self.platform.value
        data["status"] = self.status.value
        return data


@dataclass
class Domain:
    """Custom domain registered to a user for local-filesystem hosting."""

    user_id: str
    domain: str
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        self.domain = self.domain.strip().lower()
