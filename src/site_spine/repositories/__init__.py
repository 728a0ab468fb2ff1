"""Repository layer for data access."""

from dataclasses import dataclass

from site_spine.config import Settings, get_settings
from site_spine.repositories.base import (
    CampaignRepository,
    CredentialRepository,
    DeploymentRepository,
    DomainRepository,
    TemplateRepository,
)
from site_spine.repositories.memory import (
    InMemoryCampaignRepository,
    InMemoryCredentialRepository,
    InMemoryDeploymentRepository,
    InMemoryDomainRepository,
    InMemoryTemplateRepository,
)


@dataclass
class Repositories:
    """The set of repositories one process works against."""

    credentials: CredentialRepository
    templates: TemplateRepository
    campaigns: CampaignRepository
    deployments: DeploymentRepository
    domains: DomainRepository


def memory_repositories() -> Repositories:
    return Repositories(
        credentials=InMemoryCredentialRepository(),
        templates=InMemoryTemplateRepository(),
        campaigns=InMemoryCampaignRepository(),
        deployments=InMemoryDeploymentRepository(),
        domains=InMemoryDomainRepository(),
    )


def build_repositories(settings: Settings | None = None) -> Repositories:
    """Create repositories for the configured ``repository_type``."""
    settings = settings or get_settings()
    if settings.repository_type == "memory":
        return memory_repositories()

    from site_spine.repositories.postgres import (
        PostgresCampaignRepository,
        PostgresCredentialRepository,
        PostgresDeploymentRepository,
        PostgresDomainRepository,
        PostgresTemplateRepository,
    )

    return Repositories(
        credentials=PostgresCredentialRepository(),
        templates=PostgresTemplateRepository(),
        campaigns=PostgresCampaignRepository(),
        deployments=PostgresDeploymentRepository(),
        domains=PostgresDomainRepository(),
    )


__all__ = [
    "Repositories",
    "CredentialRepository",
    "TemplateRepository",
    "CampaignRepository",
    "DeploymentRepository",
    "DomainRepository",
    "memory_repositories",
    "build_repositories",
]
