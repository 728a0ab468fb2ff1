"""Repository interfaces."""

from abc import ABC, abstractmethod

from site_spine.models import (
    Campaign,
    CampaignStatus,
    Credential,
    DeploymentRecord,
    DeploymentStatus,
    Domain,
    Template,
)


class CredentialRepository(ABC):
    """Stores sealed credentials only; see ``site_spine.vault.seal_credential``."""

    @abstractmethod
    def add(self, credential: Credential) -> Credential: ...

    @abstractmethod
    def get(self, credential_id: str) -> Credential | None: ...

    @abstractmethod
    def list_for_user(self, user_id: str) -> list[Credential]: ...

    @abstractmethod
    def delete(self, credential_id: str) -> bool: ...


class TemplateRepository(ABC):
    @abstractmethod
    def add(self, template: Template) -> Template: ...

    @abstractmethod
    def get(self, template_id: str) -> Template | None: ...

    @abstractmethod
    def list_all(self) -> list[Template]: ...


class CampaignRepository(ABC):
    @abstractmethod
    def add(self, campaign: Campaign) -> Campaign: ...

    @abstractmethod
    def get(self, campaign_id: str) -> Campaign | None: ...

    @abstractmethod
    def list_for_user(self, user_id: str) -> list[Campaign]: ...

    @abstractmethod
    def update_status(self, campaign_id: str, status: CampaignStatus) -> bool: ...


class DeploymentRepository(ABC):
    @abstractmethod
    def add(self, record: DeploymentRecord) -> DeploymentRecord: ...

    @abstractmethod
    def get(self, record_id: str) -> DeploymentRecord | None: ...

    @abstractmethod
    def save(self, record: DeploymentRecord) -> DeploymentRecord:
        """Persist the full state of an existing record."""
        ...

    @abstractmethod
    def delete(self, record_id: str) -> bool: ...

    @abstractmethod
    def get_by_job(self, job_id: str) -> DeploymentRecord | None:
        """Record created for a queue job, used when a job is redelivered."""
        ...

    @abstractmethod
    def list_for_user(
        self, user_id: str, status: DeploymentStatus | None = None
    ) -> list[DeploymentRecord]: ...

    @abstractmethod
    def list_for_campaign(self, campaign_id: str) -> list[DeploymentRecord]: ...

    def count_by_status(self, user_id: str) -> dict[str, int]:
        counts = {status.value: 0 for status in DeploymentStatus}
        for record in self.list_for_user(user_id):
            counts[record.status.value] += 1
        return counts


class DomainRepository(ABC):
    @abstractmethod
    def add(self, domain: Domain) -> Domain: ...

    @abstractmethod
    def get(self, domain_id: str) -> Domain | None: ...

    @abstractmethod
    def delete(self, domain_id: str) -> bool: ...

    @abstractmethod
    def list_for_user(self, user_id: str) -> list[Domain]: ...

    def owned_domains(self, user_id: str, names: set[str]) -> set[str]:
        """Subset of ``names`` registered to the user."""
        wanted = {n.strip().lower() for n in names if n}
        return {d.domain for d in self.list_for_user(user_id) if d.domain in wanted}
