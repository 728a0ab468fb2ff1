"""In-memory repositories for tests and single-process runs."""

import copy
import threading
from typing import Generic, TypeVar

from site_spine.errors import ValidationError
from site_spine.models import (
    Campaign,
    CampaignStatus,
    Credential,
    DeploymentRecord,
    DeploymentStatus,
    Domain,
    Template,
)
from site_spine.repositories.base import (
    CampaignRepository,
    CredentialRepository,
    DeploymentRepository,
    DomainRepository,
    TemplateRepository,
)

T = TypeVar("T")


class _Table(Generic[T]):
    """Lock-protected dict of deep copies keyed by ``id``."""

    def __init__(self):
        self._rows: dict[str, T] = {}
        self._lock = threading.Lock()

    def put(self, item: T) -> T:
        with self._lock:
            self._rows[item.id] = copy.deepcopy(item)
        return item

    def get(self, item_id: str) -> T | None:
        with self._lock:
            item = self._rows.get(item_id)
            return copy.deepcopy(item) if item is not None else None

    def pop(self, item_id: str) -> bool:
        with self._lock:
            return self._rows.pop(item_id, None) is not None

    def exists(self, item_id: str) -> bool:
        with self._lock:
            return item_id in self._rows

    def values(self) -> list[T]:
        with self._lock:
            items = [copy.deepcopy(v) for v in self._rows.values()]
        return sorted(items, key=lambda v: v.created_at, reverse=True)


class InMemoryCredentialRepository(CredentialRepository):
    def __init__(self):
        self._table: _Table[Credential] = _Table()

    def add(self, credential: Credential) -> Credential:
        return self._table.put(credential)

    def get(self, credential_id: str) -> Credential | None:
        return self._table.get(credential_id)

    def list_for_user(self, user_id: str) -> list[Credential]:
        return [c for c in self._table.values() if c.user_id == user_id]

    def delete(self, credential_id: str) -> bool:
        return self._table.pop(credential_id)


class InMemoryTemplateRepository(TemplateRepository):
    def __init__(self):
        self._table: _Table[Template] = _Table()

    def add(self, template: Template) -> Template:
        return self._table.put(template)

    def get(self, template_id: str) -> Template | None:
        return self._table.get(template_id)

    def list_all(self) -> list[Template]:
        return self._table.values()


class InMemoryCampaignRepository(CampaignRepository):
    def __init__(self):
        self._table: _Table[Campaign] = _Table()
        self._lock = threading.Lock()

    def add(self, campaign: Campaign) -> Campaign:
        return self._table.put(campaign)

    def get(self, campaign_id: str) -> Campaign | None:
        return self._table.get(campaign_id)

    def list_for_user(self, user_id: str) -> list[Campaign]:
        return [c for c in self._table.values() if c.user_id == user_id]

    def _update(self, campaign_id: str, **changes) -> bool:
        with self._lock:
            campaign = self._table.get(campaign_id)
            if campaign is None:
                return False
            for name, value in changes.items():
                setattr(campaign, name, value)
            self._table.put(campaign)
            return True

    def update_status(self, campaign_id: str, status: CampaignStatus) -> bool:
        return self._update(campaign_id, status=status)


class InMemoryDeploymentRepository(DeploymentRepository):
    def __init__(self):
        self._table: _Table[DeploymentRecord] = _Table()

    def add(self, record: DeploymentRecord) -> DeploymentRecord:
        return self._table.put(record)

    def get(self, record_id: str) -> DeploymentRecord | None:
        return self._table.get(record_id)

    def save(self, record: DeploymentRecord) -> DeploymentRecord:
        if not self._table.exists(record.id):
            raise KeyError(f"Deployment record {record.id} does not exist")
        return self._table.put(record)

    def delete(self, record_id: str) -> bool:
        return self._table.pop(record_id)

    def get_by_job(self, job_id: str) -> DeploymentRecord | None:
        for record in self._table.values():
            if record.job_id == job_id:
                return record
        return None

    def list_for_user(
        self, user_id: str, status: DeploymentStatus | None = None
    ) -> list[DeploymentRecord]:
        return [
            r
            for r in self._table.values()
            if r.user_id == user_id and (status is None or r.status == status)
        ]

    def list_for_campaign(self, campaign_id: str) -> list[DeploymentRecord]:
        return [r for r in self._table.values() if r.campaign_id == campaign_id]


class InMemoryDomainRepository(DomainRepository):
    def __init__(self):
        self._table: _Table[Domain] = _Table()

    def add(self, domain: Domain) -> Domain:
        if any(d.domain == domain.domain for d in self._table.values()):
            raise ValidationError(f"Domain {domain.domain} is already registered")
        return self._table.put(domain)

    def list_for_user(self, user_id: str) -> list[Domain]:
        return [d for d in self._table.values() if d.user_id == user_id]

    def get(self, domain_id: str) -> Domain | None:
        return self._table.get(domain_id)

    def delete(self, domain_id: str) -> bool:
        return self._table.pop(domain_id)
