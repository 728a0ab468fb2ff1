"""PostgreSQL repositories backed by the shared psycopg pool."""

import json
from typing import Any

import psycopg
import structlog

from site_spine.db import get_connection
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
from site_spine.repositories.base import (
    CampaignRepository,
    CredentialRepository,
    DeploymentRepository,
    DomainRepository,
    TemplateRepository,
)

logger = structlog.get_logger()


def _json(value: Any) -> Any:
    if isinstance(value, str):
        return json.loads(value)
    return value


CREDENTIAL_COLUMNS = (
    "id, user_id, name, platform, region, access_key, secret_key, account_id, "
    "cdn_url, netlify_access_token, site_id, created_at"
)


def _credential(row: dict) -> Credential:
    data = dict(row)
    data["platform"] = Platform(data["platform"])
    return Credential(**data)


class PostgresCredentialRepository(CredentialRepository):
    def add(self, credential: Credential) -> Credential:
        with get_connection() as conn:
            conn.execute(
                """
                INSERT INTO credentials (id, user_id, name, platform, region, access_key,
                                         secret_key, account_id, cdn_url,
                                         netlify_access_token, site_id, created_at)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    credential.id,
                    credential.user_id,
                    credential.name,
                    credential.platform.value,
                    credential.region,
                    credential.access_key,
                    credential.secret_key,
                    credential.account_id,
                    credential.cdn_url,
                    credential.netlify_access_token,
                    credential.site_id,
                    credential.created_at,
                ),
            )
            conn.commit()
        logger.info("credential_created", credential_id=credential.id, platform=credential.platform.value)
        return credential

    def get(self, credential_id: str) -> Credential | None:
        with get_connection() as conn:
            result = conn.execute(
                f"SELECT {CREDENTIAL_COLUMNS} FROM credentials WHERE id = %s",
                (credential_id,),
            )
            row = result.fetchone()
        return _credential(row) if row else None

    def list_for_user(self, user_id: str) -> list[Credential]:
        with get_connection() as conn:
            result = conn.execute(
                f"""
                SELECT {CREDENTIAL_COLUMNS} FROM credentials
                WHERE user_id = %s
                ORDER BY created_at DESC
                """,
                (user_id,),
            )
            return [_credential(row) for row in result.fetchall()]

    def delete(self, credential_id: str) -> bool:
        with get_connection() as conn:
            result = conn.execute("DELETE FROM credentials WHERE id = %s", (credential_id,))
            conn.commit()
            return result.rowcount > 0


TEMPLATE_COLUMNS = "id, name, system_prompt, required_fields, prompt_mode, added_by, thumbnail_url, created_at"


def _template(row: dict) -> Template:
    data = dict(row)
    data["required_fields"] = _json(data["required_fields"]) or []
    data["prompt_mode"] = PromptMode(data["prompt_mode"])
    return Template(**data)


class PostgresTemplateRepository(TemplateRepository):
    def add(self, template: Template) -> Template:
        with get_connection() as conn:
            conn.execute(
                """
                INSERT INTO templates (id, name, system_prompt, required_fields, prompt_mode,
                                       added_by, thumbnail_url, created_at)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    template.id,
                    template.name,
                    template.system_prompt,
                    json.dumps(template.required_fields),
                    template.prompt_mode.value,
                    template.added_by,
                    template.thumbnail_url,
                    template.created_at,
                ),
            )
            conn.commit()
        return template

    def get(self, template_id: str) -> Template | None:
        with get_connection() as conn:
            result = conn.execute(
                f"SELECT {TEMPLATE_COLUMNS} FROM templates WHERE id = %s",
                (template_id,),
            )
            row = result.fetchone()
        return _template(row) if row else None

    def list_all(self) -> list[Template]:
        with get_connection() as conn:
            result = conn.execute(f"SELECT {TEMPLATE_COLUMNS} FROM templates ORDER BY created_at DESC")
            return [_template(row) for row in result.fetchall()]


CAMPAIGN_COLUMNS = (
    "id, user_id, name, platform, template_id, credential_id, destination, "
    "status, total_jobs, created_at"
)


def _campaign(row: dict) -> Campaign:
    data = dict(row)
    data["platform"] = Platform(data["platform"])
    data["status"] = CampaignStatus(data["status"])
    data["destination"] = Destination.from_dict(_json(data["destination"]))
    return Campaign(**data)


class PostgresCampaignRepository(CampaignRepository):
    def add(self, campaign: Campaign) -> Campaign:
        with get_connection() as conn:
            conn.execute(
                """
                INSERT INTO campaigns (id, user_id, name, platform, template_id, credential_id,
                                       destination, status, total_jobs, created_at)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    campaign.id,
                    campaign.user_id,
                    campaign.name,
                    campaign.platform.value,
                    campaign.template_id,
                    campaign.credential_id,
                    json.dumps(campaign.destination.to_dict()),
                    campaign.status.value,
                    campaign.total_jobs,
                    campaign.created_at,
                ),
            )
            conn.commit()
        logger.info("campaign_created", campaign_id=campaign.id, platform=campaign.platform.value)
        return campaign

    def get(self, campaign_id: str) -> Campaign | None:
        with get_connection() as conn:
            result = conn.execute(
                f"SELECT {CAMPAIGN_COLUMNS} FROM campaigns WHERE id = %s",
                (campaign_id,),
            )
            row = result.fetchone()
        return _campaign(row) if row else None

    def list_for_user(self, user_id: str) -> list[Campaign]:
        with get_connection() as conn:
            result = conn.execute(
                f"""
                SELECT {CAMPAIGN_COLUMNS} FROM campaigns
                WHERE user_id = %s
                ORDER BY created_at DESC
                """,
                (user_id,),
            )
            return [_campaign(row) for row in result.fetchall()]

    def update_status(self, campaign_id: str, status: CampaignStatus) -> bool:
        with get_connection() as conn:
            result = conn.execute(
                "UPDATE campaigns SET status = %s WHERE id = %s",
                (status.value, campaign_id),
            )
            conn.commit()
            return result.rowcount > 0


DEPLOYMENT_COLUMNS = (
    "id, user_id, campaign_id, product_name, slug, platform, destination, credential_id, "
    "url, status, html_content, header_code, site_id, error_message, job_id, "
    "created_at, updated_at"
)


def _deployment(row: dict) -> DeploymentRecord:
    data = dict(row)
    data["platform"] = Platform(data["platform"])
    data["status"] = DeploymentStatus(data["status"])
    data["destination"] = Destination.from_dict(_json(data["destination"]))
    return DeploymentRecord(**data)


class PostgresDeploymentRepository(DeploymentRepository):
    def add(self, record: DeploymentRecord) -> DeploymentRecord:
        with get_connection() as conn:
            conn.execute(
                f"""
                INSERT INTO deployments ({DEPLOYMENT_COLUMNS})
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    record.id,
                    record.user_id,
                    record.campaign_id,
                    record.product_name,
                    record.slug,
                    record.platform.value,
                    json.dumps(record.destination.to_dict()),
                    record.credential_id,
                    record.url,
                    record.status.value,
                    record.html_content,
                    record.header_code,
                    record.site_id,
                    record.error_message,
                    record.job_id,
                    record.created_at,
                    record.updated_at,
                ),
            )
            conn.commit()
        return record

    def get(self, record_id: str) -> DeploymentRecord | None:
        with get_connection() as conn:
            result = conn.execute(
                f"SELECT {DEPLOYMENT_COLUMNS} FROM deployments WHERE id = %s",
                (record_id,),
            )
            row = result.fetchone()
        return _deployment(row) if row else None

    def save(self, record: DeploymentRecord) -> DeploymentRecord:
        with get_connection() as conn:
            result = conn.execute(
                """
                UPDATE deployments
                SET url = %s, status = %s, html_content = %s, header_code = %s,
                    site_id = %s, error_message = %s, updated_at = %s
                WHERE id = %s
                """,
                (
                    record.url,
                    record.status.value,
                    record.html_content,
                    record.header_code,
                    record.site_id,
                    record.error_message,
                    record.updated_at,
                    record.id,
                ),
            )
            conn.commit()
            if result.rowcount == 0:
                raise KeyError(f"Deployment record {record.id} does not exist")
        return record

    def delete(self, record_id: str) -> bool:
        with get_connection() as conn:
            result = conn.execute("DELETE FROM deployments WHERE id = %s", (record_id,))
            conn.commit()
            return result.rowcount > 0

    def get_by_job(self, job_id: str) -> DeploymentRecord | None:
        with get_connection() as conn:
            result = conn.execute(
                f"SELECT {DEPLOYMENT_COLUMNS} FROM deployments WHERE job_id = %s",
                (job_id,),
            )
            row = result.fetchone()
        return _deployment(row) if row else None

    def list_for_user(
        self, user_id: str, status: DeploymentStatus | None = None
    ) -> list[DeploymentRecord]:
        conditions = ["user_id = %s"]
        params: list[Any] = [user_id]
        if status:
            conditions.append("status = %s")
            params.append(status.value)

        with get_connection() as conn:
            result = conn.execute(
                f"""
                SELECT {DEPLOYMENT_COLUMNS} FROM deployments
                WHERE {" AND ".join(conditions)}
                ORDER BY created_at DESC
                """,
                params,
            )
            return [_deployment(row) for row in result.fetchall()]

    def list_for_campaign(self, campaign_id: str) -> list[DeploymentRecord]:
        with get_connection() as conn:
            result = conn.execute(
                f"""
                SELECT {DEPLOYMENT_COLUMNS} FROM deployments
                WHERE campaign_id = %s
                ORDER BY created_at DESC
                """,
                (campaign_id,),
            )
            return [_deployment(row) for row in result.fetchall()]

    def count_by_status(self, user_id: str) -> dict[str, int]:
        counts = {status.value: 0 for status in DeploymentStatus}
        with get_connection() as conn:
            result = conn.execute(
                """
                SELECT status, COUNT(*) AS count
                FROM deployments
                WHERE user_id = %s
                GROUP BY status
                """,
                (user_id,),
            )
            for row in result.fetchall():
                counts[row["status"]] = row["count"]
        return counts


class PostgresDomainRepository(DomainRepository):
    def add(self, domain: Domain) -> Domain:
        try:
            with get_connection() as conn:
                conn.execute(
                    "INSERT INTO domains (id, user_id, domain, created_at) VALUES (%s, %s, %s, %s)",
                    (domain.id, domain.user_id, domain.domain, domain.created_at),
                )
                conn.commit()
        except psycopg.errors.UniqueViolation as e:
            raise ValidationError(f"Domain {domain.domain} is already registered", cause=e) from e
        return domain

    def list_for_user(self, user_id: str) -> list[Domain]:
        with get_connection() as conn:
            result = conn.execute(
                """
                SELECT id, user_id, domain, created_at FROM domains
                WHERE user_id = %s
                ORDER BY created_at DESC
                """,
                (user_id,),
            )
            return [Domain(**row) for row in result.fetchall()]

    def get(self, domain_id: str) -> Domain | None:
        with get_connection() as conn:
            result = conn.execute(
                "SELECT id, user_id, domain, created_at FROM domains WHERE id = %s",
                (domain_id,),
            )
            row = result.fetchone()
        return Domain(**row) if row else None

    def delete(self, domain_id: str) -> bool:
        with get_connection() as conn:
            result = conn.execute("DELETE FROM domains WHERE id = %s", (domain_id,))
            conn.commit()
            return result.rowcount > 0
