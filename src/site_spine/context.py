"""Application wiring: one explicitly constructed set of collaborators per process."""

from dataclasses import dataclass

from site_spine.config import Settings, get_settings
from site_spine.deployer import DeploymentPipeline
from site_spine.generator import ContentGenerator, TextGenerationClient
from site_spine.orchestration import JobQueue, WorkerPool, build_queue
from site_spine.orchestrator import CampaignOrchestrator
from site_spine.repositories import Repositories, build_repositories
from site_spine.vault import CredentialVault


@dataclass
class AppContext:
    settings: Settings
    repos: Repositories
    vault: CredentialVault
    queue: JobQueue
    pipeline: DeploymentPipeline
    orchestrator: CampaignOrchestrator

    def worker_pool(self, max_concurrent: int | None = None) -> WorkerPool:
        return WorkerPool(
            self.queue,
            self.pipeline.run_job,
            poll_interval=self.settings.worker_poll_interval,
            max_concurrent=max_concurrent or self.settings.worker_max_concurrent,
        )


def build_context(
    settings: Settings | None = None,
    *,
    repos: Repositories | None = None,
    queue: JobQueue | None = None,
    pipeline: DeploymentPipeline | None = None,
) -> AppContext:
    """Build the context from settings; any collaborator can be passed in instead."""
    settings = settings or get_settings()
    repos = repos or build_repositories(settings)
    queue = queue or build_queue(settings)
    vault = CredentialVault(settings.crypto_secret, legacy_zero_iv=settings.vault_legacy_zero_iv)

    if pipeline is None:
        client = TextGenerationClient(
            api_key=settings.llm_api_key,
            base_url=settings.llm_api_base_url,
            model=settings.llm_model,
            timeout=settings.llm_timeout,
        )
        pipeline = DeploymentPipeline(repos, vault, ContentGenerator(client))

    return AppContext(
        settings=settings,
        repos=repos,
        vault=vault,
        queue=queue,
        pipeline=pipeline,
        orchestrator=CampaignOrchestrator(repos, queue),
    )


_context: AppContext | None = None


def get_context() -> AppContext:
    """Get or create the process-wide context."""
    global _context
    if _context is None:
        _context = build_context()
    return _context


def set_context(context: AppContext | None) -> None:
    """Set the context instance (useful for testing)."""
    global _context
    _context = context
