"""Composition root.

Every collaborator is constructed once here and handed to the handlers that
need it; nothing below this module holds process-wide state.
"""

from __future__ import annotations

from dataclasses import dataclass

from brain.config.operations import ConfigService
from brain.config.rollback import ConfigRollbackManager
from brain.config.schema import BrainConfig
from brain.config.settings import Settings
from brain.config.store import ConfigStore
from brain.config.translation import NoteStoreConfigSync
from brain.errors import ConfigurationError
from brain.notes import NoteStore, NoteStoreClient, build_note_store
from brain.observability.logging import get_logger
from brain.project.git import GitRunner, current_branch, run_git
from brain.project.resolver import ProjectResolution, ProjectResolver
from brain.sessions.logs import SessionLogService
from brain.sessions.persistence import SessionPersistence
from brain.sessions.service import SessionService
from brain.workflows.completion import CompletionWorkflow
from brain.workflows.events import (
    AGENT_COMPLETED,
    AGENT_INVOKED,
    APPROVAL_DENIED,
    APPROVAL_GRANTED,
    APPROVAL_REQUESTED,
    FEATURE_COMPLETION_REQUESTED,
    SESSION_PROTOCOL_END,
    SESSION_PROTOCOL_START,
    EventBus,
)
from brain.workflows.hitl import HitlWorkflow
from brain.workflows.orchestrator import OrchestratorEngine
from brain.workflows.protocol_end import SessionProtocolEndWorkflow
from brain.workflows.protocol_start import SessionProtocolStartWorkflow
from brain.workflows.retry import RetryConfig
from brain.workflows.steps import StepJournal, build_step_journal

logger = get_logger(__name__)


@dataclass
class BrainRuntime:
    settings: Settings
    project: ProjectResolution | None
    notes: NoteStoreClient
    persistence: SessionPersistence
    sessions: SessionService
    logs: SessionLogService
    bus: EventBus
    journal: StepJournal
    orchestrator: OrchestratorEngine
    completion: CompletionWorkflow
    hitl: HitlWorkflow
    protocol_start: SessionProtocolStartWorkflow
    protocol_end: SessionProtocolEndWorkflow

    @property
    def working_directory(self) -> str | None:
        return self.project.effective_cwd if self.project else None


def retry_config_from_settings(settings: Settings) -> RetryConfig:
    return RetryConfig(
        max_attempts=settings.workflow_max_attempts,
        base_delay=settings.workflow_retry_base_delay,
    )


def build_runtime(
    settings: Settings,
    *,
    notes: NoteStore | None = None,
    project: ProjectResolution | None = None,
    git_runner: GitRunner = run_git,
) -> BrainRuntime:
    store = notes or build_note_store(
        settings.note_store_provider, settings.note_store_url, settings.note_store_timeout_seconds
    )
    client = NoteStoreClient(store, project=project.project_name if project else None)
    cwd = project.effective_cwd if project else None
    retry_config = retry_config_from_settings(settings)
    journal = build_step_journal(settings.step_journal_path)
    bus = EventBus()

    def branch() -> str | None:
        return current_branch(cwd, runner=git_runner, timeout=settings.git_timeout_seconds) if cwd else None

    persistence = SessionPersistence(client)
    logs = SessionLogService(client, git_branch=branch)
    sessions = SessionService(persistence, bus=bus, logs=logs)

    orchestrator = OrchestratorEngine(sessions, client, journal=journal, retry_config=retry_config)
    completion = CompletionWorkflow(retry_config=retry_config, notes=client)
    hitl = HitlWorkflow(notes=client, timeout_seconds=settings.hitl_timeout_seconds)
    protocol_start = SessionProtocolStartWorkflow(
        sessions,
        logs,
        client,
        journal=journal,
        retry_config=retry_config,
        git_runner=git_runner,
        git_timeout=settings.git_timeout_seconds,
    )
    protocol_end = SessionProtocolEndWorkflow(
        sessions,
        logs,
        journal=journal,
        retry_config=retry_config,
        git_runner=git_runner,
        git_timeout=settings.git_timeout_seconds,
        lint_command=settings.markdown_lint_command,
        lint_timeout=settings.markdown_lint_timeout_seconds,
    )

    bus.subscribe(AGENT_INVOKED, orchestrator.handle_agent_invoked)
    bus.subscribe(AGENT_COMPLETED, orchestrator.handle_agent_completed)
    bus.subscribe(FEATURE_COMPLETION_REQUESTED, completion.handle_completion_requested)
    bus.subscribe(APPROVAL_REQUESTED, hitl.handle_requested)
    bus.subscribe(APPROVAL_GRANTED, hitl.handle_granted)
    bus.subscribe(APPROVAL_DENIED, hitl.handle_denied)
    bus.subscribe(SESSION_PROTOCOL_START, protocol_start.handle_protocol_start)
    bus.subscribe(SESSION_PROTOCOL_END, protocol_end.handle_protocol_end)

    logger.debug(
        "runtime_built",
        project=project.project_name if project else None,
        provider=settings.note_store_provider,
    )
    return BrainRuntime(
        settings=settings,
        project=project,
        notes=client,
        persistence=persistence,
        sessions=sessions,
        logs=logs,
        bus=bus,
        journal=journal,
        orchestrator=orchestrator,
        completion=completion,
        hitl=hitl,
        protocol_start=protocol_start,
        protocol_end=protocol_end,
    )


def build_config_service(settings: Settings, store: ConfigStore | None = None) -> ConfigService:
    store = store or ConfigStore(xdg_config_home=settings.xdg_config_home or None)
    sync = NoteStoreConfigSync(settings.basic_memory_config_path).sync
    return ConfigService(
        store,
        ConfigRollbackManager(store, sync=sync),
        sync=sync,
        migration_warn_threshold=settings.migration_warn_threshold,
    )


def load_config(settings: Settings) -> BrainConfig:
    """The user's BrainConfig, or defaults when it is missing or unreadable."""
    store = ConfigStore(xdg_config_home=settings.xdg_config_home or None)
    try:
        return store.load()
    except ConfigurationError as exc:
        logger.warning("config_unreadable", path=str(store.path), error=exc.message)
        return BrainConfig()


def resolve_current_project(
    settings: Settings,
    *,
    explicit: str | None = None,
    cwd: str | None = None,
    config: BrainConfig | None = None,
    git_runner: GitRunner = run_git,
) -> ProjectResolution | None:
    resolver = ProjectResolver(
        config or load_config(settings),
        settings,
        git_runner=git_runner,
        git_timeout=settings.git_timeout_seconds,
    )
    return resolver.resolve(explicit, cwd)
