"""Litestar plugin for lifecycle integration.

This module provides the LifecyclePlugin for integrating litestar-lifecycle
with Litestar applications.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from litestar.di import Provide
from litestar.plugins import InitPluginProtocol

from litestar_lifecycle.engine.resume import PollingConfig
from litestar_lifecycle.runtime import LifecycleRuntime, build_runtime
from litestar_lifecycle.sync.dead_letter import ReplayPolicy
from litestar_lifecycle.sync.retry import RetryPolicy

if TYPE_CHECKING:
    from litestar.config.app import AppConfig

    from litestar_lifecycle.core.definition import WorkflowDefinition
    from litestar_lifecycle.core.protocols import NotificationService, RecordStore

__all__ = ["LifecyclePlugin", "LifecyclePluginConfig"]


@dataclass
class LifecyclePluginConfig:
    """Configuration for the LifecyclePlugin.

    Attributes:
        store: Record store shared by every component. Defaults to an
            in-memory store; pass a ``SQLAlchemyRecordStore`` for persistence.
        notifier: Notification service. Defaults to one that only logs.
        definitions: Workflow definitions to register on app init.
        retry_policy: Retry policy for status syncs and resumes.
        replay_policy: Dead-letter replay configuration.
        polling: Resume sweep configuration. The sweep starts on app startup
            when ``polling.enabled`` is True.
        skip_unblocks_dependents: Whether a skipped task unblocks its dependents.
        strict_escalation: Whether an unresolvable escalation target raises
            instead of falling back to a notification.
        max_steps_per_run: Step limit for one engine run.
        dependency_keys: Dependency injection key per component.
        enable_api: Whether to enable the REST API endpoints. Defaults to True.
        api_path_prefix: URL path prefix for all lifecycle API endpoints.
            Defaults to "/lifecycle".
        api_guards: List of Litestar guards to apply to all lifecycle API endpoints.
        api_tags: OpenAPI tags to apply to lifecycle API endpoints.
        include_api_in_schema: Whether to include API endpoints in OpenAPI schema.
            Defaults to True.
    """

    store: RecordStore | None = None
    notifier: NotificationService | None = None
    definitions: list[WorkflowDefinition] = field(default_factory=list)
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    replay_policy: ReplayPolicy = field(default_factory=ReplayPolicy)
    polling: PollingConfig = field(default_factory=PollingConfig)
    skip_unblocks_dependents: bool = True
    strict_escalation: bool = False
    max_steps_per_run: int = 100
    dependency_keys: dict[str, str] = field(
        default_factory=lambda: {
            "runtime": "lifecycle",
            "engine": "workflow_engine",
            "registry": "workflow_registry",
            "tasks": "task_service",
            "approvals": "approval_engine",
            "bridge": "status_bridge",
            "coordinator": "resume_coordinator",
            "dead_letters": "dead_letter_queue",
            "replayer": "dead_letter_replayer",
        }
    )
    enable_api: bool = True
    api_path_prefix: str = "/lifecycle"
    api_guards: list[Any] = field(default_factory=list)
    api_tags: list[str] = field(default_factory=lambda: ["Lifecycle"])
    include_api_in_schema: bool = True


class LifecyclePlugin(InitPluginProtocol):
    """Litestar plugin for HR lifecycle orchestration.

    This plugin wires the workflow engine, task and approval services, the
    status sync bridge and the resume coordinator, provides them through
    dependency injection, and manages the resume sweep with the application
    lifespan.

    Example:
        Basic usage::

            from litestar import Litestar
            from litestar_lifecycle import LifecyclePlugin, LifecyclePluginConfig

            app = Litestar(
                plugins=[LifecyclePlugin(config=LifecyclePluginConfig(definitions=[onboarding]))]
            )

        Using in a route handler::

            from litestar import post
            from litestar_lifecycle import TaskAssignmentService


            @post("/processes/{process_id:int}/laptop")
            async def order_laptop(process_id: int, task_service: TaskAssignmentService) -> dict:
                task = await task_service.create_task(process_id, "Order laptop")
                return {"task_id": task.id}
    """

    __slots__ = ("_config", "_runtime")

    def __init__(self, config: LifecyclePluginConfig | None = None) -> None:
        """Initialize the plugin.

        Args:
            config: Optional configuration for the plugin.
        """
        self._config = config or LifecyclePluginConfig()
        self._runtime: LifecycleRuntime | None = None

    @property
    def runtime(self) -> LifecycleRuntime:
        """Get the wired lifecycle components.

        Raises:
            RuntimeError: If accessed before plugin initialization.
        """
        if self._runtime is None:
            msg = "LifecyclePlugin has not been initialized. Access runtime after app startup."
            raise RuntimeError(msg)
        return self._runtime

    async def _on_startup(self) -> None:
        await self.runtime.startup()

    async def _on_shutdown(self) -> None:
        await self.runtime.shutdown()

    def on_app_init(self, app_config: AppConfig) -> AppConfig:
        """Initialize the plugin when the Litestar app starts.

        This method:
        1. Builds the lifecycle runtime from the configuration
        2. Adds dependency providers for each component
        3. Registers startup and shutdown hooks for the resume sweep
        4. Optionally registers REST API controllers and exception handlers

        Args:
            app_config: The Litestar application configuration.

        Returns:
            The modified application configuration.
        """
        config = self._config
        runtime = build_runtime(
            config.store,
            config.notifier,
            definitions=config.definitions,
            retry_policy=config.retry_policy,
            replay_policy=config.replay_policy,
            polling=config.polling,
            skip_unblocks_dependents=config.skip_unblocks_dependents,
            strict_escalation=config.strict_escalation,
            max_steps_per_run=config.max_steps_per_run,
        )
        self._runtime = runtime

        components: dict[str, Any] = {
            "runtime": runtime,
            "engine": runtime.engine,
            "registry": runtime.registry,
            "tasks": runtime.tasks,
            "approvals": runtime.approvals,
            "bridge": runtime.bridge,
            "coordinator": runtime.coordinator,
            "dead_letters": runtime.dead_letters,
            "replayer": runtime.replayer,
        }
        for name, key in config.dependency_keys.items():
            app_config.dependencies[key] = Provide(_provider(components[name]), sync_to_thread=False)

        app_config.on_startup.append(self._on_startup)
        app_config.on_shutdown.append(self._on_shutdown)

        # Register REST API controllers if enabled
        if config.enable_api:
            from litestar import Router

            from litestar_lifecycle.web.controllers import (
                AdminController,
                ApprovalController,
                ProcessController,
                TaskController,
                WorkflowInstanceController,
            )
            from litestar_lifecycle.web.exceptions import exception_handlers

            lifecycle_router = Router(
                path=config.api_path_prefix,
                route_handlers=[
                    WorkflowInstanceController,
                    TaskController,
                    ApprovalController,
                    ProcessController,
                    AdminController,
                ],
                guards=config.api_guards,
                tags=config.api_tags,
                include_in_schema=config.include_api_in_schema,
            )
            app_config.route_handlers.append(lifecycle_router)
            app_config.exception_handlers.update(exception_handlers())  # type: ignore[arg-type]

        return app_config


def _provider(component: Any) -> Any:
    def provide() -> Any:
        return component

    return provide
