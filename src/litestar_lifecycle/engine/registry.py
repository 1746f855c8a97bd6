"""Workflow registry for managing workflow definitions.

This module provides a registry for storing and retrieving workflow definitions
by id, with support for multiple versions of the same definition.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from litestar_lifecycle.core.definition import WorkflowDefinition

__all__ = ["WorkflowRegistry"]


class WorkflowRegistry:
    """Registry for storing and retrieving workflow definitions.

    Attributes:
        _definitions: Nested dict mapping definition id -> version -> WorkflowDefinition.
    """

    def __init__(self) -> None:
        """Initialize an empty workflow registry."""
        self._definitions: dict[str, dict[str, WorkflowDefinition]] = {}

    def register(self, definition: WorkflowDefinition) -> None:
        """Register a definition under its id and version.

        Registering the same id and version again replaces the stored definition.

        Args:
            definition: The workflow definition to register.

        Example:
            >>> registry = WorkflowRegistry()
            >>> registry.register(onboarding_definition)
        """
        self._definitions.setdefault(definition.id, {})[definition.version] = definition

    def get_definition(self, definition_id: str, version: str | None = None) -> WorkflowDefinition:
        """Retrieve a workflow definition by id and optional version.

        Args:
            definition_id: The definition id.
            version: The version. If None, returns the latest version.

        Returns:
            The requested WorkflowDefinition.

        Raises:
            KeyError: If the id or version is not found.

        Example:
            >>> definition = registry.get_definition("onboarding")
            >>> definition_v1 = registry.get_definition("onboarding", "1")
        """
        if definition_id not in self._definitions:
            msg = f"Workflow '{definition_id}' not found in registry"
            raise KeyError(msg)

        versions = self._definitions[definition_id]
        if version is None:
            version = max(versions.keys())

        if version not in versions:
            available = ", ".join(versions.keys())
            msg = f"Version '{version}' not found for workflow '{definition_id}'. Available versions: {available}"
            raise KeyError(msg)

        return versions[version]

    def list_definitions(self, active_only: bool = True) -> list[WorkflowDefinition]:
        """List registered definitions.

        Args:
            active_only: If True, only return the latest version of each definition.

        Returns:
            List of WorkflowDefinition objects.
        """
        definitions: list[WorkflowDefinition] = []
        for versions in self._definitions.values():
            if active_only:
                definitions.append(versions[max(versions.keys())])
            else:
                definitions.extend(versions.values())
        return definitions

    def unregister(self, definition_id: str, version: str | None = None) -> None:
        """Remove a definition, or one version of it, from the registry."""
        if definition_id not in self._definitions:
            return
        if version is None:
            del self._definitions[definition_id]
            return
        self._definitions[definition_id].pop(version, None)
        if not self._definitions[definition_id]:
            del self._definitions[definition_id]

    def has_workflow(self, definition_id: str, version: str | None = None) -> bool:
        """Check if a definition, or a specific version of it, is registered."""
        if definition_id not in self._definitions:
            return False
        return version is None or version in self._definitions[definition_id]

    def get_versions(self, definition_id: str) -> list[str]:
        """Get all registered versions of a definition.

        Raises:
            KeyError: If the definition id is not found.
        """
        if definition_id not in self._definitions:
            msg = f"Workflow '{definition_id}' not found in registry"
            raise KeyError(msg)
        return list(self._definitions[definition_id].keys())
