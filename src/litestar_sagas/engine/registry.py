"""Registries for operators and workflow definitions.

This module provides the explicit operator registry mapping ``(operator, method)``
names to callables, and a versioned in-process definition store.
"""

from __future__ import annotations

import inspect
from typing import TYPE_CHECKING, Any

from litestar_sagas.core.types import StepType
from litestar_sagas.exceptions import (
    MethodNotFoundError,
    OperatorNotFoundError,
    WorkflowNotFoundError,
    WorkflowValidationError,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

    from litestar_sagas.core.definition import WorkflowDefinition
    from litestar_sagas.core.types import OperatorCallable

__all__ = ["DefinitionRegistry", "OperatorRegistry"]


class OperatorRegistry:
    """Explicit mapping of ``(operator, method)`` names to callables.

    Operators are registered once during application bootstrap. Callables may be
    plain functions or coroutine functions.

    Example:
        >>> registry = OperatorRegistry()
        >>> registry.register("inventory", "reserve", inventory.reserve)
        >>> registry.register_operator("payments", payment_service, methods=["charge", "refund"])
        >>> registry.resolve("payments", "charge")
        <bound method PaymentService.charge ...>
    """

    def __init__(self) -> None:
        """Initialize an empty operator registry."""
        self._operators: dict[str, dict[str, OperatorCallable]] = {}

    def register(self, operator_name: str, method_name: str, fn: OperatorCallable) -> OperatorCallable:
        """Register a single operator method.

        Args:
            operator_name: Operator name referenced by steps.
            method_name: Method name referenced by steps.
            fn: The callable to invoke.

        Returns:
            The registered callable.

        Raises:
            TypeError: If ``fn`` is not callable.
        """
        if not callable(fn):
            msg = f"Operator method {operator_name}.{method_name} must be callable, got {type(fn).__name__}"
            raise TypeError(msg)
        self._operators.setdefault(operator_name, {})[method_name] = fn
        return fn

    def register_operator(self, operator_name: str, obj: Any, methods: Iterable[str] | None = None) -> None:
        """Register methods of an object under one operator name.

        Args:
            operator_name: Operator name referenced by steps.
            obj: Object exposing the methods.
            methods: Method names to register. Defaults to every public method.

        Raises:
            MethodNotFoundError: If a listed method is missing on ``obj``.
        """
        if methods is None:
            methods = [
                name
                for name, member in inspect.getmembers(obj, callable)
                if not name.startswith("_") and not inspect.isclass(member)
            ]
        for method_name in methods:
            fn = getattr(obj, method_name, None)
            if fn is None or not callable(fn):
                raise MethodNotFoundError(operator_name, method_name)
            self.register(operator_name, method_name, fn)
        self._operators.setdefault(operator_name, {})

    def unregister(self, operator_name: str) -> None:
        """Remove an operator and all of its methods."""
        self._operators.pop(operator_name, None)

    def resolve(self, operator_name: str, method_name: str) -> OperatorCallable:
        """Resolve an operator method.

        Raises:
            OperatorNotFoundError: If the operator is unknown.
            MethodNotFoundError: If the operator has no such method.
        """
        try:
            methods = self._operators[operator_name]
        except KeyError:
            raise OperatorNotFoundError(operator_name) from None
        try:
            return methods[method_name]
        except KeyError:
            raise MethodNotFoundError(operator_name, method_name) from None

    def has(self, operator_name: str, method_name: str | None = None) -> bool:
        """Check whether an operator, or one of its methods, is registered."""
        if operator_name not in self._operators:
            return False
        return method_name is None or method_name in self._operators[operator_name]

    def operators(self) -> list[str]:
        """Return the registered operator names."""
        return list(self._operators)

    def check_definition(self, definition: WorkflowDefinition) -> None:
        """Resolve every operator method a definition references.

        Args:
            definition: The definition to check.

        Raises:
            OperatorNotFoundError: If a step references an unknown operator.
            MethodNotFoundError: If a step references an unknown method.
        """
        for step in definition.all_steps():
            if step.kind in (StepType.OPERATOR_CALL, StepType.COMPENSATION) and step.operator and step.method:
                self.resolve(step.operator, step.method)


def _version_key(version: str) -> tuple[tuple[int, Any], ...]:
    return tuple((0, int(part)) if part.isdigit() else (1, part) for part in version.split("."))


class DefinitionRegistry:
    """Versioned store of published workflow definitions.

    A published ``name``/``version`` pair is immutable: publishing a different
    definition under the same pair is rejected, a change must be published as a
    new version.
    """

    def __init__(self) -> None:
        """Initialize an empty definition registry."""
        self._definitions: dict[str, dict[str, WorkflowDefinition]] = {}

    def publish(self, definition: WorkflowDefinition, *, validate: bool = True) -> WorkflowDefinition:
        """Publish a definition.

        Args:
            definition: The definition to publish.
            validate: Whether to reject definitions with authoring errors.

        Returns:
            The published definition.

        Raises:
            WorkflowValidationError: If validation is enabled and fails.
            ValueError: If a different definition is already published under
                the same name and version.

        Example:
            >>> registry = DefinitionRegistry()
            >>> registry.publish(place_order_v1)
            >>> registry.find_by_name_and_version("place_order", "1.0.0") is place_order_v1
            True
        """
        if validate and (errors := definition.validate()):
            raise WorkflowValidationError(errors)

        versions = self._definitions.setdefault(definition.name, {})
        existing = versions.get(definition.version)
        if existing is not None and existing is not definition:
            msg = (
                f"Workflow '{definition.name}' version '{definition.version}' is already published; "
                "publish a new version instead"
            )
            raise ValueError(msg)
        versions[definition.version] = definition
        return definition

    register = publish

    def find_by_name_and_version(self, name: str, version: str) -> WorkflowDefinition | None:
        """Return the definition published as ``name``/``version``, or None."""
        return self._definitions.get(name, {}).get(version)

    def get_definition(self, name: str, version: str | None = None) -> WorkflowDefinition:
        """Retrieve a definition by name and optional version.

        Args:
            name: The workflow name.
            version: The workflow version. If None, returns the latest version.

        Returns:
            The definition.

        Raises:
            WorkflowNotFoundError: If the name or version is not published.
        """
        versions = self._definitions.get(name)
        if not versions:
            raise WorkflowNotFoundError(name, version)
        if version is None:
            version = max(versions, key=_version_key)
        if version not in versions:
            raise WorkflowNotFoundError(name, version)
        return versions[version]

    def list_definitions(self, active_only: bool = True) -> list[WorkflowDefinition]:
        """List published definitions.

        Args:
            active_only: If True, only return the latest version of each workflow.

        Returns:
            List of definitions.
        """
        definitions: list[WorkflowDefinition] = []
        for versions in self._definitions.values():
            if active_only:
                definitions.append(versions[max(versions, key=_version_key)])
            else:
                definitions.extend(versions.values())
        return definitions

    def get_versions(self, name: str) -> list[str]:
        """Get all published versions of a workflow, oldest first.

        Raises:
            WorkflowNotFoundError: If the workflow name is not published.
        """
        if name not in self._definitions:
            raise WorkflowNotFoundError(name)
        return sorted(self._definitions[name], key=_version_key)

    def unregister(self, name: str, version: str | None = None) -> None:
        """Withdraw a workflow, or a single version of it.

        Args:
            name: The workflow name.
            version: The specific version to remove. If None, removes all versions.
        """
        if name not in self._definitions:
            return
        if version is None:
            del self._definitions[name]
            return
        self._definitions[name].pop(version, None)
        if not self._definitions[name]:
            del self._definitions[name]

    def has_workflow(self, name: str, version: str | None = None) -> bool:
        """Check if a workflow, or a specific version of it, is published."""
        if name not in self._definitions:
            return False
        return version is None or version in self._definitions[name]
