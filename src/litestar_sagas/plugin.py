"""Litestar plugin for saga integration.

This module provides the SagaPlugin wiring the coordinator, the registries and the
event bus of litestar-sagas into a Litestar application.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from litestar.di import Provide
from litestar.plugins import InitPluginProtocol

from litestar_sagas.engine.coordinator import Coordinator, CoordinatorConfig
from litestar_sagas.engine.memory import InMemoryEventBus
from litestar_sagas.engine.registry import DefinitionRegistry, OperatorRegistry

if TYPE_CHECKING:
    from litestar.config.app import AppConfig

    from litestar_sagas.core.definition import WorkflowDefinition
    from litestar_sagas.core.events import WorkflowEvent
    from litestar_sagas.core.protocols import InstancePersistence, TransactionDriver
    from litestar_sagas.engine.memory import EventHandler

__all__ = ["SagaPlugin", "SagaPluginConfig"]


@dataclass
class SagaPluginConfig:
    """Configuration for the SagaPlugin.

    Attributes:
        operator_registry: Optional pre-configured OperatorRegistry. If not
            provided, a new one will be created.
        definition_registry: Optional pre-configured DefinitionRegistry. If not
            provided, a new one will be created.
        event_bus: Optional pre-configured InMemoryEventBus.
        persistence: Instance persistence used by the coordinator. Defaults to an
            in-memory store.
        transaction_driver: Optional transaction driver wrapped by each run.
        coordinator: Optional pre-configured Coordinator. If provided, the
            collaborators above are ignored.
        coordinator_config: Configuration for a coordinator built by the plugin.
        operators: Objects to register as operators, keyed by operator name.
        definitions: Definitions to publish on app init.
        subscriptions: ``(event_type, handler)`` pairs subscribed on app init.
        recover_on_startup: Resume every RUNNING instance in background tasks on
            app startup; unfinished resumptions are cancelled on shutdown.
        dependency_key_coordinator: DI key of the Coordinator.
        dependency_key_operators: DI key of the OperatorRegistry.
        dependency_key_definitions: DI key of the DefinitionRegistry.
        dependency_key_event_bus: DI key of the event bus.
    """

    operator_registry: OperatorRegistry | None = None
    definition_registry: DefinitionRegistry | None = None
    event_bus: InMemoryEventBus | None = None
    persistence: InstancePersistence | None = None
    transaction_driver: TransactionDriver | None = None
    coordinator: Coordinator | None = None
    coordinator_config: CoordinatorConfig = field(default_factory=CoordinatorConfig)
    operators: dict[str, Any] = field(default_factory=dict)
    definitions: list[WorkflowDefinition] = field(default_factory=list)
    subscriptions: list[tuple[type[WorkflowEvent], EventHandler]] = field(default_factory=list)
    recover_on_startup: bool = False
    dependency_key_coordinator: str = "saga_coordinator"
    dependency_key_operators: str = "operator_registry"
    dependency_key_definitions: str = "definition_registry"
    dependency_key_event_bus: str = "saga_event_bus"


class SagaPlugin(InitPluginProtocol):
    """Litestar plugin for saga orchestration.

    Registers the configured operators, publishes the configured definitions,
    subscribes event handlers and provides the coordinator and registries through
    dependency injection.

    Example:
        Basic usage::

            from litestar import Litestar, post
            from litestar_sagas import Coordinator, SagaPlugin, SagaPluginConfig

            app = Litestar(
                route_handlers=[place_order],
                plugins=[
                    SagaPlugin(
                        config=SagaPluginConfig(
                            operators={"inventory": inventory_service, "payments": payment_service},
                            definitions=[place_order_saga],
                        )
                    )
                ],
            )

        Using in a route handler::

            @post("/orders")
            async def place_order(data: dict, saga_coordinator: Coordinator) -> dict:
                instance = await saga_coordinator.start("place_order", "1.0.0", data)
                return {"instance_id": str(instance.id), "status": instance.status}
    """

    __slots__ = ("_config", "_coordinator")

    def __init__(self, config: SagaPluginConfig | None = None) -> None:
        """Initialize the plugin.

        Args:
            config: Optional configuration for the plugin.
        """
        self._config = config or SagaPluginConfig()
        self._coordinator: Coordinator | None = None

    @property
    def coordinator(self) -> Coordinator:
        """Get the coordinator.

        Raises:
            RuntimeError: If accessed before plugin initialization.
        """
        if self._coordinator is None:
            msg = "SagaPlugin has not been initialized. Access coordinator after app init."
            raise RuntimeError(msg)
        return self._coordinator

    def _build_coordinator(self) -> Coordinator:
        config = self._config
        if config.coordinator is not None:
            return config.coordinator
        return Coordinator(
            definitions=config.definition_registry or DefinitionRegistry(),
            operators=config.operator_registry or OperatorRegistry(),
            persistence=config.persistence,
            events=config.event_bus or InMemoryEventBus(),
            driver=config.transaction_driver,
            config=config.coordinator_config,
        )

    def on_app_init(self, app_config: AppConfig) -> AppConfig:
        """Wire the saga engine into the app.

        This method:
        1. Creates or uses the provided Coordinator and its collaborators
        2. Registers the configured operators and publishes the definitions
        3. Subscribes the configured event handlers
        4. Adds dependency providers to the app config
        5. Optionally resumes running instances in the background on startup

        Args:
            app_config: The Litestar application configuration.

        Returns:
            The modified application configuration.
        """
        coordinator = self._coordinator = self._build_coordinator()
        operators = coordinator.operators
        definitions = coordinator.definitions
        events = coordinator.events

        for name, obj in self._config.operators.items():
            if not isinstance(operators, OperatorRegistry):
                msg = "Operators can only be registered on an OperatorRegistry"
                raise TypeError(msg)
            operators.register_operator(name, obj)

        for definition in self._config.definitions:
            if not isinstance(definitions, DefinitionRegistry):
                msg = "Definitions can only be published on a DefinitionRegistry"
                raise TypeError(msg)
            definitions.publish(definition, validate=False)
            if coordinator.config.validate_definitions:
                coordinator.check_definition(definition)

        for event_type, handler in self._config.subscriptions:
            if not isinstance(events, InMemoryEventBus):
                msg = "Subscriptions can only be registered on an InMemoryEventBus"
                raise TypeError(msg)
            events.subscribe(event_type, handler)

        def provide_coordinator() -> Coordinator:
            return coordinator

        def provide_operators() -> Any:
            return operators

        def provide_definitions() -> Any:
            return definitions

        def provide_event_bus() -> Any:
            return events

        app_config.dependencies[self._config.dependency_key_coordinator] = Provide(
            provide_coordinator,
            sync_to_thread=False,
        )
        app_config.dependencies[self._config.dependency_key_operators] = Provide(
            provide_operators,
            sync_to_thread=False,
        )
        app_config.dependencies[self._config.dependency_key_definitions] = Provide(
            provide_definitions,
            sync_to_thread=False,
        )
        app_config.dependencies[self._config.dependency_key_event_bus] = Provide(
            provide_event_bus,
            sync_to_thread=False,
        )

        if self._config.recover_on_startup:

            async def recover_instances() -> None:
                await coordinator.recover_in_background()

            async def stop_recovery() -> None:
                await coordinator.shutdown()

            app_config.on_startup.append(recover_instances)
            app_config.on_shutdown.append(stop_recovery)

        return app_config
