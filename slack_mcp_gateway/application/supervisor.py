"""
Process supervisor.

Loads configuration, builds the provider registry and MCP clients, publishes
an immutable ``RuntimeSnapshot``, wires the chat frontend to the
conversation manager, and handles reload and shutdown.
"""

import asyncio
import logging
import signal
from collections.abc import Callable, Iterable

from slack_mcp_gateway.application.services.controller import ConversationManager
from slack_mcp_gateway.application.services.snapshot import RuntimeSnapshot
from slack_mcp_gateway.configuration.config import (
    MIN_RELOAD_INTERVAL_SECONDS,
    GatewayConfig,
    SlackConfig,
    load_config,
    load_custom_prompt,
)
from slack_mcp_gateway.domain.exceptions.config import ConfigError
from slack_mcp_gateway.domain.exceptions.mcp import MCPError
from slack_mcp_gateway.domain.llm_providers.exceptions import LLMError
from slack_mcp_gateway.domain.model.channels.message import ChannelAdapter
from slack_mcp_gateway.infrastructure.llm.factories import (
    ProviderFactoryRegistry,
    register_default_factories,
)
from slack_mcp_gateway.infrastructure.llm.registry import ProviderRegistry
from slack_mcp_gateway.infrastructure.mcp.client import MCPClient
from slack_mcp_gateway.infrastructure.mcp.tool_registry import ToolRegistry
from slack_mcp_gateway.infrastructure.mcp.transport.factory import (
    TransportFactory,
    register_builtin_transports,
)
from slack_mcp_gateway.infrastructure.telemetry.config import (
    configure_meter_provider,
    shutdown_telemetry,
)
from slack_mcp_gateway.infrastructure.telemetry.metrics import record_reload

logger = logging.getLogger(__name__)

ConfigLoader = Callable[[str], GatewayConfig]
AdapterFactory = Callable[[SlackConfig], ChannelAdapter]

RELOAD_SIGNALS = ("SIGHUP", "SIGUSR1")
SHUTDOWN_SIGNALS = ("SIGINT", "SIGTERM")


def _default_adapter_factory(slack: SlackConfig) -> ChannelAdapter:
    from slack_mcp_gateway.infrastructure.channels.slack.adapter import SlackAdapter

    return SlackAdapter(slack)


class Supervisor:
    """
    Owns the runtime lifecycle.

    Example:
        supervisor = Supervisor("config.yaml")
        exit_code = await supervisor.run()
    """

    def __init__(
        self,
        config_path: str,
        model_override: str | None = None,
        config_loader: ConfigLoader | None = None,
        adapter_factory: AdapterFactory | None = None,
        transport_factory: TransportFactory | None = None,
        provider_factories: ProviderFactoryRegistry | None = None,
    ) -> None:
        self._config_path = config_path
        self._model_override = model_override
        self._config_loader = config_loader or load_config
        self._adapter_factory = adapter_factory or _default_adapter_factory
        self._transport_factory = transport_factory
        self._provider_factories = provider_factories

        self._snapshot: RuntimeSnapshot | None = None
        self._swap_lock = asyncio.Lock()
        self._stop_event = asyncio.Event()
        self._adapter: ChannelAdapter | None = None
        self._manager: ConversationManager | None = None
        self._reload_task: asyncio.Task | None = None
        self._signal_tasks: set[asyncio.Task] = set()
        self._installed_signals: list[int] = []
        self._shut_down = False

    @property
    def snapshot(self) -> RuntimeSnapshot:
        if self._snapshot is None:
            raise RuntimeError("Supervisor has not been started")
        return self._snapshot

    def get_snapshot(self) -> RuntimeSnapshot:
        return self.snapshot

    @property
    def manager(self) -> ConversationManager | None:
        return self._manager

    def _load_config(self) -> GatewayConfig:
        logger.info(f"[Supervisor] Loading configuration from {self._config_path}")
        return self._config_loader(self._config_path)

    async def _start_clients(
        self, config: GatewayConfig
    ) -> tuple[dict[str, MCPClient], dict[str, str]]:
        """Initialize every enabled server one after another."""
        clients: dict[str, MCPClient] = {}
        failures: dict[str, str] = {}

        for spec in config.enabled_server_specs():
            client = MCPClient(spec, self._transport_factory, config.timeouts, config.retry)
            try:
                await client.initialize()
                await client.list_tools(timeout=config.timeouts.mcp_list_tools)
            except MCPError as e:
                logger.error(f"[Supervisor] MCP server {spec.name} failed to start: {e}")
                failures[spec.name] = str(e)
                await client.close()
                continue
            clients[spec.name] = client
            logger.info(
                f"[Supervisor] MCP server {spec.name} ready with {len(client.tools)} tools"
            )

        return clients, failures

    async def build_snapshot(self, config: GatewayConfig, generation: int = 1) -> RuntimeSnapshot:
        """
        Build providers, clients and tools for ``config``.

        Raises:
            ProviderError: If no LLM provider could be created.
            ConfigError: If servers are configured but none started.
        """
        if self._provider_factories is None:
            self._provider_factories = register_default_factories()
        if self._transport_factory is None:
            self._transport_factory = register_builtin_transports()

        providers = ProviderRegistry.from_config(config.llm, self._provider_factories, config.timeouts)
        logger.info(
            f"[Supervisor] LLM providers: {providers.names()} (primary: {providers.primary_name})"
        )

        clients, failures = await self._start_clients(config)
        if failures and not clients:
            raise ConfigError(
                "no MCP clients initialized", {"failures": failures}
            )

        tools = ToolRegistry()
        for name, client in clients.items():
            tools.register_server_tools(name, client.tools, client.spec.tool_filter)
            client.add_close_listener(self._on_client_closed(tools))
        stats = tools.stats
        logger.info(
            f"[Supervisor] Registered {stats.registered} tools from {len(clients)} servers "
            f"({stats.filtered} filtered, {stats.collisions} collisions)"
        )

        return RuntimeSnapshot(
            config=config,
            providers=providers,
            clients=clients,
            tools=tools,
            system_prompt=load_custom_prompt(config.llm),
            generation=generation,
        )

    @staticmethod
    def _on_client_closed(tools: ToolRegistry) -> Callable[[MCPClient], None]:
        def listener(client: MCPClient) -> None:
            removed = tools.remove_server(client.name)
            logger.error(
                f"[Supervisor] MCP server {client.name} closed unexpectedly; "
                f"removed {removed} tools"
            )

        return listener

    async def start(self) -> None:
        """
        Load config and bring up telemetry, providers, clients and the frontend.

        Raises:
            ConfigError: On invalid config or when no MCP client started.
            LLMError: When no LLM provider is usable.
        """
        config = self._load_config()
        configure_meter_provider(config.monitoring)

        snapshot = await self.build_snapshot(config)
        self._snapshot = snapshot
        try:
            self._adapter = self._adapter_factory(config.slack)
            self._manager = ConversationManager(
                self._adapter, self.get_snapshot, model_override=self._model_override
            )
            self._manager.start()
            await self._adapter.connect()
        except Exception:
            await self._close_clients(snapshot.clients.values())
            raise

        interval = config.reload.interval_seconds
        if config.reload.enabled and interval > 0:
            interval = max(interval, MIN_RELOAD_INTERVAL_SECONDS)
            self._reload_task = asyncio.create_task(
                self._periodic_reload(interval), name="periodic-reload"
            )
            logger.info(f"[Supervisor] Periodic reload every {interval}s")

        logger.info("[Supervisor] Started")

    async def _periodic_reload(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            await self.reload("periodic")

    async def reload(self, trigger: str = "manual") -> bool:
        """
        Rebuild the runtime from the config file and swap it in.

        Turns already running keep the snapshot they started with. A failed
        reload keeps the current snapshot. Returns True on success.
        """
        if self._snapshot is None:
            raise RuntimeError("Supervisor has not been started")

        logger.info(f"[Supervisor] Reload requested ({trigger})")
        try:
            config = self._load_config()
            new_snapshot = await self.build_snapshot(config, self._snapshot.generation + 1)
        except (ConfigError, LLMError) as e:
            logger.error(f"[Supervisor] Reload failed, keeping current configuration: {e}")
            return False

        async with self._swap_lock:
            old_snapshot = self._snapshot
            self._snapshot = new_snapshot
            if self._manager is not None:
                self._manager.configure(new_snapshot)

        record_reload(trigger)
        logger.info(f"[Supervisor] Reload complete (generation {new_snapshot.generation})")
        await self._close_clients(old_snapshot.clients.values())
        return True

    def install_signal_handlers(self) -> None:
        """SIGHUP and SIGUSR1 reload; SIGINT and SIGTERM stop."""
        loop = asyncio.get_running_loop()
        for name in RELOAD_SIGNALS + SHUTDOWN_SIGNALS:
            signum = getattr(signal, name, None)
            if signum is None:
                continue
            callback = self._request_reload if name in RELOAD_SIGNALS else self.request_stop
            try:
                loop.add_signal_handler(signum, callback)
            except (NotImplementedError, RuntimeError) as e:
                logger.warning(f"[Supervisor] Cannot install handler for {name}: {e}")
                continue
            self._installed_signals.append(signum)

    def _remove_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for signum in self._installed_signals:
            loop.remove_signal_handler(signum)
        self._installed_signals.clear()

    def _request_reload(self) -> None:
        task = asyncio.create_task(self.reload("signal"))
        self._signal_tasks.add(task)
        task.add_done_callback(self._signal_tasks.discard)

    def request_stop(self) -> None:
        logger.info("[Supervisor] Shutdown requested")
        self._stop_event.set()

    async def run(self) -> int:
        """Start, serve until a stop signal, then shut down. Returns the exit code."""
        await self.start()
        self.install_signal_handlers()
        try:
            await self._stop_event.wait()
        finally:
            self._remove_signal_handlers()
            await self.shutdown()
        return 0

    async def _close_clients(self, clients: Iterable[MCPClient]) -> None:
        for client in list(clients):
            try:
                await client.close()
            except MCPError as e:
                logger.warning(f"[Supervisor] Error closing MCP server {client.name}: {e}")

    async def shutdown(self) -> None:
        """Drain turns, disconnect the frontend and close every MCP client."""
        if self._shut_down:
            return
        self._shut_down = True
        logger.info("[Supervisor] Shutting down")

        tasks = [t for t in (self._reload_task, *self._signal_tasks) if t is not None]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._reload_task = None

        if self._manager is not None:
            await self._manager.drain()
        if self._adapter is not None:
            try:
                await self._adapter.disconnect()
            except Exception as e:
                logger.warning(f"[Supervisor] Error disconnecting frontend: {e}")

        async with self._swap_lock:
            snapshot = self._snapshot
        if snapshot is not None:
            await self._close_clients(snapshot.clients.values())

        shutdown_telemetry()
        logger.info("[Supervisor] Shutdown complete")
