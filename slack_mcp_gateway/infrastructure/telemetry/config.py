"""OpenTelemetry configuration and initialization.

Sets up the meter provider used by the gateway's metrics. Export goes to an
OTLP HTTP collector when ``monitoring.otlp_endpoint`` is set; otherwise the
provider records in-process only.
"""

import logging
from importlib.metadata import PackageNotFoundError, version

from opentelemetry import metrics
from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import MetricReader, PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource

from slack_mcp_gateway.configuration.config import MonitoringConfig

logger = logging.getLogger(__name__)

SERVICE_NAME = "slack-mcp-gateway"

# Global provider (cached after initialization)
_METER_PROVIDER: MeterProvider | None = None


def _reset_providers() -> None:
    """Reset global provider (for testing)."""
    global _METER_PROVIDER
    _METER_PROVIDER = None


def _create_resource() -> Resource:
    """Create OpenTelemetry Resource with service attributes."""
    try:
        service_version = version(SERVICE_NAME)
    except PackageNotFoundError:
        service_version = "0.0.0"
    return Resource.create({"service.name": SERVICE_NAME, "service.version": service_version})


def _metrics_endpoint(endpoint: str) -> str:
    # HTTP exporter - ensure path includes /v1/metrics
    if not endpoint.endswith("/v1/metrics"):
        endpoint = f"{endpoint.rstrip('/')}/v1/metrics"
    return endpoint


def configure_meter_provider(
    monitoring: MonitoringConfig | None = None,
    force_reset: bool = False,
    readers: list[MetricReader] | None = None,
) -> MeterProvider | None:
    """Configure and return the meter provider.

    Args:
        monitoring: Monitoring section of the config; defaults apply when None.
        force_reset: Force reconfiguration even if already configured.
        readers: Extra metric readers (tests attach an in-memory reader).

    Returns:
        MeterProvider if monitoring is enabled, None otherwise.
    """
    global _METER_PROVIDER

    monitoring = monitoring or MonitoringConfig()
    if not monitoring.enabled:
        logger.info("Monitoring is disabled")
        if force_reset:
            shutdown_telemetry()
        return None

    if _METER_PROVIDER is not None and not force_reset:
        return _METER_PROVIDER
    if _METER_PROVIDER is not None:
        shutdown_telemetry()

    metric_readers: list[MetricReader] = list(readers or [])
    if monitoring.otlp_endpoint:
        exporter = OTLPMetricExporter(endpoint=_metrics_endpoint(monitoring.otlp_endpoint))
        metric_readers.append(
            PeriodicExportingMetricReader(
                exporter, export_interval_millis=monitoring.export_interval_ms
            )
        )
    else:
        logger.info("No OTLP endpoint configured, metrics are not exported")

    provider = MeterProvider(resource=_create_resource(), metric_readers=metric_readers)
    _METER_PROVIDER = provider
    logger.info("Meter provider configured")
    return provider


def get_meter(instrumentation_name: str = SERVICE_NAME) -> metrics.Meter | None:
    """Get a meter, or None when no provider is configured."""
    if _METER_PROVIDER is None:
        return None
    return _METER_PROVIDER.get_meter(instrumentation_name)


def shutdown_telemetry() -> None:
    """Flush and shut down the meter provider."""
    global _METER_PROVIDER

    if _METER_PROVIDER is None:
        return
    try:
        _METER_PROVIDER.shutdown()
        logger.info("Meter provider shutdown complete")
    except Exception as e:
        logger.error(f"Error shutting down meter provider: {e}")
    finally:
        _METER_PROVIDER = None


def get_meter_provider() -> MeterProvider | None:
    return _METER_PROVIDER
