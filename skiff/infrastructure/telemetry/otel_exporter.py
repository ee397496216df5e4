"""
OpenTelemetry Exporter for Skiff

Architectural Intent:
- Exports deployment lifecycle telemetry to OTLP-compatible backends
- Driven by Job domain events from the event bus, so the pipeline itself
  carries no telemetry calls
- One trace span per deployment, from JobStartedEvent to the terminal event
- Recorded metrics are always kept in a bounded local buffer; the SDK is
  only initialized when an endpoint is configured

Security:
- Endpoint defaults to empty string (must be explicitly configured)
- Non-localhost http:// endpoints rejected unless insecure=True
"""

from __future__ import annotations
from collections import deque
from datetime import datetime, UTC
from typing import Any, Optional
from urllib.parse import urlparse
import logging
import time

from skiff.domain.entities.job import JobFailedEvent, JobStartedEvent, JobSucceededEvent
from skiff.domain.ports.event_bus_port import EventBusPort
from skiff.infrastructure.config import TelemetryConfig

logger = logging.getLogger(__name__)

DEPLOYMENTS_STARTED = "skiff.deployments.started"
DEPLOYMENTS_FINISHED = "skiff.deployments.finished"
DEPLOYMENT_DURATION = "skiff.deployment.duration_ms"


def validate_endpoint(config: TelemetryConfig) -> None:
    if not config.endpoint:
        return
    parsed = urlparse(config.endpoint)
    is_localhost = parsed.hostname in ("localhost", "127.0.0.1", "::1")
    if parsed.scheme == "http" and not is_localhost and not config.insecure:
        raise ValueError(
            f"Non-localhost HTTP endpoint '{config.endpoint}' requires "
            "insecure=True or use https://"
        )


class DeploymentTelemetry:
    """Counts deployments, times them and traces each one as a span."""

    def __init__(self, config: Optional[TelemetryConfig] = None, buffer_size: int = 1000):
        self.config = config or TelemetryConfig()
        validate_endpoint(self.config)
        self._initialized = False
        self._metrics_buffer: deque[dict[str, Any]] = deque(maxlen=buffer_size)
        self._meter: Any = None
        self._tracer: Any = None
        self._providers: list[Any] = []
        self._instruments: dict[str, Any] = {}
        self._running: dict[str, tuple[float, Any]] = {}

    @property
    def enabled(self) -> bool:
        return self._initialized

    @property
    def metrics(self) -> list[dict[str, Any]]:
        return list(self._metrics_buffer)

    async def initialize(self) -> None:
        """Initialize OpenTelemetry SDK and exporters."""
        if not self.config.endpoint:
            logger.info("OTEL endpoint not configured, telemetry disabled")
            return

        try:
            from opentelemetry import metrics, trace
            from opentelemetry.sdk.metrics import MeterProvider
            from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
            from opentelemetry.sdk.resources import Resource, SERVICE_NAME
            from opentelemetry.sdk.trace import TracerProvider
            from opentelemetry.sdk.trace.export import BatchSpanProcessor
            from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import (
                OTLPMetricExporter,
            )
            from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (
                OTLPSpanExporter,
            )

            resource = Resource(
                attributes={
                    SERVICE_NAME: self.config.service_name,
                    "environment": self.config.environment,
                }
            )
            insecure = self.config.insecure or urlparse(self.config.endpoint).scheme == "http"

            tracer_provider = TracerProvider(resource=resource)
            tracer_provider.add_span_processor(
                BatchSpanProcessor(
                    OTLPSpanExporter(endpoint=self.config.endpoint, insecure=insecure)
                )
            )
            reader = PeriodicExportingMetricReader(
                OTLPMetricExporter(endpoint=self.config.endpoint, insecure=insecure)
            )
            meter_provider = MeterProvider(resource=resource, metric_readers=[reader])

            trace.set_tracer_provider(tracer_provider)
            metrics.set_meter_provider(meter_provider)
            self._tracer = trace.get_tracer(__name__)
            self._meter = metrics.get_meter(__name__)
            self._providers = [tracer_provider, meter_provider]
            self._initialized = True
            logger.info("Exporting telemetry to %s", self.config.endpoint)
        except Exception as e:
            logger.error("Failed to initialize OTEL: %s", e)
            self._initialized = False

    def _instrument(self, name: str, unit: str) -> Any:
        if name not in self._instruments:
            if name == DEPLOYMENT_DURATION:
                self._instruments[name] = self._meter.create_histogram(name, unit=unit)
            else:
                self._instruments[name] = self._meter.create_counter(name, unit=unit)
        return self._instruments[name]

    def record_metric(
        self,
        name: str,
        value: float,
        unit: str = "",
        attributes: Optional[dict[str, str]] = None,
    ) -> None:
        """Record a metric value."""
        attributes = attributes or {}
        self._metrics_buffer.append(
            {
                "name": name,
                "value": value,
                "unit": unit,
                "attributes": attributes,
                "timestamp": datetime.now(UTC).isoformat(),
            }
        )
        if not self._initialized:
            return
        instrument = self._instrument(name, unit)
        if name == DEPLOYMENT_DURATION:
            instrument.record(value, attributes=attributes)
        else:
            instrument.add(value, attributes=attributes)

    # ---- event bus handlers -------------------------------------------------

    async def on_started(self, event: JobStartedEvent) -> None:
        span = None
        if self._initialized:
            span = self._tracer.start_span(
                "deployment",
                attributes={
                    "skiff.job_id": event.aggregate_id,
                    "skiff.source_ref": event.source_ref,
                    "skiff.branch": event.branch,
                },
            )
        self._running[event.aggregate_id] = (time.monotonic(), span)
        self.record_metric(DEPLOYMENTS_STARTED, 1)

    async def on_succeeded(self, event: JobSucceededEvent) -> None:
        self._finish(event.aggregate_id, "succeeded", {"skiff.content_id": event.content_id})

    async def on_failed(self, event: JobFailedEvent) -> None:
        self._finish(event.aggregate_id, "failed", {"skiff.error": event.error_message})

    def _finish(self, job_id: str, status: str, span_attributes: dict[str, str]) -> None:
        started, span = self._running.pop(job_id, (None, None))
        self.record_metric(DEPLOYMENTS_FINISHED, 1, attributes={"status": status})
        if started is not None:
            self.record_metric(
                DEPLOYMENT_DURATION,
                (time.monotonic() - started) * 1000.0,
                unit="ms",
                attributes={"status": status},
            )
        if span is not None:
            span.set_attribute("skiff.status", status)
            for key, value in span_attributes.items():
                span.set_attribute(key, value)
            span.end()

    def subscribe_to(self, event_bus: EventBusPort) -> None:
        event_bus.subscribe(JobStartedEvent, self.on_started)
        event_bus.subscribe(JobSucceededEvent, self.on_succeeded)
        event_bus.subscribe(JobFailedEvent, self.on_failed)

    def shutdown(self) -> None:
        for provider in self._providers:
            provider.shutdown()
        self._providers = []
        self._initialized = False
