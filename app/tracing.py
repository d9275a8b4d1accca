from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from app.config import Settings, settings

TRACER_NAME = "uploads"
# Probe and scrape endpoints would otherwise dominate the trace volume.
UNTRACED_ROUTES = "health,version,metrics"

_provider: TracerProvider | None = None


def _build_provider(config: Settings) -> TracerProvider:
    resource = Resource.create({SERVICE_NAME: config.tracing_service_name, SERVICE_VERSION: config.app_version})
    provider = TracerProvider(resource=resource)
    exporter = OTLPSpanExporter(endpoint=config.otlp_endpoint, insecure=config.otlp_insecure)
    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)
    return provider


def setup_tracing(app, config: Settings = settings) -> bool:
    """Export spans over OTLP and instrument ``app`` when tracing is enabled.

    The provider is process-wide and built once; every app instance handed in
    afterwards is instrumented against it.
    """
    global _provider
    if not config.tracing_enabled:
        return False
    if _provider is None:
        _provider = _build_provider(config)
    FastAPIInstrumentor.instrument_app(app, tracer_provider=_provider, excluded_urls=UNTRACED_ROUTES)
    return True


def tracer() -> trace.Tracer:
    return trace.get_tracer(TRACER_NAME)
