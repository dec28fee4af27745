"""Optional OpenTelemetry tracing for unillm.

Call ``unillm.instrument()`` once at startup to get a ``chat`` span per
provider call and an ``execute_tool`` span per tool run.  Requires
``opentelemetry-api``; without it every helper here is a no-op.
"""

import importlib.util
import logging
from contextlib import asynccontextmanager

from unillm.response import UsageInfo

logger = logging.getLogger(__name__)

_tracer = None


def instrument(*, tracer_name: str = "unillm") -> None:
    """Enable OpenTelemetry tracing for provider calls and tool runs.

    Configure a TracerProvider first, then::

        import unillm
        unillm.instrument()

    Args:
        tracer_name: Name passed to ``trace.get_tracer()``.

    Raises:
        ImportError: If ``opentelemetry-api`` is not installed
            (``pip install unillm[otel]``).
    """
    global _tracer
    if importlib.util.find_spec("opentelemetry.trace") is None:
        raise ImportError(
            "opentelemetry-api is required for instrumentation. "
            "Install it with: pip install unillm[otel]"
        )
    from opentelemetry import trace
    _tracer = trace.get_tracer(tracer_name)
    if isinstance(_tracer, trace.NoOpTracer):
        logger.info(
            "No TracerProvider configured, spans will be discarded."
        )
    else:
        logger.info("unillm instrumentation enabled")


def uninstrument() -> None:
    """Disable tracing.  Later calls emit no spans."""
    global _tracer
    _tracer = None


@asynccontextmanager
async def completion_span(system: str, model: str, *, stream: bool = False):
    """Wrap one provider call in a ``chat`` span."""
    if _tracer is None:
        yield None
        return
    from opentelemetry.trace import SpanKind

    with _tracer.start_as_current_span(
        f"chat {model}",
        kind=SpanKind.CLIENT,
        attributes={
            "gen_ai.operation.name": "chat",
            "gen_ai.provider.name": system,
            "gen_ai.request.model": model,
            "gen_ai.request.stream": stream,
        },
    ) as span:
        yield span


@asynccontextmanager
async def tool_span(tool_name: str, call_id: str):
    """Wrap a tool execution in an ``execute_tool`` span."""
    if _tracer is None:
        yield None
        return
    with _tracer.start_as_current_span(
        f"execute_tool {tool_name}",
        attributes={
            "gen_ai.operation.name": "execute_tool",
            "gen_ai.tool.name": tool_name,
            "gen_ai.tool.call.id": call_id,
        },
    ) as span:
        yield span


def record_usage(span, usage: UsageInfo | None, response_model: str | None = None) -> None:
    """Set token-usage and response-model attributes on a span."""
    if span is None:
        return
    if usage is not None:
        if usage.prompt_tokens is not None:
            span.set_attribute("gen_ai.usage.input_tokens", usage.prompt_tokens)
        if usage.completion_tokens is not None:
            span.set_attribute("gen_ai.usage.output_tokens", usage.completion_tokens)
    if response_model:
        span.set_attribute("gen_ai.response.model", response_model)


def record_error(span, exception: BaseException) -> None:
    """Record an exception and set ERROR status on a span.

    No-ops when *span* is ``None`` (tracing disabled).
    """
    if span is None:
        return
    from opentelemetry.trace import StatusCode

    span.set_status(StatusCode.ERROR, str(exception))
    span.record_exception(exception)
    span.set_attribute("error.type", type(exception).__qualname__)
