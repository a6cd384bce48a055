"""Metrics clients accepted by :class:`~graphene_django_statsd.instrumentation.GraphQLStatsd`.

Any object exposing ``increment`` and ``timing`` with the statsd-style
signature below can be injected.  Three implementations ship with the
package:

- :class:`LoggingMetricsClient` logs every measurement (the default).
- :class:`PrometheusMetricsClient` records into Prometheus metrics served by
  :func:`~graphene_django_statsd.views.metrics_view`.
- :class:`DogStatsdMetricsClient` forwards to a DogStatsD agent.
"""

import asyncio
import inspect
import logging
from typing import List, Optional, Protocol, runtime_checkable
from urllib.parse import urlparse

from datadog.dogstatsd import DogStatsd
from django.core.exceptions import ImproperlyConfigured

from graphene_django_statsd.metrics import (
    RESOLVE_ERROR,
    RESPONSE_TIME,
    graphql_resolve_errors_total,
    graphql_response_time_seconds,
)

logger = logging.getLogger(__name__)

LOGGER_NAME = "graphene_django_statsd.metrics_log"
_LOGGER_CONFIGURED = False

DEFAULT_DOGSTATSD_PORT = 8125


class InvalidMetricsClient(ImproperlyConfigured):
    """The injected metrics client does not implement the required interface."""


@runtime_checkable
class MetricsClient(Protocol):
    def increment(self, name: str, value: float, sample_rate: float, tags: List[str]) -> Optional[object]: ...

    def timing(self, name: str, value: float, sample_rate: float, tags: List[str]) -> Optional[object]: ...


def validate_metrics_client(client):
    """Ensure ``client`` can be used for instrumentation.

    Raises:
        InvalidMetricsClient: If the client is missing or lacks ``increment`` / ``timing``.
    """
    if client is None:
        raise InvalidMetricsClient("A metrics client is required")
    missing = [name for name in ("timing", "increment") if not callable(getattr(client, name, None))]
    if missing:
        raise InvalidMetricsClient(f"Metrics client must implement the {missing[0]} method")
    return client


def dispatch(result):
    """Drive an awaitable returned by an asynchronous metrics client.

    With a running event loop the awaitable is scheduled and left to finish on
    its own; without one it is run to completion.
    """
    if not inspect.isawaitable(result):
        return result
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(_await(result))
    task = asyncio.ensure_future(result)
    task.add_done_callback(_log_task_failure)
    return task


async def _await(awaitable):
    return await awaitable


def _log_task_failure(task):
    if not task.cancelled() and task.exception() is not None:
        logger.error("Asynchronous metrics client call failed", exc_info=task.exception())


def _get_logger():
    """Return the metrics log logger, ensuring it has a handler.

    Deferred setup avoids being overwritten by Django's ``dictConfig``
    which runs during ``django.setup()``.
    """
    global _LOGGER_CONFIGURED  # noqa: PLW0603  # pylint: disable=global-statement
    log = logging.getLogger(LOGGER_NAME)
    if not _LOGGER_CONFIGURED:
        _LOGGER_CONFIGURED = True
        if not log.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(
                logging.Formatter(
                    "%(asctime)s.%(msecs)03d %(levelname)-7s %(name)s : %(message)s",
                    datefmt="%H:%M:%S",
                )
            )
            log.addHandler(handler)
        log.setLevel(logging.INFO)
        log.propagate = False
    return log


class LoggingMetricsClient:
    """Metrics client that writes each measurement to the ``metrics_log`` logger.

    Useful during development and as the fallback when no real backend has
    been configured.
    """

    def __init__(self):
        logger.warning("Using the default logging metrics client for GraphQL instrumentation")

    @staticmethod
    def _emit(kind, name, value, sample_rate, tags):
        _get_logger().info(
            "graphql_statsd_%s",
            kind,
            extra={
                "metric": name,
                "value": value,
                "sample_rate": sample_rate,
                "tags": list(tags),
            },
        )

    def increment(self, name, value, sample_rate, tags):
        self._emit("increment", name, value, sample_rate, tags)

    def timing(self, name, value, sample_rate, tags):
        self._emit("timing", name, value, sample_rate, tags)


# Tag keys that map onto a dedicated Prometheus label.
_TAG_LABELS = {
    "error": "error",
    "queryHash": "query_hash",
    "operationName": "operation_name",
    "resolveName": "resolve_name",
}


def _tags_to_labels(tags, labelnames):
    """Translate ``key:value`` tags into a label dict for ``labelnames``.

    Tags without a dedicated label are kept, comma-joined, in the ``tags``
    label when the metric has one, and dropped otherwise.
    """
    labels = dict.fromkeys(labelnames, "")
    extra = []
    for tag in tags:
        key, _, value = tag.partition(":")
        label = _TAG_LABELS.get(key)
        if label in labels:
            labels[label] = value
        else:
            extra.append(tag)
    if "tags" in labels:
        labels["tags"] = ",".join(extra)
    return labels


class PrometheusMetricsClient:
    """Metrics client recording into the package's Prometheus registry.

    ``resolve_error`` increments :data:`graphql_resolve_errors_total` and
    ``response_time`` (milliseconds) is observed, in seconds, on
    :data:`graphql_response_time_seconds`.  Prometheus counts are exact, so
    the sample rate is ignored.
    """

    counters = {RESOLVE_ERROR: graphql_resolve_errors_total}
    timers = {RESPONSE_TIME: graphql_response_time_seconds}

    def increment(self, name, value, sample_rate, tags):  # pylint: disable=unused-argument
        counter = self.counters.get(name)
        if counter is None:
            logger.warning("No Prometheus counter registered for %s", name)
            return
        counter.labels(**_tags_to_labels(tags, counter._labelnames)).inc(value)  # pylint: disable=protected-access

    def timing(self, name, value, sample_rate, tags):  # pylint: disable=unused-argument
        histogram = self.timers.get(name)
        if histogram is None:
            logger.warning("No Prometheus histogram registered for %s", name)
            return
        histogram.labels(**_tags_to_labels(tags, histogram._labelnames)).observe(value / 1000)  # pylint: disable=protected-access


def get_dogstatsd_client(url, namespace=None, tags=None):
    """Build a :class:`DogStatsd` client from ``udp://host:port`` or ``unix:///path``.

    A bare ``host:port`` is treated as UDP and a bare absolute path as a Unix socket.
    """
    if url.startswith("/"):
        url = "unix://" + url
    elif "://" not in url:
        url = "udp://" + url

    parsed = urlparse(url)

    if parsed.scheme == "unix":
        return DogStatsd(socket_path=parsed.path, namespace=namespace, constant_tags=tags)
    if parsed.scheme == "udp":
        return DogStatsd(
            host=parsed.hostname,
            port=DEFAULT_DOGSTATSD_PORT if parsed.port is None else parsed.port,
            namespace=namespace,
            constant_tags=tags,
        )

    raise ImproperlyConfigured(f"Unknown scheme `{parsed.scheme}` for DogStatsD URL")


class DogStatsdMetricsClient:
    """Metrics client forwarding to a DogStatsD agent.

    Args:
        url (str): Agent address, ``udp://localhost:8125`` by default.
        namespace (str): Optional prefix added to every metric name.
        constant_tags (list[str]): Tags added to every measurement.
        client (DogStatsd): A pre-built client; overrides the other arguments.
    """

    def __init__(self, url="udp://localhost:8125", namespace=None, constant_tags=None, client=None):
        self._client = client if client is not None else get_dogstatsd_client(url, namespace, constant_tags)

    def increment(self, name, value, sample_rate, tags):
        self._client.increment(name, value, tags=list(tags), sample_rate=sample_rate)

    def timing(self, name, value, sample_rate, tags):
        self._client.timing(name, value, tags=list(tags), sample_rate=sample_rate)
