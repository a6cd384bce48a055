"""Resolver instrumentation emitting statsd-style error metrics for GraphQL fields.

:class:`GraphQLStatsd` owns the metrics client.  It wraps resolvers so that
every invocation makes exactly one measurement decision, whatever the shape of
the resolver's result:

- an immediate value is measured straight away;
- an awaitable is measured once it settles;
- a list or tuple holding awaitables is measured once all of them settled.

Futures (``asyncio.Future``, DataLoader results) are returned untouched and
observed through a done callback, so the measurement happens even when
graphql-core abandons them.  Bare coroutines cannot take callbacks and are
wrapped in a coroutine that awaits them.

Only errors produce a ``resolve_error`` increment; request latency is
recorded separately by
:class:`~graphene_django_statsd.django_middleware.GraphQLStatsdDjangoMiddleware`.
"""

import asyncio
import enum
import functools
import inspect
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Optional, Tuple

from graphql import GraphQLInterfaceType, GraphQLObjectType, get_named_type

from graphene_django_statsd.clients import dispatch, validate_metrics_client
from graphene_django_statsd.metrics import RESOLVE_ERROR, RESPONSE_TIME
from graphene_django_statsd.utils import format_tag, get_request_context

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_RATE = 0.1

# Extension key holding extra tags on a GraphQLField.
FIELD_TAGS_EXTENSION = "statsd_tags"

# Set on every resolver produced by GraphQLStatsd.decorate_resolver().
_WRAPPED_MARKER = "_graphql_statsd_wrapped"


@dataclass(frozen=True)
class FieldDescriptor:
    """Name and extra tags of the field a resolver belongs to."""

    name: Optional[str]
    tags: Tuple[str, ...] = ()

    @classmethod
    def from_field(cls, name, field):
        """Describe a graphql-core ``GraphQLField`` registered under ``name``."""
        extensions = getattr(field, "extensions", None) or {}
        return cls(name=name, tags=tuple(extensions.get(FIELD_TAGS_EXTENSION) or ()))


class ResultShape(enum.Enum):
    """How a resolver delivered its result."""

    IMMEDIATE = "immediate"
    DEFERRED = "deferred"
    COLLECTION = "collection"


def classify_result(result):
    """Return the :class:`ResultShape` of a resolver result.

    Awaitables are checked first, then lists and tuples that contain at least
    one awaitable.  Everything else, empty collections included, is immediate.
    """
    if inspect.isawaitable(result):
        return ResultShape.DEFERRED
    if isinstance(result, (list, tuple)) and any(inspect.isawaitable(item) for item in result):
        return ResultShape.COLLECTION
    return ResultShape.IMMEDIATE


def classify_error(error):
    """Return the value of the ``error`` tag for a resolver error.

    Errors following the Apollo convention carry their type in ``error.data.type``;
    all others are classified by their class name.
    """
    data = getattr(error, "data", None)
    if isinstance(data, Mapping):
        error_type = data.get("type")
    else:
        error_type = getattr(data, "type", None)
    return error_type if error_type is not None else type(error).__name__


def build_tags(field, query_context=None, error=None):
    """Build the tag list of a resolver measurement.

    Args:
        field (FieldDescriptor): The resolved field.
        query_context (QueryContext): Identity of the executing query, if known.
        error (Exception): The resolver error, None on success.

    Returns:
        list[str]: Field tags, then ``error``, ``queryHash``, ``operationName``
        and ``resolveName``.
    """
    tags = list(field.tags)
    if error is not None:
        tags.append(format_tag("error", classify_error(error)))
    if query_context is not None:
        tags.append(format_tag("queryHash", query_context.query_hash))
        tags.append(format_tag("operationName", query_context.operation_name))
    tags.append(format_tag("resolveName", field.name if field.name else "undefined"))
    return tags


def is_decorated(resolver):
    """Tell whether ``resolver`` was produced by :meth:`GraphQLStatsd.decorate_resolver`."""
    return getattr(resolver, _WRAPPED_MARKER, False) is True


def _future_error(future):
    """Return the exception a settled future failed with, None on success or cancellation."""
    if future.cancelled():
        return None
    return future.exception()


class _CollectionJoin:
    """Fan-in over the awaitable elements of a collection result.

    Calls ``on_settled`` once, after the last element settled, with the first
    error observed (or None).
    """

    def __init__(self, pending, on_settled):
        self._pending = pending
        self._error = None
        self._on_settled = on_settled

    def _settle(self, error=None):
        if error is not None and self._error is None:
            self._error = error
        self._pending -= 1
        if self._pending == 0:
            self._on_settled(self._error)

    def watch(self, future):
        """Settle when ``future`` is done and hand the future back unchanged."""
        future.add_done_callback(lambda done: self._settle(_future_error(done)))
        return future

    async def observe(self, awaitable):
        try:
            value = await awaitable
        except Exception as error:
            self._settle(error)
            raise
        self._settle()
        return value


class GraphQLStatsd:
    """Instrument GraphQL resolvers and requests through a metrics client.

    Args:
        metrics_client: Object implementing ``increment`` and ``timing``
            (see :class:`~graphene_django_statsd.clients.MetricsClient`).
        sample_rate (float): Sample rate passed along with every measurement.

    Raises:
        InvalidMetricsClient: If ``metrics_client`` is missing or incomplete.
        ValueError: If ``sample_rate`` is outside ``(0, 1]``.
    """

    def __init__(self, metrics_client, sample_rate=DEFAULT_SAMPLE_RATE):
        self.metrics_client = validate_metrics_client(metrics_client)
        self.sample_rate = sample_rate

    @property
    def sample_rate(self):
        return self._sample_rate

    @sample_rate.setter
    def sample_rate(self, value):
        if value is None:
            value = DEFAULT_SAMPLE_RATE
        if not 0 < value <= 1:
            raise ValueError(f"sample_rate must be in (0, 1], got {value!r}")
        self._sample_rate = float(value)

    def decorate_resolver(self, resolver, field):
        """Wrap ``resolver`` so that each call is measured.

        The wrapper keeps graphql-core's ``(root, info, **kwargs)`` calling
        convention and never alters what the resolver returns or raises.

        Args:
            resolver (callable): The resolver to wrap.
            field (FieldDescriptor): Metadata of the field it resolves.

        Returns:
            callable: The instrumented resolver.
        """

        @functools.wraps(resolver)
        def wrapped(root, info, /, **kwargs):
            return self.observe(field, resolver, root, info, **kwargs)

        setattr(wrapped, _WRAPPED_MARKER, True)
        return wrapped

    def decorate_schema(self, schema):
        """Wrap the resolver of every field of every object and interface type.

        Introspection types are left alone, as are fields without their own
        resolver and resolvers that are already instrumented, so decorating
        the same schema twice is harmless.

        Args:
            schema: A graphql-core ``GraphQLSchema`` or a graphene ``Schema``.

        Returns:
            The same schema object, with its fields updated in place.
        """
        graphql_schema = getattr(schema, "graphql_schema", schema)
        for graphql_type in graphql_schema.type_map.values():
            if get_named_type(graphql_type).name.startswith("__"):
                continue
            if not isinstance(graphql_type, (GraphQLObjectType, GraphQLInterfaceType)):
                continue
            for field_name, field in graphql_type.fields.items():
                if field.resolve is None or is_decorated(field.resolve):
                    continue
                field.resolve = self.decorate_resolver(field.resolve, FieldDescriptor.from_field(field_name, field))
        return schema

    def observe(self, field, resolver, root, info, /, **kwargs):  # pylint: disable=too-many-arguments
        """Call ``resolver`` once and measure its outcome according to its result shape."""
        query_context = self._get_query_context(field, info)

        try:
            result = resolver(root, info, **kwargs)
        except Exception as error:
            self._record_resolve(field, query_context, error)
            raise

        shape = classify_result(result)
        if shape is ResultShape.DEFERRED:
            if asyncio.isfuture(result):
                result.add_done_callback(
                    lambda future: self._record_resolve(field, query_context, _future_error(future))
                )
                return result
            return self._observe_deferred(result, field, query_context)
        if shape is ResultShape.COLLECTION:
            return self._observe_collection(result, field, query_context)

        self._record_resolve(field, query_context)
        return result

    async def _observe_deferred(self, awaitable, field, query_context):
        try:
            value = await awaitable
        except Exception as error:
            self._record_resolve(field, query_context, error)
            raise
        self._record_resolve(field, query_context)
        return value

    def _observe_collection(self, result, field, query_context):
        pending = sum(1 for item in result if inspect.isawaitable(item))
        join = _CollectionJoin(pending, functools.partial(self._record_resolve, field, query_context))
        items = [self._observe_item(join, item) for item in result]
        return items if isinstance(result, list) else tuple(items)

    @staticmethod
    def _observe_item(join, item):
        if asyncio.isfuture(item):
            return join.watch(item)
        if inspect.isawaitable(item):
            return join.observe(item)
        return item

    @staticmethod
    def _get_query_context(field, info):
        request_context = get_request_context(getattr(info, "context", None))
        query_context = request_context.resolve(info) if request_context is not None else None
        if query_context is None:
            logger.warning("graphql_statsd_context_missing", extra={"resolve_name": field.name})
        return query_context

    def _record_resolve(self, field, query_context, error=None):
        # Successful resolutions are not counted.
        if error is None:
            return
        self._emit("increment", RESOLVE_ERROR, 1, build_tags(field, query_context, error))

    def record_response_time(self, duration_ms, tags):
        """Emit the ``response_time`` timing of one HTTP request."""
        self._emit("timing", RESPONSE_TIME, duration_ms, tags)

    def _emit(self, method, name, value, tags):
        try:
            dispatch(getattr(self.metrics_client, method)(name, value, self.sample_rate, tags))
        except Exception:  # pylint: disable=broad-except
            logger.exception("Failed to emit %s metric %s", method, name)
