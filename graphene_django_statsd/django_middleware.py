"""Django HTTP middleware tagging GraphQL requests and recording their response time.

For every request to a GraphQL endpoint the middleware:

1. Extracts the query text and operation name of each query the request
   carries (a ``GET`` query string, or a single / batched ``POST`` body).
2. Fingerprints each query and stashes a request context on the request,
   where the instrumented resolvers pick it up through ``info.context``.
3. Times the downstream middleware / view chain and emits a single
   ``response_time`` measurement tagged with the aggregated fingerprints
   and operation names.  Streaming responses are measured when closed.

Add it to ``MIDDLEWARE`` in ``settings.py``::

    MIDDLEWARE = [
        ...
        "graphene_django_statsd.django_middleware.GraphQLStatsdDjangoMiddleware",
    ]

The set of paths that trigger instrumentation defaults to ``{"/graphql/"}``
and can be overridden via the ``graphql_paths`` key in ``GRAPHENE_STATSD``.
"""

import json
import logging
import time

from graphene_django_statsd.context import BatchContext, QueryContext
from graphene_django_statsd.utils import format_tag, join_tag_values, stash_context_on_request

logger = logging.getLogger(__name__)

# Default path when no custom configuration is provided.
_DEFAULT_GRAPHQL_PATHS = frozenset(("/graphql/",))


def _get_body_payload(request):
    """Decode the GraphQL payload carried by a request body.

    Returns:
        dict, list or None: A payload dict, a list of payloads for batched
        requests, or None when the body carries no usable payload.
    """
    content_type = getattr(request, "content_type", None)
    if content_type in ("application/graphql", "application/json"):
        try:
            body = request.body.decode(request.encoding or "utf-8")
            return {"query": body} if content_type == "application/graphql" else json.loads(body)
        except ValueError:
            logger.debug("Ignoring undecodable GraphQL request body on %s", request.path)
            return None
    if content_type in ("application/x-www-form-urlencoded", "multipart/form-data"):
        return request.POST.dict()
    return None


def build_request_context(request):
    """Build the request context of a GraphQL request.

    Args:
        request (HttpRequest): The incoming Django request.

    Returns:
        tuple: The context (a :class:`QueryContext`, a :class:`BatchContext`
        or None) and the list of :class:`QueryContext` entries found, in
        request order.
    """
    if request.GET.get("query"):
        query_context = QueryContext.from_payload(request.GET)
        return query_context, [query_context]

    payload = _get_body_payload(request)
    if isinstance(payload, list):
        items = [item for item in payload if isinstance(item, dict)]
        entries = [entry for entry in map(QueryContext.from_payload, items) if entry.query_hash is not None]
        return BatchContext.from_payloads(items), entries
    if isinstance(payload, dict) and payload.get("query"):
        query_context = QueryContext.from_payload(payload)
        return query_context, [query_context]
    return None, []


class GraphQLStatsdDjangoMiddleware:  # pylint: disable=too-few-public-methods
    """Django middleware that tags GraphQL requests and measures their duration.

    For non-GraphQL requests this middleware is a no-op pass-through.

    The timing tags are controlled by ``GRAPHENE_STATSD``:

    - ``tag_query_hash``: Tag with the ``/``-joined query fingerprints (default: True).
    - ``tag_operation_name``: Tag with the ``/``-joined operation names (default: True).
    """

    def __init__(self, get_response):
        """Initialize the middleware and resolve the GraphQL path set.

        Django builds middleware at startup, so an invalid metrics client
        configuration raises here rather than on the first request.

        Raises:
            ImproperlyConfigured: If the metrics client cannot be built.
        """
        from graphene_django_statsd.middleware import (  # pylint: disable=import-outside-toplevel
            _get_app_settings,
            get_instrumentation,
        )

        self.get_response = get_response
        self._instrumentation = get_instrumentation()
        config = _get_app_settings()
        self._graphql_paths = self._resolve_graphql_paths(config)
        self._tag_query_hash = config.get("tag_query_hash") is not False
        self._tag_operation_name = config.get("tag_operation_name") is not False

    @staticmethod
    def _resolve_graphql_paths(config):
        """Build the frozenset of paths that should be instrumented.

        Falls back to :data:`_DEFAULT_GRAPHQL_PATHS` when ``graphql_paths`` is
        absent or empty.

        Returns:
            frozenset[str]: The set of URL paths to instrument.
        """
        custom_paths = config.get("graphql_paths")
        if custom_paths:
            return frozenset(custom_paths)
        return _DEFAULT_GRAPHQL_PATHS

    def _build_tags(self, entries):
        """Build the ``response_time`` tags from the queries found on the request."""
        tags = []
        if self._tag_query_hash:
            tags.append(format_tag("queryHash", join_tag_values(entry.query_hash for entry in entries)))
        if self._tag_operation_name:
            tags.append(format_tag("operationName", join_tag_values(entry.operation_name for entry in entries)))
        return tags

    def _record_response_time(self, start_time, tags):
        duration_ms = (time.monotonic() - start_time) * 1000
        self._instrumentation.record_response_time(duration_ms, tags)

    def _record_on_close(self, response, start_time, tags):
        """Defer the measurement of a streaming response until it is closed."""
        close = response.close

        def close_and_record():
            try:
                close()
            finally:
                self._record_response_time(start_time, tags)

        response.close = close_and_record

    def __call__(self, request):
        """Tag GraphQL requests and time them; pass through everything else."""
        if request.path not in self._graphql_paths:
            return self.get_response(request)

        start_time = time.monotonic()

        context, entries = build_request_context(request)
        if context is not None:
            stash_context_on_request(request, context)
        tags = self._build_tags(entries)

        try:
            response = self.get_response(request)
        except Exception:
            self._record_response_time(start_time, tags)
            raise

        # Streaming responses finish when the server closes them.
        if getattr(response, "streaming", False) is True:
            self._record_on_close(response, start_time, tags)
        else:
            self._record_response_time(start_time, tags)
        return response
