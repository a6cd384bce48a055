"""Utilities for fingerprinting queries and carrying the request context."""

import hashlib
from collections.abc import Mapping

# Attribute (or key, for dict contexts) holding the request context.
CONTEXT_ATTR = "graphql_statsd_context"

# Maximum length of an aggregated tag value on the request timing.
MAX_TAG_VALUE_LENGTH = 200


def fingerprint(query):
    """Return a stable fingerprint of the raw query text.

    Args:
        query (str): The GraphQL query text, exactly as received.

    Returns:
        str: The hexadecimal MD5 digest of the UTF-8 encoded text.
    """
    return hashlib.md5(query.encode("utf-8"), usedforsecurity=False).hexdigest()


def format_tag(key, value):
    """Build a ``key:value`` tag string, rendering ``None`` as an empty value."""
    return f"{key}:{'' if value is None else value}"


def join_tag_values(values):
    """Join several tag values with ``/`` and cap the result length."""
    return "/".join("" if value is None else str(value) for value in values)[:MAX_TAG_VALUE_LENGTH]


def stash_context_on_request(request, context):
    """Stash the request context on the request and its underlying WSGIRequest.

    For DRF views, ``info.context`` is a DRF ``Request`` wrapping a
    ``WSGIRequest``.  The Django middleware sees the ``WSGIRequest``, so
    we stash on both to ensure the context is visible to the resolvers
    regardless of which request object they receive.

    Args:
        request: The request object (DRF Request or WSGIRequest).
        context: The :class:`~graphene_django_statsd.context.QueryContext` or
            :class:`~graphene_django_statsd.context.BatchContext` to stash.
    """
    setattr(request, CONTEXT_ATTR, context)
    wsgi_request = getattr(request, "_request", None)
    if wsgi_request is not None:
        setattr(wsgi_request, CONTEXT_ATTR, context)


def get_request_context(execution_context):
    """Read the stashed request context from a GraphQL execution context.

    Args:
        execution_context: ``info.context``, usually the Django request, but
            plain graphql-core callers frequently pass a dict.

    Returns:
        The stashed context, or None when nothing was stashed.
    """
    if execution_context is None:
        return None
    if isinstance(execution_context, Mapping):
        return execution_context.get(CONTEXT_ATTR)
    return getattr(execution_context, CONTEXT_ATTR, None)


def get_operation_source(info):
    """Return the raw query text of the operation being executed, if known."""
    loc = getattr(info.operation, "loc", None)
    source = getattr(loc, "source", None)
    return getattr(source, "body", None)
