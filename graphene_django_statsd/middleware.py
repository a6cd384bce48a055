"""Graphene middleware and settings for GraphQL resolver instrumentation."""

import functools

from django.core.exceptions import ImproperlyConfigured
from django.dispatch import receiver
from django.test.signals import setting_changed
from django.utils.module_loading import import_string
from graphql import GraphQLResolveInfo

from graphene_django_statsd.instrumentation import FieldDescriptor, GraphQLStatsd, is_decorated

SETTINGS_NAME = "GRAPHENE_STATSD"

_DEFAULT_SETTINGS = {
    "metrics_client": "graphene_django_statsd.clients.LoggingMetricsClient",
    "metrics_client_options": {},
    "sample_rate": 0.1,
    "tag_query_hash": True,
    "tag_operation_name": True,
    "graphql_paths": ["/graphql/"],
}


def _get_app_settings():
    """Load instrumentation settings from ``settings.GRAPHENE_STATSD``.

    Falls back to built-in defaults for any key not present in the dict.

    Returns:
        dict: Resolved settings merged with defaults.
    """
    from django.conf import settings  # pylint: disable=import-outside-toplevel

    user_config = getattr(settings, SETTINGS_NAME, {})
    return {**_DEFAULT_SETTINGS, **user_config}


def _build_metrics_client(config):
    """Instantiate the configured metrics client, or return the given instance."""
    client = config.get("metrics_client")
    if not isinstance(client, str):
        return client
    try:
        client_class = import_string(client)
    except ImportError as error:
        raise ImproperlyConfigured(f"Could not import metrics client {client!r}: {error}") from error
    return client_class(**(config.get("metrics_client_options") or {}))


@functools.lru_cache(maxsize=None)
def get_instrumentation():
    """Return the process-wide :class:`GraphQLStatsd` built from settings.

    The instance is created on first use and rebuilt after the
    ``GRAPHENE_STATSD`` setting changes (e.g. under ``override_settings``).
    """
    config = _get_app_settings()
    return GraphQLStatsd(_build_metrics_client(config), sample_rate=config.get("sample_rate"))


@receiver(setting_changed)
def _reset_instrumentation(*, setting, **kwargs):  # pylint: disable=unused-argument
    if setting == SETTINGS_NAME:
        get_instrumentation.cache_clear()


class StatsdMiddleware:  # pylint: disable=too-few-public-methods
    """Graphene middleware that instruments every field resolution.

    An alternative to :meth:`GraphQLStatsd.decorate_schema` for projects that
    prefer not to touch their schema: each resolution goes through the same
    measurement as a decorated resolver, using the instance returned by
    :func:`get_instrumentation`.  Extra field tags are read from the
    ``statsd_tags`` extension of the resolved field.

    Usage in Django settings::

        GRAPHENE = {
            "MIDDLEWARE": [
                "graphene_django_statsd.middleware.StatsdMiddleware",
            ]
        }
    """

    def resolve(self, next: callable, root: object, info: GraphQLResolveInfo, **kwargs: object) -> object:  # pylint: disable=redefined-builtin
        """Intercept each field resolution and record its outcome.

        Fields whose resolver was already wrapped by
        :meth:`GraphQLStatsd.decorate_schema` are measured there and passed
        straight through.

        Args:
            next (callable): Callable to continue the resolution chain.
            root (object): Parent resolved value. None for top-level fields.
            info (GraphQLResolveInfo): GraphQL resolve info of the field.
            **kwargs (object): Field arguments.

        Returns:
            object: The result of the resolver, untouched.
        """
        field = self._get_field(info)
        if field is not None and is_decorated(field.resolve):
            return next(root, info, **kwargs)
        if field is None:
            descriptor = FieldDescriptor(name=info.field_name)
        else:
            descriptor = FieldDescriptor.from_field(info.field_name, field)
        return get_instrumentation().observe(descriptor, next, root, info, **kwargs)

    @staticmethod
    def _get_field(info: GraphQLResolveInfo):
        """Return the definition of the field being resolved from its parent type."""
        fields = getattr(info.parent_type, "fields", None) or {}
        return fields.get(info.field_name)
