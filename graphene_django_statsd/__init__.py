"""graphene_django_statsd: Django app declaration."""

from importlib import metadata

from django.apps import AppConfig

__version__ = metadata.version(__name__)


class GrapheneDjangoStatsdConfig(AppConfig):
    """Django AppConfig for graphene_django_statsd.

    Add this app to ``INSTALLED_APPS`` and register the Django HTTP
    middleware in ``MIDDLEWARE`` in your ``settings.py``::

        INSTALLED_APPS = [
            ...
            "graphene_django_statsd",
        ]

        MIDDLEWARE = [
            ...
            "graphene_django_statsd.django_middleware.GraphQLStatsdDjangoMiddleware",
        ]

    Then instrument the resolvers, either through the Graphene middleware::

        GRAPHENE = {
            "SCHEMA": "myapp.schema.schema",
            "MIDDLEWARE": [
                "graphene_django_statsd.middleware.StatsdMiddleware",
            ],
        }

    or by decorating the schema once at import time::

        from graphene_django_statsd.middleware import get_instrumentation

        schema = get_instrumentation().decorate_schema(graphene.Schema(query=Query))

    Configure the library via ``GRAPHENE_STATSD`` in ``settings.py``::

        GRAPHENE_STATSD = {
            # Dotted path (instantiated with metrics_client_options) or an instance:
            "metrics_client": "graphene_django_statsd.clients.DogStatsdMetricsClient",
            "metrics_client_options": {"url": "udp://localhost:8125"},
            "sample_rate": 0.1,
            "tag_query_hash": True,
            "tag_operation_name": True,
            # Override the paths that trigger instrumentation (default: ["/graphql/"]):
            "graphql_paths": ["/graphql/"],
        }
    """

    name = "graphene_django_statsd"
    verbose_name = "GraphQL Statsd"
    default_auto_field = "django.db.models.BigAutoField"

    def ready(self):
        """Build the metrics client at startup so that configuration errors surface early."""
        from graphene_django_statsd.middleware import (  # pylint: disable=import-outside-toplevel
            get_instrumentation,
        )

        get_instrumentation()


config = GrapheneDjangoStatsdConfig  # pylint: disable=invalid-name
