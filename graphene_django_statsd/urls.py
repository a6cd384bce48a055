"""Django urlpatterns for graphene_django_statsd.

When ``GRAPHENE_STATSD["metrics_client"]`` is the
:class:`~graphene_django_statsd.clients.PrometheusMetricsClient`, mount the
patterns in your root URL conf to expose a Prometheus scrape endpoint::

    from django.urls import include, path

    urlpatterns = [
        ...
        path("graphql-statsd/", include("graphene_django_statsd.urls")),
    ]

Metrics are then available at ``/graphql-statsd/metrics/``.
"""

from django.urls import path

from graphene_django_statsd.views import metrics_view

app_name = "graphene_django_statsd"

urlpatterns = [
    path("metrics/", metrics_view, name="metrics"),
]
