"""Views for graphene_django_statsd."""

from django.http import HttpRequest, HttpResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from graphene_django_statsd.metrics import REGISTRY


def metrics_view(request: HttpRequest) -> HttpResponse:
    """Expose the GraphQL metrics recorded by ``PrometheusMetricsClient``.

    Only the package's own registry is rendered, so the endpoint can be
    mounted next to other exporters without duplicating their metrics.

    Returns:
        HttpResponse: Prometheus metrics in text format.
    """
    return HttpResponse(generate_latest(REGISTRY), content_type=CONTENT_TYPE_LATEST)
