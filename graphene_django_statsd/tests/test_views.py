"""Tests for the Prometheus scrape endpoint."""

from django.test import RequestFactory, TestCase

from graphene_django_statsd.clients import PrometheusMetricsClient
from graphene_django_statsd.views import metrics_view


class MetricsViewTest(TestCase):
    """Test the /metrics/ Prometheus scrape endpoint."""

    def test_metrics_view_returns_200(self):
        request = RequestFactory().get("/graphql-statsd/metrics/")
        response = metrics_view(request)
        self.assertEqual(response.status_code, 200)

    def test_metrics_view_content_type(self):
        request = RequestFactory().get("/graphql-statsd/metrics/")
        response = metrics_view(request)
        self.assertIn("text/plain", response["Content-Type"])

    def test_metrics_view_exposes_recorded_errors(self):
        PrometheusMetricsClient().increment("resolve_error", 1, 0.1, ["error:ViewTestError", "resolveName:view"])

        response = self.client.get("/graphql-statsd/metrics/")

        body = response.content.decode()
        self.assertIn("graphql_resolve_errors_total", body)
        self.assertIn('error="ViewTestError"', body)
        self.assertNotIn("python_gc_objects_collected_total", body)
