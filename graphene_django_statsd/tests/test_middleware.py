"""Tests for the StatsdMiddleware Graphene middleware and the settings layer."""

from unittest.mock import MagicMock

from django.apps import apps
from django.core.exceptions import ImproperlyConfigured
from django.test import RequestFactory, TestCase, override_settings
from graphql import GraphQLField, GraphQLString

from graphene_django_statsd.clients import InvalidMetricsClient, LoggingMetricsClient, PrometheusMetricsClient
from graphene_django_statsd.context import QueryContext
from graphene_django_statsd.instrumentation import FieldDescriptor
from graphene_django_statsd.middleware import (
    StatsdMiddleware,
    _get_app_settings,
    get_instrumentation,
)
from graphene_django_statsd.utils import stash_context_on_request


def _make_info(field_name="name", extensions=None):
    """Build a mock GraphQLResolveInfo resolving ``field_name`` on a DeviceType."""
    info = MagicMock()
    info.field_name = field_name
    info.parent_type.fields = {field_name: GraphQLField(GraphQLString, extensions=extensions)}
    info.context = RequestFactory().post("/graphql/")
    stash_context_on_request(info.context, QueryContext(query_hash="abc", operation_name="GetDevices"))
    return info


class StatsdMiddlewareTest(TestCase):
    """Test cases for the Graphene middleware."""

    def setUp(self):
        self.metrics_client = MagicMock(spec=["increment", "timing"])
        override = override_settings(GRAPHENE_STATSD={"metrics_client": self.metrics_client})
        override.enable()
        self.addCleanup(override.disable)
        self.middleware = StatsdMiddleware()
        self.next_func = MagicMock(return_value="resolved_value")

    def test_resolver_result_is_returned(self):
        info = _make_info()

        result = self.middleware.resolve(self.next_func, {"some": "parent"}, info, first=10)

        self.assertEqual(result, "resolved_value")
        self.next_func.assert_called_once_with({"some": "parent"}, info, first=10)
        self.metrics_client.increment.assert_not_called()

    def test_error_is_counted_with_field_tags(self):
        info = _make_info(extensions={"statsd_tags": ["team:core"]})
        self.next_func.side_effect = ValueError("bad input")

        with self.assertRaises(ValueError):
            self.middleware.resolve(self.next_func, None, info)

        self.metrics_client.increment.assert_called_once_with(
            "resolve_error",
            1,
            0.1,
            ["team:core", "error:ValueError", "queryHash:abc", "operationName:GetDevices", "resolveName:name"],
        )

    def test_unknown_field_uses_field_name_only(self):
        info = _make_info()
        info.field_name = "serial"
        self.next_func.side_effect = KeyError("serial")

        with self.assertRaises(KeyError):
            self.middleware.resolve(self.next_func, None, info)

        self.assertEqual(self.metrics_client.increment.call_args[0][3][-1], "resolveName:serial")

    def test_decorated_field_is_not_counted_twice(self):
        info = _make_info()
        resolver = MagicMock(side_effect=ValueError("bad input"))
        info.parent_type.fields["name"].resolve = get_instrumentation().decorate_resolver(
            resolver, FieldDescriptor(name="name")
        )
        self.next_func.side_effect = lambda root, info: info.parent_type.fields["name"].resolve(root, info)

        with self.assertRaises(ValueError):
            self.middleware.resolve(self.next_func, None, info)

        self.metrics_client.increment.assert_called_once()


class GetAppSettingsTest(TestCase):
    """Test cases for _get_app_settings() settings resolution."""

    @override_settings(GRAPHENE_STATSD={})
    def test_returns_defaults_when_no_settings_configured(self):
        config = _get_app_settings()
        self.assertEqual(config["metrics_client"], "graphene_django_statsd.clients.LoggingMetricsClient")
        self.assertEqual(config["sample_rate"], 0.1)
        self.assertTrue(config["tag_query_hash"])
        self.assertTrue(config["tag_operation_name"])
        self.assertEqual(config["graphql_paths"], ["/graphql/"])

    @override_settings(GRAPHENE_STATSD={"sample_rate": 0.5, "tag_query_hash": False})
    def test_graphene_statsd_setting_overrides_defaults(self):
        config = _get_app_settings()
        # Overridden values
        self.assertEqual(config["sample_rate"], 0.5)
        self.assertFalse(config["tag_query_hash"])
        # Defaults for keys not overridden
        self.assertTrue(config["tag_operation_name"])


class GetInstrumentationTest(TestCase):
    """Test cases for building the configured GraphQLStatsd instance."""

    @override_settings(GRAPHENE_STATSD={})
    def test_default_client_is_logging_client(self):
        with self.assertLogs("graphene_django_statsd.clients", level="WARNING"):
            instrumentation = get_instrumentation()
        self.assertIsInstance(instrumentation.metrics_client, LoggingMetricsClient)

    @override_settings(
        GRAPHENE_STATSD={"metrics_client": "graphene_django_statsd.clients.PrometheusMetricsClient", "sample_rate": 1}
    )
    def test_client_loaded_from_dotted_path(self):
        instrumentation = get_instrumentation()
        self.assertIsInstance(instrumentation.metrics_client, PrometheusMetricsClient)
        self.assertEqual(instrumentation.sample_rate, 1.0)

    @override_settings(GRAPHENE_STATSD={"metrics_client": "graphene_django_statsd.clients.MissingClient"})
    def test_unknown_client_path(self):
        with self.assertRaises(ImproperlyConfigured):
            get_instrumentation()

    @override_settings(GRAPHENE_STATSD={"metrics_client": None})
    def test_missing_client(self):
        with self.assertRaises(InvalidMetricsClient):
            get_instrumentation()

    @override_settings(GRAPHENE_STATSD={"metrics_client": "graphene_django_statsd.clients.MissingClient"})
    def test_app_ready_rejects_invalid_client(self):
        with self.assertRaises(ImproperlyConfigured):
            apps.get_app_config("graphene_django_statsd").ready()

    def test_instance_is_cached_until_settings_change(self):
        first_client = MagicMock(spec=["increment", "timing"])
        second_client = MagicMock(spec=["increment", "timing"])

        with self.settings(GRAPHENE_STATSD={"metrics_client": first_client}):
            instrumentation = get_instrumentation()
            self.assertIs(get_instrumentation(), instrumentation)
            self.assertIs(instrumentation.metrics_client, first_client)

        with self.settings(GRAPHENE_STATSD={"metrics_client": second_client}):
            self.assertIs(get_instrumentation().metrics_client, second_client)
