"""test_plugin.py: Tests for the plugin base class and its entrypoints.

All locally runnable without AWS credentials or a Dataverse environment.

Run from the repository root:
    python3 -m pytest test_plugin.py -v
"""

from __future__ import annotations

import json
import os
import sys
import unittest
from unittest.mock import MagicMock, patch

sys.path.insert(0, os.path.join(os.path.dirname(os.path.abspath(__file__)), "python"))

from botocore.exceptions import ClientError

import xrm_shared.plugin as plugin_mod
from xrm_shared.context_entity import ContextEntityType
from xrm_shared.errors import InvalidPluginExecutionError, PluginConfigurationError
from xrm_shared.execution_context import ExecutionContext, ParameterName, Stage
from xrm_shared.plugin import Plugin, ServiceAs, ServiceProvider, get_environment_variable_value
from xrm_shared.records import Record, RecordCollection
from xrm_shared.serialization import serialize_context


class FakeTracingService:
    def __init__(self):
        self.lines = []

    def trace(self, message):
        self.lines.append(message)


class RecordingPlugin(Plugin):
    def __init__(self):
        super().__init__()
        self.ran = False

    def run(self):
        self.ran = True


def _context(message="Update", target=None, post=None):
    target = target if target is not None else Record("contact", "G1", {"firstname": "Ann"})
    return ExecutionContext(
        message_name=message,
        stage=Stage.POST_OPERATION,
        primary_entity_name="contact",
        user_id="user-1",
        initiating_user_id="initiator-1",
        input_parameters={ParameterName.TARGET: target},
        post_entity_images=post or {},
    )


def _provider(context, factory=None):
    return ServiceProvider(
        execution_context=context,
        tracing_service=FakeTracingService(),
        service_factory=factory if factory is not None else MagicMock(),
    )


class ExecuteTests(unittest.TestCase):
    def test_runs_business_logic_when_needs_met(self):
        class P(RecordingPlugin):
            need_messages = ("Create", "Update")

        plugin = P()
        provider = _provider(_context())
        self.assertTrue(plugin.execute(provider))
        self.assertTrue(plugin.ran)
        self.assertEqual(plugin.target["firstname"], "Ann")
        self.assertTrue(any(line.startswith("Execution P at ") for line in provider.tracing_service.lines))
        self.assertTrue(any(line.startswith("Exiting after ") for line in provider.tracing_service.lines))

    def test_exposes_resolvers(self):
        targets = RecordCollection([Record("contact", "A"), Record("contact", "B")])
        context = _context()
        context.input_parameters[ParameterName.TARGETS] = targets
        plugin = RecordingPlugin()
        plugin.execute(_provider(context))
        self.assertIs(plugin.context, context)
        self.assertIs(plugin.context_entity[ContextEntityType.TARGET], plugin.target)
        self.assertEqual([ce.target.id for ce in plugin.context_entity_collection], ["A", "B"])

    def test_skips_silently_when_needs_not_met(self):
        class P(RecordingPlugin):
            need_post_image = True

        plugin = P()
        provider = _provider(_context())
        self.assertFalse(plugin.execute(provider))
        self.assertFalse(plugin.ran)
        self.assertIn("Missing post image", "\n".join(provider.tracing_service.lines))
        provider.service_factory.create_organization_service.assert_not_called()

    def test_strict_needs_raise(self):
        class P(RecordingPlugin):
            need_post_image = True
            need_throw_if_not_match = True

        plugin = P()
        with self.assertRaises(InvalidPluginExecutionError) as ctx:
            plugin.execute(_provider(_context()))
        self.assertIn("Missing post image", str(ctx.exception))
        self.assertFalse(plugin.ran)

    def test_single_need_folds_with_list(self):
        class P(RecordingPlugin):
            need_message = "Create"
            need_stage = Stage.POST_OPERATION
            need_entities = ("account", "contact")

        policy = P().needs_policy()
        self.assertEqual(policy.resolved_messages(), ["Create"])
        self.assertEqual(policy.resolved_stages(), [40])
        self.assertEqual(policy.resolved_entities(), ["account", "contact"])

    def test_bare_string_needs_are_single_values(self):
        class P(RecordingPlugin):
            need_messages = "Update"
            need_entities = "contact"
            need_attributes = "firstname"
            need_stages = Stage.POST_OPERATION

        plugin = P()
        policy = plugin.needs_policy()
        self.assertEqual(policy.resolved_messages(), ["Update"])
        self.assertEqual(policy.resolved_entities(), ["contact"])
        self.assertEqual(list(policy.attributes), ["firstname"])
        self.assertEqual(policy.resolved_stages(), [40])
        self.assertTrue(plugin.execute(_provider(_context())))
        self.assertTrue(plugin.ran)

    def test_unexpected_error_is_wrapped(self):
        class Broken(Plugin):
            def run(self):
                raise KeyError("lastname")

        with self.assertRaises(InvalidPluginExecutionError) as ctx:
            Broken().execute(_provider(_context()))
        self.assertIn("Unhandled KeyError in Broken", str(ctx.exception))
        self.assertIsInstance(ctx.exception.__cause__, KeyError)

    def test_plugin_error_is_not_double_wrapped(self):
        class Refusing(Plugin):
            def run(self):
                raise InvalidPluginExecutionError("Credit limit exceeded")

        provider = _provider(_context())
        with self.assertRaises(InvalidPluginExecutionError) as ctx:
            Refusing().execute(provider)
        self.assertEqual(str(ctx.exception), "Credit limit exceeded")
        self.assertIn("Credit limit exceeded", "\n".join(provider.tracing_service.lines))

    def test_missing_tracing_service(self):
        provider = ServiceProvider(execution_context=_context(), tracing_service=None)
        with self.assertRaises(InvalidPluginExecutionError) as ctx:
            RecordingPlugin().execute(provider)
        self.assertEqual(str(ctx.exception), "Failed to get tracing service")

    def test_missing_context(self):
        with self.assertRaises(InvalidPluginExecutionError):
            RecordingPlugin().execute(ServiceProvider(execution_context=None))

    def test_reused_instance_does_not_keep_previous_call_state(self):
        plugin = RecordingPlugin()
        first = _provider(_context())
        plugin.execute(first)
        traced = len(first.tracing_service.lines)

        with self.assertRaises(InvalidPluginExecutionError):
            plugin.execute(ServiceProvider(execution_context=None))
        self.assertEqual(len(first.tracing_service.lines), traced)
        self.assertIsNone(plugin.tracer)
        self.assertIsNone(plugin.context_entity)
        self.assertIsNone(plugin.target)
        self.assertIsNone(plugin.service)


class ServiceAsTests(unittest.TestCase):
    def _run(self, plugin_cls):
        factory = MagicMock()
        plugin = plugin_cls()
        plugin.execute(_provider(_context(), factory))
        return plugin, factory

    def test_user(self):
        plugin, factory = self._run(RecordingPlugin)
        factory.create_organization_service.assert_called_once_with("user-1")
        self.assertIs(plugin.service, factory.create_organization_service.return_value)

    def test_initiating(self):
        class P(RecordingPlugin):
            service_as = ServiceAs.INITIATING

        _, factory = self._run(P)
        factory.create_organization_service.assert_called_once_with("initiator-1")

    def test_system(self):
        class P(RecordingPlugin):
            service_as = ServiceAs.SYSTEM

        _, factory = self._run(P)
        factory.create_organization_service.assert_called_once_with(None)

    def test_specific_without_env_var_is_configuration_error(self):
        class P(RecordingPlugin):
            service_as = ServiceAs.SPECIFIC

        with self.assertRaises(PluginConfigurationError) as ctx:
            self._run(P)
        self.assertIn("executer_env_var is not set", str(ctx.exception))

    def test_specific_reads_env_var(self):
        class P(RecordingPlugin):
            service_as = ServiceAs.SPECIFIC
            executer_env_var = "XRM_TEST_EXECUTER"

        with patch.dict(os.environ, {"XRM_TEST_EXECUTER": "svc-user"}):
            plugin, factory = self._run(P)
        factory.create_organization_service.assert_called_once_with("svc-user")
        self.assertTrue(plugin.ran)


class EnvironmentVariableTests(unittest.TestCase):
    def setUp(self):
        os.environ.pop("XRM_TEST_PARAM", None)

    @patch.object(plugin_mod, "_get_ssm")
    def test_falls_back_to_ssm(self, mock_ssm):
        mock_ssm.return_value.get_parameter.return_value = {"Parameter": {"Value": "from-ssm"}}
        self.assertEqual(get_environment_variable_value("XRM_TEST_PARAM"), "from-ssm")
        mock_ssm.return_value.get_parameter.assert_called_once_with(
            Name="XRM_TEST_PARAM", WithDecryption=True
        )

    @patch.object(plugin_mod, "_get_ssm")
    def test_missing_optional_returns_none(self, mock_ssm):
        mock_ssm.return_value.get_parameter.side_effect = ClientError(
            {"Error": {"Code": "ParameterNotFound", "Message": "nope"}}, "GetParameter"
        )
        self.assertIsNone(get_environment_variable_value("XRM_TEST_PARAM"))

    @patch.object(plugin_mod, "_get_ssm")
    def test_missing_required_raises(self, mock_ssm):
        mock_ssm.return_value.get_parameter.side_effect = ClientError(
            {"Error": {"Code": "ParameterNotFound", "Message": "nope"}}, "GetParameter"
        )
        with self.assertRaises(PluginConfigurationError):
            get_environment_variable_value("XRM_TEST_PARAM", required=True)

    @patch.object(plugin_mod, "_get_ssm")
    def test_other_ssm_errors_propagate(self, mock_ssm):
        mock_ssm.return_value.get_parameter.side_effect = ClientError(
            {"Error": {"Code": "AccessDeniedException", "Message": "denied"}}, "GetParameter"
        )
        with self.assertRaises(ClientError):
            get_environment_variable_value("XRM_TEST_PARAM")


class LambdaHandlerTests(unittest.TestCase):
    def _event(self, context):
        return {"body": serialize_context(context), "isBase64Encoded": False}

    @patch.object(plugin_mod, "WebApiServiceFactory")
    def test_executes_remote_context(self, _mock_factory):
        class P(RecordingPlugin):
            need_entity = "contact"

        resp = P.lambda_handler(self._event(_context()), None)
        self.assertEqual(resp["statusCode"], 200)
        self.assertEqual(json.loads(resp["body"]), {"success": True, "executed": True})

    @patch.object(plugin_mod, "WebApiServiceFactory")
    def test_skipped_remote_context(self, _mock_factory):
        class P(RecordingPlugin):
            need_post_image = True

        resp = P.lambda_handler(self._event(_context()), None)
        self.assertEqual(resp["statusCode"], 200)
        self.assertFalse(json.loads(resp["body"])["executed"])

    @patch.object(plugin_mod, "WebApiServiceFactory")
    def test_strict_failure_returns_400(self, _mock_factory):
        class P(RecordingPlugin):
            need_post_image = True
            need_throw_if_not_match = True

        resp = P.lambda_handler(self._event(_context()), None)
        self.assertEqual(resp["statusCode"], 400)
        self.assertEqual(json.loads(resp["body"])["error"], "Missing post image")

    @patch.object(plugin_mod, "WebApiServiceFactory")
    def test_direct_invoke_event(self, _mock_factory):
        event = json.loads(serialize_context(_context()))
        resp = RecordingPlugin.lambda_handler(event, None)
        self.assertEqual(resp["statusCode"], 200)

    def test_empty_body_returns_400(self):
        resp = RecordingPlugin.lambda_handler({"body": "  "}, None)
        self.assertEqual(resp["statusCode"], 400)
        self.assertIn("Missing execution context", json.loads(resp["body"])["error"])

    def test_invalid_json_returns_400(self):
        resp = RecordingPlugin.lambda_handler({"body": "{not json"}, None)
        self.assertEqual(resp["statusCode"], 400)

    def test_malformed_context_shape_returns_400(self):
        body = json.dumps({"MessageName": "Update", "InputParameters": [{"value": 1}]})
        resp = RecordingPlugin.lambda_handler({"body": body}, None)
        self.assertEqual(resp["statusCode"], 400)
        self.assertIn("Malformed execution context", json.loads(resp["body"])["error"])


if __name__ == "__main__":
    unittest.main()
