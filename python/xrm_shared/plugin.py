"""xrm_shared.plugin: base class for Dataverse plugin handlers.

A handler subclasses Plugin, declares its needs as class attributes and
implements ``run()``:

    class AccountNamer(Plugin):
        need_messages = ("Create", "Update")
        need_entity = "account"
        need_attributes = ("name",)

        def run(self):
            self.target["name"] = self.target["name"].strip()

Entrypoints:
    execute(service_provider)          - in-process host call
    lambda_handler(event, context)     - remote execution context posted to Lambda

Flow per invocation: resolve context -> build resolvers and tracer -> gate
(needs) -> pick acting identity -> create organization service -> run().
"""

from __future__ import annotations

import abc
import datetime as dt
import logging
import os
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Sequence

from botocore.exceptions import ClientError

from .aws_clients import _get_ssm
from .context_entity import ContextEntity, ContextEntityCollection, ContextEntityType
from .errors import InvalidPluginExecutionError, PluginConfigurationError
from .execution_context import ExecutionContext
from .http_utils import _error, _raw_body, _response
from .needs import NeedsPolicy, needs_verified
from .records import Record
from .serialization import deserialize_context
from .service import WebApiServiceFactory
from .tracing import LoggingTracer, PluginTracer, TraceLevel, smart_duration, trace_context

logger = logging.getLogger(__name__)


def _as_tuple(values: Any) -> tuple:
    """A bare string is one value, not a sequence of characters."""
    if isinstance(values, (str, int)):
        return (values,) if values != "" else ()
    return tuple(values or ())


class ServiceAs(Enum):
    USER = "user"
    INITIATING = "initiating"
    SYSTEM = "system"
    SPECIFIC = "specific"


@dataclass
class ServiceProvider:
    """What the host hands to a plugin for one invocation."""

    execution_context: Optional[ExecutionContext]
    tracing_service: Any = None
    service_factory: Any = None


# ---------------------------------------------------------------------------
# Environment variables
# ---------------------------------------------------------------------------


def get_environment_variable_value(name: str, required: bool = False) -> Optional[str]:
    """Value of ``name`` from the process environment, else from SSM Parameter Store."""
    value = os.environ.get(name)
    if value:
        return value

    try:
        resp = _get_ssm().get_parameter(Name=name, WithDecryption=True)
        value = (resp.get("Parameter") or {}).get("Value")
    except ClientError as exc:
        if exc.response.get("Error", {}).get("Code") != "ParameterNotFound":
            raise
        value = None

    if not value and required:
        raise PluginConfigurationError(f"Environment variable {name} is not set")
    return value or None


# ---------------------------------------------------------------------------
# Plugin base
# ---------------------------------------------------------------------------


class Plugin(abc.ABC):
    # Execute as
    service_as: ServiceAs = ServiceAs.USER
    executer_env_var: str = ""

    # Images to use when more than one is registered; first one otherwise
    pre_image_name: Optional[str] = None
    post_image_name: Optional[str] = None

    # Needs, checked before run(); defaults accept everything
    need_throw_if_not_match: bool = False
    need_message: str = ""
    need_stage: int = -1
    need_entity: str = ""
    need_attributes: Sequence[str] = ()
    need_pre_image: bool = False
    need_post_image: bool = False
    need_messages: Sequence[str] = ()
    need_stages: Sequence[int] = ()
    need_entities: Sequence[str] = ()

    def __init__(self) -> None:
        self._reset()

    def _reset(self) -> None:
        # Per-invocation state; a host may reuse one instance across calls.
        self.context: Optional[ExecutionContext] = None
        self.context_entity: Optional[ContextEntity] = None
        self.context_entity_collection: Optional[ContextEntityCollection] = None
        self.tracer: Optional[PluginTracer] = None
        self.service: Any = None

    @property
    def target(self) -> Optional[Record]:
        if self.context_entity is None:
            return None
        return self.context_entity[ContextEntityType.TARGET]

    @abc.abstractmethod
    def run(self) -> None:
        """Business logic; runs only when all needs are met."""

    def needs_policy(self) -> NeedsPolicy:
        return NeedsPolicy(
            throw_if_not_match=self.need_throw_if_not_match,
            message=self.need_message,
            stage=self.need_stage,
            entity=self.need_entity,
            attributes=_as_tuple(self.need_attributes),
            pre_image=self.need_pre_image,
            post_image=self.need_post_image,
            messages=_as_tuple(self.need_messages),
            stages=_as_tuple(self.need_stages),
            entities=_as_tuple(self.need_entities),
        )

    def trace(self, message: str, *args: Any, level: TraceLevel = TraceLevel.INFORMATION) -> None:
        if args:
            message = message % args
        if self.tracer is not None:
            self.tracer.trace(message, level)
        else:
            logger.info("%s", message)

    def _acting_user_id(self) -> Optional[str]:
        if self.service_as is ServiceAs.INITIATING:
            return self.context.initiating_user_id
        if self.service_as is ServiceAs.USER:
            return self.context.user_id
        if self.service_as is ServiceAs.SPECIFIC:
            if not (self.executer_env_var or "").strip():
                raise PluginConfigurationError(
                    "ServiceAs is Specific, but executer_env_var is not set"
                )
            return get_environment_variable_value(self.executer_env_var, required=True)
        return None

    def execute(self, service_provider: ServiceProvider) -> bool:
        """Run the plugin for one invocation. Returns False when skipped by its needs."""
        name = type(self).__name__
        self._reset()
        try:
            self.context = service_provider.execution_context
            if self.context is None:
                raise InvalidPluginExecutionError("Failed to get execution context")
            self.context_entity = ContextEntity(
                self.context, self.pre_image_name, self.post_image_name
            )
            self.context_entity_collection = ContextEntityCollection(
                self.context, self.pre_image_name, self.post_image_name
            )
            self.tracer = PluginTracer(service_provider.tracing_service)
            trace_context(self.tracer, self.context)

            if not needs_verified(self.needs_policy(), self.context, self.context_entity, self.tracer):
                return False

            user_id = self._acting_user_id()
            if service_provider.service_factory is not None:
                self.service = service_provider.service_factory.create_organization_service(user_id)

            started = time.monotonic()
            self.tracer.trace_raw(
                f"Execution {name} at {dt.datetime.now():%Y-%m-%d %H:%M:%S.%f}"[:-3]
            )
            self.run()
            self.tracer.trace_raw(f"Exiting after {smart_duration(time.monotonic() - started)}")
            return True
        except Exception as exc:
            if self.tracer is not None:
                self.tracer.trace_error(exc)
            logger.error("[ERROR] %s failed: %s", name, exc)
            if isinstance(exc, InvalidPluginExecutionError):
                raise
            raise InvalidPluginExecutionError(
                f"Unhandled {type(exc).__name__} in {name}: {exc}"
            ) from exc

    # ------------------------------------------------------------------
    # Remote entrypoint
    # ------------------------------------------------------------------

    @classmethod
    def lambda_handler(cls, event: Dict[str, Any], lambda_context: Any) -> Dict[str, Any]:
        """Run the plugin for a remote execution context posted to a Lambda.

        Accepts the context as the HTTP body (function URL / API Gateway) or
        as the event itself (direct invoke).
        """
        payload: Any = _raw_body(event) if "body" in event else event
        try:
            context = deserialize_context(payload)
        except ValueError as exc:
            logger.warning("[ERROR] Could not read execution context: %s", exc)
            return _error(400, str(exc))
        if context is None:
            return _error(400, "Missing execution context")

        logger.info(
            "[START] %s message=%s entity=%s stage=%s correlation=%s",
            cls.__name__,
            context.message_name,
            context.primary_entity_name,
            context.stage,
            context.correlation_id,
        )
        provider = ServiceProvider(
            execution_context=context,
            tracing_service=LoggingTracer(logging.getLogger(cls.__module__)),
            service_factory=WebApiServiceFactory(),
        )
        try:
            executed = cls().execute(provider)
        except InvalidPluginExecutionError as exc:
            return _error(400, exc.message)

        logger.info("[END] %s executed=%s", cls.__name__, executed)
        return _response(200, {"success": True, "executed": executed})
