"""xrm_shared.needs: declarative preconditions gating a plugin's business logic.

A plugin declares what it needs (messages, stages, entities, attributes,
images). The gate runs once per invocation before business logic:

    no violations      -> run
    violations, lax    -> trace the diagnostic and skip (the operation succeeds)
    violations, strict -> raise InvalidPluginExecutionError with the diagnostic
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from .context_entity import ContextEntity
from .errors import InvalidPluginExecutionError
from .execution_context import ExecutionContext
from .tracing import TracerCore, TraceLevel

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NeedsPolicy:
    """What a plugin needs to run. Empty/unset fields accept anything."""

    throw_if_not_match: bool = False
    message: str = ""
    stage: int = -1
    entity: str = ""
    attributes: Sequence[str] = ()
    pre_image: bool = False
    post_image: bool = False
    messages: Sequence[str] = ()
    stages: Sequence[int] = ()
    entities: Sequence[str] = ()

    # A single value is only used when its list counterpart is empty.

    def resolved_messages(self) -> List[str]:
        if self.messages:
            return list(self.messages)
        return [self.message] if self.message else []

    def resolved_stages(self) -> List[int]:
        if self.stages:
            return list(self.stages)
        return [self.stage] if self.stage > -1 else []

    def resolved_entities(self) -> List[str]:
        if self.entities:
            return list(self.entities)
        return [self.entity] if self.entity else []


def _matches_any(actual: Optional[str], expected: Sequence[str]) -> bool:
    actual_lower = (actual or "").lower()
    return any(item.lower() == actual_lower for item in expected)


def collect_need_violations(
    policy: NeedsPolicy,
    context: ExecutionContext,
    context_entity: ContextEntity,
) -> List[str]:
    """Return one text per violated need, in fixed rule order."""
    violations: List[str] = []

    messages = policy.resolved_messages()
    if messages and not _matches_any(context.message_name, messages):
        violations.append(f"Wrong message: {context.message_name}, need: {', '.join(messages)}")

    stages = policy.resolved_stages()
    if stages and context.stage not in stages:
        violations.append(f"Wrong stage: {context.stage}, need: {', '.join(str(s) for s in stages)}")

    entities = policy.resolved_entities()
    if entities and not _matches_any(context.primary_entity_name, entities):
        violations.append(
            f"Wrong entity: {context.primary_entity_name}, need: {', '.join(entities)}"
        )

    if policy.attributes:
        needed = ", ".join(policy.attributes)
        target = context_entity.target
        if target is None:
            violations.append(f"Target missing, cannot check required attributes: {needed}")
        elif not any(name in target for name in policy.attributes):
            violations.append(f"Need any attributes: {needed}")

    if policy.pre_image and context_entity.pre_image is None:
        violations.append("Missing pre image")

    if policy.post_image and context_entity.post_image is None:
        violations.append("Missing post image")

    return violations


def needs_verified(
    policy: NeedsPolicy,
    context: ExecutionContext,
    context_entity: ContextEntity,
    tracer: Optional[TracerCore] = None,
) -> bool:
    """True when every need is met; see the module docstring for the other outcomes."""
    violations = collect_need_violations(policy, context, context_entity)
    if not violations:
        return True

    diagnostic = "\n".join(violations)
    if policy.throw_if_not_match:
        raise InvalidPluginExecutionError(diagnostic)

    if tracer is not None:
        tracer.trace(diagnostic, TraceLevel.INFORMATION)
    else:
        logger.info("[SKIP] Needs not met:\n%s", diagnostic)
    return False
