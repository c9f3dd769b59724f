"""xrm_shared.execution_context: the plugin execution context consumed by the layer.

The context is owned by the host. Nothing in this layer mutates it after
construction.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, List, Optional, Type, TypeVar

from .records import Record

T = TypeVar("T")

ImageCollection = Dict[str, Record]


class ParameterName:
    TARGET = "Target"
    TARGETS = "Targets"


class Stage(IntEnum):
    PRE_VALIDATION = 10
    PRE_OPERATION = 20
    MAIN_OPERATION = 30
    POST_OPERATION = 40


@dataclass
class ExecutionContext:
    message_name: str = ""
    stage: int = 0
    primary_entity_name: str = ""
    user_id: Optional[str] = None
    initiating_user_id: Optional[str] = None
    input_parameters: Dict[str, Any] = field(default_factory=dict)
    output_parameters: Dict[str, Any] = field(default_factory=dict)
    shared_variables: Dict[str, Any] = field(default_factory=dict)
    pre_entity_images: ImageCollection = field(default_factory=dict)
    post_entity_images: ImageCollection = field(default_factory=dict)
    # Bulk operations only: one image collection per entry in ``Targets``.
    pre_entity_images_collection: Optional[List[ImageCollection]] = None
    post_entity_images_collection: Optional[List[ImageCollection]] = None
    depth: int = 1
    mode: int = 0
    correlation_id: Optional[str] = None
    request_id: Optional[str] = None
    organization_name: str = ""
    parent_context: Optional["ExecutionContext"] = None

    def try_get_parameter(self, name: str, expected_type: Type[T]) -> Optional[T]:
        """Return input parameter ``name`` if present and of ``expected_type``."""
        value = (self.input_parameters or {}).get(name)
        if isinstance(value, expected_type):
            return value
        return None
