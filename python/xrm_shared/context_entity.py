"""xrm_shared.context_entity: resolve the record views of a plugin invocation.

A ContextEntity gives access to one logical record of the invocation as its
Target, PreImage, PostImage or the Complete merge of the three. Single-record
invocations use the ``Target`` parameter and the context image collections;
bulk invocations (``Targets``) select one record by index.

Resolution never raises on missing or malformed host data: absence yields
``None``.
"""

from __future__ import annotations

from enum import Enum
from typing import Iterator, List, Optional, Sequence

from .execution_context import ExecutionContext, ImageCollection, ParameterName
from .records import Record, RecordCollection, RecordReference, merge

# Full-entity images registered by the platform itself, never a handler's image.
SENTINEL_IMAGE_NAMES = frozenset({"", "PreBusinessEntity", "PostBusinessEntity"})


class ContextEntityType(Enum):
    TARGET = "Target"
    PRE_IMAGE = "PreImage"
    POST_IMAGE = "PostImage"
    COMPLETE = "Complete"


def _get_image(images: Optional[ImageCollection], name: Optional[str]) -> Optional[Record]:
    """First non-sentinel image, or the one named exactly ``name`` when given."""
    for key, image in (images or {}).items():
        if key in SENTINEL_IMAGE_NAMES:
            continue
        if not name or key == name:
            return image
    return None


class ContextEntity:
    """Access to Target, PreImage, PostImage and Complete for one record.

    Args:
        context: The invocation's execution context.
        pre_image_name: Specific pre image to use, otherwise the first one.
        post_image_name: Specific post image to use, otherwise the first one.
        index: Position in the ``Targets`` collection; negative for
            single-record invocations.
    """

    def __init__(
        self,
        context: ExecutionContext,
        pre_image_name: Optional[str] = None,
        post_image_name: Optional[str] = None,
        index: int = -1,
    ) -> None:
        self.context = context
        self.pre_image_name = pre_image_name
        self.post_image_name = post_image_name
        self.index = index
        self._target: Optional[Record] = None
        self._pre: Optional[Record] = None
        self._post: Optional[Record] = None

    @property
    def is_bulk(self) -> bool:
        return self.index >= 0

    def __getitem__(self, view: ContextEntityType) -> Optional[Record]:
        return self.resolve(view)

    def resolve(self, view: ContextEntityType) -> Optional[Record]:
        if view is ContextEntityType.TARGET:
            return self._resolve_target()
        if view is ContextEntityType.PRE_IMAGE:
            return self._resolve_pre_image()
        if view is ContextEntityType.POST_IMAGE:
            return self._resolve_post_image()
        if view is ContextEntityType.COMPLETE:
            return self._resolve_complete()
        return None

    @property
    def target(self) -> Optional[Record]:
        return self.resolve(ContextEntityType.TARGET)

    @property
    def pre_image(self) -> Optional[Record]:
        return self.resolve(ContextEntityType.PRE_IMAGE)

    @property
    def post_image(self) -> Optional[Record]:
        return self.resolve(ContextEntityType.POST_IMAGE)

    @property
    def complete(self) -> Optional[Record]:
        return self.resolve(ContextEntityType.COMPLETE)

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def _bulk_targets(self) -> Optional[RecordCollection]:
        return self.context.try_get_parameter(ParameterName.TARGETS, RecordCollection)

    def _resolve_target(self) -> Optional[Record]:
        if self.is_bulk:
            targets = self._bulk_targets()
            if targets is not None and len(targets) > self.index:
                return targets[self.index]
            return None

        if self._target is None:
            record = self.context.try_get_parameter(ParameterName.TARGET, Record)
            if record is not None:
                self._target = record
            else:
                reference = self.context.try_get_parameter(ParameterName.TARGET, RecordReference)
                if reference is not None:
                    self._target = reference.to_record()
        return self._target

    def _resolve_bulk_image(
        self,
        collections: Optional[Sequence[ImageCollection]],
        name: Optional[str],
    ) -> Optional[Record]:
        targets = self._bulk_targets()
        if targets is None or collections is None:
            return None
        if len(collections) != len(targets) or len(collections) <= self.index:
            return None
        return _get_image(collections[self.index], name)

    def _resolve_pre_image(self) -> Optional[Record]:
        if self.is_bulk:
            return self._resolve_bulk_image(
                self.context.pre_entity_images_collection, self.pre_image_name
            )
        if self._pre is None and self.context.pre_entity_images:
            self._pre = _get_image(self.context.pre_entity_images, self.pre_image_name)
        return self._pre

    def _resolve_post_image(self) -> Optional[Record]:
        if self.is_bulk:
            return self._resolve_bulk_image(
                self.context.post_entity_images_collection, self.post_image_name
            )
        if self._post is None and self.context.post_entity_images:
            self._post = _get_image(self.context.post_entity_images, self.post_image_name)
        return self._post

    def _resolve_complete(self) -> Optional[Record]:
        # Target > PostImage > PreImage on conflicting attributes.
        return merge(
            merge(self._resolve_target(), self._resolve_post_image()),
            self._resolve_pre_image(),
        )

    def __repr__(self) -> str:
        return f"ContextEntity(index={self.index})"


class ContextEntityCollection:
    """One ContextEntity per record of a bulk (``Targets``) invocation, in order."""

    def __init__(
        self,
        context: Optional[ExecutionContext],
        pre_image_name: Optional[str] = None,
        post_image_name: Optional[str] = None,
    ) -> None:
        self._entities: List[ContextEntity] = []
        if context is None:
            return
        targets = context.try_get_parameter(ParameterName.TARGETS, RecordCollection)
        if targets is None:
            return
        self._entities = [
            ContextEntity(context, pre_image_name, post_image_name, index)
            for index in range(len(targets))
        ]

    def __iter__(self) -> Iterator[ContextEntity]:
        return iter(self._entities)

    def __len__(self) -> int:
        return len(self._entities)

    def __getitem__(self, index: int) -> ContextEntity:
        return self._entities[index]
