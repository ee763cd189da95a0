"""
Entity Store Module - Indexed In-Memory Equipment and Annotation Tables

This module provides the canonical table of terminal records with:
- Upsert/delete/get for equipment keyed by id
- Derived secondary indices by type, parent and category
- A separate annotation table (independent id space)
- Bulk loading from bucketed raw data (dicts, YAML or JSON files)
- Change notifications for collaborators (renderers, category views)

Index consistency rule: an id is present in an index bucket iff the
entity's indexed field currently equals the bucket key. Every upsert diffs
the indexed values recorded at the previous upsert against the new ones and
moves the id between buckets before the new entity becomes visible.

Usage:
    from terminal_core.core.entity_store import EntityStore
    from terminal_core.models import Tank

    store = EntityStore()
    store.upsert(Tank(id="TQ-0001", level=0.5, capacity=1000, parent_id="AREA-01"))

    store.get_by_id("TQ-0001")
    store.get_by_type("tank")
    store.get_by_parent("AREA-01")

    store.load_initial_data({"tanks": [...], "pipes": [...], "annotations": [...]})
"""

import logging
import threading
import uuid
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

import yaml
from pydantic import ValidationError

from ..models.entities import Annotation, EquipmentBase, parse_equipment
from .events import EventChannel

logger = logging.getLogger(__name__)

INDEXED_FIELDS: Tuple[str, ...] = ("type", "parent_id", "category_id")

ANNOTATION_TYPE = "annotation"


# ============================================================================
# Errors and Events
# ============================================================================

class MalformedEntityError(ValueError):
    """Raised when an entity cannot be stored (missing id, wrong shape).

    This signals a programmer error; the store never raises for a missing
    id on reads or deletes.
    """
    pass


class ChangeKind(Enum):
    UPSERTED = "upserted"
    DELETED = "deleted"


@dataclass(frozen=True)
class EntityChange:
    """Notification published after an equipment write."""
    kind: ChangeKind
    entity_id: str
    entity: EquipmentBase


# ============================================================================
# Index Buckets
# ============================================================================

class BucketIndex:
    """Map from field value to an insertion-ordered set of ids.

    Buckets are dicts used as ordered sets, so add/remove are O(1) and a
    bucket keeps the order in which ids first joined it. A bucket whose last
    id is removed is deleted.
    """

    def __init__(self, field_name: str):
        self.field_name = field_name
        self._buckets: Dict[str, Dict[str, None]] = {}

    def add(self, key: str, entity_id: str) -> None:
        self._buckets.setdefault(key, {})[entity_id] = None

    def remove(self, key: str, entity_id: str) -> None:
        bucket = self._buckets.get(key)
        if bucket is None:
            return
        bucket.pop(entity_id, None)
        if not bucket:
            del self._buckets[key]

    def ids(self, key: str) -> List[str]:
        return list(self._buckets.get(key, ()))

    def keys(self) -> List[str]:
        return list(self._buckets)

    def snapshot(self) -> Dict[str, List[str]]:
        return {key: list(bucket) for key, bucket in self._buckets.items()}

    def clear(self) -> None:
        self._buckets.clear()

    def __len__(self) -> int:
        return len(self._buckets)


# ============================================================================
# Entity Store
# ============================================================================

class EntityStore:
    """Thread-safe in-memory store of equipment and annotations.

    Reads return live references by default (fast, but mutating them does not
    touch the indices until the entity is upserted again). Pass ``copy=True``
    to ``get_by_id`` for a detached deep copy.

    Example:
        store = EntityStore()
        sub = store.changes.subscribe(lambda change: print(change.kind, change.entity_id))

        store.upsert(Valve(id="VLV-0001", state="open"))
        store.delete("VLV-0001")
        sub.unsubscribe()
    """

    def __init__(self):
        self._equipment: Dict[str, EquipmentBase] = {}
        self._index_keys: Dict[str, Tuple[Optional[str], ...]] = {}
        self._indices: Dict[str, BucketIndex] = {
            field_name: BucketIndex(field_name) for field_name in INDEXED_FIELDS
        }
        self._annotations: Dict[str, Annotation] = {}
        self._lock = threading.RLock()
        self.changes: EventChannel[EntityChange] = EventChannel("entity-changes")

    # ------------------------------------------------------------------------
    # Equipment
    # ------------------------------------------------------------------------

    def upsert(self, entity: Union[EquipmentBase, Mapping[str, Any]]) -> EquipmentBase:
        """Insert or replace an equipment record by id.

        Stale index memberships are removed and new ones added before the
        new value is stored, so readers never see a half-reconciled entity.

        Args:
            entity: Equipment model, or a raw record dict to validate

        Returns:
            The stored equipment model

        Raises:
            MalformedEntityError: If the record has no usable id or is invalid
        """
        entity = self._coerce_equipment(entity)
        entity_id = entity.id
        new_keys = self._index_keys_of(entity)

        with self._lock:
            old_keys = self._index_keys.get(entity_id, (None,) * len(INDEXED_FIELDS))
            for field_name, old_key, new_key in zip(INDEXED_FIELDS, old_keys, new_keys):
                index = self._indices[field_name]
                if old_key is not None and old_key != new_key:
                    index.remove(old_key, entity_id)
                if new_key is not None:
                    index.add(new_key, entity_id)

            self._equipment[entity_id] = entity
            self._index_keys[entity_id] = new_keys

        logger.debug(f"Upserted {entity.type} {entity_id}")
        self.changes.publish(EntityChange(ChangeKind.UPSERTED, entity_id, entity))
        return entity

    def delete(self, entity_id: str) -> bool:
        """Remove an equipment record and all of its index memberships.

        Returns:
            True if deleted, False if not found
        """
        with self._lock:
            entity = self._equipment.pop(entity_id, None)
            if entity is None:
                return False
            keys = self._index_keys.pop(entity_id)
            for field_name, key in zip(INDEXED_FIELDS, keys):
                if key is not None:
                    self._indices[field_name].remove(key, entity_id)

        logger.info(f"Deleted {entity.type} {entity_id}")
        self.changes.publish(EntityChange(ChangeKind.DELETED, entity_id, entity))
        return True

    def get_by_id(self, entity_id: str, copy: bool = False) -> Optional[EquipmentBase]:
        """Retrieve an equipment record by id.

        Args:
            entity_id: Equipment identifier
            copy: If True, return a deep copy (safe for mutation).
                  If False (default), return the live stored record.
        """
        with self._lock:
            entity = self._equipment.get(entity_id)
        if entity is None:
            return None
        return entity.model_copy(deep=True) if copy else entity

    def get_by_type(self, kind: str) -> List[EquipmentBase]:
        """Equipment of one type, in index insertion order."""
        return self._lookup("type", kind)

    def get_by_parent(self, parent_id: str) -> List[EquipmentBase]:
        """Equipment whose ``parent_id`` is ``parent_id``."""
        return self._lookup("parent_id", parent_id)

    def get_by_category(self, category_id: str) -> List[EquipmentBase]:
        """Equipment directly assigned to ``category_id``."""
        return self._lookup("category_id", category_id)

    def get_all(self) -> List[EquipmentBase]:
        """Snapshot list of all equipment (the list is a copy, records are live)."""
        with self._lock:
            return list(self._equipment.values())

    def exists(self, entity_id: str) -> bool:
        with self._lock:
            return entity_id in self._equipment

    def index_snapshot(self) -> Dict[str, Dict[str, List[str]]]:
        """Copy of every secondary index, keyed by indexed field name."""
        with self._lock:
            return {name: index.snapshot() for name, index in self._indices.items()}

    # ------------------------------------------------------------------------
    # Annotations
    # ------------------------------------------------------------------------

    def upsert_annotation(self, annotation: Union[Annotation, Mapping[str, Any]]) -> Annotation:
        """Insert or replace an annotation, stamping its dates.

        Raises:
            MalformedEntityError: If the annotation has no usable id or is invalid
        """
        if not isinstance(annotation, Annotation):
            try:
                annotation = Annotation.model_validate(dict(annotation))
            except ValidationError as e:
                raise MalformedEntityError(f"Invalid annotation record: {e}") from e
        self._require_id(annotation.id, "annotation")

        annotation.touch()
        with self._lock:
            self._annotations[annotation.id] = annotation
        logger.debug(f"Upserted annotation {annotation.id}")
        return annotation

    def delete_annotation(self, annotation_id: str) -> bool:
        with self._lock:
            return self._annotations.pop(annotation_id, None) is not None

    def get_annotation_by_id(self, annotation_id: str) -> Optional[Annotation]:
        with self._lock:
            return self._annotations.get(annotation_id)

    def get_annotations_by_target(self, target_id: str) -> List[Annotation]:
        with self._lock:
            return [a for a in self._annotations.values() if a.target_id == target_id]

    def get_all_annotations(self) -> List[Annotation]:
        with self._lock:
            return list(self._annotations.values())

    # ------------------------------------------------------------------------
    # Bulk operations
    # ------------------------------------------------------------------------

    def clear(self) -> None:
        """Remove every equipment record, annotation and index bucket."""
        with self._lock:
            self._equipment.clear()
            self._index_keys.clear()
            self._annotations.clear()
            for index in self._indices.values():
                index.clear()
        logger.info("Entity store cleared")

    def load_initial_data(self, buckets_by_kind: Mapping[str, Iterable[Mapping[str, Any]]]) -> int:
        """Replace the store contents with bucketed raw records.

        Buckets are keyed by plural kind (``tanks``, ``pipes``, ``valves``,
        ``loadingAreas``, ``annotations``). A record without ``type`` takes
        the bucket name minus its trailing ``s``. Records of type
        ``annotation`` go to the annotation table, the rest to equipment.
        Records that cannot be typed or validated are skipped with a warning.

        Args:
            buckets_by_kind: Mapping of bucket name to list of raw records

        Returns:
            Number of records loaded
        """
        self.clear()
        logger.info("Loading initial data...")

        count = 0
        for bucket_name, items in buckets_by_kind.items():
            if not isinstance(items, (list, tuple)):
                logger.warning(f"Bucket {bucket_name} is not a list, skipping")
                continue

            for raw in items:
                item = dict(raw)
                if not item.get("type"):
                    if not bucket_name.endswith("s"):
                        logger.warning(
                            f"Cannot infer type for item {item.get('id')} in {bucket_name}, skipping"
                        )
                        continue
                    item["type"] = bucket_name[:-1]

                if not item.get("id"):
                    item["id"] = f"{item['type']}_{uuid.uuid4().hex[:12]}"
                    logger.warning(f"Item in {bucket_name} had no id, generated {item['id']}")

                try:
                    if item["type"] == ANNOTATION_TYPE:
                        item.setdefault("author", "System")
                        self.upsert_annotation(item)
                    else:
                        self.upsert(item)
                except MalformedEntityError as e:
                    logger.warning(f"Skipping {bucket_name} item {item['id']}: {e}")
                    continue
                count += 1

        logger.info(f"{count} items loaded into the entity store")
        return count

    def load_initial_data_file(self, path: Union[str, Path]) -> int:
        """Load bucketed records from a YAML or JSON document.

        Raises:
            FileNotFoundError: If path does not exist
            ValueError: If the document is not a mapping of buckets
        """
        path = Path(path)
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)

        if not isinstance(data, dict):
            raise ValueError(f"{path} must contain a mapping of buckets, got {type(data).__name__}")
        return self.load_initial_data(data)

    # ------------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------------

    def _lookup(self, field_name: str, key: Optional[str]) -> List[EquipmentBase]:
        if key is None:
            return []
        with self._lock:
            return [self._equipment[i] for i in self._indices[field_name].ids(key)]

    @staticmethod
    def _index_keys_of(entity: EquipmentBase) -> Tuple[Optional[str], ...]:
        # Empty strings index like absent values
        return tuple(getattr(entity, name, None) or None for name in INDEXED_FIELDS)

    def _coerce_equipment(self, entity: Union[EquipmentBase, Mapping[str, Any]]) -> EquipmentBase:
        if isinstance(entity, Mapping):
            self._require_id(entity.get("id"), "equipment")
            try:
                entity = parse_equipment(dict(entity))
            except ValidationError as e:
                raise MalformedEntityError(f"Invalid equipment record {entity.get('id')}: {e}") from e
        elif not isinstance(entity, EquipmentBase):
            raise MalformedEntityError(
                f"Expected an equipment record, got {type(entity).__name__}"
            )
        self._require_id(entity.id, "equipment")
        return entity

    @staticmethod
    def _require_id(entity_id: Any, what: str) -> None:
        if not isinstance(entity_id, str) or not entity_id.strip():
            raise MalformedEntityError(f"Cannot store {what} without an id (got {entity_id!r})")

    # Convenience methods for dict-like access
    def __contains__(self, entity_id: str) -> bool:
        return self.exists(entity_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._equipment)
