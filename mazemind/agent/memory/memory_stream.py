"""
MemoryStream

Append-only, capacity-bounded store of memory records in chronological order.
Provides add, query, access-tracking and JSON export/import.
"""

from typing import Callable, List, Optional, Dict, Any, Tuple
import json
import os
import time
import uuid

from loguru import logger

from .memory_record import (
    BASED_ON_PREFIX,
    MEMORY_TYPES,
    OBSERVATION,
    PLAN,
    REFLECTION,
    MemoryRecord,
)
from mazemind.world import to_position

TAG = __name__

ImportanceListener = Callable[[MemoryRecord], None]


class MemoryStream:
    """memory stream - store and manage all memory records"""

    def __init__(
        self,
        max_memories: int = 10000,
        clock: Callable[[], float] = time.time,
        memory_file: Optional[str] = None,
        autosave: bool = False,
    ):
        """
        initialize memory stream

        Args:
            max_memories: capacity; inserts beyond it evict the lowest-retention records
            clock: time source in seconds
            memory_file: JSON file used by save_to_file / load_from_file (optional)
            autosave: save to memory_file after every insert
        """
        self.max_memories = max(1, int(max_memories))
        self.clock = clock
        self.memory_file = memory_file
        self.autosave = autosave and memory_file is not None

        # memory storage, insertion order is chronological order
        self._records: List[MemoryRecord] = []
        self._index: Dict[str, MemoryRecord] = {}

        # called with every new observation / reflection (importance tracking)
        self._listeners: List[ImportanceListener] = []

        self.total_evicted = 0

        logger.bind(tag=TAG).info(f"MemoryStream initialized (max: {self.max_memories} memories)")

    # ------------------------------------------------------------------
    # writers
    # ------------------------------------------------------------------

    def add_observation(
        self,
        description: str,
        importance: int,
        tags: Optional[List[str]] = None,
        location: Optional[Tuple[int, int]] = None,
    ) -> MemoryRecord:
        """add a perception of the environment or of an internal state"""
        return self._add(description, importance, OBSERVATION, list(tags or []), location)

    def add_reflection(
        self,
        description: str,
        importance: int,
        tags: Optional[List[str]] = None,
        based_on_ids: Optional[List[str]] = None,
        location: Optional[Tuple[int, int]] = None,
    ) -> MemoryRecord:
        """
        add a higher-level insight

        The record always carries the `reflection` tag and, when derived from
        other memories, a `based_on:<id>,<id>` back-reference tag.
        """
        tags = list(tags or []) + [REFLECTION]
        if based_on_ids:
            tags.append(BASED_ON_PREFIX + ",".join(based_on_ids))
        return self._add(description, importance, REFLECTION, tags, location)

    def add_plan(
        self,
        description: str,
        importance: int,
        tags: Optional[List[str]] = None,
        location: Optional[Tuple[int, int]] = None,
    ) -> MemoryRecord:
        """add a future-oriented plan"""
        tags = list(tags or []) + [PLAN]
        return self._add(description, importance, PLAN, tags, location)

    def _add(
        self,
        description: str,
        importance: int,
        memory_type: str,
        tags: List[str],
        location: Optional[Tuple[int, int]],
    ) -> MemoryRecord:
        now = self.clock()
        record = MemoryRecord(
            id=uuid.uuid4().hex,
            description=description,
            created=now,
            last_accessed=now,
            memory_type=memory_type,
            importance=importance,
            tags=tags,
            location=location,
        )

        self._records.append(record)
        self._index[record.id] = record

        logger.bind(tag=TAG).debug(
            f"added memory: [{memory_type}] {description[:30]}... (importance={record.importance})"
        )

        if len(self._records) > self.max_memories:
            self._prune(now)

        # a record evicted by its own insert is not reported
        if memory_type in (OBSERVATION, REFLECTION) and record.id in self._index:
            for listener in list(self._listeners):
                try:
                    listener(record)
                except Exception as e:
                    logger.bind(tag=TAG).error(f"importance listener failed: {e}")

        if self.autosave:
            self.save_to_file()

        return record

    def add_listener(self, listener: ImportanceListener):
        """register a callback for every new observation / reflection"""
        self._listeners.append(listener)

    def _prune(self, now: float):
        """evict the lowest-retention records until at capacity"""
        remove_count = len(self._records) - self.max_memories
        if remove_count <= 0:
            return

        # lowest retention first, ties evict the oldest
        ranked = sorted(
            enumerate(self._records),
            key=lambda pair: (pair[1].get_retention_score(now), pair[1].created, pair[0]),
        )
        to_remove = {record.id for _, record in ranked[:remove_count]}

        self._records = [r for r in self._records if r.id not in to_remove]
        for record_id in to_remove:
            self._index.pop(record_id, None)

        self.total_evicted += remove_count
        logger.bind(tag=TAG).info(
            f"pruned {remove_count} memories (now: {len(self._records)})"
        )

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------

    def get_all(self) -> List[MemoryRecord]:
        """all records in chronological order"""
        return list(self._records)

    def get_by_type(self, memory_type: str) -> List[MemoryRecord]:
        if memory_type not in MEMORY_TYPES:
            logger.bind(tag=TAG).warning(f"unknown memory type: {memory_type}")
            return []
        return [r for r in self._records if r.memory_type == memory_type]

    def get_by_tag(self, tag: str) -> List[MemoryRecord]:
        return [r for r in self._records if tag in r.tags]

    def get_by_id(self, record_id: str) -> Optional[MemoryRecord]:
        return self._index.get(record_id)

    def get_in_time_range(self, start: float, end: float) -> List[MemoryRecord]:
        return [r for r in self._records if start <= r.created <= end]

    def get_near_location(self, point: Tuple[int, int], radius: float = 3) -> List[MemoryRecord]:
        """records whose location is within `radius` tiles (Euclidean) of point"""
        center = to_position(point)
        return [
            r for r in self._records
            if r.location is not None and r.location.euclidean(center) <= radius
        ]

    def get_recent(self, n: int = 10, memory_type: Optional[str] = None) -> List[MemoryRecord]:
        """most recent n records, latest first"""
        records = self._records if memory_type is None else self.get_by_type(memory_type)
        # ties keep the later insert first
        ordered = sorted(reversed(records), key=lambda r: r.created, reverse=True)
        return ordered[:max(0, n)]

    def get_needing_embeddings(self) -> List[MemoryRecord]:
        return [r for r in self._records if not r.has_embedding]

    # ------------------------------------------------------------------
    # mutations allowed on existing records
    # ------------------------------------------------------------------

    def mark_accessed(self, record_id: str, current_time: Optional[float] = None) -> bool:
        record = self._index.get(record_id)
        if record is None:
            logger.bind(tag=TAG).debug(f"mark_accessed: unknown memory {record_id}")
            return False
        record.record_access(current_time if current_time is not None else self.clock())
        return True

    def set_embedding(self, record_id: str, vector: List[float]) -> bool:
        record = self._index.get(record_id)
        if record is None:
            logger.bind(tag=TAG).debug(f"set_embedding: unknown memory {record_id}")
            return False
        record.embedding = [float(v) for v in vector]
        return True

    def add_tags(self, record_id: str, tags: List[str]) -> bool:
        record = self._index.get(record_id)
        if record is None:
            logger.bind(tag=TAG).debug(f"add_tags: unknown memory {record_id}")
            return False
        record.add_tags(tags)
        return True

    def clear(self):
        """clear all memories"""
        self._records = []
        self._index = {}
        logger.bind(tag=TAG).info("memory stream cleared")

    # ------------------------------------------------------------------
    # statistics
    # ------------------------------------------------------------------

    def get_statistics(self) -> Dict[str, Any]:
        """get memory statistics"""
        total = len(self._records)
        avg_importance = sum(r.importance for r in self._records) / total if total else 0.0
        return {
            'total': total,
            'by_type': {t: len(self.get_by_type(t)) for t in MEMORY_TYPES},
            'with_embeddings': sum(1 for r in self._records if r.has_embedding),
            'avg_importance': round(avg_importance, 1),
            'evicted': self.total_evicted,
        }

    # ------------------------------------------------------------------
    # export / import
    # ------------------------------------------------------------------

    def export_json(self) -> str:
        """serialize the full record list"""
        return json.dumps([r.to_dict() for r in self._records], ensure_ascii=False, indent=2)

    def import_json(self, payload: str) -> int:
        """
        replace the record list with an exported one

        Malformed input is logged and ignored, the stream stays unchanged.

        Returns:
            number of records imported
        """
        try:
            data = json.loads(payload)
        except (TypeError, ValueError) as e:
            logger.bind(tag=TAG).error(f"failed to import memories: {e}")
            return 0

        if not isinstance(data, list):
            logger.bind(tag=TAG).error("failed to import memories: expected a JSON list")
            return 0

        records: List[MemoryRecord] = []
        for item in data:
            try:
                records.append(MemoryRecord.from_dict(item))
            except (KeyError, TypeError, ValueError) as e:
                logger.bind(tag=TAG).warning(f"failed to restore memory record: {e}")

        records.sort(key=lambda r: r.created)
        self._records = records
        self._index = {r.id: r for r in records}
        if len(self._records) > self.max_memories:
            self._prune(self.clock())

        logger.bind(tag=TAG).info(f"imported {len(self._records)} memories")
        return len(self._records)

    def save_to_file(self, path: Optional[str] = None) -> bool:
        """write export_json() to a file"""
        path = path or self.memory_file
        if not path:
            return False

        try:
            directory = os.path.dirname(path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            with open(path, 'w', encoding='utf-8') as f:
                f.write(self.export_json())
            logger.bind(tag=TAG).debug(f"memory saved to file: {path}")
            return True
        except OSError as e:
            logger.bind(tag=TAG).error(f"failed to save memory to file: {e}")
            return False

    def load_from_file(self, path: Optional[str] = None) -> int:
        """load records previously written by save_to_file"""
        path = path or self.memory_file
        if not path or not os.path.exists(path):
            logger.bind(tag=TAG).info(f"memory file not found, starting empty: {path}")
            return 0

        try:
            with open(path, 'r', encoding='utf-8') as f:
                payload = f.read()
        except OSError as e:
            logger.bind(tag=TAG).error(f"failed to load memory from file: {e}")
            return 0

        return self.import_json(payload)

    def __len__(self) -> int:
        return len(self._records)

    def __str__(self) -> str:
        stats = self.get_statistics()
        by_type = stats['by_type']
        return (
            f"MemoryStream(total={stats['total']}, obs={by_type[OBSERVATION]}, "
            f"ref={by_type[REFLECTION]}, plan={by_type[PLAN]})"
        )
