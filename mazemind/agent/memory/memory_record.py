"""
MemoryRecord - a single memory

Each memory is one MemoryRecord, containing:
- a natural-language description
- creation and last-access timestamps
- importance score (1-10, clamped on write)
- tags, optional tile location
- an embedding vector (computed lazily, used for retrieval)
"""

from dataclasses import dataclass, field
from typing import List, Optional, Dict, Any
import math
import time

from mazemind.world import Position, to_position

OBSERVATION = "observation"
REFLECTION = "reflection"
PLAN = "plan"

MEMORY_TYPES = (OBSERVATION, REFLECTION, PLAN)

BASED_ON_PREFIX = "based_on:"


def clamp_importance(value) -> int:
    """Round and clamp an importance value into 1-10"""
    try:
        score = int(round(float(value)))
    except (TypeError, ValueError):
        score = 5
    return max(1, min(10, score))


@dataclass
class MemoryRecord:
    """A single memory record"""

    # unique identifier
    id: str

    # memory content
    description: str

    # time information (seconds)
    created: float
    last_accessed: float

    memory_type: str = OBSERVATION

    # importance (1-10)
    importance: int = 5

    tags: List[str] = field(default_factory=list)
    location: Optional[Position] = None

    # vector representation, absent until lazily computed
    embedding: Optional[List[float]] = None

    # access history (latest first is not guaranteed, append order)
    access_history: List[float] = field(default_factory=list)

    def __post_init__(self):
        self.importance = clamp_importance(self.importance)
        self.location = to_position(self.location)

        # tags are an ordered set
        deduped: List[str] = []
        for tag in self.tags:
            if tag not in deduped:
                deduped.append(tag)
        self.tags = deduped

        if not self.access_history:
            self.access_history.append(self.created)

    def record_access(self, current_time: Optional[float] = None):
        """Record one access"""
        if current_time is None:
            current_time = time.time()
        self.last_accessed = current_time
        self.access_history.append(current_time)

        # keep the most recent 100 accesses
        if len(self.access_history) > 100:
            self.access_history = self.access_history[-100:]

    def add_tags(self, tags: List[str]):
        for tag in tags:
            if tag not in self.tags:
                self.tags.append(tag)

    @property
    def has_embedding(self) -> bool:
        return bool(self.embedding)

    @property
    def based_on(self) -> List[str]:
        """Ids of the memories a reflection was derived from"""
        for tag in self.tags:
            if tag.startswith(BASED_ON_PREFIX):
                return [i for i in tag[len(BASED_ON_PREFIX):].split(",") if i]
        return []

    def get_age_hours(self, current_time: Optional[float] = None) -> float:
        """Hours since creation"""
        if current_time is None:
            current_time = time.time()
        return max(0.0, (current_time - self.created) / 3600)

    def get_hours_since_access(self, current_time: Optional[float] = None) -> float:
        if current_time is None:
            current_time = time.time()
        return max(0.0, (current_time - self.last_accessed) / 3600)

    def get_retention_score(self, current_time: Optional[float] = None) -> float:
        """
        Score used for capacity eviction, higher is kept

        retention = 0.4 * exp(-hours_since_creation / 24) + 0.6 * importance / 10
        """
        recency = math.exp(-self.get_age_hours(current_time) / 24)
        return 0.4 * recency + 0.6 * (self.importance / 10)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-safe dict"""
        return {
            'id': self.id,
            'description': self.description,
            'created': self.created,
            'last_accessed': self.last_accessed,
            'memory_type': self.memory_type,
            'importance': self.importance,
            'tags': list(self.tags),
            'location': {'x': self.location.x, 'y': self.location.y} if self.location else None,
            'embedding': self.embedding,
            'access_history': self.access_history[-10:],  # only the last 10 accesses
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MemoryRecord':
        """Create from a dict produced by to_dict"""
        return cls(
            id=data['id'],
            description=data['description'],
            created=float(data['created']),
            last_accessed=float(data.get('last_accessed', data['created'])),
            memory_type=data.get('memory_type', OBSERVATION),
            importance=data.get('importance', 5),
            tags=list(data.get('tags', [])),
            location=data.get('location'),
            embedding=data.get('embedding'),
            access_history=list(data.get('access_history', [])),
        )

    def __str__(self) -> str:
        return f"[{self.memory_type}] {self.description[:50]}... (importance={self.importance})"

    def __repr__(self) -> str:
        return f"MemoryRecord(id={self.id}, type={self.memory_type}, importance={self.importance})"
