"""
Reflection tree

Level 1 nodes are derived from observations, level 2 ("meta") from level 1
nodes, level 3 and above from the level below. Nodes are append-only.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

STRATEGY = "strategy"
PATTERN = "pattern"
EMOTIONAL = "emotional"
LEARNING = "learning"
SOCIAL = "social"
META = "meta"

CATEGORIES = (STRATEGY, PATTERN, EMOTIONAL, LEARNING, SOCIAL, META)


def infer_category(text: str) -> str:
    """Keyword-based category, `learning` when nothing matches"""
    text = text.lower()
    if 'strategy' in text or 'should' in text:
        return STRATEGY
    if 'pattern' in text or 'always' in text or 'whenever' in text:
        return PATTERN
    if 'feel' in text or 'stress' in text or 'emotion' in text:
        return EMOTIONAL
    if 'social' in text or 'relationship' in text or 'interact' in text:
        return SOCIAL
    if 'meta' in text or 'thinking' in text or 'reflect' in text:
        return META
    return LEARNING


@dataclass
class ReflectionNode:
    id: str
    content: str
    level: int
    parent_ids: List[str]
    importance: int
    created: float
    category: str = LEARNING
    confidence: float = 0.5
    question: Optional[str] = None
    memory_id: Optional[str] = None
    child_ids: List[str] = field(default_factory=list)

    def __post_init__(self):
        self.confidence = max(0.0, min(1.0, float(self.confidence)))
        if self.category not in CATEGORIES:
            self.category = infer_category(self.category)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'content': self.content,
            'level': self.level,
            'parent_ids': list(self.parent_ids),
            'child_ids': list(self.child_ids),
            'importance': self.importance,
            'created': self.created,
            'category': self.category,
            'confidence': self.confidence,
            'question': self.question,
            'memory_id': self.memory_id,
        }


class ReflectionTree:
    """Per-level reflection nodes with parent/child links"""

    # number of most important nodes reported as key insights
    KEY_INSIGHTS = 5

    def __init__(self):
        self.first_order: List[ReflectionNode] = []
        self.second_order: List[ReflectionNode] = []
        self.higher_order: List[ReflectionNode] = []
        self.root_observation_ids: List[str] = []
        self._nodes: Dict[str, ReflectionNode] = {}

    def add(self, node: ReflectionNode):
        if node.level <= 1:
            self.first_order.append(node)
            for parent_id in node.parent_ids:
                if parent_id not in self.root_observation_ids:
                    self.root_observation_ids.append(parent_id)
        elif node.level == 2:
            self.second_order.append(node)
        else:
            self.higher_order.append(node)

        self._nodes[node.id] = node

        # link parents that are themselves reflection nodes
        for parent_id in node.parent_ids:
            parent = self._nodes.get(parent_id)
            if parent is not None and node.id not in parent.child_ids:
                parent.child_ids.append(node.id)

    def get(self, node_id: str) -> Optional[ReflectionNode]:
        return self._nodes.get(node_id)

    def nodes_at(self, level: int) -> List[ReflectionNode]:
        if level <= 1:
            return list(self.first_order)
        if level == 2:
            return list(self.second_order)
        return [n for n in self.higher_order if n.level == level]

    def all_nodes(self) -> List[ReflectionNode]:
        return list(self._nodes.values())

    @property
    def total_nodes(self) -> int:
        return len(self._nodes)

    @property
    def max_depth(self) -> int:
        return max((n.level for n in self._nodes.values()), default=0)

    @property
    def key_insights(self) -> List[str]:
        ranked = sorted(
            self._nodes.values(),
            key=lambda n: (n.importance, n.level, n.created),
            reverse=True,
        )
        return [n.content for n in ranked[:self.KEY_INSIGHTS]]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'root_observations': list(self.root_observation_ids),
            'first_order': [n.to_dict() for n in self.first_order],
            'second_order': [n.to_dict() for n in self.second_order],
            'higher_order': [n.to_dict() for n in self.higher_order],
            'insights': self.key_insights,
            'total_nodes': self.total_nodes,
            'max_depth': self.max_depth,
        }
