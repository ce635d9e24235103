"""
Plan hierarchy

DailyPlan -> HourlyPlan -> ActionPlan, each level owned by its parent.
All three share one status machine:

    pending -> in_progress -> completed | abandoned | failed

Terminal states are final; a transition out of one is logged and ignored.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from loguru import logger

from mazemind.world import Item, Position, SurvivalState

TAG = __name__

HOUR_DURATION = 3600
DEFAULT_ACTION_DURATION = 300


class PlanStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ABANDONED = "abandoned"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (PlanStatus.COMPLETED, PlanStatus.ABANDONED, PlanStatus.FAILED)


class PlanPriority(str, Enum):
    CRITICAL = "critical"   # survival
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @classmethod
    def parse(cls, value: str) -> "PlanPriority":
        try:
            return cls(value.strip().lower())
        except ValueError:
            return cls.MEDIUM


class ActionType(str, Enum):
    MOVE = "move"
    EXPLORE = "explore"
    CONSUME_ITEM = "consume_item"
    SEEK_ITEM = "seek_item"
    REST = "rest"
    REFLECT = "reflect"
    WAIT = "wait"

    @classmethod
    def parse(cls, value: str) -> "ActionType":
        try:
            return cls(value.strip().lower())
        except ValueError:
            return cls.EXPLORE


@dataclass
class ActionPlan:
    """one planning quantum (5 simulated minutes by default)"""
    id: str
    parent_id: str
    start_time: float
    duration: float
    action: str
    action_type: ActionType
    target_position: Optional[Position] = None
    target_item: Optional[str] = None
    status: PlanStatus = PlanStatus.PENDING
    completed_at: Optional[float] = None
    failure_reason: Optional[str] = None

    @property
    def end_time(self) -> float:
        return self.start_time + self.duration


@dataclass
class HourlyPlan:
    id: str
    parent_id: str
    start_time: float
    objective: str
    duration: float = HOUR_DURATION
    actions: List[ActionPlan] = field(default_factory=list)
    status: PlanStatus = PlanStatus.PENDING
    completed_at: Optional[float] = None

    @property
    def end_time(self) -> float:
        return self.start_time + self.duration


@dataclass
class DailyPlan:
    id: str
    created_at: float
    goal: str
    reasoning: str
    priority: PlanPriority
    hourly_plans: List[HourlyPlan] = field(default_factory=list)
    status: PlanStatus = PlanStatus.PENDING
    abandoned_reason: Optional[str] = None
    completed_at: Optional[float] = None
    memory_id: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return not self.status.is_terminal


@dataclass
class PlanningContext:
    """Snapshot of everything plan generation and re-plan checks look at"""
    survival: SurvivalState
    position: Position
    sim_time: float
    exploration_progress: float = 0.0
    known_items: List[Item] = field(default_factory=list)
    recent_memories: List[str] = field(default_factory=list)
    recent_reflections: List[str] = field(default_factory=list)
    surroundings: str = ""
    exit_position: Optional[Position] = None


def transition(node, status: PlanStatus, now: Optional[float] = None) -> bool:
    """
    Move a plan node to a new status

    Returns:
        whether the status changed
    """
    if node.status == status:
        return False
    if node.status.is_terminal:
        logger.bind(tag=TAG).warning(
            f"illegal transition {node.status.value} -> {status.value} on {type(node).__name__} {node.id}"
        )
        return False
    if status == PlanStatus.PENDING:
        logger.bind(tag=TAG).warning(
            f"illegal transition {node.status.value} -> pending on {type(node).__name__} {node.id}"
        )
        return False

    node.status = status
    if status == PlanStatus.COMPLETED:
        node.completed_at = now
    return True
