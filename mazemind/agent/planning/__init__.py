"""
Hierarchical planning

- plans: plan hierarchy, status machine, planning context
- prompts: prompt builders and response parsers
- planner: PlanningSystem (generation, completion, re-planning)
"""

from .plans import (
    ActionPlan,
    ActionType,
    DailyPlan,
    HourlyPlan,
    PlanPriority,
    PlanStatus,
    PlanningContext,
)
from .planner import PlanningSystem

__all__ = [
    "ActionPlan",
    "ActionType",
    "DailyPlan",
    "HourlyPlan",
    "PlanPriority",
    "PlanStatus",
    "PlanningContext",
    "PlanningSystem",
]
