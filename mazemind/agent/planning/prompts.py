"""
Planning prompts and response parsers

Parsers raise MalformedResponseError when the required marker is missing,
which routes generation to the heuristic planner.
"""

import re
from typing import Tuple

from .plans import ActionType, PlanPriority, PlanningContext
from mazemind.errors import MalformedResponseError

DAILY_PLANNING_PROMPT = """You are planning a full day for an agent named Arth who is trapped in a maze.

AGENT'S SITUATION:
- Trapped in a maze, trying to find the exit
- Must manage survival resources (hunger, thirst, energy)
- Can explore, collect items (food, water, energy drinks), and search for exit
- Has memory of past experiences and reflections

CURRENT STATE:
Hunger: {hunger:.0f}%
Thirst: {thirst:.0f}%
Energy: {energy:.0f}%
Stress: {stress:.0f}%
Position: ({x}, {y})
Exploration Progress: {exploration:.0f}%

RECENT MEMORIES:
{recent_memories}

RECENT REFLECTIONS:
{recent_reflections}

Create a high-level daily plan (one main goal for the next 24 hours of game time).
Consider:
1. Survival needs (if hunger/thirst/energy low, prioritize finding items)
2. Exploration progress (systematically explore unmapped areas)
3. Exit search (if survival stable, focus on finding exit)
4. Past failures (learn from previous attempts)

Respond in this format:
GOAL: [One clear, specific daily goal]
REASONING: [2-3 sentences explaining why this goal makes sense]
PRIORITY: [CRITICAL/HIGH/MEDIUM/LOW]"""

HOURLY_PLANNING_PROMPT = """Break down this daily goal into a specific objective for the next hour.

DAILY GOAL: {daily_goal}

CURRENT TIME: {current_time}
HOUR TO PLAN: Hour {hour_number}

CURRENT SITUATION:
Hunger: {hunger:.0f}%
Thirst: {thirst:.0f}%
Energy: {energy:.0f}%
Position: ({x}, {y})

What specific objective should the agent accomplish in this hour to work toward the daily goal?

Respond with:
OBJECTIVE: [Specific, actionable objective for this hour]"""

ACTION_PLANNING_PROMPT = """Break down this hourly objective into a specific {minutes}-minute action.

HOURLY OBJECTIVE: {hourly_objective}
DAILY GOAL: {daily_goal}

CURRENT POSITION: ({x}, {y})
CURRENT TIME: {current_time}
TIME SLOT: {start_time} - {end_time}

SURROUNDING AREA:
{surroundings}

KNOWN NEARBY ITEMS:
{nearby_items}

What specific action should the agent take in this time slot?

Respond with:
ACTION: [Specific action to take]
TYPE: [MOVE/EXPLORE/CONSUME_ITEM/SEEK_ITEM/REST/REFLECT/WAIT]"""


def format_sim_time(seconds: float) -> str:
    """HH:MM:SS"""
    seconds = int(max(0, seconds))
    return f"{seconds // 3600:02d}:{(seconds % 3600) // 60:02d}:{seconds % 60:02d}"


def _numbered(lines, limit: int, empty: str) -> str:
    if not lines:
        return empty
    return "\n".join(f"{i}. {line}" for i, line in enumerate(lines[:limit], 1))


def build_daily_plan_prompt(context: PlanningContext) -> str:
    survival = context.survival
    return DAILY_PLANNING_PROMPT.format(
        hunger=survival.hunger,
        thirst=survival.thirst,
        energy=survival.energy,
        stress=survival.stress,
        x=context.position.x,
        y=context.position.y,
        exploration=context.exploration_progress * 100,
        recent_memories=_numbered(context.recent_memories, 5, "No recent memories"),
        recent_reflections=_numbered(context.recent_reflections, 3, "No recent reflections"),
    )


def build_hourly_plan_prompt(daily_goal: str, hour: int, context: PlanningContext) -> str:
    survival = context.survival
    return HOURLY_PLANNING_PROMPT.format(
        daily_goal=daily_goal,
        current_time=format_sim_time(context.sim_time),
        hour_number=hour + 1,
        hunger=survival.hunger,
        thirst=survival.thirst,
        energy=survival.energy,
        x=context.position.x,
        y=context.position.y,
    )


def build_action_plan_prompt(
    hourly_objective: str,
    daily_goal: str,
    context: PlanningContext,
    start_time: float,
    end_time: float,
) -> str:
    items = context.known_items[:3]
    nearby_items = (
        ", ".join(f"{item.kind} at ({item.position.x}, {item.position.y})" for item in items)
        if items else "None visible"
    )
    return ACTION_PLANNING_PROMPT.format(
        minutes=int((end_time - start_time) // 60),
        hourly_objective=hourly_objective,
        daily_goal=daily_goal,
        x=context.position.x,
        y=context.position.y,
        current_time=format_sim_time(context.sim_time),
        start_time=format_sim_time(start_time),
        end_time=format_sim_time(end_time),
        surroundings=context.surroundings or "Unknown",
        nearby_items=nearby_items,
    )


def parse_daily_plan_response(response: str) -> Tuple[str, str, PlanPriority]:
    """
    Returns:
        (goal, reasoning, priority)
    """
    goal_match = re.search(r'GOAL:\s*(.+?)(?:\n|$)', response, re.I)
    if not goal_match or not goal_match.group(1).strip():
        raise MalformedResponseError(f"no GOAL in daily plan response: {response[:80]!r}")

    reasoning_match = re.search(r'REASONING:\s*(.+?)(?=\nPRIORITY:|$)', response, re.I | re.S)
    reasoning = reasoning_match.group(1).strip() if reasoning_match else ""

    priority_match = re.search(r'PRIORITY:\s*(\w+)', response, re.I)
    priority = PlanPriority.parse(priority_match.group(1)) if priority_match else PlanPriority.MEDIUM

    return goal_match.group(1).strip(), reasoning, priority


def parse_hourly_plan_response(response: str) -> str:
    match = re.search(r'OBJECTIVE:\s*(.+?)(?:\n|$)', response, re.I)
    if not match or not match.group(1).strip():
        raise MalformedResponseError(f"no OBJECTIVE in hourly plan response: {response[:80]!r}")
    return match.group(1).strip()


def parse_action_plan_response(response: str) -> Tuple[str, ActionType]:
    action_match = re.search(r'ACTION:\s*(.+?)(?=\nTYPE:|$)', response, re.I | re.S)
    if not action_match or not action_match.group(1).strip():
        raise MalformedResponseError(f"no ACTION in action plan response: {response[:80]!r}")

    type_match = re.search(r'TYPE:\s*(\w+)', response, re.I)
    action_type = ActionType.parse(type_match.group(1)) if type_match else ActionType.EXPLORE

    return action_match.group(1).strip(), action_type
