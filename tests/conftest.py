"""
Shared fixtures

Everything runs against a fake clock (seconds) so recency, reflection timers
and plan schedules are deterministic.
"""

import pytest

from mazemind.agent.decision import DecisionContext
from mazemind.agent.memory import MemoryStream
from mazemind.world import GridMaze, ItemRegistry, Position, StaticSurvival, SurvivalState


class FakeClock:
    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds

    def advance_hours(self, hours: float):
        self.now += hours * 3600


class Mover:
    """mutable position source"""

    def __init__(self, x: int, y: int):
        self.position = Position(x, y)

    def __call__(self) -> Position:
        return self.position


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def stream(clock):
    return MemoryStream(max_memories=100, clock=clock)


@pytest.fixture
def open_maze():
    return GridMaze(10, 6, entrance=(0, 0), exit=(8, 2))


@pytest.fixture
def survival():
    return StaticSurvival(SurvivalState(hunger=80, thirst=80, energy=80, stress=0))


@pytest.fixture
def items():
    return ItemRegistry()


@pytest.fixture
def mover():
    return Mover(2, 2)


@pytest.fixture
def decision_context(open_maze, survival, items, mover):
    return DecisionContext(maze=open_maze, survival=survival, items=items, get_position=mover)
