"""
World collaborators

Read-only views of the host simulation that the cognitive core consumes:
- survival state (hunger / thirst / energy / stress)
- maze layout (bounds, walls, entrance, exit)
- known item locations

The protocols are what the core depends on. GridMaze, StaticSurvival and
ItemRegistry are small in-memory implementations used by the demo runner
and the tests; a host application plugs in its own.
"""

from dataclasses import dataclass
from typing import Dict, List, NamedTuple, Optional, Protocol, Set, Tuple, runtime_checkable

from loguru import logger

TAG = __name__


class Position(NamedTuple):
    """Tile coordinates, north is y - 1"""
    x: int
    y: int

    def manhattan(self, other: "Position") -> int:
        return abs(self.x - other.x) + abs(self.y - other.y)

    def euclidean(self, other: "Position") -> float:
        return ((self.x - other.x) ** 2 + (self.y - other.y) ** 2) ** 0.5

    def step(self, direction: str) -> "Position":
        dx, dy = DIRECTION_DELTAS[direction]
        return Position(self.x + dx, self.y + dy)


DIRECTION_DELTAS: Dict[str, Tuple[int, int]] = {
    "north": (0, -1),
    "south": (0, 1),
    "east": (1, 0),
    "west": (-1, 0),
}

DIRECTIONS: Tuple[str, ...] = ("north", "east", "south", "west")

OPPOSITE = {"north": "south", "south": "north", "east": "west", "west": "east"}

# survival need -> item kind that restores it
NEED_TO_ITEM = {
    "hunger": "food",
    "thirst": "water",
    "energy": "energy",
}


def to_position(value) -> Optional[Position]:
    """Coerce a tuple/list/dict into a Position (None passes through)"""
    if value is None:
        return None
    if isinstance(value, Position):
        return value
    if isinstance(value, dict):
        return Position(int(value["x"]), int(value["y"]))
    x, y = value
    return Position(int(x), int(y))


@dataclass
class SurvivalState:
    """Resource levels, 100 = full, 0 = depleted"""
    hunger: float = 100.0
    thirst: float = 100.0
    energy: float = 100.0
    stress: float = 0.0


@dataclass
class Item:
    kind: str
    position: Position
    claimed: bool = False


@runtime_checkable
class SurvivalAccessor(Protocol):
    def get_state(self) -> SurvivalState: ...

    def get_most_urgent_need(self) -> Optional[str]: ...


@runtime_checkable
class MazeAccessor(Protocol):
    width: int
    height: int
    entrance: Position
    exit: Position

    def can_move(self, position: Position, direction: str) -> bool: ...

    def describe_surroundings(self, position: Position) -> str: ...


@runtime_checkable
class ItemLocator(Protocol):
    def find_nearest(
        self, kind: str, position: Position, max_distance: Optional[int] = None
    ) -> Optional[Item]: ...

    def known_items(self) -> List[Item]: ...


class GridMaze:
    """Rectangular maze with per-tile wall flags"""

    def __init__(
        self,
        width: int,
        height: int,
        entrance: Tuple[int, int] = (0, 0),
        exit: Optional[Tuple[int, int]] = None,
    ):
        self.width = width
        self.height = height
        self.entrance = to_position(entrance)
        self.exit = to_position(exit) if exit is not None else Position(width - 1, height - 1)
        self._walls: Dict[Position, Set[str]] = {}

    def in_bounds(self, position: Position) -> bool:
        return 0 <= position.x < self.width and 0 <= position.y < self.height

    def add_wall(self, position: Tuple[int, int], direction: str):
        """Block movement between a tile and its neighbour (both sides)"""
        pos = to_position(position)
        self._walls.setdefault(pos, set()).add(direction)
        neighbour = pos.step(direction)
        if self.in_bounds(neighbour):
            self._walls.setdefault(neighbour, set()).add(OPPOSITE[direction])

    def walls_at(self, position: Position) -> Set[str]:
        return set(self._walls.get(position, set()))

    def can_move(self, position: Position, direction: str) -> bool:
        if direction not in DIRECTION_DELTAS:
            return False
        pos = to_position(position)
        target = pos.step(direction)
        if not self.in_bounds(pos) or not self.in_bounds(target):
            return False
        return direction not in self._walls.get(pos, set())

    def open_directions(self, position: Position) -> List[str]:
        return [d for d in DIRECTIONS if self.can_move(position, d)]

    def describe_surroundings(self, position: Position) -> str:
        pos = to_position(position)
        if pos == self.exit:
            return "I'm at the EXIT! I found it!"
        if pos == self.entrance:
            return "I'm at the entrance where I started."

        openings = [d.capitalize() for d in self.open_directions(pos)]
        if not openings:
            return "Enclosed - walls on all sides."
        if len(openings) == 1:
            return f"Dead end - the only way out is {openings[0]}."
        if len(openings) == 2:
            return f"Corridor - paths to {openings[0]} and {openings[1]}."
        return f"Junction - paths to {', '.join(openings)}."


class StaticSurvival:
    """Survival accessor over a mutable SurvivalState"""

    def __init__(self, state: Optional[SurvivalState] = None, urgent_threshold: float = 20.0):
        self.state = state or SurvivalState()
        self.urgent_threshold = urgent_threshold

    def get_state(self) -> SurvivalState:
        return self.state

    def get_most_urgent_need(self) -> Optional[str]:
        levels = {
            "hunger": self.state.hunger,
            "thirst": self.state.thirst,
            "energy": self.state.energy,
        }
        need, level = min(levels.items(), key=lambda kv: kv[1])
        if level < self.urgent_threshold:
            return need
        return None


class ItemRegistry:
    """Item locator over a plain list of known items"""

    def __init__(self, items: Optional[List[Item]] = None):
        self.items: List[Item] = list(items or [])

    def add(self, kind: str, position: Tuple[int, int]) -> Item:
        item = Item(kind=kind, position=to_position(position))
        self.items.append(item)
        return item

    def remove(self, item: Item):
        if item in self.items:
            self.items.remove(item)
        else:
            logger.bind(tag=TAG).debug(f"item not registered: {item}")

    def known_items(self) -> List[Item]:
        return [item for item in self.items if not item.claimed]

    def find_nearest(
        self, kind: str, position: Position, max_distance: Optional[int] = None
    ) -> Optional[Item]:
        pos = to_position(position)
        candidates = [item for item in self.known_items() if item.kind == kind]
        if max_distance is not None:
            candidates = [i for i in candidates if i.position.manhattan(pos) <= max_distance]
        if not candidates:
            return None
        return min(candidates, key=lambda i: i.position.manhattan(pos))
