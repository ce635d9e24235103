"""
mazemind demo - one character in a small grid maze

Runs without an API key (heuristic mode). Set OPENAI_API_KEY, or point
llm.base_url in a config file at a local OpenAI-compatible server, to let a
language model plan, reflect and decide.

    python main.py [config.yaml]
"""

import asyncio
import sys

from mazemind.agent.cognition import CognitiveAgent
from mazemind.agent.decision import MOVE, DecisionContext
from mazemind.config import load_config
from mazemind.utils import setup_logging
from mazemind.world import GridMaze, ItemRegistry, Position, StaticSurvival, SurvivalState


# ============================================================================
# configuration
# ============================================================================

CONFIG = {
    "ticks": 60,
    # simulated seconds per tick
    "tick_seconds": 30,
    # survival depletion per tick
    "hunger_rate": 1.5,
    "thirst_rate": 2.0,
    "energy_rate": 1.0,
}


# ============================================================================
# world
# ============================================================================

class SimClock:
    """simulated time, advanced by the demo loop"""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


def create_world():
    maze = GridMaze(10, 6, entrance=(0, 0), exit=(9, 5))
    for y in range(0, 4):
        maze.add_wall((3, y), "east")
    for y in range(2, 6):
        maze.add_wall((6, y), "east")
    maze.add_wall((1, 2), "south")
    maze.add_wall((8, 1), "south")

    items = ItemRegistry()
    items.add("food", (2, 4))
    items.add("water", (5, 0))
    items.add("energy", (7, 1))

    survival = StaticSurvival(SurvivalState(hunger=60, thirst=55, energy=80, stress=10))
    return maze, items, survival


# ============================================================================
# loop
# ============================================================================

async def run_demo(config_path=None):
    config = load_config(config_path)
    setup_logging(config.log_level, config.log_dir)

    maze, items, survival = create_world()
    clock = SimClock()
    state = {"position": maze.entrance}

    context = DecisionContext(
        maze=maze,
        survival=survival,
        items=items,
        get_position=lambda: state["position"],
    )
    agent = CognitiveAgent.from_config(context, config, clock=clock)
    await agent.start()

    print("=" * 60)
    print(f"{agent.name} enters a {maze.width}x{maze.height} maze, exit at ({maze.exit.x}, {maze.exit.y})")
    print("=" * 60)

    for tick in range(CONFIG["ticks"]):
        await agent.observe_surroundings()
        decision = await agent.tick()

        position = state["position"]
        if decision.action == MOVE and maze.can_move(position, decision.direction):
            state["position"] = position.step(decision.direction)
        await _consume_items(agent, items, survival, state["position"])

        print(
            f"[{tick:3d}] ({position.x},{position.y}) {decision.action:<7} {decision.direction or '':<5} "
            f"[{decision.source}] {decision.reasoning}"
        )

        if state["position"] == maze.exit:
            await agent.perceive("I found the exit and escaped the maze!", importance=10)
            print(f"{agent.name} escaped after {tick + 1} ticks")
            break

        _deplete(survival.state)
        clock.advance(CONFIG["tick_seconds"])
        await asyncio.sleep(0)

    await agent.aclose()

    stats = agent.get_statistics()
    print("=" * 60)
    print(f"memories: {stats['memory']['total']}, reflections: {stats['reflection']['total_reflections']}, "
          f"re-plans: {stats['planning']['replan_count']}, tiles visited: {stats['tiles_visited']}")


async def _consume_items(agent: CognitiveAgent, items: ItemRegistry, survival: StaticSurvival, position: Position):
    restores = {"food": "hunger", "water": "thirst", "energy": "energy"}
    for item in list(items.known_items()):
        if item.position != position:
            continue
        need = restores[item.kind]
        setattr(survival.state, need, min(100.0, getattr(survival.state, need) + 40))
        items.remove(item)
        await agent.perceive(f"Found {item.kind} at ({position.x}, {position.y}) and used it", tags=[item.kind])


def _deplete(state: SurvivalState):
    state.hunger = max(0.0, state.hunger - CONFIG["hunger_rate"])
    state.thirst = max(0.0, state.thirst - CONFIG["thirst_rate"])
    state.energy = max(0.0, state.energy - CONFIG["energy_rate"])


# ============================================================================
# entry point
# ============================================================================

if __name__ == "__main__":
    asyncio.run(run_demo(sys.argv[1] if len(sys.argv) > 1 else None))
