"""
Unit tests for the in-memory world collaborators.
"""

from mazemind.world import GridMaze, ItemRegistry, Position, StaticSurvival, SurvivalState, to_position


class TestGridMaze:

    def test_walls_block_both_sides(self, open_maze):
        open_maze.add_wall((2, 2), "east")

        assert open_maze.can_move(Position(2, 2), "east") is False
        assert open_maze.can_move(Position(3, 2), "west") is False
        assert open_maze.can_move(Position(2, 2), "north") is True

    def test_bounds_and_unknown_direction(self, open_maze):
        assert open_maze.can_move(Position(0, 0), "north") is False
        assert open_maze.can_move(Position(9, 5), "east") is False
        assert open_maze.can_move(Position(2, 2), "up") is False

    def test_describe_surroundings(self):
        maze = GridMaze(3, 3, entrance=(0, 0), exit=(2, 2))
        maze.add_wall((1, 0), "south")

        assert maze.describe_surroundings(Position(2, 2)) == "I'm at the EXIT! I found it!"
        assert maze.describe_surroundings(Position(0, 0)) == "I'm at the entrance where I started."
        assert maze.describe_surroundings(Position(1, 0)) == "Corridor - paths to East and West."
        assert maze.describe_surroundings(Position(1, 1)) == "Junction - paths to East, South, West."

    def test_to_position(self):
        assert to_position({"x": 1, "y": 2}) == Position(1, 2)
        assert to_position([3, 4]) == Position(3, 4)
        assert to_position(None) is None


class TestSurvivalAndItems:

    def test_most_urgent_need(self):
        survival = StaticSurvival(SurvivalState(hunger=50, thirst=12, energy=18))

        assert survival.get_most_urgent_need() == "thirst"
        survival.state.thirst = 90
        assert survival.get_most_urgent_need() == "energy"
        survival.state.energy = 90
        assert survival.get_most_urgent_need() is None

    def test_find_nearest_respects_radius_and_claims(self):
        registry = ItemRegistry()
        far = registry.add("food", (9, 9))
        near = registry.add("food", (1, 1))
        registry.add("water", (0, 1))

        assert registry.find_nearest("food", Position(0, 0)) is near
        assert registry.find_nearest("food", Position(0, 0), max_distance=1) is None

        near.claimed = True
        assert registry.find_nearest("food", Position(0, 0)) is far
        assert len(registry.known_items()) == 2
