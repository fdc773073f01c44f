"""Tests for the per-tick simulation step."""

import random

from physics import DRAW, GameParams, Obstacle, SimulationState, apply_jump, step


class FixedRandom(random.Random):
    def __init__(self, value: float):
        super().__init__()
        self.value = value

    def random(self):
        return self.value


def no_spawn_state() -> SimulationState:
    return SimulationState(obstacle_interval=10 ** 9)


def test_gravity_integrates_velocity_then_position():
    params = GameParams()
    state = no_spawn_state()
    step(state, params)
    bird = state.birds[0]
    assert bird.vy == params.gravity
    assert bird.y == 300.0 + params.gravity
    assert state.winner is None


def test_bird_at_ground_with_downward_velocity_dies_clamped():
    params = GameParams()
    state = no_spawn_state()
    floor = params.field_height - params.bird_size
    bird = state.birds[0]
    bird.y = floor
    bird.vy = 3.0
    step(state, params)
    assert bird.alive is False
    assert bird.y == floor


def test_dead_birds_never_tunnel_through_the_ground():
    params = GameParams()
    state = no_spawn_state()
    floor = params.field_height - params.bird_size
    state.birds[0].vy = 25.0
    state.birds[1].vy = 40.0
    for _ in range(100):
        step(state, params)
        for bird in state.birds:
            assert bird.y <= floor
            if not bird.alive:
                assert bird.y == floor


def test_top_boundary_resets_position_and_velocity():
    params = GameParams()
    state = no_spawn_state()
    bird = state.birds[1]
    bird.y = 1.0
    bird.vy = -9.0
    step(state, params)
    assert bird.y == 0.0
    assert bird.vy == 0.0
    assert bird.alive


def test_simultaneous_death_is_a_draw():
    params = GameParams()
    state = no_spawn_state()
    for bird in state.birds:
        bird.y = params.field_height - params.bird_size - 1
        bird.vy = 5.0
    step(state, params)
    assert state.winner == DRAW
    assert state.winner not in (1, 2)


def test_surviving_bird_wins():
    params = GameParams()
    state = no_spawn_state()
    state.birds[1].y = params.field_height - params.bird_size
    state.birds[1].vy = 1.0
    step(state, params)
    assert state.winner == 1


def test_obstacle_spawns_at_right_edge_with_gap_inside_field():
    params = GameParams()
    for value, expected_gap in ((0.0, params.gap_margin), (0.5, 225.0)):
        state = SimulationState()
        state.obstacle_timer = state.obstacle_interval - 1
        step(state, params, FixedRandom(value))
        assert state.obstacle_timer == 0
        assert len(state.obstacles) == 1
        obstacle = state.obstacles[0]
        assert obstacle.x == params.field_width - params.obstacle_speed
        assert obstacle.gap_y == expected_gap

    state = SimulationState()
    state.obstacle_timer = state.obstacle_interval - 1
    step(state, params, FixedRandom(0.999999))
    gap_y = state.obstacles[0].gap_y
    assert gap_y + params.gap_height <= params.field_height - params.gap_margin


def test_obstacle_moves_left_strictly_until_removed():
    params = GameParams()
    state = no_spawn_state()
    state.obstacles.append(Obstacle(100.0, 200.0))
    tracked = state.obstacles[0]
    previous = tracked.x
    ticks = 0
    while tracked in state.obstacles:
        step(state, params)
        ticks += 1
        if tracked in state.obstacles:
            assert tracked.x == previous - params.obstacle_speed
            previous = tracked.x
    assert tracked.x + params.obstacle_width < 0
    assert ticks == 91


def test_score_increments_once_when_obstacle_passes_slot_one():
    params = GameParams()
    state = no_spawn_state()
    obstacle = Obstacle(300.0, 200.0)
    state.obstacles.append(obstacle)
    # Keep both birds out of the way
    for bird in state.birds:
        bird.alive = False

    scored_at = None
    for tick in range(1, 120):
        before = state.score
        was_scored = obstacle.scored
        step(state, params)
        if was_scored:
            assert obstacle.scored
            assert state.score == before
        elif obstacle.scored:
            scored_at = tick
            assert state.score == before + 1
    assert scored_at == 81
    assert state.score == 1


def test_collision_with_upper_rectangle_kills():
    params = GameParams()
    state = no_spawn_state()
    state.obstacles.append(Obstacle(230.0, 350.0))
    step(state, params)
    assert state.birds[0].alive is False
    assert state.birds[1].alive is True
    assert state.winner == 2


def test_bird_inside_gap_survives():
    params = GameParams()
    state = no_spawn_state()
    state.obstacles.append(Obstacle(230.0, 250.0))
    step(state, params)
    assert state.birds[0].alive is True
    assert state.winner is None


def test_jump_sets_velocity():
    params = GameParams()
    state = no_spawn_state()
    state.birds[0].vy = 7.5
    assert apply_jump(state, 1, params)
    assert state.birds[0].vy == params.jump_impulse


def test_jump_ignored_for_dead_bird_unknown_slot_or_finished_match():
    params = GameParams()
    state = no_spawn_state()
    state.birds[1].alive = False
    assert not apply_jump(state, 2, params)
    assert state.birds[1].vy == 0.0
    assert not apply_jump(state, 3, params)

    state.winner = 1
    assert not apply_jump(state, 1, params)
    assert state.birds[0].vy == 0.0


def test_snapshot_contains_names_and_colors():
    state = SimulationState(names=["Alice", "Bob"], colors=["#112233", "#445566"])
    snapshot = state.to_dict()
    assert snapshot["score"] == 0
    assert snapshot["names"] == ["Alice", "Bob"]
    assert snapshot["colors"] == ["#112233", "#445566"]
    assert [b["slot"] for b in snapshot["birds"]] == [1, 2]
    assert snapshot["winner"] is None
