"""FlapDuel physics - the authoritative per-tick simulation step."""

import random
from typing import Optional

# Winner marker when both birds die on the same tick
DRAW = 0


class GameParams:
    """Physics parameters shared verbatim between the simulation and renderers."""
    gravity: float = 0.4
    jump_impulse: float = -9.0  # Sets (not adds to) vertical velocity
    obstacle_speed: float = 2.0
    gap_height: float = 150.0
    obstacle_width: float = 80.0
    field_width: float = 800.0
    field_height: float = 600.0
    bird_size: float = 24.0
    obstacle_interval: int = 120  # Ticks between obstacle spawns
    gap_margin: float = 50.0  # Keeps the gap clear of the ceiling and the ground strip

    def to_dict(self) -> dict:
        return {
            "gravity": self.gravity,
            "jump_impulse": self.jump_impulse,
            "obstacle_speed": self.obstacle_speed,
            "gap_height": self.gap_height,
            "obstacle_width": self.obstacle_width,
            "field_width": self.field_width,
            "field_height": self.field_height,
            "bird_size": self.bird_size,
        }


class Bird:
    def __init__(self, slot: int, x: float, y: float):
        self.slot = slot
        self.x = x
        self.y = y
        self.vy = 0.0
        self.alive = True

    def to_dict(self) -> dict:
        return {"slot": self.slot, "x": self.x, "y": self.y, "vy": self.vy, "alive": self.alive}


class Obstacle:
    def __init__(self, x: float, gap_y: float):
        self.x = x
        self.gap_y = gap_y  # Top edge of the gap
        self.scored = False

    def to_dict(self) -> dict:
        return {"x": self.x, "gap_y": self.gap_y, "scored": self.scored}


class SimulationState:
    """Everything the tick driver mutates while a match is running."""

    def __init__(self, names: Optional[list[str]] = None, colors: Optional[list[str]] = None,
                 obstacle_interval: int = GameParams.obstacle_interval):
        self.score = 0
        # Slot 1 starts further ahead, slot 2 is staggered vertically
        self.birds: list[Bird] = [Bird(1, 220.0, 300.0), Bird(2, 160.0, 320.0)]
        self.obstacles: list[Obstacle] = []
        self.obstacle_timer = 0
        self.obstacle_interval = obstacle_interval
        self.winner: Optional[int] = None
        self.names = list(names) if names else ["Player 1", "Player 2"]
        self.colors = list(colors) if colors else ["#FFD700", "#1ABC9C"]
        self.tick = 0

    def bird(self, slot: int) -> Optional[Bird]:
        if slot in (1, 2):
            return self.birds[slot - 1]
        return None

    def to_dict(self) -> dict:
        return {
            "tick": self.tick,
            "score": self.score,
            "birds": [b.to_dict() for b in self.birds],
            "obstacles": [o.to_dict() for o in self.obstacles],
            "obstacle_timer": self.obstacle_timer,
            "winner": self.winner,
            "names": list(self.names),
            "colors": list(self.colors),
        }


def apply_jump(state: SimulationState, slot: int, params: GameParams) -> bool:
    """Set the bird's velocity to the jump impulse. Returns False if the jump was ignored."""
    if state.winner is not None:
        return False
    bird = state.bird(slot)
    if bird is None or not bird.alive:
        return False
    bird.vy = params.jump_impulse
    return True


def spawn_obstacle(state: SimulationState, params: GameParams, rng: random.Random):
    span = params.field_height - params.gap_height - 2 * params.gap_margin
    gap_y = rng.random() * span + params.gap_margin
    state.obstacles.append(Obstacle(params.field_width, gap_y))


def advance_obstacles(state: SimulationState, params: GameParams):
    """Scroll obstacles left, drop the ones off-screen and score the ones slot 1 has passed."""
    lead_x = state.birds[0].x
    kept = []
    for obstacle in state.obstacles:
        obstacle.x -= params.obstacle_speed
        if obstacle.x + params.obstacle_width < 0:
            continue
        if not obstacle.scored and obstacle.x + params.obstacle_width < lead_x:
            obstacle.scored = True
            state.score += 1
        kept.append(obstacle)
    state.obstacles = kept


def move_bird(bird: Bird, params: GameParams):
    if not bird.alive:
        return
    bird.vy += params.gravity
    bird.y += bird.vy
    if bird.y < 0:
        bird.y = 0.0
        bird.vy = 0.0
    floor = params.field_height - params.bird_size
    if bird.y >= floor:
        bird.alive = False
        bird.y = floor  # No tunneling through the ground


def hits_obstacle(bird: Bird, obstacle: Obstacle, params: GameParams) -> bool:
    """Axis-aligned overlap against the solid rectangles above and below the gap."""
    bird_left = bird.x
    bird_right = bird.x + params.bird_size
    bird_top = bird.y
    bird_bottom = bird.y + params.bird_size
    if bird_right <= obstacle.x or bird_left >= obstacle.x + params.obstacle_width:
        return False
    return bird_top < obstacle.gap_y or bird_bottom > obstacle.gap_y + params.gap_height


def decide_winner(state: SimulationState) -> Optional[int]:
    alive = [b.alive for b in state.birds]
    if alive[0] and alive[1]:
        return None
    if alive[0]:
        return 1
    if alive[1]:
        return 2
    return DRAW


def step(state: SimulationState, params: GameParams, rng: Optional[random.Random] = None) -> SimulationState:
    """Advance the simulation by one tick. Mutates and returns ``state``."""
    rng = rng or random

    state.tick += 1
    state.obstacle_timer += 1
    if state.obstacle_timer >= state.obstacle_interval:
        state.obstacle_timer = 0
        spawn_obstacle(state, params, rng)

    advance_obstacles(state, params)

    for bird in state.birds:
        move_bird(bird, params)

    for obstacle in state.obstacles:
        for bird in state.birds:
            if bird.alive and hits_obstacle(bird, obstacle, params):
                bird.alive = False

    state.winner = decide_winner(state)
    return state
