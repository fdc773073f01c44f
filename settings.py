"""FlapDuel server configuration - defaults, environment and JSON settings files."""

import json
import logging
import os

from physics import GameParams

logger = logging.getLogger("flapduel")

# Physics keys accepted under "physics" in a settings file
PHYSICS_KEYS = (
    "gravity", "jump_impulse", "obstacle_speed", "gap_height", "obstacle_width",
    "field_width", "field_height", "bird_size", "obstacle_interval", "gap_margin",
)


class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 3000
    tick_rate: float = 1 / 60  # Seconds per simulation tick
    countdown_from: int = 3
    countdown_interval: float = 1.0  # Seconds between countdown broadcasts
    bots: int = 0
    params: GameParams = None

    def __init__(self):
        self.params = GameParams()
        port = os.environ.get("PORT")
        if port:
            try:
                self.port = int(port)
            except ValueError:
                logger.error(f"Invalid PORT '{port}'. Using default {self.port}.")


config = ServerConfig()


def read_settings_file(path: str) -> dict:
    """Parse a JSON settings file. A missing or unparsable file reads as empty."""
    try:
        with open(path, "r") as f:
            return json.load(f)
    except FileNotFoundError:
        return {}
    except json.JSONDecodeError as e:
        logger.error(f"❌ {path} is not valid JSON: {e}")
        return {}


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_count(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 1


def check_settings(settings: dict, target: ServerConfig = None) -> bool:
    """True if every value in ``settings`` may be applied to ``target``."""
    target = target or config
    if not settings or not isinstance(settings, dict):
        return False

    for key in ("tick_rate", "countdown_interval"):
        if key in settings and (not _is_number(settings[key]) or settings[key] <= 0):
            logger.error(f"Rejected settings: '{key}' must be a positive number of seconds")
            return False
    if "countdown_from" in settings and not _is_count(settings["countdown_from"]):
        logger.error("Rejected settings: 'countdown_from' must be a whole number of at least 1")
        return False
    bots = settings.get("bots", 0)
    if isinstance(bots, bool) or not isinstance(bots, int) or not 0 <= bots <= 2:
        logger.error("Rejected settings: 'bots' must be 0, 1 or 2")
        return False

    physics = settings.get("physics", {})
    if not isinstance(physics, dict):
        logger.error("Rejected settings: 'physics' must be an object")
        return False
    for key, value in physics.items():
        if key not in PHYSICS_KEYS:
            logger.error(f"Rejected settings: unknown physics key '{key}'")
            return False
        if not _is_number(value):
            logger.error(f"Rejected settings: physics '{key}' must be a number")
            return False
    # Obstacles spawn on a tick count
    if "obstacle_interval" in physics and not _is_count(physics["obstacle_interval"]):
        logger.error("Rejected settings: physics 'obstacle_interval' must be a whole number of ticks")
        return False
    for key in ("obstacle_speed", "gap_height", "obstacle_width", "field_width", "field_height", "bird_size"):
        if key in physics and physics[key] <= 0:
            logger.error(f"Rejected settings: physics '{key}' must be positive")
            return False

    merged = {key: getattr(target.params, key) for key in PHYSICS_KEYS}
    merged.update(physics)
    if merged["gap_height"] + 2 * merged["gap_margin"] > merged["field_height"]:
        logger.error("Rejected settings: the gap and its margins do not fit in field_height")
        return False

    return True


def apply_settings(settings: dict, target: ServerConfig = None):
    """Copy checked settings onto ``target`` (the global config by default)."""
    target = target or config
    for key in ("tick_rate", "countdown_interval", "countdown_from", "bots"):
        if key in settings:
            setattr(target, key, settings[key])

    # Rooms read params when a match starts, so swap in a fresh object
    params = GameParams()
    for key in PHYSICS_KEYS:
        setattr(params, key, settings.get("physics", {}).get(key, getattr(target.params, key)))
    target.params = params
