"""Room lifecycle - lobby, countdown, running match, game over."""

import asyncio
import logging
import random
from enum import Enum
from typing import Any, Optional

from physics import DRAW, GameParams, SimulationState, apply_jump, step
from sessions import CapacityError, Session, SessionRegistry
from settings import ServerConfig, config

logger = logging.getLogger("flapduel")

DEFAULT_ROOM = "main"


class RoomPhase(Enum):
    EMPTY = "empty"
    LOBBY = "lobby"
    COUNTDOWN = "countdown"
    RUNNING = "running"
    FINISHED = "finished"


class GameRoom:
    """A single two-player match context.

    All mutation happens on the event loop. The countdown and simulation
    drivers are tasks stored on the room; a phase change cancels whatever
    handle it supersedes.
    """

    def __init__(self, room_id: str, settings: Optional[ServerConfig] = None,
                 rng: Optional[random.Random] = None):
        self.room_id = room_id
        self.settings = settings or config
        self.rng = rng or random.Random()
        self.registry = SessionRegistry()
        self.phase = RoomPhase.EMPTY
        self.state: Optional[SimulationState] = None
        self.params: Optional[GameParams] = None  # Locked in when a match starts
        self.countdown_remaining: Optional[int] = None
        self.final_snapshot: Optional[dict] = None
        self.countdown_task: Optional[asyncio.Task] = None
        self.game_task: Optional[asyncio.Task] = None

    def is_empty(self) -> bool:
        return len(self.registry) == 0

    def is_full(self) -> bool:
        return self.registry.is_full()

    async def connect_player(self, conn: Any) -> Optional[Session]:
        """Add a connection to the room. Returns None (after sending room_full) when full."""
        try:
            session = self.registry.add_session(conn)
        except CapacityError:
            logger.warning(f"🚫 [Room {self.room_id}] Rejected connection: room full")
            await self._send(conn, {"type": "room_full"})
            return None

        if self.phase == RoomPhase.EMPTY:
            self.phase = RoomPhase.LOBBY
        logger.info(f"✅ [Room {self.room_id}] Player {session.slot} connected ({len(self.registry)} player(s))")

        await self._send(conn, {
            "type": "joined",
            "room_id": self.room_id,
            "player_id": session.slot,
            "name": session.display_name,
            "color": session.color,
        })
        if self.registry.is_full():
            await self.broadcast({"type": "room_ready"})
        return session

    async def disconnect_player(self, conn: Any):
        """Remove a connection. Always aborts whatever match is in progress."""
        session = self.registry.remove_session(conn)
        if session is None:
            return

        if self.phase in (RoomPhase.COUNTDOWN, RoomPhase.RUNNING):
            logger.info(f"⏹️ [Room {self.room_id}] Match aborted (player {session.slot} disconnected)")
        self._cancel_timers()
        self.state = None
        self.params = None
        self.final_snapshot = None
        self.countdown_remaining = None
        self.registry.clear_ready()
        self.phase = RoomPhase.LOBBY if len(self.registry) else RoomPhase.EMPTY

        logger.info(f"❌ [Room {self.room_id}] Player {session.slot} disconnected ({len(self.registry)} player(s))")
        if len(self.registry):
            await self.broadcast({"type": "player_left", "player_id": session.slot})

    async def handle_message(self, conn: Any, data: dict):
        session = self.registry.get(conn)
        if session is None:
            return
        msg_type = data.get("type")
        if msg_type == "jump":
            self._handle_jump(session, data.get("player_id"))
        elif msg_type == "ready":
            await self._handle_ready(session)
        elif msg_type == "set_name":
            if self.registry.set_name(conn, data.get("name")) and self.phase != RoomPhase.RUNNING:
                await self.broadcast({"type": "lobby_name_update", "player_id": session.slot,
                                      "name": session.display_name})
        elif msg_type == "set_color":
            if self.registry.set_color(conn, data.get("color")) and self.phase != RoomPhase.RUNNING:
                await self.broadcast({"type": "lobby_color_update", "player_id": session.slot,
                                      "color": session.color})
        elif msg_type == "back_to_lobby":
            await self.back_to_lobby()
        else:
            logger.debug(f"[Room {self.room_id}] Ignoring message type {msg_type!r} from player {session.slot}")

    def _handle_jump(self, session: Session, declared_slot: Any):
        # The declared slot must be the sender's own
        if isinstance(declared_slot, bool) or declared_slot != session.slot:
            return
        if self.phase != RoomPhase.RUNNING or self.state is None:
            return
        apply_jump(self.state, session.slot, self.params)

    async def _handle_ready(self, session: Session):
        if self.phase != RoomPhase.LOBBY:
            return
        if not self.registry.set_ready(session.conn):
            return
        ready_count = sum(1 for s in self.registry if s.ready)
        logger.info(f"👍 [Room {self.room_id}] {session.display_name} ready ({ready_count}/2 players)")
        await self.broadcast({"type": "player_ready", "player_id": session.slot})
        # The other ready may have started the countdown while this one was sending
        if self.phase == RoomPhase.LOBBY and self.registry.all_ready():
            self.start_countdown()

    def start_countdown(self):
        # State may have moved on while player_ready was being sent
        if self.phase != RoomPhase.LOBBY or not self.registry.all_ready():
            logger.warning(f"⚠️ [Room {self.room_id}] start_countdown called in phase {self.phase.value}, ignoring")
            return
        self._cancel_timers()
        self.phase = RoomPhase.COUNTDOWN
        self.countdown_remaining = self.settings.countdown_from
        logger.info(f"⏳ [Room {self.room_id}] Both players ready, starting countdown")
        self.countdown_task = asyncio.create_task(self._countdown_loop())

    async def _countdown_loop(self):
        try:
            remaining = self.settings.countdown_from
            while remaining > 0:
                self.countdown_remaining = remaining
                await self.broadcast({"type": "countdown", "value": remaining}, RoomPhase.COUNTDOWN)
                if self.phase != RoomPhase.COUNTDOWN:
                    return
                await asyncio.sleep(self.settings.countdown_interval)
                remaining -= 1
            self.countdown_remaining = 0
            await self.start_game()
        except asyncio.CancelledError:
            pass

    async def start_game(self):
        if self.phase != RoomPhase.COUNTDOWN or not self.registry.is_full():
            logger.warning(f"⚠️ [Room {self.room_id}] start_game called in phase {self.phase.value}, ignoring")
            return
        # countdown_task stays set until the tick driver takes over, so a
        # disconnect during the start broadcast can still cancel it
        if self.game_task and not self.game_task.done():
            self.game_task.cancel()
        self.game_task = None

        params = self.settings.params
        state = SimulationState(
            names=self.registry.names(),
            colors=self.registry.colors(),
            obstacle_interval=params.obstacle_interval,
        )
        self.params = params
        self.state = state
        self.phase = RoomPhase.RUNNING
        self.countdown_remaining = None
        logger.info(f"🎮 [Room {self.room_id}] Game started! {state.names[0]} vs {state.names[1]}")

        await self.broadcast({"type": "start", "params": params.to_dict()}, RoomPhase.RUNNING)
        # A disconnect while start was being sent has already reset the room
        if self.state is state:
            self.countdown_task = None
            self.game_task = asyncio.create_task(self.game_loop(state))

    async def game_loop(self, state: SimulationState):
        loop = asyncio.get_running_loop()
        next_tick = loop.time()
        try:
            while self.state is state:
                step(state, self.params, self.rng)
                snapshot = state.to_dict()
                await self.broadcast({"type": "state", "state": snapshot}, RoomPhase.RUNNING)
                if self.state is not state:
                    return
                if state.winner is not None:
                    await self._finish_game(snapshot)
                    return
                next_tick += self.settings.tick_rate
                await asyncio.sleep(max(0.0, next_tick - loop.time()))
        except asyncio.CancelledError:
            pass

    async def _finish_game(self, snapshot: dict):
        self.state = None
        self.final_snapshot = snapshot
        self.phase = RoomPhase.FINISHED
        self._cancel_timers()

        winner = snapshot["winner"]
        if winner == DRAW:
            winner_name = "Draw"
            logger.info(f"🏁 [Room {self.room_id}] Game over! Draw. Score: {snapshot['score']}")
        else:
            winner_name = snapshot["names"][winner - 1]
            logger.info(f"🏆 [Room {self.room_id}] Game over! Winner: {winner_name}. Score: {snapshot['score']}")

        await self.broadcast({
            "type": "game_over",
            "winner": winner,
            "winner_name": winner_name,
            "score": snapshot["score"],
        })

    async def back_to_lobby(self):
        if self.phase != RoomPhase.FINISHED:
            return
        self.registry.clear_ready()
        self.final_snapshot = None
        self.phase = RoomPhase.LOBBY
        logger.info(f"🔄 [Room {self.room_id}] Back to lobby")
        await self.broadcast({"type": "lobby_reset"})

    def _cancel_timers(self):
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None  # Called outside the event loop (shutdown, tests)
        for task in (self.countdown_task, self.game_task):
            if task and task is not current and not task.done():
                task.cancel()
        self.countdown_task = None
        self.game_task = None

    def get_status(self) -> dict:
        status = {
            "room_id": self.room_id,
            "phase": self.phase.value,
            "players": [s.to_dict() for s in self.registry],
            "countdown": self.countdown_remaining,
            "score": self.state.score if self.state else None,
        }
        if self.final_snapshot:
            status["winner"] = self.final_snapshot["winner"]
            status["score"] = self.final_snapshot["score"]
        return status

    async def broadcast(self, message: dict, phase: Optional[RoomPhase] = None):
        """Send to every session. With ``phase``, stop as soon as the room leaves it."""
        for session in self.registry:
            if phase is not None and self.phase != phase:
                return
            # Removed by a disconnect during an earlier send
            if self.registry.get(session.conn) is None:
                continue
            await self._send(session.conn, message, session.slot)

    async def _send(self, conn: Any, message: dict, slot: Optional[int] = None):
        try:
            await conn.send_json(message)
        except Exception as e:
            # The socket's own receive loop will report the disconnect
            logger.warning(f"⚠️ [Room {self.room_id}] Failed to send to player {slot}: {e}")


class RoomManager:
    """Keyed registry of rooms. The default room always exists."""

    def __init__(self, settings: Optional[ServerConfig] = None):
        self.settings = settings or config
        self.rooms: dict[str, GameRoom] = {}
        self.get_room(DEFAULT_ROOM)

    def get_room(self, room_id: str = DEFAULT_ROOM) -> GameRoom:
        room = self.rooms.get(room_id)
        if room is None:
            room = GameRoom(room_id, self.settings)
            self.rooms[room_id] = room
            logger.info(f"🏠 Created room {room_id}")
        return room

    def cleanup_empty_rooms(self):
        for room_id in [rid for rid, room in self.rooms.items() if room.is_empty() and rid != DEFAULT_ROOM]:
            del self.rooms[room_id]
            logger.info(f"🧹 Removed empty room {room_id}")

    def clear_all_rooms(self):
        for room in self.rooms.values():
            room._cancel_timers()
        self.rooms.clear()
        self.get_room(DEFAULT_ROOM)

    def get_status(self) -> dict:
        return {
            "rooms": [room.get_status() for room in self.rooms.values()],
            "tick_rate": self.settings.tick_rate,
        }
