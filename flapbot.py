#!/usr/bin/env python3
"""
FlapBot - Autonomous FlapDuel player.

Connects to a FlapDuel server, readies up and keeps its bird alive for as
long as it can. Launched by ``main.py --bots`` or ``POST /add_bot``, or can be
run standalone.

STRATEGY
--------
Each ``state`` tick the bot looks at the nearest obstacle it has not yet
cleared and aims for a point slightly below the middle of its gap (or the
middle of the field when no obstacle is in view). It jumps when its bird is
falling and its bottom edge has dropped below that aim point. Jumping only
while falling keeps it from stacking impulses into the ceiling.

Lower difficulty levels sometimes "miss" a jump they should have made, which
is what eventually gets them killed.

After ``game_over`` the bot asks to return to the lobby and readies again, so
two bots will play match after match.
"""

import asyncio
import json
import argparse
import random
import websockets


class RobotPlayer:
    """Autonomous player that connects to a FlapDuel server and plays."""

    def __init__(self, server_url: str, name: str = None, difficulty: int = 5, quiet: bool = False):
        self.server_url = server_url
        self.difficulty = max(1, min(10, difficulty))
        self.name = name or f"FlapBot L{self.difficulty}"
        self.quiet = quiet
        self.player_id = None
        self.room_id = None
        self.params = {}
        self.running = False
        self.wins = 0
        self.games_played = 0

    def log(self, msg: str):
        if not self.quiet:
            # Replace emoji/special chars that Windows console can't display
            print(msg.encode("ascii", errors="replace").decode("ascii"))

    def _http_url(self) -> str:
        base_url = self.server_url.rstrip("/")
        if base_url.endswith("/ws"):
            base_url = base_url[:-3]
        # Convert ws:// to http://
        return base_url.replace("ws://", "http://").replace("wss://", "https://")

    async def wait_for_open_slot(self):
        """Wait until the default room has space for another player."""
        import aiohttp

        http_url = self._http_url()
        while True:
            try:
                async with aiohttp.ClientSession() as session:
                    async with session.get(f"{http_url}/status") as resp:
                        if resp.status == 200:
                            data = await resp.json()
                            rooms = {r["room_id"]: r for r in data.get("rooms", [])}
                            room = rooms.get("main")
                            if room is None or len(room.get("players", [])) < 2:
                                self.log("Slot open - joining...")
                                return True
                            self.log("Room full, waiting...")
                        else:
                            self.log(f"Server not ready (status {resp.status}), waiting...")
            except Exception as e:
                self.log(f"Cannot reach server: {e}, waiting...")

            await asyncio.sleep(5)

    async def connect(self):
        await self.wait_for_open_slot()
        try:
            self.log(f"Connecting to {self.server_url}...")
            self.ws = await websockets.connect(self.server_url)
            self.log("Connected! Waiting for slot assignment...")
            return True
        except Exception as e:
            self.log(f"Connection failed: {e}")
            return False

    async def send(self, message: dict):
        await self.ws.send(json.dumps(message))

    async def play(self):
        """Main loop - terminates on disconnect or rejection."""
        if not await self.connect():
            self.log("Failed to connect to server. Exiting.")
            return

        self.running = True

        try:
            while self.running:
                message = await self.ws.recv()
                try:
                    data = json.loads(message)
                except json.JSONDecodeError:
                    continue
                await self.handle_message(data)
        except websockets.ConnectionClosed:
            self.log("Connection closed.")
        finally:
            self.running = False
            try:
                await self.ws.close()
            except Exception:
                pass
            self.log("Bot stopped.")

    async def handle_message(self, data: dict):
        """Handle incoming server messages."""
        msg_type = data.get("type")

        if msg_type == "room_full":
            self.log("Room is full.")
            self.running = False

        elif msg_type == "joined":
            self.player_id = data.get("player_id")
            self.room_id = data.get("room_id")
            self.log(f"Joined Room {self.room_id} as Player {self.player_id}")
            await self.send({"type": "set_name", "name": self.name})
            await self.send({"type": "ready"})
            self.log(f"Ready! Playing as '{self.name}' at difficulty {self.difficulty}")

        elif msg_type == "player_left":
            # Opponent left; the room is back in the lobby and our ready flag was cleared
            await self.send({"type": "ready"})

        elif msg_type == "start":
            self.params = data.get("params", {})
            self.log("Game started!")

        elif msg_type == "state":
            if self.should_jump(data.get("state", {})):
                await self.send({"type": "jump", "player_id": self.player_id})

        elif msg_type == "game_over":
            self.games_played += 1
            winner = data.get("winner")
            if winner == self.player_id:
                self.wins += 1
                self.log(f"Won! Score {data.get('score')} ({self.wins}/{self.games_played})")
            elif winner == 0:
                self.log(f"Draw. Score {data.get('score')}")
            else:
                self.log(f"Lost to {data.get('winner_name')}. Score {data.get('score')}")
            await asyncio.sleep(2)
            await self.send({"type": "back_to_lobby"})

        elif msg_type == "lobby_reset":
            await self.send({"type": "ready"})

    def should_jump(self, state: dict) -> bool:
        """Decide whether to jump this tick."""
        if not self.player_id or state.get("winner") is not None:
            return False
        birds = state.get("birds", [])
        if len(birds) < self.player_id:
            return False
        bird = birds[self.player_id - 1]
        if not bird.get("alive") or bird.get("vy", 0) < 0:
            return False

        size = self.params.get("bird_size", 24)
        width = self.params.get("obstacle_width", 80)
        gap = self.params.get("gap_height", 150)
        target = self.params.get("field_height", 600) / 2

        ahead = [o for o in state.get("obstacles", []) if o["x"] + width >= bird["x"]]
        if ahead:
            nearest = min(ahead, key=lambda o: o["x"])
            target = nearest["gap_y"] + gap * 0.65

        if bird["y"] + size < target:
            return False

        # Random misses based on difficulty (lower = more misses)
        mistake_chance = (11 - self.difficulty) / 40
        return random.random() >= mistake_chance


async def main():
    parser = argparse.ArgumentParser(description="FlapDuel Robot Player")
    parser.add_argument("--server", "-s", default="ws://localhost:3000/ws",
                        help="Server WebSocket URL (default: ws://localhost:3000/ws)")
    parser.add_argument("--name", "-n", default=None,
                        help="Bot display name (default: FlapBot L<difficulty>)")
    parser.add_argument("--difficulty", "-d", type=int, default=5,
                        help="AI difficulty 1-10 (default: 5)")
    parser.add_argument("--quiet", "-q", action="store_true",
                        help="Suppress output (for spawned bots)")
    args = parser.parse_args()

    robot = RobotPlayer(args.server, name=args.name, difficulty=args.difficulty, quiet=args.quiet)

    if not args.quiet:
        print("FlapDuel Robot Player")
        print(f"   Server: {args.server}")
        print(f"   Difficulty: {args.difficulty}")
        print()

    await robot.play()


if __name__ == "__main__":
    asyncio.run(main())
