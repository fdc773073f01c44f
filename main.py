"""FlapDuel Server - 2-player authoritative flappy bird server."""

import argparse
import asyncio
import json
import os
import random
import logging
import subprocess
import sys
from typing import Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from room import DEFAULT_ROOM, GameRoom, RoomManager
from settings import apply_settings, check_settings, config, read_settings_file

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(message)s",
    datefmt="%H:%M:%S"
)
logger = logging.getLogger("flapduel")

app = FastAPI(title="FlapDuel Server")

# Enable CORS for client requests
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

room_manager = RoomManager(config)
bot_processes: list[subprocess.Popen] = []


@app.on_event("startup")
async def startup_event():
    logger.info("🐦 FlapDuel Server started")
    logger.info(f"   Tick rate: {config.tick_rate:.4f}s, Countdown: {config.countdown_from} x {config.countdown_interval}s")
    logger.info(f"📡 Client connection URL: ws://localhost:{config.port}/ws")

    if settings_path:
        asyncio.create_task(watch_settings_file(settings_path))
        logger.info(f"👁️ Watching {os.path.basename(settings_path)} for changes")


@app.on_event("shutdown")
async def shutdown_event():
    room_manager.clear_all_rooms()
    for proc in bot_processes:
        _stop_bot(proc)
    bot_processes.clear()


async def serve_player(websocket: WebSocket, room: GameRoom):
    """Run one player's connection: join, pump inbound messages, leave."""
    await websocket.accept()

    session = await room.connect_player(websocket)
    if session is None:
        await websocket.close(code=4002, reason="Room full")
        return

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))
            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes")
            try:
                data = json.loads(raw)
            except (TypeError, ValueError):
                logger.debug(f"[Room {room.room_id}] Dropped malformed frame from player {session.slot}")
                continue
            if not isinstance(data, dict):
                continue
            await room.handle_message(websocket, data)
    except WebSocketDisconnect:
        pass
    finally:
        await room.disconnect_player(websocket)
        room_manager.cleanup_empty_rooms()


@app.websocket("/ws")
async def join_default_room(websocket: WebSocket):
    await serve_player(websocket, room_manager.get_room(DEFAULT_ROOM))


@app.websocket("/ws/{room_id}")
async def join_room(websocket: WebSocket, room_id: str):
    """Join (or create) a named room."""
    await serve_player(websocket, room_manager.get_room(room_id))


@app.get("/")
async def root():
    return {"name": "FlapDuel Server", "status": "running"}


@app.get("/status")
async def status():
    return room_manager.get_status()


@app.get("/params")
async def params():
    return config.params.to_dict()


@app.post("/add_bot")
async def add_bot(difficulty: int = None):
    """Add a FlapBot to the default room."""
    room = room_manager.get_room(DEFAULT_ROOM)
    if room.is_full():
        return {"success": False, "message": "All player slots filled"}

    # Use provided difficulty or random
    if difficulty is None or difficulty < 1 or difficulty > 10:
        difficulty = random.randint(1, 10)
    proc = spawn_bot(difficulty)
    if proc is None:
        return {"success": False, "message": "Failed to start bot"}
    return {"success": True, "message": f"FlapBot L{difficulty} added to Room {room.room_id}"}


def _server_url() -> str:
    return f"ws://localhost:{config.port}/ws"


def spawn_bot(difficulty: int):
    """Spawn a FlapBot process that joins the default room."""
    script_dir = os.path.dirname(os.path.abspath(__file__))
    script_path = os.path.join(script_dir, "flapbot.py")
    try:
        proc = subprocess.Popen(
            [sys.executable, script_path, "--server", _server_url(), "--difficulty", str(difficulty), "--quiet"],
            cwd=script_dir
        )
    except Exception as e:
        logger.error(f"❌ Failed to spawn bot: {e}")
        return None
    bot_processes.append(proc)
    logger.info(f"🤖 FlapBot L{difficulty} spawned (PID: {proc.pid})")
    return proc


def _stop_bot(proc: subprocess.Popen):
    """Terminate a spawned FlapBot process if it is still running."""
    if proc.poll() is not None:
        return
    try:
        proc.terminate()
        proc.wait(timeout=2)
        logger.info(f"🤖 FlapBot process {proc.pid} terminated")
    except Exception as e:
        logger.warning(f"⚠️ Failed to terminate FlapBot {proc.pid}: {e}")


def spawn_initial_bots(count: int):
    """Spawn initial bots at server start."""
    for i in range(count):
        difficulty = random.randint(1, 10)
        if spawn_bot(difficulty):
            logger.info(f"🤖 Spawned FlapBot L{difficulty} ({i+1}/{count})")


DEFAULT_SETTINGS_FILE = os.path.join(os.path.dirname(os.path.abspath(__file__)), "server-settings.json")

# Settings file chosen at launch, and the mtime last applied from it
settings_path: Optional[str] = None
settings_mtime: float = 0.0


def _positive(cast):
    def convert(text):
        value = cast(text)
        if value <= 0:
            raise argparse.ArgumentTypeError(f"must be positive, got {text}")
        return value
    return convert


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="FlapDuel Server - 2-player flappy bird with an authoritative simulation")
    parser.add_argument("settings_file", nargs="?",
                        help="JSON settings file (default: server-settings.json next to main.py, if present)")
    parser.add_argument("--tick-rate", type=_positive(float), help="seconds per simulation tick (default 1/60)")
    parser.add_argument("--countdown", type=_positive(int), help="countdown steps before a match (default 3)")
    parser.add_argument("--bots", type=int, choices=range(3), help="bots to launch at startup (default 0)")
    parser.add_argument("--host", help="bind address (default 0.0.0.0)")
    parser.add_argument("--port", type=int, help="bind port (default $PORT or 3000)")
    return parser.parse_args(argv)


def load_settings(path: str) -> bool:
    """Apply the settings file at ``path``. A rejected file leaves the config as it was."""
    settings = read_settings_file(path)
    if not check_settings(settings, config):
        logger.warning(f"⚠️ Ignoring {os.path.basename(path)}, keeping current settings")
        return False
    apply_settings(settings, config)
    return True


async def watch_settings_file(path: str, interval: float = 2.0):
    """Re-apply ``path`` whenever it is modified. Running matches keep the params they started with."""
    global settings_mtime
    while True:
        await asyncio.sleep(interval)
        try:
            mtime = os.path.getmtime(path)
        except OSError:
            continue
        if mtime <= settings_mtime:
            continue
        settings_mtime = mtime
        if load_settings(path):
            logger.info(f"🔄 Reloaded {os.path.basename(path)}: gravity {config.params.gravity}, "
                        f"tick {config.tick_rate:.4f}s")


def apply_config(args):
    """Settings file first, command line flags on top."""
    global settings_path, settings_mtime
    path = args.settings_file
    if path is None and os.path.exists(DEFAULT_SETTINGS_FILE):
        path = DEFAULT_SETTINGS_FILE
    if path:
        settings_path = path
        if os.path.exists(path):
            settings_mtime = os.path.getmtime(path)
        if load_settings(path):
            logger.info(f"📄 Settings loaded from {path}")

    flags = {"tick_rate": args.tick_rate, "countdown_from": args.countdown, "bots": args.bots,
             "host": args.host, "port": args.port}
    for key, value in flags.items():
        if value is not None:
            setattr(config, key, value)


if __name__ == "__main__":
    import uvicorn
    args = parse_args()
    apply_config(args)

    logger.info(f"🎮 Starting FlapDuel Server on {config.host}:{config.port}")
    logger.info(f"   Field: {config.params.field_width:g}x{config.params.field_height:g}")
    logger.info(f"   Tick rate: {config.tick_rate:.4f}s/tick")
    logger.info(f"   Bots: {config.bots}")

    spawn_initial_bots(config.bots)

    uvicorn.run(app, host=config.host, port=config.port)
