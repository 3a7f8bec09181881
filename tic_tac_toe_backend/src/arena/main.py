import asyncio
import json
import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Optional

import asyncpg
from fastapi import Depends, FastAPI, Header, HTTPException, Request, WebSocket, WebSocketDisconnect, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import models
from .ai import Difficulty
from .config import Settings, configure_logging, get_settings
from .database import PostgresRoomStore, create_store
from .errors import GameError, RoomCodeExhausted
from .local import AIGameRegistry, LocalGame
from .recorder import ResultRecorder
from .rooms import RoomService, normalize_room_code, retry_transient, utcnow
from .sync import UPDATE_MESSAGE, PostgresChangeFeed, RoomHub

logger = logging.getLogger(__name__)


async def _purge_loop(service: RoomService, ai_games: AIGameRegistry, interval: float, max_idle: timedelta) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            await service.purge_expired()
        except (asyncpg.PostgresError, OSError):
            logger.exception("Expired room purge failed")
        except Exception:
            logger.exception("Unexpected error while purging expired rooms")
        ai_games.purge_idle(utcnow(), max_idle)


def create_app(settings: Optional[Settings] = None, store=None) -> FastAPI:
    settings = settings or get_settings()
    store = store if store is not None else create_store(settings)
    hub = RoomHub()
    recorder = ResultRecorder(store)
    rooms = RoomService(store, hub, recorder, ttl=timedelta(seconds=settings.room_ttl_seconds))
    ai_games = AIGameRegistry(recorder, ai_delay=settings.ai_move_delay)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings.log_level)
        feed = None
        if isinstance(store, PostgresRoomStore):
            await store.init_schema()
            feed = PostgresChangeFeed(store.dsn, store, hub)
            await feed.start()
        purger = asyncio.ensure_future(_purge_loop(
            rooms, ai_games, settings.room_purge_interval, timedelta(seconds=settings.ai_game_idle_seconds)))
        try:
            yield
        finally:
            purger.cancel()
            if feed is not None:
                await feed.stop()
            await store.close()

    app = FastAPI(
        title="Tic Tac Toe Arena",
        version="1.0.0",
        description="Multiplayer rooms and computer opponents for Tic Tac Toe, with realtime room updates.",
        openapi_tags=[
            {"name": "Rooms", "description": "Room creation, joining, moves and reset."},
            {"name": "AI Games", "description": "Single-player games against the computer."},
            {"name": "Realtime", "description": "WebSocket room snapshots."},
        ],
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.store = store
    app.state.hub = hub
    app.state.rooms = rooms
    app.state.ai_games = ai_games

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(GameError)
    async def game_error_handler(request: Request, exc: GameError):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail, "code": exc.code})

    def current_user(x_user_id: Optional[str] = Header(default=None)) -> str:
        # Authentication happens upstream; it forwards the user id in this header.
        if not x_user_id:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
        return x_user_id

    async def with_retries(operation, retry_on=None):
        kwargs = {"retry_on": retry_on} if retry_on else {}
        return await retry_transient(operation, attempts=settings.conflict_retries, **kwargs)

    @app.get("/", tags=["Health"], summary="Health Check", response_model=dict)
    def health_check():
        """Health check endpoint."""
        return {"message": "Healthy"}

    # -- ROOMS --
    @app.post("/rooms", tags=["Rooms"], response_model=models.RoomCreated, status_code=status.HTTP_201_CREATED,
              responses={503: {"model": models.ErrorOut}})
    async def api_create_room(user_id: str = Depends(current_user)):
        """Create a room; the caller becomes its creator and plays X."""
        code = await with_retries(lambda: rooms.create_room(user_id), retry_on=(RoomCodeExhausted,))
        return models.RoomCreated(room_code=code)

    @app.post("/rooms/{room_code}/join", tags=["Rooms"], response_model=models.RoomSnapshot,
              responses={404: {"model": models.ErrorOut}, 409: {"model": models.ErrorOut}})
    async def api_join_room(room_code: str, user_id: str = Depends(current_user)):
        """Join a waiting room as O. Joining starts the game."""
        code = await with_retries(lambda: rooms.join_room(room_code, user_id))
        return (await rooms.get_room(code)).to_snapshot()

    @app.get("/rooms/{room_code}", tags=["Rooms"], response_model=models.RoomSnapshot,
             responses={404: {"model": models.ErrorOut}})
    async def api_get_room(room_code: str):
        return (await rooms.get_room(room_code)).to_snapshot()

    @app.post("/rooms/{room_code}/moves", tags=["Rooms"], response_model=models.RoomSnapshot,
              responses={400: {"model": models.ErrorOut}, 403: {"model": models.ErrorOut},
                         404: {"model": models.ErrorOut}, 409: {"model": models.ErrorOut}})
    async def api_submit_move(room_code: str, move: models.MoveCreate, user_id: str = Depends(current_user)):
        """
        Submit a move. Checks turn and occupancy, commits the new board and
        broadcasts the room snapshot to every subscriber.
        """
        room = await with_retries(lambda: rooms.submit_move(room_code, user_id, move.index))
        return room.to_snapshot()

    @app.post("/rooms/{room_code}/reset", tags=["Rooms"], response_model=models.RoomSnapshot,
              responses={400: {"model": models.ErrorOut}, 403: {"model": models.ErrorOut}})
    async def api_reset_room(room_code: str, user_id: str = Depends(current_user)):
        """Start a new game in a completed room. Creator only."""
        room = await with_retries(lambda: rooms.reset_room(room_code, user_id))
        return room.to_snapshot()

    # -- REALTIME --
    @app.websocket("/ws/rooms/{room_code}")
    async def room_updates(websocket: WebSocket, room_code: str):
        code = normalize_room_code(room_code)
        # Subscribe before the initial read so no commit falls between the two.
        subscription = hub.subscribe(code)
        room = await store.fetch_room(code)
        if room is None:
            subscription.close()
            await websocket.close(code=4404)
            return
        await websocket.accept()
        subscription.offer(room.to_snapshot())

        async def forward():
            async for snapshot in subscription:
                await websocket.send_json({"type": UPDATE_MESSAGE, "data": snapshot.model_dump(mode="json")})

        sender = asyncio.ensure_future(forward())
        try:
            while True:
                text = await websocket.receive_text()
                try:
                    msg = json.loads(text)
                except ValueError:
                    continue
                if isinstance(msg, dict) and msg.get("type") == "ping":
                    await websocket.send_json({"type": "pong"})
        except WebSocketDisconnect:
            pass
        finally:
            subscription.close()
            sender.cancel()
            # Collect the sender so a failed send is not reported as never retrieved.
            await asyncio.gather(sender, return_exceptions=True)

    # -- AI GAMES --
    @app.post("/ai-games", tags=["AI Games"], response_model=models.AIGameOut, status_code=status.HTTP_201_CREATED)
    async def api_start_ai_game(body: models.AIGameCreate, user_id: str = Depends(current_user)):
        game = await ai_games.start(user_id, Difficulty(body.difficulty), body.symbol)
        return _ai_game_out(game)

    @app.get("/ai-games/{game_id}", tags=["AI Games"], response_model=models.AIGameOut,
             responses={404: {"model": models.ErrorOut}})
    async def api_get_ai_game(game_id: str, user_id: str = Depends(current_user)):
        return _ai_game_out(ai_games.get(game_id, user_id))

    @app.post("/ai-games/{game_id}/moves", tags=["AI Games"], response_model=models.AIGameOut,
              responses={400: {"model": models.ErrorOut}, 403: {"model": models.ErrorOut}})
    async def api_ai_game_move(game_id: str, move: models.MoveCreate, user_id: str = Depends(current_user)):
        """Play a move; the computer answers in the same request."""
        game = ai_games.get(game_id, user_id)
        await game.play_turn(move.index)
        return _ai_game_out(game)

    @app.post("/ai-games/{game_id}/reset", tags=["AI Games"], response_model=models.AIGameOut)
    async def api_reset_ai_game(game_id: str, user_id: str = Depends(current_user)):
        game = ai_games.get(game_id, user_id)
        await game.reset()
        await game.ai_turn()
        return _ai_game_out(game)

    @app.delete("/ai-games/{game_id}", tags=["AI Games"], status_code=status.HTTP_204_NO_CONTENT)
    async def api_discard_ai_game(game_id: str, user_id: str = Depends(current_user)):
        ai_games.get(game_id, user_id)
        ai_games.discard(game_id)

    return app


def _ai_game_out(game: LocalGame) -> models.AIGameOut:
    return models.AIGameOut(
        id=game.id,
        difficulty=game.difficulty.value,
        human_symbol=game.human_symbol,
        board=list(game.board),
        current_player=game.current_player,
        result=game.outcome.kind,
        winner=game.outcome.winner,
        winning_line=list(game.outcome.line) if game.outcome.line else None,
        last_ai_move=game.last_ai_move,
        recorded=game.record is not None,
        score_deltas=game.score_deltas,
        stats=models.SessionStatsOut(
            human_wins=game.stats.human_wins,
            ai_wins=game.stats.ai_wins,
            draws=game.stats.draws,
            current_streak=game.stats.current_streak,
        ),
    )


app = create_app()


if __name__ == "__main__":
    import uvicorn
    settings = get_settings()
    configure_logging(settings.log_level)
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
