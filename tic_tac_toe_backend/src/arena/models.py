from pydantic import BaseModel, ConfigDict, Field
from typing import Dict, List, Optional, Literal, Tuple
from datetime import datetime

from .core import PlayerSymbol, empty_board, evaluate

RoomStatus = Literal['waiting', 'playing', 'completed']
Outcome = Literal['win', 'draw', 'loss']


# PUBLIC_INTERFACE
class Room(BaseModel):
    """Stored state of one multiplayer room. The only source of truth for its board."""
    model_config = ConfigDict(frozen=True)

    room_code: str
    creator_id: str
    player2_id: Optional[str] = None
    status: RoomStatus = 'waiting'
    board: Tuple[Optional[PlayerSymbol], ...] = Field(default_factory=empty_board)
    current_player: PlayerSymbol = 'X'
    winner_id: Optional[str] = None
    expires_at: datetime
    created_at: Optional[datetime] = None
    version: int = 0

    def symbol_for(self, user_id: str) -> Optional[PlayerSymbol]:
        if user_id == self.creator_id:
            return 'X'
        if self.player2_id is not None and user_id == self.player2_id:
            return 'O'
        return None

    def user_for(self, symbol: Optional[PlayerSymbol]) -> Optional[str]:
        if symbol == 'X':
            return self.creator_id
        if symbol == 'O':
            return self.player2_id
        return None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now

    def to_snapshot(self) -> "RoomSnapshot":
        outcome = evaluate(self.board)
        return RoomSnapshot(
            room_code=self.room_code,
            creator_id=self.creator_id,
            player2_id=self.player2_id,
            status=self.status,
            board=list(self.board),
            current_player=self.current_player,
            winner_id=self.winner_id,
            result=outcome.kind,
            winning_line=list(outcome.line) if outcome.line else None,
            expires_at=self.expires_at,
            version=self.version,
        )


# PUBLIC_INTERFACE
class RoomSnapshot(BaseModel):
    """Complete room state as delivered to clients, over HTTP and WebSocket alike."""
    room_code: str
    creator_id: str
    player2_id: Optional[str]
    status: RoomStatus
    board: List[Optional[PlayerSymbol]]
    current_player: PlayerSymbol
    winner_id: Optional[str]
    result: Literal['ongoing', 'win', 'draw']
    winning_line: Optional[List[int]]
    expires_at: datetime
    version: int


# PUBLIC_INTERFACE
class GameRecord(BaseModel):
    """One completed game, written once by the result recorder and never read back."""
    player1_id: str
    player2_id: Optional[str] = None
    mode: str = Field(..., description='"ai:<difficulty>" or "multiplayer"')
    terminal_board: List[Optional[PlayerSymbol]]
    outcome: Outcome = Field(..., description="Result from player 1's point of view")
    winner_id: Optional[str] = None
    timestamp: datetime


# PUBLIC_INTERFACE
class RoomCreated(BaseModel):
    room_code: str


# PUBLIC_INTERFACE
class MoveCreate(BaseModel):
    """Request body for submitting a move."""
    index: int = Field(..., description="Cell index 0-8, row-major")


# PUBLIC_INTERFACE
class AIGameCreate(BaseModel):
    """Request body for starting a game against the computer."""
    difficulty: Literal['easy', 'medium', 'hard'] = 'medium'
    symbol: PlayerSymbol = Field('X', description="Symbol played by the human")


# PUBLIC_INTERFACE
class SessionStatsOut(BaseModel):
    human_wins: int
    ai_wins: int
    draws: int
    current_streak: int


# PUBLIC_INTERFACE
class AIGameOut(BaseModel):
    """Serialized single-player game state."""
    id: str
    difficulty: Literal['easy', 'medium', 'hard']
    human_symbol: PlayerSymbol
    board: List[Optional[PlayerSymbol]]
    current_player: PlayerSymbol
    result: Literal['ongoing', 'win', 'draw']
    winner: Optional[PlayerSymbol]
    winning_line: Optional[List[int]]
    last_ai_move: Optional[int]
    recorded: bool
    score_deltas: Optional[Dict[str, int]]
    stats: SessionStatsOut


# PUBLIC_INTERFACE
class ErrorOut(BaseModel):
    detail: str
    code: str
