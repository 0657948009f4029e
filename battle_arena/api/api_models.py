"""
Pydantic response models for battle API endpoints
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from battle_arena.battle.models import BattleInfo, BattleOutcome, BattlePhase, LeaderboardEntry


class HealthResponse(BaseModel):
    status: str
    timestamp: float
    active_battles: List[int]
    price_cache: Dict[str, Any]


class BattleResponse(BaseModel):
    """Ledger record merged with local battle state"""
    battle_id: int
    ledger: Optional[Dict[str, Any]] = None
    ledger_roster: Optional[List[str]] = None
    local: Optional[BattleInfo] = None


class LeaderboardResponse(BaseModel):
    """Leaderboard rankings"""
    battle_id: int
    phase: BattlePhase
    tick: int
    rankings: List[LeaderboardEntry]
    timestamp: float


class StartBattleRequest(BaseModel):
    duration_seconds: Optional[float] = Field(default=None, gt=0)


class StartBattleResponse(BaseModel):
    success: bool
    battle_id: int
    participant_count: int
    deadline: Optional[float] = None


class OutcomeResponse(BaseModel):
    success: bool
    outcome: BattleOutcome


class ErrorResponse(BaseModel):
    error: str
    kind: str
    outcome: Optional[BattleOutcome] = None
