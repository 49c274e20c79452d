"""Database module for the settlement engine."""
from .models import Game, GameState, CoinSide, RngSnapshot, Event
from .repo import Database

__all__ = ["Game", "GameState", "CoinSide", "RngSnapshot", "Event", "Database"]
