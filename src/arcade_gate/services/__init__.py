"""Business logic services for the Arcade Gate application."""

from .captcha import HumanVerifier
from .identity import IdentityBinder
from .ledger import LedgerGateway, Web3LedgerClient
from .orchestrator import SessionActionOrchestrator
from .plausibility import ScorePlausibilityEngine
from .rate_limit import RateLimiter
from .runs import GameRunStore
from .sessions import CsrfTokenStore, SessionRegistry
from .store import MemoryStateStore, RedisStateStore

__all__ = [
    "CsrfTokenStore",
    "GameRunStore",
    "HumanVerifier",
    "IdentityBinder",
    "LedgerGateway",
    "MemoryStateStore",
    "RateLimiter",
    "RedisStateStore",
    "ScorePlausibilityEngine",
    "SessionActionOrchestrator",
    "SessionRegistry",
    "Web3LedgerClient",
]
