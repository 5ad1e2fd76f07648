"""Shared API dependencies: the service graph behind the endpoints."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends

from arcade_gate.core.settings import Settings, settings
from arcade_gate.services.captcha import HumanVerifier, load_captcha_config
from arcade_gate.services.identity import IdentityBinder
from arcade_gate.services.ledger import (
    LedgerClient,
    LedgerGateway,
    Web3LedgerClient,
    load_ledger_config,
)
from arcade_gate.services.orchestrator import SessionActionOrchestrator
from arcade_gate.services.plausibility import (
    ScorePlausibilityEngine,
    build_profiles,
    load_plausibility_config,
)
from arcade_gate.services.rate_limit import RateLimiter
from arcade_gate.services.runs import GameRunStore
from arcade_gate.services.sessions import CsrfTokenStore, SessionRegistry
from arcade_gate.services.store import StateStore, build_state_store


@dataclass
class ServiceContainer:
    """Every collaborator of the session action pipeline, wired once."""

    config: Settings
    store: StateStore
    sessions: SessionRegistry
    csrf: CsrfTokenStore
    ledger: LedgerGateway
    verifier: HumanVerifier
    orchestrator: SessionActionOrchestrator

    async def close(self) -> None:
        await self.verifier.close()
        await self.ledger.close()
        await self.store.close()


def build_services(
    config: Settings,
    *,
    store: StateStore | None = None,
    ledger_client: LedgerClient | None = None,
    verifier: HumanVerifier | None = None,
    clock: Callable[[], float] = time.time,
) -> ServiceContainer:
    """Wire the service graph from configuration.

    Collaborators that talk to the outside world can be passed in, which is
    how tests run the full pipeline against in-memory fakes.
    """
    store = store if store is not None else build_state_store(config)
    ttl = config.session_ttl_seconds

    sessions = SessionRegistry(store, ttl_seconds=ttl, clock=clock)
    csrf = CsrfTokenStore(store, ttl_seconds=ttl, rotate_on_issue=config.csrf_rotate_on_issue)
    ledger = LedgerGateway(ledger_client or Web3LedgerClient(load_ledger_config(config)))
    verifier = verifier or HumanVerifier(load_captcha_config(config))
    expected_message = config.session_message if config.signature_bind_session else None

    orchestrator = SessionActionOrchestrator(
        csrf=csrf,
        sessions=sessions,
        rate_limiter=RateLimiter(store, config.cooldowns, clock=clock),
        verifier=verifier,
        identity=IdentityBinder(expected_message),
        engine=ScorePlausibilityEngine(load_plausibility_config(config), build_profiles(config)),
        ledger=ledger,
        runs=GameRunStore(store, ttl_seconds=ttl, clock=clock),
        allowed_origin=config.app_origin,
        clock=clock,
    )
    return ServiceContainer(
        config=config,
        store=store,
        sessions=sessions,
        csrf=csrf,
        ledger=ledger,
        verifier=verifier,
        orchestrator=orchestrator,
    )


class _ServiceContainerSingleton:
    """Singleton wrapper for the process-wide service container."""

    _instance: ServiceContainer | None = None

    @classmethod
    def get_instance(cls) -> ServiceContainer:
        """Get or create the singleton container."""
        if cls._instance is None:
            cls._instance = build_services(settings)
        return cls._instance

    @classmethod
    async def shutdown(cls) -> None:
        """Close the container's connections, if it was ever built."""
        if cls._instance is not None:
            await cls._instance.close()
            cls._instance = None


def get_services() -> ServiceContainer:
    """Return the shared service container."""
    return _ServiceContainerSingleton.get_instance()


async def shutdown_services() -> None:
    await _ServiceContainerSingleton.shutdown()


ServicesDep = Annotated[ServiceContainer, Depends(get_services)]
