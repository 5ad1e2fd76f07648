"""System and transparency endpoints for the Arcade Gate API."""

from __future__ import annotations

from fastapi import APIRouter

from arcade_gate.api.v1.dependencies import ServicesDep
from arcade_gate.services.plausibility import build_profiles
from arcade_gate.services.store import RedisStateStore

router = APIRouter(prefix="/system", tags=["system", "transparency"])


@router.get("/config")
async def get_public_config(services: ServicesDep) -> dict[str, object]:
    """Return a sanitized snapshot of public runtime configuration.

    Excludes secrets and connection strings; suitable for transparency UIs
    and for clients that want to pre-check a run before submitting it.
    """
    config = services.config
    return {
        "app": {
            "name": config.app_name,
            "version": config.app_version,
            "debug": config.debug,
        },
        "session": {
            "ttl_seconds": config.session_ttl_seconds,
            "csrf_rotate_on_issue": config.csrf_rotate_on_issue,
            "origin_check": bool(config.app_origin),
        },
        "identity": {
            "signature_message": config.signature_message,
            "bind_session": config.signature_bind_session,
        },
        "rate_limits": config.cooldowns,
        "captcha": {"start_threshold": config.recaptcha_start_threshold},
        "plausibility": {
            "timing_jitter_ms": config.timing_jitter_ms,
            "telemetry_score_threshold": config.telemetry_score_threshold,
            "telemetry_limit": config.telemetry_limit,
            "target_frame_rate": config.target_frame_rate,
            "min_reported_fps": config.min_reported_fps,
            "games": {
                kind.value: {
                    "time_scored": profile.time_scored,
                    "score_rate_per_second": profile.score_rate_per_second,
                    "max_inputs_per_second": profile.max_inputs_per_second,
                    "min_inputs_per_second": profile.min_inputs_per_second,
                    "max_clears_per_second": profile.max_clears_per_second,
                    "max_kills_per_second": profile.max_kills_per_second,
                    "max_hit_ratio": profile.max_hit_ratio,
                    "points_per_kill": profile.points_per_kill,
                }
                for kind, profile in build_profiles(config).items()
            },
        },
        "ledger": {
            "chain_id": config.ledger_chain_id,
            "contract_address": config.contract_address,
            "ticket_price_wei": config.ticket_price_wei,
            "pot_history": config.ledger_pot_history,
            "writes_enabled": bool(config.game_master_private_key),
        },
        "store": {
            "backend": "redis" if isinstance(services.store, RedisStateStore) else "memory",
        },
    }
