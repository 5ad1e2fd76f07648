"""Application settings and configuration.

This module defines all configuration options for the Arcade Gate service.
Settings are loaded from environment variables with sensible defaults.
"""

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Every value can be overridden via environment variables or a ``.env``
    file. Secrets (CAPTCHA secret, game master key) have no usable default and
    must be provided in deployment.
    """

    # Application metadata
    app_name: str = Field(default="Arcade Gate", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    api_prefix: str = Field(default="/api", alias="API_PREFIX")

    # Origin and CORS; an empty app origin disables the X-App-Origin check
    app_origin: str = Field(default="", alias="APP_ORIGIN")
    cors_origins: list[str] = Field(default=["*"], alias="CORS_ORIGINS")
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")
    cors_allow_methods: list[str] = Field(
        default=["GET", "POST", "OPTIONS"],
        alias="CORS_ALLOW_METHODS",
    )
    cors_allow_headers: list[str] = Field(default=["*"], alias="CORS_ALLOW_HEADERS")

    # Sessions and CSRF
    session_ttl_seconds: int = Field(default=86_400, alias="SESSION_TTL_SECONDS")
    csrf_rotate_on_issue: bool = Field(default=True, alias="CSRF_ROTATE_ON_ISSUE")
    session_cookie_secure: bool = Field(default=True, alias="SESSION_COOKIE_SECURE")

    # Wallet identity binding
    signature_message: str = Field(
        default="Sign to start playing Arcade Gate games.",
        alias="SIGNATURE_MESSAGE",
    )
    signature_bind_session: bool = Field(default=False, alias="SIGNATURE_BIND_SESSION")

    # Per-action cooldowns (0 disables the limiter for that action)
    create_cooldown_seconds: int = Field(default=25 * 60, alias="CREATE_COOLDOWN_SECONDS")
    end_cooldown_seconds: int = Field(
        default=30,
        validation_alias=AliasChoices("END_COOLDOWN_SECONDS", "ENDGAME_RATE_LIMIT_SECONDS"),
    )
    start_cooldown_seconds: int = Field(default=0, alias="START_COOLDOWN_SECONDS")

    # Human verification (reCAPTCHA v3 compatible)
    recaptcha_secret_key: str = Field(default="", alias="RECAPTCHA_SECRET_KEY")
    recaptcha_verify_url: str = Field(
        default="https://www.google.com/recaptcha/api/siteverify",
        alias="RECAPTCHA_VERIFY_URL",
    )
    recaptcha_start_threshold: float = Field(default=0.4, alias="RECAPTCHA_START_THRESHOLD")
    recaptcha_timeout_seconds: float = Field(default=5.0, alias="RECAPTCHA_TIMEOUT_SECONDS")

    # Score plausibility
    timing_jitter_ms: int = Field(default=1000, alias="TIMING_JITTER_MS")
    telemetry_score_threshold: int = Field(default=20_000, alias="TELEMETRY_SCORE_THRESHOLD")
    telemetry_limit: int = Field(default=1000, alias="TELEMETRY_LIMIT")
    telemetry_count_tolerance: int = Field(default=2, alias="TELEMETRY_COUNT_TOLERANCE")
    target_frame_rate: float = Field(default=60.0, alias="TARGET_FRAME_RATE")
    frame_rate_tolerance: float = Field(default=0.35, alias="FRAME_RATE_TOLERANCE")
    min_reported_fps: float = Field(default=40.0, alias="MIN_REPORTED_FPS")
    max_fps_spread: float = Field(default=15.0, alias="MAX_FPS_SPREAD")
    max_delta_variance: float = Field(default=1e-4, alias="MAX_DELTA_VARIANCE")
    telemetry_score_margin: float = Field(default=0.1, alias="TELEMETRY_SCORE_MARGIN")
    max_clears_per_second: float = Field(default=1.5, alias="MAX_CLEARS_PER_SECOND")
    fly_score_rate: float = Field(default=10.0, alias="FLY_SCORE_RATE")
    fly_max_flaps_per_second: float = Field(default=8.0, alias="FLY_MAX_FLAPS_PER_SECOND")
    fly_min_flaps_per_second: float = Field(default=0.5, alias="FLY_MIN_FLAPS_PER_SECOND")
    # Milliseconds squared; steadier flapping than this is scripted
    fly_min_flap_interval_variance: float = Field(default=10.0, alias="FLY_MIN_FLAP_INTERVAL_VARIANCE")
    fly_base_obstacle_speed: float = Field(default=3.0, alias="FLY_BASE_OBSTACLE_SPEED")
    fly_min_spawn_interval_ms: float = Field(default=1000.0, alias="FLY_MIN_SPAWN_INTERVAL_MS")
    fly_max_spawn_interval_ms: float = Field(default=2500.0, alias="FLY_MAX_SPAWN_INTERVAL_MS")
    fly_obstacle_size: float = Field(default=40.0, alias="FLY_OBSTACLE_SIZE")
    jump_score_rate: float = Field(default=10.0, alias="JUMP_SCORE_RATE")
    jump_max_jumps_per_second: float = Field(default=1.0, alias="JUMP_MAX_JUMPS_PER_SECOND")
    shoot_max_hit_ratio: float = Field(default=0.8, alias="SHOOT_MAX_HIT_RATIO")
    shoot_points_per_kill: int = Field(default=31, alias="SHOOT_POINTS_PER_KILL")
    shoot_max_kills_per_second: float = Field(default=1.0, alias="SHOOT_MAX_KILLS_PER_SECOND")

    # Ledger (game master account on an EVM chain)
    ledger_rpc_url: str = Field(
        default="http://localhost:8545",
        validation_alias=AliasChoices("LEDGER_RPC_URL", "API_URL"),
    )
    contract_address: str = Field(
        default="0x523dEa604Bc4b4DC87e03e701FDA6F8a3bA3c9ad",
        alias="CONTRACT_ADDRESS",
    )
    game_master_private_key: str | None = Field(default=None, alias="GAME_MASTER_PRIVATE_KEY")
    ledger_chain_id: int = Field(default=84532, alias="LEDGER_CHAIN_ID")
    ledger_receipt_timeout_seconds: float = Field(
        default=120.0,
        alias="LEDGER_RECEIPT_TIMEOUT_SECONDS",
    )
    # The default contract's getGame has no potHistory array
    ledger_pot_history: bool = Field(default=False, alias="LEDGER_POT_HISTORY")
    ticket_price_wei: int = Field(
        default=100_000_000_000_000,
        validation_alias=AliasChoices("TICKET_PRICE_WEI", "GAME_PRICE_WEI"),
    )

    # Shared state; unset keeps records in process memory
    redis_url: str | None = Field(default=None, alias="REDIS_URL")
    store_sweep_interval_seconds: float = Field(default=60.0, alias="STORE_SWEEP_INTERVAL_SECONDS")

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
        populate_by_name=True,
    )

    @property
    def cooldowns(self) -> dict[str, int]:
        """Return the rate-limit policy table keyed by action kind."""
        return {
            "create": self.create_cooldown_seconds,
            "start": self.start_cooldown_seconds,
            "end": self.end_cooldown_seconds,
        }

    def session_message(self, session_id: str) -> str:
        """Return the message a wallet must sign for ``session_id``.

        Without session binding every session signs the same static text.
        """
        if not self.signature_bind_session:
            return self.signature_message
        return f"{self.signature_message}\nSession: {session_id}"


settings = Settings()
