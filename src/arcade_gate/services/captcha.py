"""Human verification through an external CAPTCHA scoring service."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from arcade_gate.core.errors import VerificationError
from arcade_gate.core.settings import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CaptchaConfig:
    """Immutable configuration for the verifier."""

    secret: str
    verify_url: str
    threshold: float
    timeout_seconds: float


def load_captcha_config(config: Settings) -> CaptchaConfig:
    """Build verifier configuration from settings."""
    return CaptchaConfig(
        secret=config.recaptcha_secret_key,
        verify_url=config.recaptcha_verify_url,
        threshold=config.recaptcha_start_threshold,
        timeout_seconds=float(config.recaptcha_timeout_seconds),
    )


class HumanVerifier:
    """reCAPTCHA v3 compatible score check.

    Transport failures and malformed answers are hard rejections (500); a
    failed or sub-threshold answer is a 403. There is no retry and no bypass.
    """

    def __init__(self, config: CaptchaConfig, client: httpx.AsyncClient | None = None) -> None:
        self.config = config
        self._client = client
        self._owns_client = client is None

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.config.timeout_seconds))
        return self._client

    async def verify(self, response_token: str | None) -> float:
        """Return the service score for ``response_token`` if it passes."""
        if not response_token:
            raise VerificationError("CAPTCHA failed. Move mouse around and try again",
                                    detail="missing response token")

        try:
            response = await self._http().post(
                self.config.verify_url,
                data={"secret": self.config.secret, "response": response_token},
            )
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as err:
            logger.error("CAPTCHA verification request failed: %s", err)
            raise VerificationError(
                "CAPTCHA verification error",
                detail=str(err),
                status_code=500,
            ) from err
        if not isinstance(payload, dict):
            raise VerificationError(
                "CAPTCHA verification error",
                detail="verification answer is not an object",
                status_code=500,
            )

        success = bool(payload.get("success"))
        try:
            score = float(payload.get("score", 0.0))
        except (TypeError, ValueError):
            score = 0.0

        if not success or score < self.config.threshold:
            logger.warning(
                "CAPTCHA rejected: success=%s score=%.2f threshold=%.2f errors=%s",
                success,
                score,
                self.config.threshold,
                payload.get("error-codes"),
            )
            raise VerificationError(
                "CAPTCHA failed. Move mouse around and try again",
                detail=f"success={success} score={score}",
            )
        return score

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
