"""Statistical anti-cheat checks for client-reported scores.

The server cannot replay a run, so a claimed score is held against three
independent filters that must all pass:

* time bound: the score a time-scored game can reach in the server-observed
  elapsed time, plus a client clock that may not outrun the server;
* aggregate stats: per-game ceilings on input, clear and kill rates, hit
  ratio and the score a kill count can produce;
* telemetry: for scores above a threshold, event counts must agree with the
  stats, the frame stream must look like a real render loop and add up to the
  claimed score, inputs must not be metronomic, and obstacle spawns must
  follow the game's own schedule.

Every failure raises the same public ``PlausibilityError`` message. The
filter name and the reason are only logged.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

from arcade_gate.core.errors import PlausibilityError
from arcade_gate.core.settings import Settings

logger = logging.getLogger(__name__)

# Frame delta variance below this is treated as a synthetic frame stream
MIN_DELTA_VARIANCE = 1e-7
# Spawns closer together than this are one cluster
CLUSTER_WINDOW_MS = 10.0
SPEED_TOLERANCE = 0.1


class GameKind(str, Enum):
    """Mini-games the ledger accepts scores for."""

    FLY = "fly"
    JUMP = "jump"
    SHOOT = "shoot"


@dataclass(frozen=True)
class SpawnProfile:
    """How a game's client schedules obstacles.

    The spawn interval shrinks from ``max_interval_ms + min_interval_ms`` to
    ``min_interval_ms`` and the speed grows from ``base_speed`` to twice that
    as the run gets harder. Clusters are pairs spawned together, stacked
    between 1.5 and 2 obstacle sizes apart.
    """

    base_speed: float
    min_interval_ms: float
    max_interval_ms: float
    obstacle_size: float
    event: str = "spawn"


@dataclass(frozen=True)
class GameProfile:
    """Scoring formula and statistical ceilings for one game kind."""

    kind: GameKind
    time_scored: bool
    score_rate_per_second: float = 0.0
    input_event: str | None = None
    input_stat: str | None = None
    input_rate_stat: str | None = None
    max_inputs_per_second: float | None = None
    min_inputs_per_second: float | None = None
    min_input_interval_variance: float | None = None
    max_clears_per_second: float | None = None
    max_kills_per_second: float | None = None
    max_hit_ratio: float | None = None
    points_per_kill: int | None = None
    spawns: SpawnProfile | None = None


@dataclass(frozen=True)
class PlausibilityConfig:
    """Tolerances shared by every game kind."""

    timing_jitter_ms: float = 1000.0
    telemetry_score_threshold: int = 20_000
    telemetry_limit: int = 1000
    count_tolerance: int = 2
    target_frame_rate: float = 60.0
    frame_rate_tolerance: float = 0.35
    min_reported_fps: float = 40.0
    max_fps_spread: float = 15.0
    min_delta_variance: float = MIN_DELTA_VARIANCE
    max_delta_variance: float = 1e-4
    score_margin: float = 0.1


@dataclass(frozen=True)
class ScoreClaim:
    """Everything the end action knows about a finished run."""

    game_kind: str
    claimed_score: int
    server_elapsed_ms: float
    stats: Mapping[str, Any] | None = None
    telemetry: Sequence[Any] | None = None


@dataclass(frozen=True)
class Verdict:
    """Outcome of an accepted claim."""

    accepted: bool
    is_new_high_score: bool


@dataclass(frozen=True)
class TelemetryEvent:
    """One parsed client telemetry event; ``time`` is in milliseconds."""

    event: str
    time: float
    frame_id: int | None
    data: Mapping[str, Any]


def build_profiles(config: Settings) -> dict[GameKind, GameProfile]:
    """Return game profiles using the configured ceilings."""
    return {
        GameKind.FLY: GameProfile(
            kind=GameKind.FLY,
            time_scored=True,
            score_rate_per_second=config.fly_score_rate,
            input_event="flap",
            input_stat="flaps",
            input_rate_stat="flapsPerSec",
            max_inputs_per_second=config.fly_max_flaps_per_second,
            min_inputs_per_second=config.fly_min_flaps_per_second,
            min_input_interval_variance=config.fly_min_flap_interval_variance,
            max_clears_per_second=config.max_clears_per_second,
            spawns=SpawnProfile(
                base_speed=config.fly_base_obstacle_speed,
                min_interval_ms=config.fly_min_spawn_interval_ms,
                max_interval_ms=config.fly_max_spawn_interval_ms,
                obstacle_size=config.fly_obstacle_size,
            ),
        ),
        GameKind.JUMP: GameProfile(
            kind=GameKind.JUMP,
            time_scored=True,
            score_rate_per_second=config.jump_score_rate,
            input_event="jump",
            input_stat="jumps",
            input_rate_stat="jumpsPerSec",
            max_inputs_per_second=config.jump_max_jumps_per_second,
            max_clears_per_second=config.max_clears_per_second,
        ),
        GameKind.SHOOT: GameProfile(
            kind=GameKind.SHOOT,
            time_scored=False,
            input_event="kill",
            input_stat="kills",
            max_kills_per_second=config.shoot_max_kills_per_second,
            max_hit_ratio=config.shoot_max_hit_ratio,
            points_per_kill=config.shoot_points_per_kill,
        ),
    }


def load_plausibility_config(config: Settings) -> PlausibilityConfig:
    """Build engine tolerances from settings."""
    return PlausibilityConfig(
        timing_jitter_ms=float(config.timing_jitter_ms),
        telemetry_score_threshold=config.telemetry_score_threshold,
        telemetry_limit=config.telemetry_limit,
        count_tolerance=config.telemetry_count_tolerance,
        target_frame_rate=config.target_frame_rate,
        frame_rate_tolerance=config.frame_rate_tolerance,
        min_reported_fps=config.min_reported_fps,
        max_fps_spread=config.max_fps_spread,
        max_delta_variance=config.max_delta_variance,
        score_margin=config.telemetry_score_margin,
    )


def _number(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if math.isnan(value) or math.isinf(value):
        return None
    return float(value)


def _stat(stats: Mapping[str, Any], name: str) -> float | None:
    """Return a non-negative numeric stat, None if absent, reject otherwise."""
    if name not in stats or stats[name] is None:
        return None
    value = _number(stats[name])
    if value is None or value < 0:
        raise PlausibilityError("stats", f"stat {name!r} is not a non-negative number")
    return value


def _variance(values: Sequence[float]) -> float:
    mean = sum(values) / len(values)
    return sum((value - mean) ** 2 for value in values) / len(values)


def parse_telemetry(raw: Sequence[Any]) -> list[TelemetryEvent]:
    """Parse client telemetry into events, rejecting malformed entries."""
    events: list[TelemetryEvent] = []
    for index, item in enumerate(raw):
        if not isinstance(item, Mapping):
            raise PlausibilityError("telemetry", f"event #{index} is not an object")
        name = item.get("event")
        timestamp = _number(item.get("time"))
        if not isinstance(name, str) or timestamp is None:
            raise PlausibilityError("telemetry", f"event #{index} lacks event/time")
        frame_id = item.get("frameId")
        if frame_id is not None and (isinstance(frame_id, bool) or not isinstance(frame_id, int)):
            raise PlausibilityError("telemetry", f"event #{index} has a non-integer frameId")
        data = item.get("data") or {}
        if not isinstance(data, Mapping):
            raise PlausibilityError("telemetry", f"event #{index} data is not an object")
        events.append(TelemetryEvent(event=name, time=timestamp, frame_id=frame_id, data=data))
    return events


class ScorePlausibilityEngine:
    """Accepts or rejects a claimed score against the current high score."""

    def __init__(
        self,
        config: PlausibilityConfig,
        profiles: Mapping[GameKind, GameProfile],
    ) -> None:
        self.config = config
        self.profiles = dict(profiles)

    def profile_for(self, game_kind: str) -> GameProfile:
        try:
            return self.profiles[GameKind(game_kind)]
        except (ValueError, KeyError) as err:
            raise PlausibilityError("game", f"unknown game kind {game_kind!r}") from err

    def evaluate(self, claim: ScoreClaim, current_high_score: int) -> Verdict:
        """Return a verdict for ``claim`` or raise ``PlausibilityError``.

        Scores that do not beat the ledger's high score are accepted without
        running any filter, whatever the stats or telemetry look like.
        """
        if claim.claimed_score <= current_high_score:
            return Verdict(accepted=True, is_new_high_score=False)

        try:
            profile = self.profile_for(claim.game_kind)
            self._check_time_bound(profile, claim)
            self._check_aggregate_stats(profile, claim)
            if claim.claimed_score >= self.config.telemetry_score_threshold:
                self._check_telemetry(profile, claim)
        except PlausibilityError as err:
            logger.warning(
                "Plausibility filter %s rejected %s score %s (elapsed %.0fms): %s",
                err.filter_name,
                claim.game_kind,
                claim.claimed_score,
                claim.server_elapsed_ms,
                err.detail,
            )
            raise

        return Verdict(accepted=True, is_new_high_score=True)

    @staticmethod
    def _seconds(claim: ScoreClaim) -> float:
        return max(claim.server_elapsed_ms / 1000, 1.0)

    @staticmethod
    def _input_rate(profile: GameProfile, stats: Mapping[str, Any], seconds: float) -> float | None:
        rate = _stat(stats, profile.input_rate_stat) if profile.input_rate_stat else None
        if rate is None and profile.input_stat:
            count = _stat(stats, profile.input_stat)
            rate = count / seconds if count is not None else None
        return rate

    # --- Time bound ---------------------------------------------------------------
    def _check_time_bound(self, profile: GameProfile, claim: ScoreClaim) -> None:
        elapsed_ms = claim.server_elapsed_ms
        jitter_ms = self.config.timing_jitter_ms
        if elapsed_ms < 0:
            raise PlausibilityError("time", "server elapsed time is negative")

        if profile.time_scored:
            rate = profile.score_rate_per_second
            expected = math.floor(elapsed_ms / 1000 * rate)
            tolerance = math.ceil(jitter_ms / 1000 * rate)
            if abs(claim.claimed_score - expected) > tolerance:
                raise PlausibilityError(
                    "time",
                    f"claimed {claim.claimed_score}, expected {expected} ± {tolerance}",
                )

        if claim.stats:
            client_ms = _stat(claim.stats, "time")
            if client_ms is not None and client_ms > elapsed_ms + jitter_ms:
                raise PlausibilityError(
                    "time",
                    f"client duration {client_ms:.0f}ms exceeds server {elapsed_ms:.0f}ms",
                )

    # --- Aggregate stats ----------------------------------------------------------
    def _check_aggregate_stats(self, profile: GameProfile, claim: ScoreClaim) -> None:
        stats = claim.stats
        if stats is None:
            if profile.points_per_kill is not None:
                raise PlausibilityError("stats", "stats are required for kill-scored games")
            return
        if not isinstance(stats, Mapping):
            raise PlausibilityError("stats", "stats is not an object")

        seconds = self._seconds(claim)

        if profile.max_inputs_per_second is not None:
            rate = self._input_rate(profile, stats, seconds)
            if rate is not None and rate > profile.max_inputs_per_second:
                raise PlausibilityError("stats", f"{rate:.2f} inputs/s above ceiling")

        if profile.max_clears_per_second is not None:
            cleared = _stat(stats, "obstaclesCleared")
            if cleared is not None:
                # A short client clock cannot have cleared more than a long server one.
                client_ms = _stat(stats, "time")
                client_seconds = max(client_ms / 1000, 1.0) if client_ms is not None else seconds
                shortest = min(seconds, client_seconds)
                if cleared / shortest > profile.max_clears_per_second:
                    raise PlausibilityError("stats", f"{cleared:.0f} obstacles cleared in {shortest:.1f}s")

        if profile.points_per_kill is not None:
            kills = _stat(stats, "kills")
            if kills is None:
                raise PlausibilityError("stats", "kill count missing")
            shots = _stat(stats, "shots") or 0.0
            if profile.max_hit_ratio is not None and kills / max(shots, 1.0) > profile.max_hit_ratio:
                raise PlausibilityError("stats", f"hit ratio {kills:.0f}/{shots:.0f} too high")
            if (
                profile.max_kills_per_second is not None
                and kills / seconds > profile.max_kills_per_second
            ):
                raise PlausibilityError("stats", f"{kills:.0f} kills in {seconds:.1f}s")
            if claim.claimed_score > kills * profile.points_per_kill:
                raise PlausibilityError(
                    "stats",
                    f"score {claim.claimed_score} above {kills:.0f} kills x {profile.points_per_kill}",
                )

    # --- Telemetry ----------------------------------------------------------------
    def _check_telemetry(self, profile: GameProfile, claim: ScoreClaim) -> None:
        if not claim.telemetry or not claim.stats:
            raise PlausibilityError("telemetry", "telemetry and stats are required")
        if not isinstance(claim.stats, Mapping):
            raise PlausibilityError("telemetry", "stats is not an object")

        limit = self.config.telemetry_limit
        if len(claim.telemetry) > limit:
            raise PlausibilityError(
                "telemetry",
                f"{len(claim.telemetry)} events exceed the client buffer of {limit}",
            )
        # A full buffer has dropped its oldest events.
        truncated = len(claim.telemetry) == limit

        events = parse_telemetry(claim.telemetry)
        self._check_collision(events)
        self._check_input_count(profile, events, claim.stats, truncated)
        frames = self._check_frames(events, claim.server_elapsed_ms)
        self._check_reported_fps(events)
        if profile.time_scored:
            self._check_computed_score(profile, claim, frames, truncated)
        self._check_input_timing(profile, events, claim)
        if profile.spawns is not None:
            self._check_spawns(profile.spawns, events, frames, claim.stats, truncated)

    @staticmethod
    def _check_collision(events: Sequence[TelemetryEvent]) -> None:
        collisions = sum(1 for event in events if event.event == "collision")
        if collisions != 1:
            raise PlausibilityError("telemetry", f"{collisions} collision events")
        if events[-1].event != "collision":
            raise PlausibilityError("telemetry", "last event is not the collision")

    def _check_input_count(
        self,
        profile: GameProfile,
        events: Sequence[TelemetryEvent],
        stats: Mapping[str, Any],
        truncated: bool,
    ) -> None:
        if not profile.input_event or not profile.input_stat:
            return
        reported = _stat(stats, profile.input_stat)
        if reported is None:
            raise PlausibilityError("telemetry", f"stat {profile.input_stat!r} missing")

        counted = sum(1 for event in events if event.event == profile.input_event)
        tolerance = self.config.count_tolerance
        if truncated:
            # Older events were dropped client-side; only an excess is impossible.
            mismatch = counted > reported + tolerance
        else:
            mismatch = abs(counted - reported) > tolerance
        if mismatch:
            raise PlausibilityError(
                "telemetry",
                f"{counted} {profile.input_event} events vs {reported:.0f} reported",
            )

    def _check_frames(self, events: Sequence[TelemetryEvent], elapsed_ms: float) -> list[TelemetryEvent]:
        frames = [event for event in events if event.event == "frame" and event.frame_id is not None]
        if len(frames) < 2:
            raise PlausibilityError("telemetry", "not enough frame events")

        first, last = frames[0], frames[-1]
        span_ms = last.time - first.time
        if span_ms <= 0:
            raise PlausibilityError("telemetry", "frame timestamps do not advance")
        if span_ms > elapsed_ms + self.config.timing_jitter_ms:
            raise PlausibilityError(
                "telemetry",
                f"frame span {span_ms:.0f}ms exceeds server {elapsed_ms:.0f}ms",
            )

        frame_rate = (last.frame_id - first.frame_id) / (span_ms / 1000)
        target = self.config.target_frame_rate
        low = target * (1 - self.config.frame_rate_tolerance)
        high = target * (1 + self.config.frame_rate_tolerance)
        if not low <= frame_rate <= high:
            raise PlausibilityError("telemetry", f"frame rate {frame_rate:.1f} outside {low:.0f}-{high:.0f}")

        deltas = self._frame_deltas(frames)
        if len(deltas) >= 2:
            variance = _variance(deltas)
            if variance < self.config.min_delta_variance:
                raise PlausibilityError("telemetry", f"frame delta variance {variance:.2e} too regular")
            if variance > self.config.max_delta_variance:
                raise PlausibilityError("telemetry", f"frame delta variance {variance:.2e} too erratic")
        return frames

    @staticmethod
    def _frame_deltas(frames: Sequence[TelemetryEvent]) -> list[float]:
        return [
            value
            for value in (_number(frame.data.get("deltaTime")) for frame in frames)
            if value is not None
        ]

    def _check_reported_fps(self, events: Sequence[TelemetryEvent]) -> None:
        values = [
            value
            for value in (_number(event.data.get("fps")) for event in events if event.event == "fps")
            if value is not None
        ]
        if not values:
            return
        if min(values) < self.config.min_reported_fps:
            raise PlausibilityError("telemetry", f"reported fps {min(values):.1f} too low")
        if max(values) - min(values) > self.config.max_fps_spread:
            raise PlausibilityError("telemetry", "reported fps varies too much")

    def _check_computed_score(
        self,
        profile: GameProfile,
        claim: ScoreClaim,
        frames: Sequence[TelemetryEvent],
        truncated: bool,
    ) -> None:
        """Rebuild the score from frame ``deltaTime`` seconds.

        A truncated log lacks the opening frames, so the score before the
        first logged frame is estimated from the run length, and a score the
        client stamped on that frame must agree with the estimate.
        """
        rate = profile.score_rate_per_second
        margin = self.config.score_margin
        computed = sum(self._frame_deltas(frames)) * rate

        if truncated:
            client_ms = _stat(claim.stats or {}, "time")
            run_ms = client_ms if client_ms is not None else claim.server_elapsed_ms
            span_ms = frames[-1].time - frames[0].time
            opening = max(run_ms - span_ms, 0.0) / 1000 * rate
            stamped = _number(frames[0].data.get("score"))
            if stamped is not None and opening > 0 and abs(stamped - opening) > opening * margin:
                raise PlausibilityError(
                    "telemetry",
                    f"first logged frame scores {stamped:.0f}, expected about {opening:.0f}",
                )
            computed += opening

        if claim.claimed_score > computed * (1 + margin):
            raise PlausibilityError(
                "telemetry",
                f"score {claim.claimed_score} above {computed:.0f} rebuilt from frames",
            )

    def _check_input_timing(
        self,
        profile: GameProfile,
        events: Sequence[TelemetryEvent],
        claim: ScoreClaim,
    ) -> None:
        if profile.min_inputs_per_second is not None and claim.stats:
            rate = self._input_rate(profile, claim.stats, self._seconds(claim))
            if rate is not None and rate < profile.min_inputs_per_second:
                raise PlausibilityError("telemetry", f"{rate:.2f} inputs/s cannot keep the run alive")

        if profile.min_input_interval_variance is None or not profile.input_event:
            return
        times = [event.time for event in events if event.event == profile.input_event]
        intervals = [later - earlier for earlier, later in zip(times, times[1:])]
        if len(intervals) < 2:
            return
        variance = _variance(intervals)
        if variance < profile.min_input_interval_variance:
            raise PlausibilityError("telemetry", f"input interval variance {variance:.2f}ms² is robotic")

    def _check_spawns(
        self,
        spawns: SpawnProfile,
        events: Sequence[TelemetryEvent],
        frames: Sequence[TelemetryEvent],
        stats: Mapping[str, Any],
        truncated: bool,
    ) -> None:
        spawned = sorted(
            (event for event in events if event.event == spawns.event),
            key=lambda event: event.time,
        )
        span_ms = frames[-1].time - frames[0].time
        tolerance = self.config.count_tolerance

        fewest = math.floor(span_ms / (spawns.max_interval_ms + spawns.min_interval_ms)) - tolerance
        most = 2 * (math.floor(span_ms / spawns.min_interval_ms) + 1) + tolerance
        if not fewest <= len(spawned) <= most:
            raise PlausibilityError(
                "telemetry",
                f"{len(spawned)} spawns in {span_ms:.0f}ms, expected {max(fewest, 0)}-{most}",
            )

        previous: float | None = None
        for event in spawned:
            speed = _number(event.data.get("speed"))
            if speed is None:
                raise PlausibilityError("telemetry", "spawn without a speed")
            if not spawns.base_speed - SPEED_TOLERANCE <= speed <= 2 * spawns.base_speed + SPEED_TOLERANCE:
                raise PlausibilityError("telemetry", f"obstacle speed {speed:.2f} out of range")
            if previous is not None and speed < previous - SPEED_TOLERANCE:
                raise PlausibilityError("telemetry", "obstacle speed decreased")
            previous = speed

        closest = spawns.obstacle_size * 1.5 * 0.9
        farthest = spawns.obstacle_size * 2 * 1.1
        for earlier, later in zip(spawned, spawned[1:]):
            if later.time - earlier.time >= CLUSTER_WINDOW_MS:
                continue
            first_y = _number(earlier.data.get("y"))
            second_y = _number(later.data.get("y"))
            if first_y is None or second_y is None or not closest <= abs(second_y - first_y) <= farthest:
                raise PlausibilityError("telemetry", "cluster spawn spacing is impossible")

        cleared = _stat(stats, "obstaclesCleared")
        if cleared is not None and not truncated and cleared > len(spawned) + tolerance:
            raise PlausibilityError(
                "telemetry",
                f"{cleared:.0f} obstacles cleared but {len(spawned)} spawned",
            )
