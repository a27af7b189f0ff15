# botqueue/scheduler/rhythm.py
# Posting rhythm: when a bot should post or think next.
#
# Intervals are spread over the bot's waking window with jitter so bots don't
# post in lockstep; anything landing in the quiet window is rolled to a
# randomized morning slot.
from __future__ import annotations

import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Mapping, Optional


@dataclass(frozen=True)
class PostingWindow:
    """Waking hours for a bot.

    sleep_hour > 24 means the window wraps past midnight
    (e.g. wake 11, sleep 26 = 11am to 2am).
    """
    wake_hour: int = 8
    sleep_hour: int = 23
    jitter: float = 0.3
    morning_spread_hours: int = 3

    @property
    def active_hours(self) -> int:
        return self.sleep_hour - self.wake_hour

    def is_quiet(self, hour: int) -> bool:
        if self.sleep_hour > 24:
            return (self.sleep_hour - 24) <= hour < self.wake_hour
        return hour >= self.sleep_hour or hour < self.wake_hour


DEFAULT_WINDOW = PostingWindow()


def window_from_profile(profile: Optional[Mapping[str, Any]]) -> PostingWindow:
    """
    Personality-aware window from the bot's compiled posting profile
    ({wakeHour, sleepHour, jitter}). Anything unusable falls back to the default.
    """
    if not profile:
        return DEFAULT_WINDOW
    try:
        wake = int(profile.get("wakeHour", DEFAULT_WINDOW.wake_hour))
        sleep = int(profile.get("sleepHour", DEFAULT_WINDOW.sleep_hour))
        jitter = float(profile.get("jitter", DEFAULT_WINDOW.jitter))
    except (TypeError, ValueError):
        return DEFAULT_WINDOW
    if not (0 <= wake <= 23 and wake < sleep <= wake + 24) or not (0.0 <= jitter < 1.0):
        return DEFAULT_WINDOW
    # personality windows wake within two hours of wake_hour
    spread = max(1, min(2, 24 - wake))
    return PostingWindow(wake_hour=wake, sleep_hour=sleep, jitter=jitter, morning_spread_hours=spread)


def _morning_slot(day: datetime, window: PostingWindow, rng: random.Random) -> datetime:
    return day.replace(
        hour=window.wake_hour + rng.randrange(window.morning_spread_hours),
        minute=rng.randrange(60),
        second=0,
        microsecond=0,
    )


def roll_out_of_quiet_hours(candidate: datetime, window: PostingWindow = DEFAULT_WINDOW, rng=random) -> datetime:
    hour = candidate.hour
    if not window.is_quiet(hour):
        return candidate
    if hour >= window.wake_hour:
        # past bedtime -> tomorrow morning
        return _morning_slot(candidate + timedelta(days=1), window, rng)
    # small hours -> this morning
    return _morning_slot(candidate, window, rng)


def base_interval_hours(posts_per_day: int, window: PostingWindow = DEFAULT_WINDOW) -> float:
    return window.active_hours / max(1, int(posts_per_day or 1))


def calculate_next_post_time(
    posts_per_day: int,
    now: datetime,
    *,
    window: PostingWindow = DEFAULT_WINDOW,
    rng=random,
) -> datetime:
    """Next post = now + interval ± jitter, moved out of the quiet window."""
    interval = base_interval_hours(posts_per_day, window)
    jitter = interval * window.jitter * (rng.random() * 2 - 1)
    candidate = now + timedelta(hours=interval + jitter)
    return roll_out_of_quiet_hours(candidate, window, rng)


PRIORITY_MULTIPLIER = {"high": 0.5, "medium": 1.0, "low": 2.0}
IDLE_BONUS = 1.5
CYCLE_JITTER = 0.2


def calculate_next_cycle(
    priority: Optional[str],
    action: Optional[str],
    cooldown_minutes: int,
    now: datetime,
    *,
    rng=random,
) -> datetime:
    """High priority = shorter cooldown, low priority / IDLE = longer."""
    multiplier = PRIORITY_MULTIPLIER.get((priority or "").lower(), PRIORITY_MULTIPLIER["low"])
    idle = IDLE_BONUS if (action or "").upper() == "IDLE" else 1.0
    minutes = max(1, cooldown_minutes) * multiplier * idle
    jitter = minutes * CYCLE_JITTER * (rng.random() * 2 - 1)
    return now + timedelta(minutes=minutes + jitter)
