"""Device fingerprint for session bookkeeping.

The id is derived from environment signals available at call time and
hashed with the same rolling hash as the fallback password digest. Nothing
is persisted, and the value is spoofable: it labels sessions in device
listings and is never used for access decisions.
"""

from __future__ import annotations

import locale
import os
import platform
import shutil
import sys
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Mapping

from learnportal.core.credentials import rolling_hash

USER_AGENT_SUMMARY_LENGTH = 120


@dataclass(frozen=True)
class EnvironmentSignals:
    """Signals the fingerprint is computed from."""

    user_agent: str
    language: str = ""
    screen: str = ""
    timezone_offset: int = 0  # minutes, UTC minus local time
    surface: str = ""

    def joined(self) -> str:
        return "|".join(
            [
                self.user_agent,
                self.language,
                self.screen,
                str(self.timezone_offset),
                self.surface,
            ]
        )


def _timezone_offset_minutes() -> int:
    offset = datetime.now().astimezone().utcoffset()
    if offset is None:
        return 0
    return -int(offset.total_seconds() // 60)


def _language() -> str:
    lang = locale.getlocale()[0]
    if lang:
        return lang
    return os.environ.get("LANG", "").split(".")[0]


def collect_signals() -> EnvironmentSignals:
    """Read signals from the running interpreter and terminal."""
    user_agent = (
        f"{platform.python_implementation()}/{platform.python_version()} "
        f"({platform.system()} {platform.release()}; {platform.machine()})"
    )
    size = shutil.get_terminal_size(fallback=(80, 24))
    surface = "; ".join(
        [
            os.environ.get("TERM", "unknown"),
            getattr(sys.stdout, "encoding", None) or "unknown",
        ]
    )
    return EnvironmentSignals(
        user_agent=user_agent,
        language=_language(),
        screen=f"{size.columns}x{size.lines}",
        timezone_offset=_timezone_offset_minutes(),
        surface=surface,
    )


def signals_from_headers(headers: Mapping[str, str]) -> EnvironmentSignals:
    """Build signals for an HTTP caller from its request headers."""
    offset_raw = headers.get("x-timezone-offset", "0")
    try:
        offset = int(offset_raw)
    except ValueError:
        offset = 0
    return EnvironmentSignals(
        user_agent=headers.get("user-agent", "unknown"),
        language=headers.get("accept-language", "").split(",")[0],
        screen=headers.get("x-screen", ""),
        timezone_offset=offset,
        surface=headers.get("sec-ch-ua-platform", ""),
    )


def summarize_user_agent(user_agent: str) -> str:
    """Trimmed agent string for session listings."""
    if len(user_agent) <= USER_AGENT_SUMMARY_LENGTH:
        return user_agent
    return user_agent[: USER_AGENT_SUMMARY_LENGTH - 3] + "..."


class DeviceFingerprint:
    """Stateless device id generator."""

    def __init__(self, signals_source: Callable[[], EnvironmentSignals] = collect_signals):
        self._signals_source = signals_source

    def signals(self) -> EnvironmentSignals:
        return self._signals_source()

    def fingerprint(self, signals: EnvironmentSignals | None = None) -> str:
        """Device id for the given (or current) environment."""
        return rolling_hash((signals or self.signals()).joined())
