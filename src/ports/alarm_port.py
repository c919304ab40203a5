"""Alarm port — the capabilities the session machine consumes when a
countdown ends.

Core modules depend on these protocols, never on a specific transport.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass
class AlarmMessage:
    """What to announce and through which modalities."""

    title: str
    body: str
    beep: bool = True
    speech: bool = True
    repeat: bool = True       # keep ringing until acknowledged


class AlarmLoopHandle(Protocol):
    """A running alarm; ``stop`` is idempotent."""

    def stop(self) -> None: ...

    async def replay(self) -> bool: ...

    def is_playing(self) -> bool: ...


class AlarmPort(Protocol):
    """Starts a repeating alarm loop."""

    def start(self, message: AlarmMessage) -> AlarmLoopHandle: ...


class NotificationPort(Protocol):
    """Sends a text notification to one user."""

    async def send_message(self, user_id: int, text: str) -> None: ...
