"""Repeating alarm adapter — implements AlarmPort.

One "round" notifies every recipient, rings the terminal bell and, when a
speaker is wired in, reads the body aloud. With ``repeat`` set, rounds run
every ``repeat_seconds`` until the handle is stopped.

Delivery failures are logged and never end the loop: an alarm that
cannot reach one channel should still ring on the others.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import TYPE_CHECKING, Awaitable, Callable, TextIO

if TYPE_CHECKING:
    from src.ports.alarm_port import AlarmMessage, NotificationPort

logger = logging.getLogger(__name__)

Speaker = Callable[[str], Awaitable[None]]


class AlarmLoop:
    """Handle for one running alarm (AlarmLoopHandle)."""

    def __init__(
        self,
        message: AlarmMessage,
        notifier: NotificationPort | None,
        recipients: list[int],
        repeat_seconds: float,
        bell_stream: TextIO | None,
        speaker: Speaker | None,
    ) -> None:
        self._message = message
        self._notifier = notifier
        self._recipients = recipients
        self._repeat_seconds = repeat_seconds
        self._bell_stream = bell_stream
        self._speaker = speaker
        self._stopped = False
        self._rounds = 0
        self._task: asyncio.Task | None = asyncio.get_running_loop().create_task(self._run())

    @property
    def rounds(self) -> int:
        return self._rounds

    async def _run(self) -> None:
        await self._ring_once()
        if not self._message.repeat:
            return
        while not self._stopped:
            await asyncio.sleep(self._repeat_seconds)
            if self._stopped:
                break
            await self._ring_once()

    async def _ring_once(self) -> None:
        if self._stopped:
            return
        self._rounds += 1
        text = f"⏰ {self._message.title}\n{self._message.body}"

        if self._notifier is not None:
            for user_id in self._recipients:
                try:
                    await self._notifier.send_message(user_id, text)
                except Exception as exc:
                    logger.warning("Alarm notification to %d failed: %s", user_id, exc)

        if self._message.beep and self._bell_stream is not None:
            try:
                self._bell_stream.write("\a")
                self._bell_stream.flush()
            except (OSError, ValueError) as exc:
                logger.debug("Terminal bell unavailable: %s", exc)

        if self._message.speech and self._speaker is not None:
            try:
                await self._speaker(self._message.body)
            except Exception as exc:
                logger.warning("Alarm speech failed: %s", exc)

    def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        logger.info("Alarm stopped after %d round(s)", self._rounds)

    async def replay(self) -> bool:
        """Ring one extra round right now. False once stopped."""
        if self._stopped:
            return False
        await self._ring_once()
        return True

    def is_playing(self) -> bool:
        return not self._stopped and self._rounds > 0


class RepeatingAlarm:
    """AlarmPort implementation that rings through a NotificationPort."""

    def __init__(
        self,
        notifier: NotificationPort | None,
        recipients: list[int] | None = None,
        repeat_seconds: float = 30.0,
        bell_stream: TextIO | None = sys.stdout,
        speaker: Speaker | None = None,
    ) -> None:
        self._notifier = notifier
        self._recipients = list(recipients or [])
        self._repeat_seconds = repeat_seconds
        self._bell_stream = bell_stream
        self._speaker = speaker

    def start(self, message: AlarmMessage) -> AlarmLoop:
        logger.info("Alarm started: %s", message.title)
        return AlarmLoop(
            message,
            self._notifier,
            self._recipients,
            self._repeat_seconds,
            self._bell_stream,
            self._speaker,
        )
