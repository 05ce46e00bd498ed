"""
Per-game phase countdown.

One asyncio task per game holds the remaining seconds for the current phase.
Every tick it reports the new value through `on_tick`; when the count reaches
zero it calls `on_expire`. Starting a new countdown for a game cancels the old
one. `on_tick` returning False means the phase changed underneath the timer,
which stops the countdown without firing `on_expire`.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional

from config import settings
from models.game import Phase

logger = logging.getLogger(__name__)

TickCallback = Callable[[str, Phase, int], Awaitable[bool]]
ExpireCallback = Callable[[str, Phase], Awaitable[None]]


class PhaseTimer:

    def __init__(self, tick_seconds: Optional[float] = None):
        self.tick_seconds = tick_seconds if tick_seconds is not None else settings.timer_tick_seconds
        self._tasks: Dict[str, asyncio.Task] = {}

    def start(
        self,
        game_id: str,
        phase: Phase,
        duration: int,
        on_tick: TickCallback,
        on_expire: ExpireCallback,
    ) -> None:
        self.cancel(game_id)
        self._tasks[game_id] = asyncio.create_task(
            self._run(game_id, phase, duration, on_tick, on_expire),
            name=f"phase-timer-{game_id}-{phase.value}",
        )
        logger.debug("[%s] Timer started: %s (%ds)", game_id, phase.value, duration)

    def cancel(self, game_id: str) -> None:
        task = self._tasks.pop(game_id, None)
        if task and not task.done():
            task.cancel()

    def cancel_all(self) -> None:
        for game_id in list(self._tasks):
            self.cancel(game_id)

    def is_running(self, game_id: str) -> bool:
        task = self._tasks.get(game_id)
        return bool(task and not task.done())

    async def _run(
        self,
        game_id: str,
        phase: Phase,
        duration: int,
        on_tick: TickCallback,
        on_expire: ExpireCallback,
    ) -> None:
        loop = asyncio.get_running_loop()
        started = loop.time()
        remaining = duration
        try:
            while remaining > 0:
                # Sleep to the next tick boundary so slow callbacks don't accumulate drift
                elapsed_ticks = duration - remaining + 1
                await asyncio.sleep(max(0.0, started + elapsed_ticks * self.tick_seconds - loop.time()))
                remaining -= 1
                if not await on_tick(game_id, phase, remaining):
                    return
        except asyncio.CancelledError:
            logger.debug("[%s] Timer cancelled: %s", game_id, phase.value)
            raise
        finally:
            if self._tasks.get(game_id) is asyncio.current_task():
                self._tasks.pop(game_id, None)

        logger.info("[%s] Phase timer expired: %s", game_id, phase.value)
        try:
            await on_expire(game_id, phase)
        except Exception:
            logger.exception("[%s] Phase timeout handler failed (%s)", game_id, phase.value)
