from __future__ import annotations

import random
import threading

from .config import Settings
from .models import Source, WorkItem


class Budget:
    """Daily draft ceiling shared by every worker of one run.

    A claim stays in flight until the worker reports it with ``commit()`` (a draft
    was saved) or ``release()`` (the attempt failed or was skipped). ``claim()``
    waits while the ceiling is reached only by in-flight claims, since any of them
    may still hand its slot back.
    """

    def __init__(self, limit: int):
        self.limit = max(0, limit)
        self.used = 0
        self.in_flight = 0
        self._cond = threading.Condition()

    def try_claim(self) -> bool:
        with self._cond:
            if self.used >= self.limit:
                return False
            self.used += 1
            self.in_flight += 1
            return True

    def claim(self) -> bool:
        with self._cond:
            while self.used >= self.limit:
                if self.in_flight == 0:
                    return False
                self._cond.wait()
            self.used += 1
            self.in_flight += 1
            return True

    def commit(self) -> None:
        with self._cond:
            if self.in_flight > 0:
                self.in_flight -= 1
            self._cond.notify_all()

    def release(self) -> None:
        with self._cond:
            if self.in_flight > 0:
                self.in_flight -= 1
            if self.used > 0:
                self.used -= 1
            self._cond.notify_all()

    @property
    def remaining(self) -> int:
        with self._cond:
            return self.limit - self.used


def select_work(
    sources: list[Source],
    settings: Settings,
    today: str,
    rng: random.Random | None = None,
) -> list[WorkItem]:
    """Order active sources for one run: feeds, today's themes, then one random topic."""
    if settings.max_articles_per_day <= 0:
        return []
    rng = rng or random.Random()
    active = [source for source in sources if source.active]

    feeds = [source for source in active if source.kind == "feed"]
    themes = [source for source in active if source.kind == "theme" and source.schedule_day == today]
    topics = [source for source in active if source.kind == "topic"]

    ordered = feeds + themes
    if topics:
        ordered.append(rng.choice(topics))
    return [WorkItem(source=source) for source in ordered]
