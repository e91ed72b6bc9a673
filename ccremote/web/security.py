"""Passphrase lock with idle auto-lock.

Without a passphrase the gate is permanently open and every method below is a
no-op. With one, the gate starts locked, opens on the right passphrase, and
closes again after ``auto_lock_minutes`` without activity. The idle check runs
both lazily (``is_unlocked``) and from a periodic sweep so the state is right
even when nobody is talking to the bridge.
"""

from __future__ import annotations

from loguru import logger

from ccremote.web.clock import Scheduler, TimerHandle


class SecurityGate:
    def __init__(
        self,
        *,
        passphrase: str | None,
        auto_lock_minutes: float,
        scheduler: Scheduler,
        sweep_interval_s: float = 60.0,
    ):
        self._passphrase = passphrase or None
        self._scheduler = scheduler
        self._auto_lock_s = max(0.0, float(auto_lock_minutes)) * 60.0
        self._sweep_interval_s = sweep_interval_s
        self._unlocked = self._passphrase is None
        self._last_activity = scheduler.now()
        self._sweep: TimerHandle | None = None

    @property
    def enabled(self) -> bool:
        return self._passphrase is not None

    def start(self) -> None:
        if self.enabled and self._auto_lock_s > 0 and self._sweep is None:
            self._sweep = self._scheduler.call_every(self._sweep_interval_s, self.check_auto_lock)

    def stop(self) -> None:
        if self._sweep is not None:
            self._sweep.cancel()
            self._sweep = None

    def _idle_expired(self) -> bool:
        return self._auto_lock_s > 0 and self._scheduler.now() - self._last_activity > self._auto_lock_s

    def is_unlocked(self) -> bool:
        if not self.enabled:
            return True
        if not self._unlocked:
            return False
        if self._idle_expired():
            self._unlocked = False
            logger.info("Gate locked after inactivity")
            return False
        return True

    def try_unlock(self, phrase: str) -> bool:
        if not self.enabled:
            return True
        if phrase.strip() == self._passphrase:
            self._unlocked = True
            self._last_activity = self._scheduler.now()
            logger.info("Gate unlocked")
            return True
        logger.warning("Rejected unlock attempt")
        return False

    def touch(self) -> None:
        self._last_activity = self._scheduler.now()

    def lock(self) -> None:
        if not self.enabled:
            return
        self._unlocked = False
        logger.info("Gate locked by operator")

    def check_auto_lock(self) -> bool:
        """Sweep entry point. Returns True if this call locked the gate."""
        if self.enabled and self._unlocked and self._idle_expired():
            self._unlocked = False
            logger.info("Auto-locked due to inactivity")
            return True
        return False
