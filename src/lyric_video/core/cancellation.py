"""Cooperative cancellation token threaded through every async call."""

from loguru import logger

from lyric_video.core.exceptions import AbortRequested


class CancellationToken:
    """Polled abort flag.

    Cancelling never interrupts in-flight work; callers check the token at
    their suspension points and stop scheduling further work.
    """

    def __init__(self):
        self._cancelled = False
        self._reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str = "abort requested") -> None:
        if self._cancelled:
            return
        self._cancelled = True
        self._reason = reason
        logger.info(f"Cancellation requested: {reason}")

    def raise_if_cancelled(self, where: str = "") -> None:
        """Raise AbortRequested if the token has been cancelled."""
        if self._cancelled:
            suffix = f" at {where}" if where else ""
            raise AbortRequested(f"{self._reason}{suffix}")
