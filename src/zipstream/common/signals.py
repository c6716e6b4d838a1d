"""Signal handler setup for graceful worker shutdown."""

import asyncio
import logging
import signal
from collections.abc import Callable, Iterable

logger = logging.getLogger(__name__)

SHUTDOWN_SIGNALS = (signal.SIGTERM, signal.SIGINT)


def install_shutdown_handlers(
    callback: Callable[[], None],
    signals: Iterable[signal.Signals] = SHUTDOWN_SIGNALS,
) -> list[signal.Signals]:
    """Route shutdown signals to callback; returns the signals handled.

    Uses the running loop's add_signal_handler() where supported and falls
    back to signal.signal() on platforms without it (Windows).
    """
    loop = asyncio.get_running_loop()
    installed: list[signal.Signals] = []

    def _on_signal(sig: signal.Signals) -> None:
        logger.info("Received %s, initiating shutdown", sig.name)
        callback()

    for sig in signals:
        try:
            loop.add_signal_handler(sig, _on_signal, sig)
        except NotImplementedError:
            signal.signal(sig, lambda signum, frame: _on_signal(signal.Signals(signum)))
        installed.append(sig)

    return installed
