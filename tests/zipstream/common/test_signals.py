"""Tests for shutdown signal handling."""

import asyncio
import os
import signal
import sys

import pytest

from zipstream.common.signals import install_shutdown_handlers

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="POSIX signals only")


class TestInstallShutdownHandlers:

    @pytest.mark.asyncio
    async def test_signal_invokes_callback(self):
        loop = asyncio.get_running_loop()
        fired = asyncio.Event()

        installed = install_shutdown_handlers(fired.set, signals=(signal.SIGUSR1,))
        try:
            assert installed == [signal.SIGUSR1]
            os.kill(os.getpid(), signal.SIGUSR1)
            await asyncio.wait_for(fired.wait(), timeout=2)
        finally:
            loop.remove_signal_handler(signal.SIGUSR1)

        assert fired.is_set()
