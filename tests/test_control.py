"""Tests for control.py - Ping and Shutdown."""

import asyncio

from rcopy.control import PONG, ControlService
from rcopy.transfer.messages import PingRequest, ShutdownRequest, ShutdownResponse


class FakeStream:
    def __init__(self):
        self.callbacks = []

    def add_done_callback(self, callback):
        self.callbacks.append(callback)

    def run_done_callbacks(self):
        for callback in self.callbacks:
            callback()


class TestPing:
    """Tests for ControlService.ping."""

    def test_fixed_reply(self):
        service = ControlService(terminate=lambda: None)

        for message in ('ping', '', 'anything at all'):
            response = asyncio.run(service.ping(PingRequest(message=message), FakeStream()))
            assert response.message == PONG


class TestShutdown:
    """Tests for ControlService.shutdown."""

    def test_timer_starts_after_response_is_flushed(self):
        calls = []
        service = ControlService(shutdown_delay=0.01, terminate=lambda: calls.append('exit'))
        stream = FakeStream()

        async def run():
            response = await service.shutdown(ShutdownRequest(), stream)
            # Handler returned, nothing scheduled until the status is flushed
            assert not service.shutdown_pending
            await asyncio.sleep(0.05)
            assert calls == []

            stream.run_done_callbacks()
            assert service.shutdown_pending
            await asyncio.sleep(0.05)
            return response

        response = asyncio.run(run())

        assert response == ShutdownResponse()
        assert calls == ['exit']

    def test_repeated_shutdown_terminates_once(self):
        calls = []
        service = ControlService(shutdown_delay=0.01, terminate=lambda: calls.append('exit'))

        async def run():
            for _ in range(3):
                stream = FakeStream()
                await service.shutdown(ShutdownRequest(), stream)
                stream.run_done_callbacks()
            await asyncio.sleep(0.05)

        asyncio.run(run())
        assert calls == ['exit']
