"""Tests for PendingOperation memoization and poll_until deadlines."""

import asyncio

import pytest

from serverlease.errors import OperationTimeout, RemoteOperationFailed
from serverlease.remote.tracker import PendingOperation, completed, issue, poll_until


class TestPollUntil:
    @pytest.mark.asyncio
    async def test_returns_first_value_satisfying_predicate(self):
        values = iter(["starting", "starting", "running"])
        calls = 0

        async def probe():
            nonlocal calls
            calls += 1
            return next(values)

        result = await poll_until(
            probe, lambda state: state == "running", interval=0.01, timeout=1, description="start"
        )

        assert result == "running"
        assert calls == 3

    @pytest.mark.asyncio
    async def test_times_out_and_stops_probing(self):
        calls = 0

        async def probe():
            nonlocal calls
            calls += 1
            return False

        with pytest.raises(OperationTimeout) as excinfo:
            await poll_until(probe, bool, interval=0.01, timeout=0.05, description="never")

        assert excinfo.value.description == "never"
        seen = calls
        await asyncio.sleep(0.05)
        assert calls == seen

    @pytest.mark.asyncio
    async def test_rejects_unbounded_wait(self):
        async def probe():
            return True

        with pytest.raises(ValueError):
            await poll_until(probe, bool, interval=0.01, timeout=0, description="unbounded")


class TestPendingOperation:
    @pytest.mark.asyncio
    async def test_overlapping_waits_share_one_poll_sequence(self):
        probes = 0

        async def probe():
            nonlocal probes
            probes += 1
            return probes

        async def initiate():
            return "accepted"

        async def complete(_):
            return await poll_until(
                probe, lambda count: count >= 3, interval=0.01, timeout=1, description="shared"
            )

        operation = await issue(initiate, complete)
        assert operation.response == "accepted"
        assert not operation.started

        first, second = await asyncio.gather(operation.wait(), operation.wait())

        assert first == second == 3
        assert probes == 3
        assert await operation.wait() == 3
        assert probes == 3

    @pytest.mark.asyncio
    async def test_failure_is_memoized(self):
        attempts = 0

        async def completer():
            nonlocal attempts
            attempts += 1
            raise RemoteOperationFailed("snapshot failed")

        operation = PendingOperation("id-1", completer)
        results = await asyncio.gather(operation.wait(), operation.wait(), return_exceptions=True)

        assert attempts == 1
        assert all(isinstance(result, RemoteOperationFailed) for result in results)
        assert results[0] is results[1]
        with pytest.raises(RemoteOperationFailed):
            await operation.wait()
        assert attempts == 1

    @pytest.mark.asyncio
    async def test_initiate_error_surfaces_from_issue(self):
        completions = 0

        async def initiate():
            raise RemoteOperationFailed("power rejected", status_code=409)

        async def complete(_):
            nonlocal completions
            completions += 1

        with pytest.raises(RemoteOperationFailed):
            await issue(initiate, complete)
        assert completions == 0

    @pytest.mark.asyncio
    async def test_cancelled_waiter_does_not_cancel_shared_completion(self):
        release = asyncio.Event()

        async def completer():
            await release.wait()
            return "done"

        operation = PendingOperation(None, completer)
        impatient = asyncio.create_task(operation.wait())
        await asyncio.sleep(0)
        impatient.cancel()
        with pytest.raises(asyncio.CancelledError):
            await impatient

        release.set()
        assert await operation.wait() == "done"

    @pytest.mark.asyncio
    async def test_completed_operation_resolves_immediately(self):
        operation = completed("ok")

        assert operation.response == "ok"
        assert await operation.wait() is None
        assert operation.done
