"""Unit tests for SandboxRuntime with real wasmtime guests."""

import asyncio
import threading
import time
from types import SimpleNamespace

import pytest
import wasmtime

from skillbox.audit import InvocationAuditLogger
from skillbox.config.schema import SandboxSettings
from skillbox.sandbox.bridge import HostFunctionBridge
from skillbox.sandbox.invocation import InvocationState
from skillbox.sandbox.runtime import CANCELLED_DETAIL, ModuleLoadError, SandboxRuntime
from tests.helpers.assertions import assert_outcome
from tests.helpers.builders import build_manifest
from tests.helpers.wat import (
    ConcurrencyTrackingNetworkDelegate,
    FailingNetworkDelegate,
    SpyNetworkDelegate,
    counter_guest,
    echo_guest,
    env_guest,
    foreign_import_guest,
    grow_guest,
    http_guest,
    log_guest,
    loop_guest,
    out_of_bounds_output_guest,
    output_guest,
    oversized_output_guest,
    read_file_guest,
    second_memory_guest,
    table_grow_guest,
    table_guest,
    unreachable_guest,
    write_file_guest,
)

pytestmark = [pytest.mark.unit, pytest.mark.asyncio]


def skill(module_loader, module: bytes, name: str = "echo", **kwargs):
    manifest = build_manifest(name, **kwargs)
    module_loader.add(manifest, module)
    return manifest


class TestExecution:
    """Successful runs and input/output handling."""

    async def test_echo(self, runtime, module_loader):
        manifest = skill(module_loader, echo_guest())

        invocation = await runtime.invoke(manifest, b'{"city": "Oslo"}')

        assert_outcome(invocation, InvocationState.COMPLETED)
        assert invocation.output == b'{"city": "Oslo"}'
        assert invocation.fuel_consumed > 0
        assert invocation.elapsed_ms > 0

    async def test_empty_output(self, runtime, module_loader):
        manifest = skill(module_loader, echo_guest())
        invocation = await runtime.invoke(manifest)
        assert_outcome(invocation, InvocationState.COMPLETED)
        assert invocation.output == b""

    async def test_fresh_instance_per_call(self, runtime, module_loader):
        """Globals and memory never carry over between invocations."""
        manifest = skill(module_loader, counter_guest())

        first = await runtime.invoke(manifest)
        second = await runtime.invoke(manifest)

        assert first.output == b"11"
        assert second.output == b"11"

    async def test_concurrent_invocations(self, runtime_factory, module_loader):
        runtime = runtime_factory(max_concurrent_invocations=2)
        manifest = skill(module_loader, echo_guest())

        results = await asyncio.gather(
            *(runtime.invoke(manifest, str(i).encode()) for i in range(6))
        )
        assert [result.output for result in results] == [str(i).encode() for i in range(6)]

    async def test_concurrency_capped_at_setting(self, runtime_factory, module_loader):
        """At most max_concurrent_invocations guests run at the same time."""
        network = ConcurrencyTrackingNetworkDelegate(delay=0.2)
        runtime = runtime_factory(
            bridge_override=HostFunctionBridge(network=network), max_concurrent_invocations=2
        )
        manifest = skill(
            module_loader,
            http_guest("https://api.example.com/"),
            capabilities=["network:api.example.com"],
        )

        results = await asyncio.gather(*(runtime.invoke(manifest) for _ in range(6)))

        assert all(result.succeeded for result in results)
        assert len(network.calls) == 6
        assert network.peak == 2

    async def test_guest_logs_captured(self, runtime_factory, module_loader):
        runtime = runtime_factory(max_log_lines=1)
        manifest = skill(module_loader, log_guest("hello", "world"))

        invocation = await runtime.invoke(manifest)
        assert_outcome(invocation, InvocationState.COMPLETED)
        assert invocation.logs == ["info: hello"]


class TestResourceLimits:
    """Fuel, memory and output ceilings."""

    async def test_fuel_exhausted(self, runtime, module_loader):
        manifest = skill(module_loader, loop_guest(), name="spin", fuel_budget=1000)

        invocation = await runtime.invoke(manifest)

        assert_outcome(invocation, InvocationState.FUEL_EXHAUSTED)
        assert invocation.fuel_consumed == 1000

    async def test_runtime_usable_after_fuel_exhaustion(self, runtime, module_loader):
        spin = skill(module_loader, loop_guest(), name="spin", fuel_budget=1000)
        echo = skill(module_loader, echo_guest())

        await runtime.invoke(spin)
        invocation = await runtime.invoke(echo, b"still alive")

        assert_outcome(invocation, InvocationState.COMPLETED)
        assert invocation.output == b"still alive"

    async def test_memory_growth_beyond_limit_denied(self, runtime, module_loader):
        manifest = skill(module_loader, grow_guest(16), memory_limit_bytes=2 * 65536)

        invocation = await runtime.invoke(manifest)

        assert_outcome(invocation, InvocationState.COMPLETED)
        assert invocation.output == b"denied"

    async def test_memory_growth_within_limit(self, runtime, module_loader):
        manifest = skill(module_loader, grow_guest(1))
        invocation = await runtime.invoke(manifest)
        assert invocation.output == b"grown"

    async def test_initial_memory_over_limit(self, runtime, module_loader):
        manifest = skill(module_loader, output_guest("x"), memory_limit_bytes=1000)
        invocation = await runtime.invoke(manifest)
        assert_outcome(invocation, InvocationState.TRAPPED)

    async def test_output_over_limit_traps(self, runtime_factory, module_loader):
        runtime = runtime_factory(max_output_bytes=16)
        manifest = skill(module_loader, oversized_output_guest(32))

        invocation = await runtime.invoke(manifest)

        assert_outcome(invocation, InvocationState.TRAPPED)
        assert "exceeds limit" in invocation.detail

    async def test_second_memory_fails_instantiation(self, runtime, module_loader):
        """The memory limit covers the whole store, so only one memory is allowed."""
        manifest = skill(module_loader, second_memory_guest(), memory_limit_bytes=4 * 65536)

        invocation = await runtime.invoke(manifest)

        assert_outcome(invocation, InvocationState.TRAPPED)
        assert invocation.detail.startswith("instantiation failed")

    async def test_table_over_limit_fails_instantiation(self, runtime, module_loader):
        manifest = skill(module_loader, table_guest(10_000_000), memory_limit_bytes=65536)

        invocation = await runtime.invoke(manifest)

        assert_outcome(invocation, InvocationState.TRAPPED)
        assert invocation.detail.startswith("instantiation failed")

    async def test_table_within_limit(self, runtime, module_loader):
        manifest = skill(module_loader, table_guest(16))
        invocation = await runtime.invoke(manifest)
        assert_outcome(invocation, InvocationState.COMPLETED)
        assert invocation.output == b"ok"

    async def test_table_growth_capped_by_setting(self, runtime_factory, module_loader):
        runtime = runtime_factory(max_table_elements=64)
        greedy = skill(module_loader, table_grow_guest(1000), name="greedy")
        modest = skill(module_loader, table_grow_guest(10), name="modest")

        assert (await runtime.invoke(greedy)).output == b"denied"
        assert (await runtime.invoke(modest)).output == b"grown"

    async def test_table_growth_scaled_to_memory_limit(self, runtime, module_loader):
        """A 64 KiB skill gets far fewer table slots than the configured cap."""
        manifest = skill(module_loader, table_grow_guest(9000), memory_limit_bytes=65536)

        invocation = await runtime.invoke(manifest)

        assert_outcome(invocation, InvocationState.COMPLETED)
        assert invocation.output == b"denied"


class TestTraps:
    """Guest faults end in TRAPPED."""

    async def test_unreachable(self, runtime, module_loader):
        manifest = skill(module_loader, unreachable_guest())
        invocation = await runtime.invoke(manifest)
        assert_outcome(invocation, InvocationState.TRAPPED)

    async def test_out_of_bounds_pointer(self, runtime, module_loader):
        manifest = skill(module_loader, out_of_bounds_output_guest())
        invocation = await runtime.invoke(manifest)
        assert_outcome(invocation, InvocationState.TRAPPED)
        assert "out of bounds" in invocation.detail

    async def test_unknown_import_fails_instantiation(self, runtime, module_loader):
        manifest = skill(module_loader, foreign_import_guest())
        invocation = await runtime.invoke(manifest)
        assert_outcome(invocation, InvocationState.TRAPPED)
        assert invocation.detail.startswith("instantiation failed")

    @pytest.mark.parametrize(
        "message", ["guest raised: interrupt handler missing", "all fuel consumed by parser"]
    )
    async def test_trap_text_does_not_decide_outcome(self, message):
        """Only trap codes and the interruption flag map to timeout or fuel outcomes."""
        ctx = SimpleNamespace(fault=None, interrupted=threading.Event())

        outcome, detail = SandboxRuntime._classify(ctx, wasmtime.Trap(message), "timed out")

        assert outcome is InvocationState.TRAPPED
        assert message in detail


class TestLoading:
    """Module resolution, compilation and caching."""

    async def test_missing_module(self, runtime):
        invocation = await runtime.invoke(build_manifest("ghost"))
        assert_outcome(invocation, InvocationState.LOAD_FAILED)

    async def test_invalid_module(self, runtime, module_loader):
        manifest = skill(module_loader, b"\0asm\x01\0\0\0garbage")
        invocation = await runtime.invoke(manifest)
        assert_outcome(invocation, InvocationState.LOAD_FAILED)

    async def test_load_raises_module_load_error(self, runtime, module_loader):
        with pytest.raises(ModuleLoadError):
            runtime.load(build_manifest("ghost"))

    async def test_compiled_once(self, runtime, module_loader):
        manifest = skill(module_loader, echo_guest())

        await runtime.invoke(manifest)
        await runtime.invoke(manifest)

        assert module_loader.loads == 1
        assert len(runtime.cache) == 1

    async def test_evict(self, runtime, module_loader):
        manifest = skill(module_loader, echo_guest())
        await runtime.invoke(manifest)

        assert runtime.evict(manifest) is True
        assert runtime.evict(manifest) is False
        await runtime.invoke(manifest)
        assert module_loader.loads == 2

    async def test_closed_runtime(self, runtime_factory, module_loader):
        runtime = runtime_factory()
        runtime.close()
        with pytest.raises(RuntimeError):
            await runtime.invoke(skill(module_loader, echo_guest()))


class TestHostCalls:
    """Gated host functions through the bridge."""

    async def test_network_denied_without_capability(self, runtime, module_loader, spy_network):
        manifest = skill(module_loader, http_guest("https://api.example.com/data"))

        invocation = await runtime.invoke(manifest)

        assert_outcome(invocation, InvocationState.CAPABILITY_DENIED)
        assert invocation.detail == "capability not permitted: network:api.example.com:443"
        assert spy_network.calls == []

    async def test_network_permitted(self, runtime, module_loader, spy_network):
        manifest = skill(
            module_loader,
            http_guest("https://api.example.com/data"),
            capabilities=["network:api.example.com"],
        )

        invocation = await runtime.invoke(manifest)

        assert_outcome(invocation, InvocationState.COMPLETED)
        assert invocation.output == b'{"ok": true}'
        assert [call.url for call in spy_network.calls] == ["https://api.example.com/data"]

    async def test_host_failure(self, runtime_factory, module_loader):
        runtime = runtime_factory(
            bridge_override=HostFunctionBridge(network=FailingNetworkDelegate(OSError("unreachable")))
        )
        manifest = skill(
            module_loader,
            http_guest("https://api.example.com/"),
            capabilities=["network:api.example.com"],
        )

        invocation = await runtime.invoke(manifest)

        assert_outcome(invocation, InvocationState.HOST_ERROR)
        assert "OSError" in invocation.detail

    async def test_invalid_url_is_host_error(self, runtime, module_loader, spy_network):
        manifest = skill(module_loader, http_guest("ftp://example.com/"), capabilities=["network:example.com"])
        invocation = await runtime.invoke(manifest)
        assert_outcome(invocation, InvocationState.HOST_ERROR)
        assert spy_network.calls == []

    async def test_unsupported_host_name_is_host_error(self, runtime, module_loader, spy_network):
        manifest = skill(
            module_loader,
            http_guest("https://my_host.example.com/"),
            capabilities=["network:*.example.com"],
        )

        invocation = await runtime.invoke(manifest)

        assert_outcome(invocation, InvocationState.HOST_ERROR)
        assert "unsupported host name" in invocation.detail
        assert spy_network.calls == []

    async def test_internationalized_host(self, runtime, module_loader, spy_network):
        manifest = skill(
            module_loader,
            http_guest("https://bücher.example/katalog"),
            capabilities=["network:xn--bcher-kva.example"],
        )

        invocation = await runtime.invoke(manifest)

        assert_outcome(invocation, InvocationState.COMPLETED)
        assert len(spy_network.calls) == 1

    async def test_env(self, runtime, module_loader):
        manifest = skill(module_loader, env_guest("WEATHER_API_KEY"), capabilities=["env:WEATHER_API_KEY"])
        invocation = await runtime.invoke(manifest)
        assert invocation.output == b"secret-key"

    async def test_env_unset(self, runtime, module_loader):
        manifest = skill(module_loader, env_guest("NOT_SET"), capabilities=["env:NOT_SET"])
        invocation = await runtime.invoke(manifest)
        assert_outcome(invocation, InvocationState.COMPLETED)
        assert invocation.output == b"unset"

    async def test_env_denied(self, runtime, module_loader, env_delegate):
        manifest = skill(module_loader, env_guest("WEATHER_API_KEY"))
        invocation = await runtime.invoke(manifest)
        assert_outcome(invocation, InvocationState.CAPABILITY_DENIED)
        assert env_delegate.calls == []

    async def test_read_file(self, runtime, module_loader, tmp_path):
        (tmp_path / "data.txt").write_text("file contents")
        manifest = skill(
            module_loader,
            read_file_guest(str(tmp_path / "data.txt")),
            capabilities=[f"filesystem:read:{tmp_path}"],
        )

        invocation = await runtime.invoke(manifest)
        assert invocation.output == b"file contents"

    async def test_read_missing_file_is_host_error(self, runtime, module_loader, tmp_path):
        manifest = skill(
            module_loader,
            read_file_guest(str(tmp_path / "missing.txt")),
            capabilities=[f"filesystem:read:{tmp_path}"],
        )
        invocation = await runtime.invoke(manifest)
        assert_outcome(invocation, InvocationState.HOST_ERROR)

    async def test_relative_path_is_host_error(self, runtime, module_loader, spy_filesystem):
        manifest = skill(module_loader, read_file_guest("data.txt"), capabilities=["filesystem:read:/"])
        invocation = await runtime.invoke(manifest)
        assert_outcome(invocation, InvocationState.HOST_ERROR)
        assert spy_filesystem.reads == []

    async def test_write_file(self, runtime, module_loader, tmp_path):
        target = tmp_path / "out.txt"
        manifest = skill(
            module_loader,
            write_file_guest(str(target), "written"),
            capabilities=[f"filesystem:write:{tmp_path}"],
        )

        invocation = await runtime.invoke(manifest)
        assert_outcome(invocation, InvocationState.COMPLETED)
        assert target.read_text() == "written"

    async def test_write_with_read_capability_denied(self, runtime, module_loader, tmp_path):
        target = tmp_path / "out.txt"
        manifest = skill(
            module_loader,
            write_file_guest(str(target), "written"),
            capabilities=[f"filesystem:read:{tmp_path}"],
        )

        invocation = await runtime.invoke(manifest)
        assert_outcome(invocation, InvocationState.CAPABILITY_DENIED)
        assert not target.exists()


@pytest.mark.slow
class TestWallClock:
    """Wall-clock timeouts."""

    async def test_epoch_interrupts_busy_loop(self, runtime, module_loader):
        manifest = skill(
            module_loader, loop_guest(), name="spin", fuel_budget=10**15, wall_clock_timeout_ms=200
        )

        invocation = await runtime.invoke(manifest)

        assert_outcome(invocation, InvocationState.TIMED_OUT)
        assert invocation.elapsed_ms < 2000

    async def test_blocked_host_call_interrupted(self, runtime_factory, module_loader):
        slow = SpyNetworkDelegate(delay=10)
        runtime = runtime_factory(bridge_override=HostFunctionBridge(network=slow))
        manifest = skill(
            module_loader,
            http_guest("https://api.example.com/"),
            capabilities=["network:api.example.com"],
            wall_clock_timeout_ms=100,
        )

        invocation = await runtime.invoke(manifest)

        assert_outcome(invocation, InvocationState.TIMED_OUT)
        assert invocation.elapsed_ms < 2000
        assert len(slow.calls) == 1

    async def test_waiting_for_slot_times_out(self, runtime_factory, module_loader):
        slow = SpyNetworkDelegate(delay=1.0)
        runtime = runtime_factory(
            bridge_override=HostFunctionBridge(network=slow), max_concurrent_invocations=1
        )
        busy = skill(
            module_loader,
            http_guest("https://api.example.com/"),
            name="busy",
            capabilities=["network:api.example.com"],
        )
        quick = skill(module_loader, echo_guest(), wall_clock_timeout_ms=100)

        busy_task = asyncio.create_task(runtime.invoke(busy))
        await asyncio.sleep(0.05)
        invocation = await runtime.invoke(quick, b"never runs")

        assert_outcome(invocation, InvocationState.TIMED_OUT)
        assert "waiting for a sandbox slot" in invocation.detail
        assert invocation.elapsed_ms < 1000
        assert_outcome(await busy_task, InvocationState.COMPLETED)

    async def test_cancelled_invocation_stops_guest(self, bridge, module_loader, tmp_path):
        """Cancelling the caller stops a spinning guest and disposes the invocation."""
        audit = InvocationAuditLogger(tmp_path / "audit.jsonl")
        spin = skill(
            module_loader, loop_guest(), name="spin", fuel_budget=10**15, wall_clock_timeout_ms=1500
        )
        echo = skill(module_loader, echo_guest())
        settings = SandboxSettings(max_concurrent_invocations=1)

        with SandboxRuntime(bridge, module_loader, settings=settings, audit=audit) as runtime:
            task = asyncio.create_task(runtime.invoke(spin))
            await asyncio.sleep(0.1)

            started = time.monotonic()
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
            assert time.monotonic() - started < 1.0

            entries = audit.read_entries()
            assert [entry["outcome"] for entry in entries] == ["timed_out"]
            assert entries[0]["detail"] == CANCELLED_DETAIL

            # The only slot and worker thread are free again
            follow_up = await asyncio.wait_for(runtime.invoke(echo, b"next"), timeout=1.0)
            assert_outcome(follow_up, InvocationState.COMPLETED)

    async def test_cancelled_while_waiting_for_slot(self, runtime_factory, module_loader):
        slow = SpyNetworkDelegate(delay=0.5)
        runtime = runtime_factory(
            bridge_override=HostFunctionBridge(network=slow), max_concurrent_invocations=1
        )
        busy = skill(
            module_loader,
            http_guest("https://api.example.com/"),
            name="busy",
            capabilities=["network:api.example.com"],
        )
        queued = skill(module_loader, echo_guest())

        busy_task = asyncio.create_task(runtime.invoke(busy))
        await asyncio.sleep(0.05)
        queued_task = asyncio.create_task(runtime.invoke(queued))
        await asyncio.sleep(0.05)
        queued_task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await queued_task
        assert_outcome(await busy_task, InvocationState.COMPLETED)
        assert_outcome(await runtime.invoke(queued, b"after"), InvocationState.COMPLETED)


class TestAudit:
    async def test_invocations_recorded(self, bridge, module_loader, tmp_path):
        audit = InvocationAuditLogger(tmp_path / "audit.jsonl")
        manifest = skill(module_loader, echo_guest())

        with SandboxRuntime(bridge, module_loader, audit=audit) as runtime:
            await runtime.invoke(manifest, b"secret input")

        entries = audit.read_entries()
        assert len(entries) == 1
        assert entries[0]["skill"] == "echo"
        assert entries[0]["outcome"] == "completed"
        assert entries[0]["input_bytes"] == len(b"secret input")
        assert "secret input" not in (tmp_path / "audit.jsonl").read_text()
