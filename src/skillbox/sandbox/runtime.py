"""WASM sandbox runtime for skills.

Every invocation gets a fresh wasmtime Store, Linker and Instance, metered by
fuel, capped by a memory limit and interrupted by an epoch deadline derived
from the skill's wall-clock budget. Compiled modules are the only thing
shared between invocations.

Guest behavior never raises out of invoke(); it ends in an outcome on the
returned Invocation. A cancelled caller stops the guest and the invocation
is disposed before the cancellation propagates.
"""

import asyncio
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Protocol

import wasmtime

from skillbox.audit import InvocationAuditLogger
from skillbox.config.schema import SandboxSettings
from skillbox.sandbox.abi import RUN_EXPORT, GuestContext, GuestFault, build_linker
from skillbox.sandbox.bridge import (
    CapabilityDeniedError,
    HostError,
    HostFunctionBridge,
    InvocationInterrupted,
)
from skillbox.sandbox.cache import ModuleCache
from skillbox.sandbox.epoch import EpochTicker
from skillbox.sandbox.invocation import Invocation, InvocationState
from skillbox.skills.capabilities import CapabilitySet
from skillbox.skills.errors import SkillError
from skillbox.skills.manifest import SkillManifest
from skillbox.skills.security import normalize_skill_name

logger = logging.getLogger(__name__)

CANCELLED_DETAIL = "cancelled by caller"

# Store-wide ceilings on instance resources besides the memory limit
MAX_MEMORIES = 1
MAX_TABLES = 1
# Host bytes per funcref table element
TABLE_ELEMENT_BYTES = 8


class ModuleLoadError(Exception):
    """A skill's module could not be read or compiled. Never retried."""

    def __init__(self, skill: str, reason: str):
        self.skill = skill
        self.reason = reason
        super().__init__(f"Failed to load module for {skill}: {reason}")


class ModuleLoader(Protocol):
    """Resolves the bytes of a skill's entry point module."""

    def load_bytes(self, manifest: SkillManifest) -> bytes: ...


def create_engine() -> wasmtime.Engine:
    """Engine with fuel metering and epoch interruption enabled."""
    config = wasmtime.Config()
    config.consume_fuel = True
    config.epoch_interruption = True
    return wasmtime.Engine(config)


def _skill_key(manifest: SkillManifest) -> tuple[str, str]:
    return normalize_skill_name(manifest.name), manifest.version


class InterruptSignal:
    """Stops one invocation's guest from the event loop thread.

    Host calls poll `event`. A guest spinning in its own code never reaches
    a host call, so cancellation also moves the attached store's epoch
    deadline to the current epoch; the guest traps at its next epoch check.

    Attributes:
        event: Set when the invocation must stop (timeout or cancellation)
        cancelled: True when the caller cancelled rather than the clock
    """

    def __init__(self):
        self.event = threading.Event()
        self.cancelled = False
        self._lock = threading.Lock()
        self._store: wasmtime.Store | None = None

    def attach(self, store: wasmtime.Store) -> None:
        """Register the running store (called on the worker thread)."""
        with self._lock:
            self._store = store
            if self.cancelled:
                store.set_epoch_deadline(0)

    def detach(self) -> None:
        with self._lock:
            self._store = None

    def fire(self, cancelled: bool = False) -> None:
        with self._lock:
            if cancelled:
                self.cancelled = True
                if self._store is not None:
                    self._store.set_epoch_deadline(0)
            self.event.set()


class SandboxRuntime:
    """Run skills inside wasmtime with per-invocation isolation.

    Attributes:
        engine: Shared engine (compiled modules are engine-bound)
        bridge: Host function bridge for gated calls
        module_loader: Source of module bytes
        settings: Sandbox settings
        cache: Compiled module cache

    Example:
        >>> with SandboxRuntime(bridge, DirectoryModuleLoader(skills_dir)) as runtime:
        ...     invocation = await runtime.invoke(manifest, b'{"city": "Oslo"}')
        ...     invocation.outcome
        <InvocationState.COMPLETED: 'completed'>
    """

    def __init__(
        self,
        bridge: HostFunctionBridge,
        module_loader: ModuleLoader,
        settings: SandboxSettings | None = None,
        audit: InvocationAuditLogger | None = None,
    ):
        """Initialize sandbox runtime.

        Args:
            bridge: Host function bridge used by gated host calls
            module_loader: Resolves module bytes for a manifest
            settings: Sandbox settings (defaults apply when omitted)
            audit: Optional audit logger receiving every disposed invocation
        """
        self.bridge = bridge
        self.module_loader = module_loader
        self.settings = settings or SandboxSettings()
        self.audit = audit

        self.engine = create_engine()
        self.cache = ModuleCache(self.engine)
        self.ticker = EpochTicker(self.engine, self.settings.epoch_tick_ms)
        self.ticker.start()

        self._executor = ThreadPoolExecutor(
            max_workers=self.settings.max_concurrent_invocations,
            thread_name_prefix="skillbox-sandbox",
        )
        self._semaphore = asyncio.Semaphore(self.settings.max_concurrent_invocations)
        self._closed = False

    def load(self, manifest: SkillManifest) -> wasmtime.Module:
        """Resolve and compile a skill's module, using the cache when possible.

        Raises:
            ModuleLoadError: If the bytes cannot be read or are not a valid module
        """
        key = _skill_key(manifest)
        module = self.cache.get(key)
        if module is not None:
            return module

        try:
            data = self.module_loader.load_bytes(manifest)
        except (OSError, SkillError) as e:
            raise ModuleLoadError(manifest.qualified_name, str(e)) from e

        try:
            return self.cache.get_or_compile(data, key=key)
        except wasmtime.WasmtimeError as e:
            raise ModuleLoadError(manifest.qualified_name, _first_line(e)) from e

    def evict(self, manifest: SkillManifest) -> bool:
        """Drop the compiled module of a removed skill."""
        return self.cache.evict(_skill_key(manifest))

    async def invoke(self, manifest: SkillManifest, payload: bytes = b"") -> Invocation:
        """Run a skill's `run` export with an input payload.

        Args:
            manifest: Manifest of the skill to run
            payload: Input bytes readable through input_len/read_input

        Returns:
            Disposed Invocation carrying the outcome, output and metering

        Raises:
            RuntimeError: If the runtime is closed
            asyncio.CancelledError: If the caller is cancelled. The guest is
                stopped and the invocation disposed as TIMED_OUT first.
        """
        if self._closed:
            raise RuntimeError("SandboxRuntime is closed")

        loop = asyncio.get_running_loop()
        invocation = Invocation(
            skill_name=manifest.name, skill_version=manifest.version, input=bytes(payload)
        )
        limits = manifest.resource_limits
        timeout = limits.wall_clock_timeout_ms / 1000
        deadline = loop.time() + timeout

        signal = InterruptSignal()
        timer = loop.call_later(timeout, signal.event.set)
        acquired = False

        try:
            try:
                await asyncio.wait_for(self._semaphore.acquire(), timeout=timeout)
            except asyncio.TimeoutError:
                invocation.finish(
                    InvocationState.TIMED_OUT,
                    f"timed out after {limits.wall_clock_timeout_ms} ms waiting for a sandbox slot",
                )
                return invocation
            acquired = True

            await self._run(loop, manifest, invocation, signal, deadline)
        except asyncio.CancelledError:
            signal.fire(cancelled=True)
            invocation.finish(InvocationState.TIMED_OUT, CANCELLED_DETAIL)
            raise
        finally:
            timer.cancel()
            self._dispose(invocation)
            if acquired:
                self._semaphore.release()

        return invocation

    async def _run(
        self,
        loop: asyncio.AbstractEventLoop,
        manifest: SkillManifest,
        invocation: Invocation,
        signal: InterruptSignal,
        deadline: float,
    ) -> None:
        try:
            module = await self._in_worker(loop, signal, self.load, manifest)
        except ModuleLoadError as e:
            logger.info(str(e))
            invocation.finish(InvocationState.LOAD_FAILED, str(e))
            return

        if signal.event.is_set():
            invocation.finish(InvocationState.TIMED_OUT, _interrupt_detail(signal, manifest))
            return
        invocation.transition(InvocationState.LOADED)

        ctx = GuestContext(
            capabilities=CapabilitySet.from_manifest(manifest),
            bridge=self.bridge,
            loop=loop,
            input=invocation.input,
            interrupted=signal.event,
            skill=manifest.qualified_name,
            max_output_bytes=self.settings.max_output_bytes,
            max_log_lines=self.settings.max_log_lines,
        )
        remaining = max(0.0, deadline - loop.time())
        await self._in_worker(
            loop, signal, self._execute, manifest, module, invocation, ctx, signal, remaining
        )

    async def _in_worker(
        self, loop: asyncio.AbstractEventLoop, signal: InterruptSignal, fn, *args
    ):
        """Run fn on the sandbox pool.

        A cancelled caller stops the guest and still waits for the worker to
        return, so the slot and thread are never released while a guest runs.
        """
        future = loop.run_in_executor(self._executor, fn, *args)
        try:
            return await asyncio.shield(future)
        except asyncio.CancelledError:
            signal.fire(cancelled=True)
            while not future.done():
                try:
                    await asyncio.wait([future])
                except asyncio.CancelledError:
                    continue
            raise

    def _execute(
        self,
        manifest: SkillManifest,
        module: wasmtime.Module,
        invocation: Invocation,
        ctx: GuestContext,
        signal: InterruptSignal,
        remaining: float,
    ) -> None:
        """Instantiate and run the guest on a worker thread."""
        limits = manifest.resource_limits

        store = wasmtime.Store(self.engine)
        store.set_fuel(limits.fuel_budget)
        store.set_limits(
            memory_size=limits.memory_limit_bytes,
            table_elements=self._table_elements(limits.memory_limit_bytes),
            tables=MAX_TABLES,
            memories=MAX_MEMORIES,
        )
        store.set_epoch_deadline(self.ticker.ticks_for(remaining))
        signal.attach(store)
        linker = None
        instance = None

        try:
            linker = build_linker(self.engine, ctx)
            try:
                instance = linker.instantiate(store, module)
            except Exception as e:
                outcome, detail = self._classify(ctx, e, _interrupt_detail(signal, manifest))
                invocation.finish(outcome, f"instantiation failed: {detail}")
                return
            invocation.transition(InvocationState.INSTANTIATED)

            run = instance.exports(store).get(RUN_EXPORT)
            invocation.transition(InvocationState.EXECUTING)
            if not isinstance(run, wasmtime.Func):
                invocation.finish(
                    InvocationState.TRAPPED, f"module does not export a '{RUN_EXPORT}' function"
                )
                return

            try:
                run(store)
            except Exception as e:
                outcome, detail = self._classify(ctx, e, _interrupt_detail(signal, manifest))
                invocation.finish(outcome, detail)
                return

            if ctx.fault is not None:
                outcome, detail = self._classify(
                    ctx, ctx.fault, _interrupt_detail(signal, manifest)
                )
                invocation.finish(outcome, detail)
                return

            invocation.output = ctx.output if ctx.output is not None else b""
            invocation.finish(InvocationState.COMPLETED)
        finally:
            signal.detach()
            invocation.fuel_consumed = limits.fuel_budget - store.get_fuel()
            invocation.logs = list(ctx.logs)
            del instance, linker, store

    def _table_elements(self, memory_limit_bytes: int) -> int:
        """Table ceiling for a skill: the configured cap, scaled down for small memory limits."""
        scaled = memory_limit_bytes // TABLE_ELEMENT_BYTES
        return max(1, min(self.settings.max_table_elements, scaled))

    @staticmethod
    def _classify(
        ctx: GuestContext, error: Exception, interrupted_detail: str
    ) -> tuple[InvocationState, str]:
        """Map a failure to an outcome.

        Host functions record their failure on the context before trapping, so
        the context wins over whatever exception wasmtime surfaced. Otherwise
        only the trap code and the interruption flag decide; trap messages
        are guest-influenced and never inspected.
        """
        fault = ctx.fault
        if isinstance(fault, CapabilityDeniedError):
            return InvocationState.CAPABILITY_DENIED, str(fault)
        if isinstance(fault, InvocationInterrupted):
            return InvocationState.TIMED_OUT, interrupted_detail
        if isinstance(fault, HostError):
            return InvocationState.HOST_ERROR, str(fault)
        if isinstance(fault, GuestFault):
            return InvocationState.TRAPPED, str(fault)

        trap_code = getattr(error, "trap_code", None)
        if trap_code == wasmtime.TrapCode.OUT_OF_FUEL:
            return InvocationState.FUEL_EXHAUSTED, "fuel budget exhausted"
        if trap_code == wasmtime.TrapCode.INTERRUPT or ctx.interrupted.is_set():
            return InvocationState.TIMED_OUT, interrupted_detail
        return InvocationState.TRAPPED, _first_line(error)

    def _dispose(self, invocation: Invocation) -> None:
        if invocation.outcome is None:
            logger.error(
                f"Invocation of {invocation.skill_name}@{invocation.skill_version} ended without an outcome"
            )
            return

        invocation.transition(InvocationState.DISPOSED)
        logger.info(
            f"Skill {invocation.skill_name}@{invocation.skill_version}: "
            f"{invocation.outcome.value} (fuel {invocation.fuel_consumed}, "
            f"{invocation.elapsed_ms:.1f} ms)"
        )
        if self.audit is not None:
            self.audit.record(invocation)

    def close(self) -> None:
        """Stop the epoch ticker and worker pool."""
        if self._closed:
            return
        self._closed = True
        self.ticker.stop()
        self._executor.shutdown(wait=False, cancel_futures=True)
        self.cache.clear()

    def __enter__(self) -> "SandboxRuntime":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def _first_line(error: BaseException) -> str:
    text = str(error).strip()
    return text.splitlines()[0] if text else type(error).__name__


def _interrupt_detail(signal: InterruptSignal, manifest: SkillManifest) -> str:
    if signal.cancelled:
        return CANCELLED_DETAIL
    return f"exceeded wall-clock timeout of {manifest.resource_limits.wall_clock_timeout_ms} ms"
