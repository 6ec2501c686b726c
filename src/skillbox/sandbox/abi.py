"""Guest ABI: host functions linked into every skill instance.

Guests import these from the "host" module and export `run` (no params, no
results) and `memory`. Data crosses the boundary as (pointer, length) pairs
in the guest's linear memory:

    log(level, ptr, len)
    input_len() -> len                  read_input(ptr)
    set_output(ptr, len)
    http_request(url_ptr, url_len, method, body_ptr, body_len) -> status
    read_file(path_ptr, path_len) -> len
    write_file(path_ptr, path_len, data_ptr, data_len) -> 0
    get_env(key_ptr, key_len) -> len, or -1 when unset
    response_len() -> len               read_response(ptr)

Results of http_request, read_file and get_env are staged as the "response"
and copied out with read_response.

Host functions run on the invocation's worker thread. Gated calls hand the
request to the bridge on the event loop and block until it answers or the
invocation is interrupted. Any failure is recorded on the GuestContext
before the guest is trapped, so the runtime classifies the outcome from the
context rather than from the exception wasmtime re-raises.
"""

import asyncio
import concurrent.futures
import logging
import threading
from dataclasses import dataclass, field

from wasmtime import Engine, FuncType, Linker, Memory, MemoryType, Module, ValType, wat2wasm

from skillbox.sandbox.bridge import (
    BridgeError,
    EnvRequest,
    HostError,
    HostFunctionBridge,
    HostRequest,
    HttpMethod,
    HttpRequest,
    InvocationInterrupted,
    ReadFileRequest,
    WriteFileRequest,
)
from skillbox.skills.capabilities import CapabilitySet

logger = logging.getLogger(__name__)

HOST_MODULE = "host"
RUN_EXPORT = "run"
MEMORY_EXPORT = "memory"

# name -> (param count, result count); every value is i32
HOST_FUNCTIONS: dict[str, tuple[int, int]] = {
    "log": (3, 0),
    "input_len": (0, 1),
    "read_input": (1, 0),
    "set_output": (2, 0),
    "http_request": (5, 1),
    "read_file": (2, 1),
    "write_file": (4, 1),
    "get_env": (2, 1),
    "response_len": (0, 1),
    "read_response": (1, 0),
}

LOG_LEVELS = ("trace", "debug", "info", "warn", "error")

# How often a blocked host call checks the interruption flag
POLL_INTERVAL = 0.01

WASM_MAGIC = b"\0asm"
MEMORY_SECTION = 5


class GuestFault(Exception):
    """The guest broke the ABI contract (bad pointer, oversized output, ...)."""

    pass


@dataclass
class GuestContext:
    """Per-invocation state shared by the host functions.

    Attributes:
        capabilities: Capabilities of the invoked skill
        bridge: Gate for privileged requests
        loop: Event loop that owns the delegates
        input: Input payload for the guest
        interrupted: Set when the wall-clock budget runs out
        skill: name@version for logs
        max_output_bytes: Largest output the guest may set
        max_log_lines: Guest log lines kept
        output: Output set by the guest
        response: Staged result of the last gated call
        logs: Guest log lines
        fault: First failure recorded by a host function
    """

    capabilities: CapabilitySet
    bridge: HostFunctionBridge
    loop: asyncio.AbstractEventLoop
    input: bytes
    interrupted: threading.Event
    skill: str
    max_output_bytes: int
    max_log_lines: int
    output: bytes | None = None
    response: bytes = b""
    logs: list[str] = field(default_factory=list)
    dropped_log_lines: int = 0
    fault: Exception | None = None

    def fail(self, error: Exception) -> Exception:
        """Record the first failure and return it for raising."""
        if self.fault is None:
            self.fault = error
        return error


class GuestAbi:
    """Host function implementations bound to one invocation's context."""

    def __init__(self, ctx: GuestContext):
        self.ctx = ctx

    # Memory helpers

    def _memory(self, caller) -> Memory:
        memory = caller.get(MEMORY_EXPORT)
        if not isinstance(memory, Memory):
            raise self.ctx.fail(GuestFault("guest does not export linear memory"))
        return memory

    def _read(self, caller, ptr: int, length: int) -> bytes:
        memory = self._memory(caller)
        if ptr < 0 or length < 0 or ptr + length > memory.data_len(caller):
            raise self.ctx.fail(
                GuestFault(f"out of bounds memory read at {ptr} (length {length})")
            )
        return bytes(memory.read(caller, ptr, ptr + length))

    def _write(self, caller, ptr: int, data: bytes) -> None:
        memory = self._memory(caller)
        if ptr < 0 or ptr + len(data) > memory.data_len(caller):
            raise self.ctx.fail(
                GuestFault(f"out of bounds memory write at {ptr} (length {len(data)})")
            )
        if data:
            memory.write(caller, data, ptr)

    def _text(self, caller, ptr: int, length: int, what: str) -> str:
        try:
            return self._read(caller, ptr, length).decode("utf-8")
        except UnicodeDecodeError:
            raise self.ctx.fail(HostError(f"{what} is not valid UTF-8")) from None

    # Ungated functions

    def log(self, caller, level: int, ptr: int, length: int) -> None:
        message = self._read(caller, ptr, length).decode("utf-8", errors="replace")
        name = LOG_LEVELS[level] if 0 <= level < len(LOG_LEVELS) else "info"
        if len(self.ctx.logs) < self.ctx.max_log_lines:
            self.ctx.logs.append(f"{name}: {message}")
        else:
            self.ctx.dropped_log_lines += 1
        logger.debug(f"[{self.ctx.skill}] {name}: {message}")

    def input_len(self, caller) -> int:
        return len(self.ctx.input)

    def read_input(self, caller, ptr: int) -> None:
        self._write(caller, ptr, self.ctx.input)

    def set_output(self, caller, ptr: int, length: int) -> None:
        if length > self.ctx.max_output_bytes:
            raise self.ctx.fail(
                GuestFault(f"output of {length} bytes exceeds limit of {self.ctx.max_output_bytes}")
            )
        self.ctx.output = self._read(caller, ptr, length)

    def response_len(self, caller) -> int:
        return len(self.ctx.response)

    def read_response(self, caller, ptr: int) -> None:
        self._write(caller, ptr, self.ctx.response)

    # Gated functions

    def http_request(
        self, caller, url_ptr: int, url_len: int, method: int, body_ptr: int, body_len: int
    ) -> int:
        url = self._text(caller, url_ptr, url_len, "URL")
        body = self._read(caller, body_ptr, body_len) if body_len > 0 else None
        try:
            request = HttpRequest(url=url, method=HttpMethod.from_code(method), body=body)
        except ValueError as e:
            raise self.ctx.fail(HostError(str(e))) from None
        response = self._call(request)
        self.ctx.response = response.body
        return response.status

    def read_file(self, caller, path_ptr: int, path_len: int) -> int:
        path = self._text(caller, path_ptr, path_len, "path")
        response = self._call(self._build(ReadFileRequest, path))
        self.ctx.response = response.body
        return len(response.body)

    def write_file(
        self, caller, path_ptr: int, path_len: int, data_ptr: int, data_len: int
    ) -> int:
        path = self._text(caller, path_ptr, path_len, "path")
        data = self._read(caller, data_ptr, data_len)
        self._call(self._build(WriteFileRequest, path, data))
        self.ctx.response = b""
        return 0

    def get_env(self, caller, key_ptr: int, key_len: int) -> int:
        name = self._text(caller, key_ptr, key_len, "variable name")
        try:
            request = EnvRequest(name=name)
            request.required_capability()
        except ValueError as e:
            raise self.ctx.fail(HostError(str(e))) from None
        response = self._call(request)
        if response.status == -1:
            self.ctx.response = b""
            return -1
        self.ctx.response = response.body
        return len(response.body)

    def _build(self, request_type, path: str, *args) -> HostRequest:
        try:
            return request_type(path, *args)
        except ValueError as e:
            raise self.ctx.fail(HostError(str(e))) from None

    def _call(self, request: HostRequest):
        """Run a gated request on the event loop and wait for it.

        Raises:
            BridgeError: Recorded on the context before raising
        """
        ctx = self.ctx
        if ctx.interrupted.is_set():
            raise ctx.fail(InvocationInterrupted())

        future = asyncio.run_coroutine_threadsafe(
            ctx.bridge.handle(ctx.capabilities, request, skill=ctx.skill), ctx.loop
        )
        while True:
            done, _ = concurrent.futures.wait([future], timeout=POLL_INTERVAL)
            if done:
                break
            if ctx.interrupted.is_set():
                future.cancel()
                raise ctx.fail(InvocationInterrupted())

        try:
            return future.result()
        except BridgeError as e:
            raise ctx.fail(e) from None
        except concurrent.futures.CancelledError:
            raise ctx.fail(InvocationInterrupted()) from None

    def define(self, linker: Linker) -> None:
        """Define every host function on a linker."""
        for name, (params, results) in HOST_FUNCTIONS.items():
            linker.define_func(
                HOST_MODULE,
                name,
                FuncType(
                    [ValType.i32() for _ in range(params)],
                    [ValType.i32() for _ in range(results)],
                ),
                getattr(self, name),
                access_caller=True,
            )


def check_module(module: Module, data: bytes | None = None) -> list[str]:
    """List the ways a compiled module breaks the guest ABI.

    Args:
        module: Compiled module
        data: Bytes the module was compiled from; enables the memory count check

    Returns:
        Problems found; an empty list means the module can be linked and run
    """
    problems = []

    if data is not None:
        memories = defined_memory_count(data)
        if memories > 1:
            problems.append(f"module defines {memories} memories (at most one is allowed)")

    exports = {export.name: export.type for export in module.exports}
    run = exports.get(RUN_EXPORT)
    if not isinstance(run, FuncType):
        problems.append(f"missing '{RUN_EXPORT}' function export")
    elif run.params or run.results:
        problems.append(f"'{RUN_EXPORT}' must take no parameters and return nothing")
    if not isinstance(exports.get(MEMORY_EXPORT), MemoryType):
        problems.append(f"missing '{MEMORY_EXPORT}' export")

    for imported in module.imports:
        label = f"{imported.module}.{imported.name}"
        if imported.module != HOST_MODULE or imported.name not in HOST_FUNCTIONS:
            problems.append(f"unknown import '{label}'")
            continue
        params, results = HOST_FUNCTIONS[imported.name]
        ty = imported.type
        if (
            not isinstance(ty, FuncType)
            or len(ty.params) != params
            or len(ty.results) != results
            or any(str(vt) != "i32" for vt in [*ty.params, *ty.results])
        ):
            problems.append(f"import '{label}' does not match the host signature")

    return problems


def defined_memory_count(data: bytes) -> int:
    """Count the memories a module defines in its memory section.

    Exported memories are visible on a compiled Module, internal ones are
    not, so the count is read from the binary. Text-format modules are
    assembled first.
    """
    if not data.startswith(WASM_MAGIC):
        data = wat2wasm(data)

    offset = 8  # magic and version
    while offset < len(data):
        section_id = data[offset]
        size, offset = _read_uleb128(data, offset + 1)
        if section_id == MEMORY_SECTION:
            count, _ = _read_uleb128(data, offset)
            return count
        offset += size
    return 0


def _read_uleb128(data: bytes, offset: int) -> tuple[int, int]:
    """Decode an unsigned LEB128 value; returns (value, next offset)."""
    value = 0
    shift = 0
    while True:
        byte = data[offset]
        offset += 1
        value |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return value, offset
        shift += 7


def build_linker(engine: Engine, ctx: GuestContext) -> Linker:
    """Fresh linker exposing the guest ABI for one invocation."""
    linker = Linker(engine)
    GuestAbi(ctx).define(linker)
    return linker
