"""WebAssembly sandbox for skills.

SandboxRuntime runs a skill's module with fuel, memory and wall-clock
limits; HostFunctionBridge gates every privileged host call on the skill's
capabilities.
"""

from skillbox.sandbox.bridge import (
    BridgeError,
    CapabilityDeniedError,
    EnvRequest,
    HostError,
    HostFunctionBridge,
    HostResponse,
    HttpMethod,
    HttpRequest,
    InvocationInterrupted,
    ReadFileRequest,
    WriteFileRequest,
)
from skillbox.sandbox.invocation import Invocation, InvocationState
from skillbox.sandbox.runtime import ModuleLoadError, SandboxRuntime

__all__ = [
    "SandboxRuntime",
    "ModuleLoadError",
    "Invocation",
    "InvocationState",
    "HostFunctionBridge",
    "HostResponse",
    "HttpMethod",
    "HttpRequest",
    "ReadFileRequest",
    "WriteFileRequest",
    "EnvRequest",
    "BridgeError",
    "CapabilityDeniedError",
    "HostError",
    "InvocationInterrupted",
]
