"""Compiled module cache.

Compiling a module is the expensive step of an invocation, so compiled
modules are kept per content hash and shared by every invocation. Stores
and instances are never cached.
"""

import logging
import threading

import wasmtime

from skillbox.skills.security import content_hash

logger = logging.getLogger(__name__)

SkillKey = tuple[str, str]


class ModuleCache:
    """Append-on-miss cache of compiled modules keyed by SHA-256 of the bytes.

    Skills are mapped to the digest of their module so a removed skill can be
    evicted without re-reading its file.
    """

    def __init__(self, engine: wasmtime.Engine):
        self.engine = engine
        self._modules: dict[str, wasmtime.Module] = {}
        self._skills: dict[SkillKey, str] = {}
        self._lock = threading.Lock()

    def get(self, key: SkillKey) -> wasmtime.Module | None:
        """Compiled module for a skill, if one was compiled before."""
        with self._lock:
            digest = self._skills.get(key)
            return self._modules.get(digest) if digest is not None else None

    def get_or_compile(self, data: bytes, key: SkillKey | None = None) -> wasmtime.Module:
        """Return the compiled module for these bytes, compiling on a miss.

        Raises:
            wasmtime.WasmtimeError: If the bytes are not a valid module
        """
        digest = content_hash(data)
        with self._lock:
            module = self._modules.get(digest)

        if module is None:
            # Compile outside the lock; a concurrent compile of the same bytes keeps the first
            compiled = wasmtime.Module(self.engine, data)
            with self._lock:
                module = self._modules.setdefault(digest, compiled)
            logger.debug(f"Compiled module {digest[:12]} ({len(data)} bytes)")

        if key is not None:
            with self._lock:
                self._skills[key] = digest
        return module

    def evict(self, key: SkillKey) -> bool:
        """Drop a skill's module. Returns True if something was evicted."""
        with self._lock:
            digest = self._skills.pop(key, None)
            if digest is None:
                return False
            if digest not in self._skills.values():
                self._modules.pop(digest, None)
        logger.debug(f"Evicted module for {key[0]}@{key[1]}")
        return True

    def clear(self) -> None:
        with self._lock:
            self._modules.clear()
            self._skills.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._modules)

    def __contains__(self, digest: object) -> bool:
        with self._lock:
            return digest in self._modules
