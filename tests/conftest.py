"""Shared test fixtures for all tests.

This file imports and re-exports fixtures from the fixtures/ module so they
are discovered by pytest while staying organized by component.
"""

from tests.fixtures.config import clean_skillbox_env, test_settings, workspace  # noqa: F401
from tests.fixtures.sandbox import (  # noqa: F401
    bridge,
    env_delegate,
    module_loader,
    runtime,
    runtime_factory,
    skill_registry,
    spy_filesystem,
    spy_network,
)
