"""Test helpers and utilities.

This module provides shared utilities for testing:
- assertions: Custom assertions for tool responses and invocations
- builders: Test data builders for manifests and skill directories
- wat: WebAssembly guest modules and host delegate doubles
"""

from tests.helpers.assertions import (
    assert_error_response,
    assert_outcome,
    assert_success_response,
)
from tests.helpers.builders import build_manifest, build_manifest_text, write_skill_dir

__all__ = [
    "assert_success_response",
    "assert_error_response",
    "assert_outcome",
    "build_manifest",
    "build_manifest_text",
    "write_skill_dir",
]
