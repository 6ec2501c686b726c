"""Unit tests for skill security validation."""

import pytest

from skillbox.skills.errors import SkillSecurityError
from skillbox.skills.security import (
    canonicalize_path,
    content_hash,
    is_semver,
    normalize_skill_name,
    resolve_entry_point,
    sanitize_skill_name,
    semver_key,
    validate_entry_point,
)

pytestmark = pytest.mark.unit


class TestSanitizeSkillName:
    """Test sanitize_skill_name."""

    @pytest.mark.parametrize("name", ["skill", "my-skill", "my_skill", "Skill_123", "a" * 64])
    def test_valid_names(self, name):
        assert sanitize_skill_name(name) == name

    @pytest.mark.parametrize(
        "name", ["", ".", "..", "~", "../etc", "/abs", "\\win", "has space", "a@b", "a" * 65]
    )
    def test_invalid_names(self, name):
        with pytest.raises(SkillSecurityError):
            sanitize_skill_name(name)


class TestNormalizeSkillName:
    def test_lowercase_and_hyphens(self):
        assert normalize_skill_name("Weather_Lookup") == "weather-lookup"

    def test_validates_first(self):
        with pytest.raises(SkillSecurityError):
            normalize_skill_name("../x")


class TestSemver:
    """Test semantic version validation and ordering."""

    @pytest.mark.parametrize("version", ["0.0.1", "1.2.3", "1.0.0-rc.1", "1.0.0+build.5", "10.20.30-alpha-1"])
    def test_valid(self, version):
        assert is_semver(version)

    @pytest.mark.parametrize("version", ["1", "1.0", "v1.0.0", "1.0.0.0", "01.2.3", "1.0.0-01"])
    def test_invalid(self, version):
        assert not is_semver(version)

    def test_precedence(self):
        versions = ["1.0.0", "1.0.0-rc.1", "0.9.12", "1.0.0-alpha", "1.0.0-alpha.1", "1.0.0-beta", "0.10.0"]
        assert sorted(versions, key=semver_key) == [
            "0.9.12",
            "0.10.0",
            "1.0.0-alpha",
            "1.0.0-alpha.1",
            "1.0.0-beta",
            "1.0.0-rc.1",
            "1.0.0",
        ]

    def test_numeric_identifiers_sort_numerically(self):
        assert semver_key("1.0.0-rc.2") < semver_key("1.0.0-rc.10")

    def test_build_metadata_ignored(self):
        assert semver_key("1.0.0+a") == semver_key("1.0.0+b")

    def test_invalid_raises(self):
        with pytest.raises(ValueError):
            semver_key("latest")


class TestEntryPoint:
    """Test entry point validation."""

    @pytest.mark.parametrize("entry_point", ["module.wasm", "build/out/module.wasm", "./module.wasm"])
    def test_valid(self, entry_point):
        assert validate_entry_point(entry_point) == entry_point

    @pytest.mark.parametrize(
        "entry_point", ["", "  ", "/module.wasm", "../module.wasm", "a/../../b", "C:/x.wasm", "a\\b.wasm"]
    )
    def test_invalid(self, entry_point):
        with pytest.raises(SkillSecurityError):
            validate_entry_point(entry_point)

    def test_resolve_inside(self, tmp_path):
        (tmp_path / "module.wasm").write_bytes(b"")
        assert resolve_entry_point(tmp_path, "module.wasm") == (tmp_path / "module.wasm").resolve()

    def test_resolve_symlink_escape(self, tmp_path):
        skill_dir = tmp_path / "skill"
        skill_dir.mkdir()
        (tmp_path / "outside.wasm").write_bytes(b"")
        (skill_dir / "module.wasm").symlink_to(tmp_path / "outside.wasm")

        with pytest.raises(SkillSecurityError):
            resolve_entry_point(skill_dir, "module.wasm")


class TestPaths:
    def test_canonicalize_resolves_dotdot(self, tmp_path):
        assert canonicalize_path(tmp_path / "a" / ".." / "b") == canonicalize_path(tmp_path / "b")

    def test_content_hash_is_sha256(self):
        assert content_hash(b"") == "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
