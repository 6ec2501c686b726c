"""Skill manifest schema and parsing.

This module defines Pydantic models for SKILL.md manifests and provides
utilities for extracting, parsing and rendering YAML front matter.

The SKILL.md format follows this structure:
```yaml
---
name: weather
version: 1.0.0
description: Look up current weather
entry_point: weather.wasm
capabilities:
  - network:api.weather.com
resource_limits:
  fuel_budget: 1000000
  memory_limit_bytes: 16777216
  wall_clock_timeout_ms: 5000
---

# Weather
Full documentation for the tool...
```

Parsing is strict: unknown keys, duplicate keys and missing resource limits
are all rejected, and every rejection names the offending field.
"""

import re
from collections.abc import Hashable
from pathlib import Path
from typing import Annotated, Any

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_serializer,
    field_validator,
)

from skillbox.skills.capabilities import Capability, parse_capability
from skillbox.skills.errors import ManifestError, SkillSecurityError
from skillbox.skills.security import (
    is_semver,
    resolve_entry_point,
    sanitize_skill_name,
    validate_entry_point,
)

MANIFEST_FILENAME = "SKILL.md"

U64_MAX = 2**64 - 1
U32_MAX = 2**32 - 1

_FRONTMATTER_PATTERN = re.compile(r"^---\s*\n(.*?)\n---\s*\n(.*)", re.DOTALL)


class ResourceLimits(BaseModel):
    """Per-invocation resource ceilings. All three are required and non-zero."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    fuel_budget: Annotated[int, Field(strict=True, gt=0, le=U64_MAX)]
    memory_limit_bytes: Annotated[int, Field(strict=True, gt=0, le=U64_MAX)]
    wall_clock_timeout_ms: Annotated[int, Field(strict=True, gt=0, le=U32_MAX)]


class SkillManifest(BaseModel):
    """Pydantic model for a skill's SKILL.md.

    Required fields:
        name: Skill identifier (alphanumeric + hyphens/underscores, max 64 chars)
        version: Semantic version (e.g., "1.0.0")
        description: One-line description (max 500 chars)
        entry_point: Relative path to the compiled .wasm module
        capabilities: Tagged capability strings (may be empty)
        resource_limits: Fuel, memory and wall-clock ceilings

    Optional fields:
        author: Author name

    The markdown body of SKILL.md becomes ``documentation``; it is not a
    front matter key.

    Example:
        >>> manifest = parse_manifest(Path("weather/SKILL.md").read_bytes())
        >>> manifest.resource_limits.fuel_budget
        1000000
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(..., min_length=1, max_length=64)
    version: Annotated[str, Field(strict=True)]
    description: str = Field(..., min_length=1, max_length=500)
    entry_point: str
    capabilities: frozenset[Capability]
    resource_limits: ResourceLimits
    author: str | None = None

    # Markdown body (not in YAML, extracted separately)
    documentation: str = ""

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        try:
            return sanitize_skill_name(v)
        except SkillSecurityError as e:
            raise ValueError(str(e)) from None

    @field_validator("version")
    @classmethod
    def validate_version(cls, v: str) -> str:
        if not is_semver(v):
            raise ValueError(f"'{v}' is not a semantic version")
        return v

    @field_validator("description")
    @classmethod
    def validate_description(cls, v: str) -> str:
        """Descriptions double as the tool's one-liner, so they stay on one line."""
        if "\n" in v or "\r" in v:
            raise ValueError("description must be a single line")
        if not v.strip():
            raise ValueError("description must not be blank")
        return v

    @field_validator("entry_point")
    @classmethod
    def validate_entry_point(cls, v: str) -> str:
        try:
            return validate_entry_point(v)
        except SkillSecurityError as e:
            raise ValueError(str(e)) from None

    @field_validator("capabilities", mode="before")
    @classmethod
    def parse_capability_tags(cls, v: Any) -> Any:
        """Turn tagged strings into typed capabilities; 'none' contributes nothing."""
        if v is None:
            raise ValueError("capabilities must be a list (use [] for none)")
        if isinstance(v, str) or not isinstance(v, (list, tuple, set, frozenset)):
            raise ValueError("capabilities must be a list of tagged strings")

        parsed = []
        for index, item in enumerate(v):
            if not isinstance(item, str):
                raise ValueError(f"[{index}] expected a tagged string, got {type(item).__name__}")
            try:
                capability = parse_capability(item)
            except ValidationError as e:
                raise ValueError(f"[{index}] '{item}': {e.errors()[0]['msg']}") from None
            except ValueError as e:
                raise ValueError(f"[{index}] {e}") from None
            if capability is not None:
                parsed.append(capability)
        return parsed

    @field_validator("documentation")
    @classmethod
    def strip_documentation(cls, v: str) -> str:
        return v.strip()

    @field_serializer("capabilities")
    def serialize_capabilities(self, capabilities: frozenset) -> list[str]:
        return sorted(cap.tag for cap in capabilities)

    @property
    def qualified_name(self) -> str:
        """name@version, used in logs and errors."""
        return f"{self.name}@{self.version}"


class _UniqueKeyLoader(yaml.SafeLoader):
    """SafeLoader that rejects duplicate mapping keys instead of keeping the last."""

    def construct_mapping(self, node, deep=False):
        seen = set()
        for key_node, _ in node.value:
            key = self.construct_object(key_node, deep=deep)
            if isinstance(key, Hashable):
                if key in seen:
                    raise ManifestError(str(key), "duplicate key in front matter")
                seen.add(key)
        return super().construct_mapping(node, deep=deep)


def extract_yaml_frontmatter(content: str) -> tuple[dict[str, Any], str]:
    """Extract YAML front matter from SKILL.md content.

    Args:
        content: Full SKILL.md file content

    Returns:
        Tuple of (yaml_data, markdown_body)

    Raises:
        ManifestError: If YAML front matter is missing, malformed or has duplicate keys
    """
    match = _FRONTMATTER_PATTERN.match(content)
    if not match:
        raise ManifestError(
            "front_matter", "SKILL.md must start with YAML front matter delimited by '---' markers"
        )

    yaml_content = match.group(1)
    markdown_content = match.group(2).strip()

    try:
        yaml_data = yaml.load(yaml_content, Loader=_UniqueKeyLoader)
    except yaml.YAMLError as e:
        raise ManifestError("front_matter", f"invalid YAML: {e}") from None

    if not isinstance(yaml_data, dict):
        raise ManifestError("front_matter", "YAML front matter must be a mapping")

    return yaml_data, markdown_content


def parse_manifest(raw: bytes | str, *, skill_dir: Path | None = None) -> SkillManifest:
    """Parse and validate SKILL.md content.

    Args:
        raw: SKILL.md content, as bytes (must be UTF-8) or text
        skill_dir: Skill directory; when given, the entry point must exist
            inside it and be readable

    Returns:
        Validated SkillManifest

    Raises:
        ManifestError: Naming the first offending field
    """
    if isinstance(raw, bytes):
        try:
            content = raw.decode("utf-8")
        except UnicodeDecodeError:
            raise ManifestError(MANIFEST_FILENAME, "must be UTF-8 encoded") from None
    else:
        content = raw

    data, body = extract_yaml_frontmatter(content)

    if "documentation" in data:
        raise ManifestError(
            "documentation", "documentation is the markdown body, not a front matter key"
        )
    data = {str(key): value for key, value in data.items()}
    data["documentation"] = body

    try:
        manifest = SkillManifest.model_validate(data)
    except ValidationError as e:
        error = e.errors()[0]
        field = ".".join(str(part) for part in error["loc"]) or "front_matter"
        raise ManifestError(field, _strip_prefix(error["msg"])) from None

    if skill_dir is not None:
        _check_entry_point(Path(skill_dir), manifest.entry_point)

    return manifest


def _strip_prefix(message: str) -> str:
    # pydantic prefixes messages from custom validators with "Value error, "
    return message.removeprefix("Value error, ")


def _check_entry_point(skill_dir: Path, entry_point: str) -> None:
    try:
        path = resolve_entry_point(skill_dir, entry_point)
    except SkillSecurityError as e:
        raise ManifestError("entry_point", str(e)) from None

    if not path.is_file():
        raise ManifestError("entry_point", f"'{entry_point}' does not exist in {skill_dir}")
    try:
        with open(path, "rb") as f:
            f.read(1)
    except OSError as e:
        raise ManifestError("entry_point", f"'{entry_point}' cannot be read: {e.strerror}") from None


def serialize_manifest(manifest: SkillManifest) -> str:
    """Render a manifest back to SKILL.md text.

    parse_manifest(serialize_manifest(m)) == m for every valid manifest.
    """
    data = manifest.model_dump(mode="json", exclude={"documentation"}, exclude_none=True)
    front_matter = yaml.safe_dump(
        data, sort_keys=False, allow_unicode=True, default_flow_style=False
    )
    return f"---\n{front_matter}---\n\n{manifest.documentation}\n"


def parse_skill_manifest(skill_dir: Path) -> SkillManifest:
    """Parse SKILL.md from a skill directory.

    Args:
        skill_dir: Path to skill directory containing SKILL.md

    Returns:
        Parsed SkillManifest with its entry point checked against the directory

    Raises:
        ManifestError: If SKILL.md is missing, malformed, or invalid
    """
    manifest_path = Path(skill_dir) / MANIFEST_FILENAME

    if not manifest_path.is_file():
        raise ManifestError(MANIFEST_FILENAME, f"not found in {skill_dir}")

    return parse_manifest(manifest_path.read_bytes(), skill_dir=Path(skill_dir))
