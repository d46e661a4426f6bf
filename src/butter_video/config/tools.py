"""Resolve external tool locations."""

from __future__ import annotations

from collections.abc import Mapping
import os
from pathlib import Path
import shutil

from butter_video.config.schema import PipelineConfig
from butter_video.errors import ToolUnavailable


def resolve_executable(name_or_path: str, tool: str) -> str:
    """Return an absolute executable path, or raise ToolUnavailable.

    Values containing a path separator are checked directly; bare names are
    looked up on PATH.
    """

    if os.sep in name_or_path or (os.altsep and os.altsep in name_or_path):
        candidate = Path(name_or_path).expanduser()
        if not candidate.is_file():
            raise ToolUnavailable(tool, f"no such file: {candidate}")
        if not os.access(candidate, os.X_OK):
            raise ToolUnavailable(tool, f"not executable: {candidate}")
        return str(candidate.resolve())

    found = shutil.which(name_or_path)
    if found is None:
        raise ToolUnavailable(tool, f"{name_or_path!r} not found on PATH")
    return found


def resolve_scorer(config: PipelineConfig, environ: Mapping[str, str]) -> str:
    """Find the scorer binary: explicit override, then env var, then PATH."""

    spec = config.metric_spec
    explicit = config.tools.override_for(spec.name)
    if explicit:
        return resolve_executable(explicit, spec.default_binary)
    from_env = environ.get(spec.env_var)
    if from_env:
        return resolve_executable(from_env, spec.default_binary)
    return resolve_executable(spec.default_binary, spec.default_binary)
