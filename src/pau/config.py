from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any, Dict, List, Optional, Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from tomlkit import dumps as toml_dumps

from .catalog import (
    auto_select_container,
    auto_select_layout,
    layout_for,
    parse_container,
    parse_format,
    parse_quality,
)


DEFAULT_CONFIG_PATH = Path("~/.config/python-audio-upmixer/config.toml").expanduser()
ENV_PREFIX = "PAU_"


class PauSettings(BaseSettings):
    """Global settings for python-audio-upmixer.

    Priority (lowest -> highest):
    - Class defaults below
    - TOML file at `config_path` (default: ~/.config/python-audio-upmixer/config.toml)
    - Environment variables with prefix PAU_
    - CLI overrides passed to `load(overrides=...)`
    """

    # Logging
    log_level: str = Field(default="INFO", description="Console log level")
    log_json: Optional[str] = Field(default=None, description="Path for structured JSON log file")

    # Run defaults
    output_format: Literal["pcm", "truehd", "dts", "thx"] = Field(default="pcm", description="Output format family")
    channel_layout: str = Field(default="5.1", description="Channel layout label (2.0, 5.1, 7.1, 7.1.4)")
    quality: str = Field(default="24/48", description="PCM bit depth / kHz (ignored by other formats)")
    container: str = Field(default="flac", description="Output container (flac, alac, wav, aiff, dts, truehd)")
    ai_mode: bool = Field(default=False, description="Use stem separation for height layouts")
    output_dir: Optional[str] = Field(default=None, description="Directory for upmixed files")

    # External tools
    ffmpeg_path: Optional[str] = Field(default=None, description="Explicit ffmpeg path, checked before well-known locations")
    separator_cmd: Optional[List[str]] = Field(
        default=None, description="Separator command prefix; None = current python -m demucs"
    )
    separator_model: str = Field(default="htdemucs", description="Demucs model name")
    scratch_dir: Optional[str] = Field(default=None, description="Parent for per-job stem scratch dirs; None = system temp")
    cancel_kill_after_s: Optional[float] = Field(
        default=10.0, description="Seconds after SIGTERM before SIGKILL on cancel; None disables"
    )

    # Config source/path (not persisted as part of effective config when writing)
    config_path: Path = Field(default=DEFAULT_CONFIG_PATH, exclude=True)

    model_config = SettingsConfigDict(env_prefix=ENV_PREFIX, extra="ignore")

    @staticmethod
    def default_config_path() -> Path:
        return DEFAULT_CONFIG_PATH

    @classmethod
    def _toml_file_source(cls, config_path: Path) -> Dict[str, Any]:
        """Read settings from a TOML file if it exists; return dict values.

        Unknown keys are ignored by pydantic via extra="ignore".
        """
        if not config_path or not config_path.exists():
            return {}
        with config_path.open("rb") as f:
            data = tomllib.load(f)
        if not isinstance(data, dict):
            return {}
        return data

    @classmethod
    def load(
        cls,
        *,
        config_path: Optional[Path] = None,
        overrides: Optional[Dict[str, Any]] = None,
    ) -> "PauSettings":
        """Load settings from defaults + TOML + env + CLI overrides.

        - config_path: path to TOML config; defaults to ~/.config/python-audio-upmixer/config.toml
        - overrides: dict of CLI values (None values are ignored)
        """
        cp = config_path or DEFAULT_CONFIG_PATH
        file_values = cls._toml_file_source(cp)
        # Init kwargs outrank env in pydantic-settings; drop file keys the environment sets.
        env_keys = {k.lower() for k in os.environ}
        file_values = {k: v for k, v in file_values.items() if f"{ENV_PREFIX}{k}".lower() not in env_keys}
        base = cls(**file_values)
        if overrides:
            non_none = {k: v for k, v in overrides.items() if v is not None}
        else:
            non_none = {}
        merged = base.model_dump()
        merged.update(non_none)
        settings = cls(**merged)
        settings.config_path = cp
        return settings

    def to_toml(self) -> str:
        """Serialize effective settings (excluding ephemeral fields and unset values) to TOML."""
        data = self.model_dump(exclude={"config_path"}, exclude_none=True)
        return toml_dumps(data)

    def write(self, path: Optional[Path] = None) -> Path:
        """Write effective config to TOML at `path` (or default path). Creates parent dirs.

        Returns the path written.
        """
        target = path or self.config_path or DEFAULT_CONFIG_PATH
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(self.to_toml(), encoding="utf-8")
        return target

    def run_config(self, output_dir: Optional[str] = None):
        """Build a `RunConfig` from these settings, auto-correcting the layout/container."""
        from .handles import ResourceHandle
        from .orchestrator import RunConfig

        fmt = parse_format(self.output_format)
        try:
            layout = layout_for(fmt, self.channel_layout)
        except ValueError:
            layout = None
        try:
            container = parse_container(self.container)
        except ValueError:
            container = None
        out = output_dir or self.output_dir
        return RunConfig(
            output_format=fmt,
            layout=auto_select_layout(fmt, layout),
            quality=parse_quality(self.quality),
            container=auto_select_container(fmt, container),
            ai_mode=self.ai_mode,
            output_dir=ResourceHandle.directory(out) if out else None,
        )


def cli_overrides_from_args(args: Any) -> Dict[str, Any]:
    """Extract known settings keys from argparse Namespace into an overrides dict.

    Unknown keys are ignored; None values are preserved for filtering by `load()`.
    """
    keys = {
        "log_level",
        "log_json",
        "output_format",
        "channel_layout",
        "quality",
        "container",
        "ai_mode",
        "output_dir",
        "ffmpeg_path",
        "separator_model",
        "scratch_dir",
    }
    result: Dict[str, Any] = {}
    for k in keys:
        if hasattr(args, k):
            result[k] = getattr(args, k)
    return result
