"""
Settings model — engine tuning and path variables.

Loaded from ``berets.yml`` (see ``berets.core.config.loader``).  Every
field has a default so a missing file means a usable configuration.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator

DEFAULT_VARS: dict[str, str] = {
    "bin_dir": "/usr/local/bin",
    "share_dir": "/usr/local/share/theblackberets",
    "profile_d": "/etc/profile.d",
    "etc_profile": "/etc/profile",
    "skel_bashrc": "/etc/skel/.bashrc",
    "root_bashrc": "/root/.bashrc",
    "starship_dir": "/etc/starship",
    "zsh_dir": "/etc/zsh",
    "nix_conf_dir": "/etc/nix",
    "nix_root": "/nix",
    "apk_repositories": "/etc/apk/repositories",
    "alpine_release": "/etc/alpine-release",
    "alpine_mirror": "http://dl-cdn.alpinelinux.org/alpine",
    "site_url": "https://theblackberets.github.io",
    "mirror_url": "https://raw.githubusercontent.com/theblackberets/theblackberets.github.io/main",
    "flake_dir": "/usr/local/share/theblackberets",
    "localai_port": "8080",
}


class Settings(BaseModel):
    """Engine configuration."""

    probe_timeout: float = 10.0
    apply_timeout: float = 300.0
    grace_period: float = 5.0
    probe_retries: int = 0          # retry budget for Indeterminate probes
    retry_delay: float = 1.0
    state_dir: str = "/var/lib/berets"
    catalog_dir: str | None = None  # override directory for provision.yml / teardown.yml
    vars: dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_VARS))

    @field_validator("vars", mode="before")
    @classmethod
    def _stringify_vars(cls, value: Any) -> Any:
        # YAML turns ports and versions into numbers
        if isinstance(value, dict):
            return {str(k): str(v) for k, v in value.items()}
        return value

    def model_post_init(self, __context: object) -> None:
        # user vars extend the defaults rather than replacing them
        merged = dict(DEFAULT_VARS)
        merged.update(self.vars)
        self.vars = merged

    @property
    def state_path(self) -> Path:
        return Path(self.state_dir).expanduser()
