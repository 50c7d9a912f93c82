"""
tally.config — YAML Configuration Loader
=========================================

Reads ``config.yaml`` for the deployment's identity and reward policy.
Secrets (database URL, JWT secret, payment gateway key) never live here;
they come from the environment (``.env``).

Usage::

    from tally.config import load_config

    cfg = load_config()               # reads ./config.yaml by default
    print(cfg.share_reward_points)    # 10
    print(cfg.share_verification)     # "auto"
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml

from tally.engine.sharing import SharePolicy, VerificationMode


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class TallyConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Identity
    community_name: str

    # API
    api_port: int

    # Share rewards
    share_reward_points: int = 10
    share_verification: VerificationMode = VerificationMode.AUTO

    @property
    def share_policy(self) -> SharePolicy:
        return SharePolicy(
            reward_points=self.share_reward_points,
            mode=self.share_verification,
        )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> TallyConfig:
    """Read *path* and return a :class:`TallyConfig` instance.

    Parameters
    ----------
    path:
        Filesystem path to the YAML configuration file.
        Defaults to ``config.yaml`` in the current working directory.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If a required key is missing from the YAML file.
    ValueError
        If ``share_verification`` is not ``auto``/``manual`` or the share
        reward is not a positive integer.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh)

    reward = int(raw.get("share_reward_points", 10))
    if reward <= 0:
        raise ValueError(f"share_reward_points must be positive, got {reward}")

    return TallyConfig(
        community_name=raw["community_name"],
        api_port=int(raw["api_port"]),
        share_reward_points=reward,
        share_verification=VerificationMode(raw.get("share_verification", "auto")),
    )
