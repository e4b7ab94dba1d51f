"""YAML config loading with env var expansion."""

import os
import re
from pathlib import Path

import yaml
from pydantic import ValidationError

from .models import GitHubConfig, RepoTreeConfig


def load_config(cli_path: str | None = None) -> RepoTreeConfig:
    """Load config with resolution order: CLI > project-local > user-global > defaults."""
    config_paths = [
        Path(cli_path) if cli_path else None,
        Path("./repotree.yaml"),
        Path.home() / ".repotree" / "config.yaml",
    ]

    for path in config_paths:
        if path and path.exists():
            try:
                with open(path) as f:
                    raw = yaml.safe_load(f)
                if raw is None:
                    continue
                if not isinstance(raw, dict):
                    raise ValueError(f"Invalid config in {path}: expected a mapping")
                raw = _expand_env_vars(raw)
                return RepoTreeConfig(**raw)
            except yaml.YAMLError as e:
                raise ValueError(f"Invalid YAML in {path}: {e}") from e
            except ValidationError as e:
                raise ValueError(f"Invalid config in {path}: {e}") from e

    return RepoTreeConfig()


def resolve_token(config: GitHubConfig) -> str | None:
    """Inline token wins; otherwise read the env var named by token_env.

    Anonymous access is allowed, just with a much lower rate limit.
    """
    if config.token:
        return config.token
    return os.environ.get(config.token_env) or None


def _expand_env_vars(obj: object) -> object:
    """Recursively expand ${VAR} references in strings."""
    if isinstance(obj, str):
        return re.sub(r"\$\{(\w+)\}", lambda m: os.environ.get(m.group(1), ""), obj)
    elif isinstance(obj, dict):
        return {k: _expand_env_vars(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_expand_env_vars(v) for v in obj]
    return obj


# Default YAML template for `repotree config init`
DEFAULT_CONFIG_TEMPLATE = """\
# repotree.yaml

# Host API
github:
  base_url: "https://api.github.com"   # GitHub Enterprise: https://ghe.example.com/api/v3
  token_env: "GITHUB_TOKEN"            # optional; raises the rate limit
  # token: "${MY_TOKEN}"
  timeout: 30                          # seconds, per HTTP call

# Local tree cache
cache:
  directory: "~/.repotree/cache"
  ttl: 600                             # seconds a snapshot is served without revalidation
  max_age: 2592000                     # sweep records unused for this long (30 days)

# Account sync
sync:
  max_concurrency: 4
  include_forks: true
  include_archived: true

# Logging
log_level: "info"              # debug | info | warn | error
log_format: "text"             # text | json
"""
