"""
cfs - Configuration Management

Supports loading configuration from:
1. YAML config file (--config)
2. Environment variables (CFS_*)
3. Command-line arguments (highest priority)

Config file example:
```yaml
output: "./.cfs"
log_level: INFO
max_workers: 16

aws:
  profile: ${AWS_PROFILE:-default}  # env var substitution
  region: us-east-1

browse:
  port: 3000
```
"""
import logging
import os
import re
import stat
from pathlib import Path
from typing import Any, Dict, Optional

import yaml  # type: ignore[import-untyped]

logger = logging.getLogger(__name__)


# Default config file locations (checked in order)
DEFAULT_CONFIG_PATHS = [
    './cfs-config.yaml',
    './cfs-config.yml',
    '~/.cfs/config.yaml',
    '~/.cfs/config.yml',
]

# Mapping from config keys to env vars
ENV_VAR_MAPPING = {
    'output': 'CFS_OUTPUT',
    'log_level': 'CFS_LOG_LEVEL',
    'log_dir': 'CFS_LOG_DIR',
    'max_workers': 'CFS_MAX_WORKERS',
    'aws.profile': 'CFS_PROFILE',
    'aws.region': 'CFS_REGION',
    'browse.host': 'CFS_BROWSE_HOST',
    'browse.port': 'CFS_BROWSE_PORT',
}

_INT_KEYS = ('max_workers', 'browse.port')


def _substitute_env_vars(value: Any) -> Any:
    """Substitute ${ENV_VAR} patterns in string values."""
    if isinstance(value, str):
        # Pattern: ${VAR_NAME} or ${VAR_NAME:-default}
        pattern = r'\$\{([^}:]+)(?::-([^}]*))?\}'

        def replace(match):
            var_name = match.group(1)
            default = match.group(2) or ''
            return os.environ.get(var_name, default)

        return re.sub(pattern, replace, value)
    elif isinstance(value, dict):
        return {k: _substitute_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [_substitute_env_vars(item) for item in value]
    return value


def _set_nested(data: Dict, key_path: str, value: Any) -> None:
    """Set a nested value in a dict using dot notation."""
    keys = key_path.split('.')
    for key in keys[:-1]:
        data = data.setdefault(key, {})
    data[keys[-1]] = value


def load_config_file(config_path: str) -> Dict[str, Any]:
    """Load configuration from a YAML file."""
    path = Path(config_path).expanduser()

    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    # Warn if config file has loose permissions
    file_mode = path.stat().st_mode
    if file_mode & (stat.S_IRWXG | stat.S_IRWXO):
        logger.warning(f"Config file {config_path} has loose permissions. "
                       f"Consider: chmod 600 {config_path}")

    logger.info(f"Loading config from {path}")

    with open(path) as f:
        config = yaml.safe_load(f) or {}

    return _substitute_env_vars(config)


def find_default_config() -> Optional[str]:
    """Find a config file in default locations."""
    for path in DEFAULT_CONFIG_PATHS:
        expanded = Path(path).expanduser()
        if expanded.exists():
            return str(expanded)
    return None


def load_env_config() -> Dict[str, Any]:
    """Load configuration from environment variables."""
    config: Dict[str, Any] = {}

    for config_key, env_var in ENV_VAR_MAPPING.items():
        value = os.environ.get(env_var)
        if value is None or value == '':
            continue
        if config_key in _INT_KEYS:
            try:
                value = int(value)
            except ValueError:
                logger.warning(f"Ignoring {env_var}={value!r}: not an integer")
                continue
        _set_nested(config, config_key, value)

    return config


def merge_configs(*configs: Dict[str, Any]) -> Dict[str, Any]:
    """Merge multiple config dicts. Later configs override earlier ones."""
    result: Dict[str, Any] = {}

    for config in configs:
        for key, value in config.items():
            if isinstance(value, dict) and isinstance(result.get(key), dict):
                result[key] = merge_configs(result[key], value)
            elif value is not None:
                result[key] = value

    return result


def args_to_config(args) -> Dict[str, Any]:
    """Convert argparse args to config dict format."""
    config: Dict[str, Any] = {}

    arg_mapping = {
        'output': 'output',
        'log_level': 'log_level',
        'log_dir': 'log_dir',
        'max_workers': 'max_workers',
        'profile': 'aws.profile',
        'region': 'aws.region',
        'host': 'browse.host',
        'port': 'browse.port',
    }

    for arg_name, config_key in arg_mapping.items():
        value = getattr(args, arg_name, None)
        if value is not None:
            _set_nested(config, config_key, value)

    return config


def config_to_args(config: Dict[str, Any], args) -> None:
    """Apply config values to argparse args object."""
    for key in ('output', 'log_level', 'log_dir'):
        if key in config:
            setattr(args, key, config[key])
    if config.get('max_workers') is not None:
        args.max_workers = int(config['max_workers'])

    aws_config = config.get('aws') or {}
    if 'profile' in aws_config and not getattr(args, 'profile', None):
        args.profile = aws_config['profile']
    if 'region' in aws_config and not getattr(args, 'region', None):
        args.region = aws_config['region']

    browse_config = config.get('browse') or {}
    if 'host' in browse_config and not getattr(args, 'host', None):
        args.host = browse_config['host']
    if 'port' in browse_config and not getattr(args, 'port', None):
        args.port = int(browse_config['port'])


def load_config(args) -> Dict[str, Any]:
    """
    Load configuration from all sources and merge them.

    Priority (highest to lowest):
    1. CLI arguments
    2. Config file (--config or default location)
    3. Environment variables

    Returns merged config dict.
    """
    configs = []

    env_config = load_env_config()
    if env_config:
        logger.debug("Loaded config from environment variables")
        configs.append(env_config)

    config_path = getattr(args, 'config', None)
    if config_path:
        configs.append(load_config_file(config_path))
    else:
        default_config = find_default_config()
        if default_config:
            logger.info(f"Found default config file: {default_config}")
            configs.append(load_config_file(default_config))

    configs.append(args_to_config(args))

    merged = merge_configs(*configs)
    config_to_args(merged, args)

    return merged


def generate_sample_config() -> str:
    """Generate a sample config file content."""
    return '''# cfs Configuration
#
# Environment variable substitution supported:
#   ${VAR_NAME}           - required env var
#   ${VAR_NAME:-default}  - env var with default value

# Output directory for the mirrored resources
output: "./.cfs"

# Logging level: DEBUG, INFO, WARNING, ERROR
log_level: INFO

# Also write logs to a file in this directory (account IDs are redacted)
# log_dir: "./logs"

# Upper bound on concurrent workers per fan-out (default: one per branch)
# max_workers: 16

aws:
  # AWS CLI profile (uses the default credential chain if not set)
  # profile: my-profile

  # Restrict discovery to a single region (default: all enabled regions)
  # region: us-east-1

browse:
  host: localhost
  port: 3000
'''
