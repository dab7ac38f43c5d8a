"""
VM Assess - Configuration Management

Supports loading configuration from:
1. YAML config file (--config)
2. Environment variables (VMA_*)
3. Command-line arguments (highest priority)

Config file example:
```yaml
output: "./assessments"
log_level: INFO
parallel_vms: 4

subscriptions:
  - "xxxxxxxx-xxxx-xxxx-xxxx-xxxxxxxxxxxx"
  - "Production"
regions:
  - eastus
  - westeurope
```
"""
import logging
import os
import re
import stat
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)


# Default config file locations (checked in order)
DEFAULT_CONFIG_PATHS = [
    './vma-config.yaml',
    './vma-config.yml',
    '~/.vma/config.yaml',
    '~/.vma/config.yml',
]

# Mapping from config keys to env vars
ENV_VAR_MAPPING = {
    'output': 'VMA_OUTPUT',
    'log_level': 'VMA_LOG_LEVEL',
    'subscriptions': 'VMA_SUBSCRIPTIONS',
    'regions': 'VMA_REGIONS',
    'parallel_vms': 'VMA_PARALLEL_VMS',
}

LIST_KEYS = ('subscriptions', 'regions')
INT_KEYS = ('parallel_vms',)


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


def _split_list(value: Any) -> List[str]:
    """Accept a list or a comma-separated string."""
    if isinstance(value, str):
        return [v.strip() for v in value.split(',') if v.strip()]
    return [str(v).strip() for v in value or [] if str(v).strip()]


def _normalize(config: Dict[str, Any]) -> Dict[str, Any]:
    """Coerce list and integer keys to their types."""
    result = dict(config)
    for key in LIST_KEYS:
        if key in result and result[key] is not None:
            result[key] = _split_list(result[key])
    for key in INT_KEYS:
        if key in result and result[key] is not None:
            try:
                result[key] = int(result[key])
            except (TypeError, ValueError):
                raise ValueError(f"Config value for {key} must be an integer, got {result[key]!r}")
    return result


def load_config_file(config_path: str) -> Dict[str, Any]:
    """Load configuration from a YAML file."""
    path = Path(config_path).expanduser()

    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    # Security check: warn if config file has loose permissions
    file_mode = path.stat().st_mode
    if file_mode & (stat.S_IRWXG | stat.S_IRWXO):
        logger.warning(f"Config file {config_path} has loose permissions. "
                       f"Consider: chmod 600 {config_path}")

    logger.info(f"Loading config from {path}")

    with open(path) as f:
        config = yaml.safe_load(f) or {}

    if not isinstance(config, dict):
        raise ValueError(f"Config file {config_path} must contain a mapping")

    return _normalize(_substitute_env_vars(config))


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
        if value is not None:
            config[config_key] = value

    return _normalize(config)


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
    arg_mapping = {
        'output': 'output',
        'log_level': 'log_level',
        'subscription': 'subscriptions',
        'regions': 'regions',
        'parallel_vms': 'parallel_vms',
    }

    config: Dict[str, Any] = {}
    for arg_name, config_key in arg_mapping.items():
        value = getattr(args, arg_name, None)
        if value is not None and value != []:
            config[config_key] = value

    return _normalize(config)


def config_to_args(config: Dict[str, Any], args) -> None:
    """Apply merged config values back onto the argparse args object."""
    if 'output' in config:
        args.output = config['output']
    if 'log_level' in config:
        args.log_level = config['log_level']
    if 'subscriptions' in config:
        args.subscription = config['subscriptions']
    if 'regions' in config:
        args.regions = config['regions']
    if 'parallel_vms' in config:
        args.parallel_vms = config['parallel_vms']


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
    return '''# VM Assess Configuration
#
# Environment variable substitution supported:
#   ${VAR_NAME}           - required env var
#   ${VAR_NAME:-default}  - env var with default value

# Output directory (or https://<account>.blob.core.windows.net/<container> URL)
output: "./assessments"

# Logging level: DEBUG, INFO, WARNING, ERROR
log_level: INFO

# Number of VMs enriched concurrently within a subscription (1 = serial)
parallel_vms: 1

# Subscriptions to assess, by id or display name
# (default: all enabled subscriptions)
# subscriptions:
#   - "xxxxxxxx-xxxx-xxxx-xxxx-xxxxxxxxxxxx"
#   - "Production"

# Only report VMs in these regions (default: all regions)
# regions:
#   - eastus
#   - westeurope
'''
