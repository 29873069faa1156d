import copy
import yaml
from pathlib import Path
from typing import Any, Dict

# Default configuration if file is missing
DEFAULT_CONFIG = {
    "app": {
        "name": "Disk Sentry",
        "version": "1.0.0"
    },
    "engine": {
        "timeout_ms": None,          # None waits forever
        "poll_ceiling_s": 4.0,
        "poll_interval_ms": 250,
        "event_within_s": 2,
        "listener_slice_ms": 500,
        "first_volume_only": False
    },
    "monitor": {
        "wait_slice_ms": 1000,
        "retry_delay_s": 5
    },
    "wmi": {
        "namespace": "root/cimv2",
        "storage_namespace": "root/Microsoft/Windows/Storage"
    },
    "logging": {
        "level": "INFO",
        "console_output": True
    }
}

def deep_update(d: Dict[str, Any], u: Dict[str, Any]) -> Dict[str, Any]:
    for k, v in u.items():
        if isinstance(v, dict):
            d[k] = deep_update(d.get(k, {}), v)
        else:
            d[k] = v
    return d

def load_config(config_path: str = "config.yaml") -> Dict[str, Any]:
    """
    Load configuration from a YAML file.
    Falls back to defaults if file is missing or invalid.
    """
    # project root: disk_sentry/core/../../
    base_dir = Path(__file__).resolve().parent.parent.parent
    file_path = base_dir / config_path

    if not file_path.exists():
        return copy.deepcopy(DEFAULT_CONFIG)

    try:
        with open(file_path, "r") as f:
            config = yaml.safe_load(f)
            if not config or not isinstance(config, dict):
                return copy.deepcopy(DEFAULT_CONFIG)

            return deep_update(copy.deepcopy(DEFAULT_CONFIG), config)

    except Exception as e:
        print(f"Error loading config: {e}")
        return copy.deepcopy(DEFAULT_CONFIG)

# Global config instance
config = load_config()
