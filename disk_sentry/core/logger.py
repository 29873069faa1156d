import logging
import json
from pathlib import Path
from datetime import datetime
from rich.logging import RichHandler
from rich.console import Console
from platformdirs import user_log_dir
from .config import config

# Setup rich console
console = Console()

class CustomJSONEncoder(json.JSONEncoder):
    def default(self, obj):
        if hasattr(obj, 'value'):  # Handle Enums
            return obj.value
        if isinstance(obj, datetime):
            return obj.isoformat()
        return super().default(obj)

class JSONFormatter(logging.Formatter):
    def format(self, record):
        log_obj = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name
        }

        # Structured fields attached through `extra=`
        for key in ['event_type', 'disk_number', 'device_info', 'mount_point']:
            if hasattr(record, key):
                log_obj[key] = getattr(record, key)

        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_obj, cls=CustomJSONEncoder)

def setup_logger(name: str = "disk_sentry", verbose: bool = False):
    logger = logging.getLogger(name)
    level_name = str(config["logging"].get("level", "INFO")).upper()
    logger.setLevel(logging.DEBUG if verbose else getattr(logging, level_name, logging.INFO))
    logger.propagate = False

    log_dir = Path(user_log_dir("disk_sentry", appauthor=False))
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "disk_sentry.json.log"

    if logger.handlers:
        return logger, log_file

    # File Handler (JSON)
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setFormatter(JSONFormatter())
    logger.addHandler(file_handler)

    # Console Handler (Rich)
    if config["logging"].get("console_output", True):
        console_handler = RichHandler(console=console, markup=True)
        logger.addHandler(console_handler)

    return logger, log_file

def set_verbose(verbose: bool = True):
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)

logger, log_file_path = setup_logger()
