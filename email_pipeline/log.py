"""Logging setup shared by the service entry points"""
import logging
import sys
from pathlib import Path

from email_pipeline.config import LOG_DIR, LOG_LEVEL


def setup_logging(service_name: str, level: str = None, log_dir: str = None):
    """Log to stdout and, when a log directory is configured, to <log_dir>/<service_name>.log"""
    handlers = [logging.StreamHandler(sys.stdout)]

    log_dir = log_dir if log_dir is not None else LOG_DIR
    if log_dir:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path / f"{service_name}.log"))

    logging.basicConfig(
        level=getattr(logging, (level or LOG_LEVEL).upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True,
    )
