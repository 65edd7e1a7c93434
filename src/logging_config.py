"""
Logging for the warehouse pipeline: stdout plus a log file under logs/.
"""

import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
LOG_DIR = ROOT / "logs"
LOG_FILE = LOG_DIR / "pipeline.log"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"


def setup_logging(level: int | str = logging.INFO, log_file: Path | None = None) -> None:
    if isinstance(level, str):
        level = getattr(logging, level.upper())
    log_file = log_file or LOG_FILE
    log_file.parent.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=[
        logging.StreamHandler(sys.stdout),
        logging.FileHandler(log_file, encoding="utf-8"),
    ])


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
