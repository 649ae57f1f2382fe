# utils/__init__.py

from utils.logger import logger
from utils.config import load_cfg
from utils.time import utc_ms

__all__ = ["logger", "load_cfg", "utc_ms"]
