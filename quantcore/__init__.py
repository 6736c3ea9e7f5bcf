"""Strategy backtesting and risk-metrics engine.

Pure computation over candle series: technical indicators, sandboxed rule
evaluation, bar-by-bar trade simulation and return-distribution statistics.
"""
import os
from pathlib import Path

from dotenv import load_dotenv
from loguru import logger

__version__ = "0.4.2"

# Load environment variables early so settings pick up local overrides
load_dotenv(dotenv_path=Path(__file__).resolve().parents[1] / ".env")


def _detect_build_version() -> str:
    explicit = os.getenv("APP_VERSION")
    if explicit:
        return explicit
    build_file = Path(__file__).resolve().parents[1] / "_build_version.txt"
    if build_file.exists():
        try:
            return build_file.read_text(encoding="utf-8").strip()
        except OSError:
            logger.debug("build version file unreadable: {}", build_file)
    return __version__


APP_VERSION = _detect_build_version()

__all__ = ["__version__", "APP_VERSION"]
