# utils/__init__.py

# This makes the directory a Python package.

from .constants import Constants
from .data_models import (
    SerialPortConfig, FrameSegmentationConfig, FrameDelimiter, ChecksumConfig,
    DisplaySettings, SpecialCharConfig, LogEntry, ConnectionStatus, RecordingStatus,
)
from .config_manager import ConfigManager
from .logger import ErrorLogger

__all__ = [
    "Constants",
    "SerialPortConfig",
    "FrameSegmentationConfig",
    "FrameDelimiter",
    "ChecksumConfig",
    "DisplaySettings",
    "SpecialCharConfig",
    "LogEntry",
    "ConnectionStatus",
    "RecordingStatus",
    "ConfigManager",
    "ErrorLogger",
]
