# core/__init__.py

# This makes the directory a Python package.

from .errors import SerialErrorType, SerialDebugException, TransportError, ConfigurationError, RecordingError
from .checksum import calculate_checksum, resolve_checksum_range, verify_checksum
from .frame_segmenter import Frame, FrameSegmenter
from .formatter import format_data_for_display
from .log_store import LogStore
from .data_recorder import DataRecorder
from .transport import SerialTransport
from .serial_manager import SerialManager

__all__ = [
    "SerialErrorType",
    "SerialDebugException",
    "TransportError",
    "ConfigurationError",
    "RecordingError",
    "calculate_checksum",
    "resolve_checksum_range",
    "verify_checksum",
    "Frame",
    "FrameSegmenter",
    "format_data_for_display",
    "LogStore",
    "DataRecorder",
    "SerialTransport",
    "SerialManager",
]
