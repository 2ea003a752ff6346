from pathlib import Path
from typing import Dict


class Constants:
    """应用常量定义"""
    APP_NAME: str = "SerialDebugTerminal"
    DEFAULT_BAUD_RATE: int = 115200
    DEFAULT_READ_TIMEOUT_MS: int = 1000
    CONFIG_FILE_NAME: str = "serial_debug_terminal_config.json"
    LOG_FILE_PREFIX: str = "serial_debug_"
    LOGGER_NAME: str = "SerialDebugTerminal"

    # 日志条数上限（两个配置界面的上限不一致，这里统一为 100 ~ 100000）
    DEFAULT_LOG_LIMIT: int = 1000
    MIN_LOG_LIMIT: int = 100
    MAX_LOG_LIMIT: int = 100000

    # 分帧参数
    DEFAULT_FRAME_TIMEOUT_MS: int = 10
    MIN_FRAME_TIMEOUT_MS: int = 10
    MAX_FRAME_TIMEOUT_MS: int = 1000
    MAX_FRAME_BYTES: int = 65536

    # 读线程轮询间隔，断开连接的响应时间以此为上限
    READ_POLL_INTERVAL_S: float = 0.05
    MIN_READ_WAIT_S: float = 0.001
    READ_THREAD_JOIN_TIMEOUT_MS: int = 2000
    READ_CHUNK_SIZE: int = 1024

    # 录制
    RECORDING_DIR_NAME: str = "SerialLogs"
    TEXT_RECORDING_EXTENSION: str = "txt"
    RAW_RECORDING_EXTENSION: str = "bin"
    FILENAME_UNSAFE_CHARS: str = '/\\:*?"<>|'
    TIMESTAMP_FORMAT: str = "%H:%M:%S.%f"  # 截掉末三位得到毫秒
    FILENAME_DATE_FORMAT: str = "%Y-%m-%d_%H-%M-%S"
    EXPORT_HEADER: str = "Serial Debug Terminal - Log Export"

    # 特殊字符可视化
    SYMBOL_LF: str = "\u240a"     # ␊
    SYMBOL_CR: str = "\u240d"     # ␍
    SYMBOL_TAB: str = "\u2409"    # ␉
    SYMBOL_NUL: str = "\u2400"    # ␀
    SYMBOL_ESC: str = "\u241b"    # ␛
    SYMBOL_SPACE: str = "\u2423"  # ␣

    CHECKSUM_WIDTHS: Dict[str, int] = {
        "None": 0,
        "XOR": 1,
        "ADD8": 1,
        "CRC8": 1,
        "CRC16": 2,
        "CCITT-CRC16": 2,
    }

    @staticmethod
    def default_log_directory() -> Path:
        documents = Path.home() / "Documents"
        if documents.is_dir():
            return documents / Constants.RECORDING_DIR_NAME
        return Path(".") / Constants.RECORDING_DIR_NAME
