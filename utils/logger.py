import logging
from pathlib import Path
from datetime import datetime
from typing import Optional, Union
from utils.constants import Constants

LOG_FORMAT = '%(asctime)s-%(levelname)s-%(module)s-%(funcName)s-%(message)s'


class ErrorLogger:
    def __init__(self, log_file_prefix: str = Constants.LOG_FILE_PREFIX,
                 log_dir: Union[str, Path, None] = "logs", level: int = logging.INFO,
                 console: bool = False):
        self.logger = logging.getLogger(Constants.LOGGER_NAME)
        self.logger.setLevel(level)
        self.log_file: Optional[Path] = None
        if log_dir is not None:
            log_dir = Path(log_dir)
            log_dir.mkdir(parents=True, exist_ok=True)
            self.log_file = log_dir / f'{log_file_prefix}{datetime.now().strftime("%Y%m%d")}.log'
            self._add_handler(logging.FileHandler(self.log_file, encoding='utf-8'))
        if console:
            self._add_handler(logging.StreamHandler())

    def _add_handler(self, handler: logging.Handler) -> None:
        # 同一个文件/流只挂一次，避免重复创建 ErrorLogger 时日志重复输出
        for existing in self.logger.handlers:
            if type(existing) is type(handler) and \
                    getattr(existing, 'baseFilename', None) == getattr(handler, 'baseFilename', None):
                handler.close()
                return
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        self.logger.addHandler(handler)

    def log_error(self, error_msg: str, error_type: str = "GENERAL", exc_info: bool = False) -> None:
        self.logger.error(f"[{error_type}] {error_msg}", exc_info=exc_info) # 错误日志记录

    def log_info(self, info_msg: str, info_type: str = "INFO", exc_info: bool = False) -> None:
        self.logger.info(f"[{info_type}] {info_msg}", exc_info=exc_info) # 信息日志记录

    def log_debug(self, debug_msg: str, debug_type: str = "DEBUG", exc_info: bool = False) -> None:
        self.logger.debug(f"[{debug_type}] {debug_msg}", exc_info=exc_info) # 调试日志记录

    def log_warning(self, warn_msg: str, warn_type: str = "WARNING", exc_info: bool = False) -> None:
        self.logger.warning(f"[{warn_type}] {warn_msg}", exc_info=exc_info) # 警告日志记录
