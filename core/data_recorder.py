import csv
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import IO, Iterable, List, Optional, Union

from PySide6.QtCore import QMutex

from core.errors import RecordingError, SerialErrorType
from core.formatter import format_timestamp, to_offset_time
from utils.constants import Constants
from utils.data_models import Direction, ExportFormat, LogEntry, RecordingStatus
from utils.logger import ErrorLogger


class RecordingSession:
    """单个录制会话（文本或原始），只追加写入"""

    def __init__(self, name: str, binary: bool, error_logger: Optional[ErrorLogger] = None):
        self.name = name
        self.binary = binary
        self.error_logger = error_logger
        self.write_errors = 0
        self._file: Optional[IO] = None
        self._file_path: Optional[str] = None
        self._mutex = QMutex()

    @property
    def is_active(self) -> bool:
        self._mutex.lock()
        try:
            return self._file is not None
        finally:
            self._mutex.unlock()

    @property
    def file_path(self) -> Optional[str]:
        self._mutex.lock()
        try:
            return self._file_path
        finally:
            self._mutex.unlock()

    def start(self, file_path: Path) -> str:
        self._mutex.lock()
        try:
            if self._file is not None:
                raise RecordingError(f"{self.name} recording is already active",
                                     SerialErrorType.RECORDING_ACTIVE)
            try:
                if self.binary:
                    self._file = open(file_path, 'ab')
                else:
                    self._file = open(file_path, 'a', encoding='utf-8', newline='')
            except OSError as e:
                raise RecordingError(f"无法创建录制文件 {file_path}: {e}") from e
            self._file_path = str(file_path)
            self.write_errors = 0
        finally:
            self._mutex.unlock()

        if self.error_logger:
            self.error_logger.log_info(f"开始{self.name}录制: {file_path}", "RECORDER")
        return str(file_path)

    def write(self, data: Union[bytes, str]) -> bool:
        """写入失败只记录日志并计数，不向调用方抛出"""
        self._mutex.lock()
        try:
            if self._file is None:
                return True
            try:
                self._file.write(data)
                self._file.flush()
                return True
            except OSError as e:
                self.write_errors += 1
                if self.error_logger:
                    self.error_logger.log_error(f"写入{self.name}录制文件失败: {e}", "RECORDER")
                return False
        finally:
            self._mutex.unlock()

    def stop(self) -> Optional[str]:
        """停止录制并关闭文件，未在录制时直接返回 None"""
        self._mutex.lock()
        try:
            if self._file is None:
                return None
            file, path = self._file, self._file_path
            self._file = None
            self._file_path = None
            try:
                file.flush()
                file.close()
            except OSError as e:
                self.write_errors += 1
                if self.error_logger:
                    self.error_logger.log_error(f"关闭{self.name}录制文件失败: {e}", "RECORDER")
        finally:
            self._mutex.unlock()

        if self.error_logger:
            self.error_logger.log_info(f"停止{self.name}录制: {path}", "RECORDER")
        return path


class DataRecorder:
    def __init__(self, log_directory: Optional[Union[str, Path]] = None,
                 error_logger: Optional[ErrorLogger] = None):
        self.error_logger = error_logger
        self.log_directory = Path(log_directory) if log_directory else Constants.default_log_directory()
        self.timezone_offset_minutes = 0
        self.auto_text = False
        self.auto_raw = False
        self.text_session = RecordingSession("文本", binary=False, error_logger=error_logger)
        self.raw_session = RecordingSession("原始", binary=True, error_logger=error_logger)

    def set_log_directory(self, path: Union[str, Path]) -> None:
        self.log_directory = Path(path)
        if self.error_logger:
            self.error_logger.log_info(f"录制目录设置为: {self.log_directory}", "RECORDER")

    def set_timezone_offset(self, offset_minutes: int) -> None:
        self.timezone_offset_minutes = int(offset_minutes)

    def set_auto_recording(self, text: bool, raw: bool) -> None:
        self.auto_text = bool(text)
        self.auto_raw = bool(raw)

    def generate_recording_filename(self, port_name: Optional[str], extension: str,
                                    now: Optional[datetime] = None) -> Path:
        try:
            self.log_directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise RecordingError(f"无法创建录制目录 {self.log_directory}: {e}") from e

        safe_port_name = port_name or "UNKNOWN"
        for ch in Constants.FILENAME_UNSAFE_CHARS:
            safe_port_name = safe_port_name.replace(ch, "_")
        stamp = to_offset_time(now or datetime.now(timezone.utc), self.timezone_offset_minutes)
        return self.log_directory / f"{safe_port_name}_{stamp.strftime(Constants.FILENAME_DATE_FORMAT)}.{extension}"

    def start_text_recording(self, port_name: Optional[str]) -> str:
        if self.text_session.is_active:
            raise RecordingError("Text recording is already active", SerialErrorType.RECORDING_ACTIVE)
        path = self.generate_recording_filename(port_name, Constants.TEXT_RECORDING_EXTENSION)
        return self.text_session.start(path)

    def start_raw_recording(self, port_name: Optional[str]) -> str:
        if self.raw_session.is_active:
            raise RecordingError("Raw recording is already active", SerialErrorType.RECORDING_ACTIVE)
        path = self.generate_recording_filename(port_name, Constants.RAW_RECORDING_EXTENSION)
        return self.raw_session.start(path)

    def stop_text_recording(self) -> Optional[str]:
        return self.text_session.stop()

    def stop_raw_recording(self) -> Optional[str]:
        return self.raw_session.stop()

    def stop_all_recordings(self) -> None:
        self.stop_text_recording()
        self.stop_raw_recording()

    def start_auto_recordings(self, port_name: Optional[str]) -> List[str]:
        """连接建立时按自动录制开关启动会话，失败只记录日志"""
        started = []
        for enabled, session, start in ((self.auto_text, self.text_session, self.start_text_recording),
                                        (self.auto_raw, self.raw_session, self.start_raw_recording)):
            if not enabled or session.is_active:
                continue
            try:
                started.append(start(port_name))
            except RecordingError as e:
                if self.error_logger:
                    self.error_logger.log_error(f"自动录制启动失败: {e}", "RECORDER")
        return started

    def record_text(self, direction: Direction, text: str, timestamp: datetime) -> bool:
        if not self.text_session.is_active:
            return True
        line = f"[{format_timestamp(timestamp, self.timezone_offset_minutes)}] {direction.label}: {text}\n"
        return self.text_session.write(line)

    def record_raw(self, data: bytes) -> bool:
        if not self.raw_session.is_active:
            return True
        return self.raw_session.write(bytes(data))

    def get_recording_status(self) -> RecordingStatus:
        return RecordingStatus(
            text_recording_active=self.text_session.is_active,
            raw_recording_active=self.raw_session.is_active,
            text_file_path=self.text_session.file_path,
            raw_file_path=self.raw_session.file_path,
        )

    def export_logs(self, entries: Iterable[LogEntry], filename: Union[str, Path],
                    export_format: ExportFormat, offset_minutes: Optional[int] = None) -> bool:
        """导出日志快照，失败返回 False"""
        if offset_minutes is None:
            offset_minutes = self.timezone_offset_minutes
        entries = list(entries)
        path = Path(filename)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            if export_format is ExportFormat.TXT:
                with open(path, 'w', encoding='utf-8') as f:
                    generated = to_offset_time(datetime.now(timezone.utc), offset_minutes)
                    f.write(f"{Constants.EXPORT_HEADER}\n")
                    f.write(f"Generated: {generated.strftime('%Y-%m-%d %H:%M:%S %z')}\n")
                    f.write("=" * 60 + "\n\n")
                    for entry in entries:
                        f.write(f"[{format_timestamp(entry.timestamp, offset_minutes)}] "
                                f"{entry.direction.label}: {entry.data.decode('utf-8', errors='replace')}\n")
            elif export_format is ExportFormat.CSV:
                with open(path, 'w', newline='', encoding='utf-8') as f:
                    csv_writer = csv.writer(f)
                    csv_writer.writerow(["timestamp", "direction", "port", "data"])
                    for entry in entries:
                        stamp = to_offset_time(entry.timestamp, offset_minutes)
                        csv_writer.writerow([
                            stamp.strftime("%Y-%m-%d %H:%M:%S.%f")[:-3],
                            entry.direction.value,
                            entry.port_name,
                            entry.data.decode('utf-8', errors='replace'),
                        ])
            elif export_format is ExportFormat.JSON:
                with open(path, 'w', encoding='utf-8') as f:
                    json.dump([entry.to_dict() for entry in entries], f, indent=2, ensure_ascii=False)
            else:
                raise ValueError(f"未知的导出格式: {export_format}")
        except (OSError, ValueError) as e:
            if self.error_logger:
                self.error_logger.log_error(f"导出日志失败: {e}", "RECORDER")
            return False

        if self.error_logger:
            self.error_logger.log_info(f"已导出 {len(entries)} 条日志到: {path}", "RECORDER")
        return True
