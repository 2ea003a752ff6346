import dataclasses
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from PySide6.QtCore import QMutex, QObject, QThread, Signal

from core.checksum import append_checksum
from core.data_recorder import DataRecorder
from core.errors import ConfigurationError, SerialErrorType, TransportError
from core.formatter import format_data_for_display, format_timestamp
from core.frame_segmenter import Frame, FrameSegmenter, validate_segmentation_config
from core.log_store import LogStore
from core.payload import append_line_ending, encode_payload
from core.transport import SerialTransport
from utils.constants import Constants
from utils.data_models import (
    ChecksumConfig, ConnectionStatus, DataFormat, Direction, DisplaySettings, ExportFormat,
    FlowControl, FrameSegmentationConfig, LineEnding, LogEntry, Parity, ReceiveFormat,
    RecordingStatus, SerialPortConfig, SpecialCharConfig, TextEncoding,
)
from utils.logger import ErrorLogger

MAX_TIMEZONE_OFFSET_MINUTES = 24 * 60 - 1


def validate_serial_config(config: SerialPortConfig) -> None:
    """串口参数校验，非法时抛出 ConfigurationError"""
    if not isinstance(config.baud_rate, int) or config.baud_rate <= 0:
        raise ConfigurationError(f"无效的波特率: {config.baud_rate}")
    if config.data_bits not in [5, 6, 7, 8]:
        raise ConfigurationError(f"无效的数据位: {config.data_bits}")
    if not isinstance(config.parity, Parity):
        raise ConfigurationError(f"无效的校验位: {config.parity}")
    if config.stop_bits not in [1, 1.5, 2]:
        raise ConfigurationError(f"无效的停止位: {config.stop_bits}")
    if not isinstance(config.flow_control, FlowControl):
        raise ConfigurationError(f"无效的流控制: {config.flow_control}")
    if config.timeout_ms <= 0:
        raise ConfigurationError(f"无效的读超时: {config.timeout_ms}")


def validate_timezone_offset(offset_minutes: int) -> int:
    offset_minutes = int(offset_minutes)
    if abs(offset_minutes) > MAX_TIMEZONE_OFFSET_MINUTES:
        raise ConfigurationError(f"无效的时区偏移: {offset_minutes} 分钟")
    return offset_minutes


class SerialManager(QObject):
    """
    串口收发管线协调者

    读线程把收到的字节交给 on_bytes_received，分帧、渲染后写入 LogStore 并通过
    log_appended 信号推送；发送在调用方线程同步执行。显示设置、分帧器、连接计数和
    录制会话各自由独立的互斥锁保护，录制文件写入不持有 LogStore 的锁。
    """
    connection_status_changed = Signal(bool, str)  # is_connected, message
    log_appended = Signal(object)  # LogEntry
    error_occurred_signal = Signal(str)  # For non-critical errors to display
    recording_status_changed = Signal(object)  # RecordingStatus

    def __init__(self, error_logger: Optional[ErrorLogger] = None, parent: Optional[QObject] = None,
                 transport_factory: Optional[Callable[[], Any]] = None,
                 log_directory: Optional[Union[str, Path]] = None,
                 log_limit: int = Constants.DEFAULT_LOG_LIMIT):
        super().__init__(parent)
        self.error_logger = error_logger
        self.transport_factory = transport_factory or (lambda: SerialTransport(error_logger))
        self.transport = None
        self.read_thread: Optional[SerialReadThread] = None

        self.port_config = SerialPortConfig()
        self._status_mutex = QMutex()
        self._connected = False
        self._port_name: Optional[str] = None
        self._active_config: Optional[SerialPortConfig] = None
        self._bytes_sent = 0
        self._bytes_received = 0
        self._connection_time: Optional[datetime] = None

        self._segmenter_mutex = QMutex()
        self._segmenter = FrameSegmenter()

        self._settings_mutex = QMutex()
        self._display_settings = DisplaySettings()
        self._checksum_config = ChecksumConfig()

        self.log_store = LogStore(self._clamp_log_limit(log_limit))
        self.recorder = DataRecorder(log_directory, error_logger)

    # ------------------------------------------------------------------
    # 连接管理
    # ------------------------------------------------------------------

    @staticmethod
    def list_ports() -> List[Dict[str, str]]:
        return SerialTransport.list_ports()

    @property
    def is_connected(self) -> bool:
        self._status_mutex.lock()
        try:
            return self._connected
        finally:
            self._status_mutex.unlock()

    def connect_port(self, port_name: Optional[str] = None, config: Optional[SerialPortConfig] = None) -> bool:
        """打开串口并启动读线程，失败时抛出 ConfigurationError 或 TransportError"""
        if self.is_connected:
            self.disconnect_port()
        if self.read_thread is not None and self.read_thread.isRunning():
            # 读线程因读错误自行结束连接时，这里等它完全退出
            self.read_thread.wait(Constants.READ_THREAD_JOIN_TIMEOUT_MS)

        config = config or self.port_config
        port_name = port_name or config.port_name
        if self.error_logger:
            self.error_logger.log_info(f"connect_port: 尝试连接串口: {port_name} @ {config.baud_rate}", "CONNECTION")

        try:
            if not port_name:
                raise ConfigurationError("未选择串口")
            validate_serial_config(config)
        except ConfigurationError as e:
            self._log_and_emit_error(str(e), "CONNECTION")
            raise

        config = dataclasses.replace(config, port_name=port_name)
        transport = self.transport_factory()
        try:
            transport.open(port_name, config)
        except TransportError as e:
            self._log_and_emit_error(f"打开串口失败: {e}", "CONNECTION")
            raise

        self._status_mutex.lock()
        try:
            self.transport = transport
            self._connected = True
            self._port_name = port_name
            self._active_config = config
            self._bytes_sent = 0
            self._bytes_received = 0
            self._connection_time = datetime.now(timezone.utc)
        finally:
            self._status_mutex.unlock()

        self._segmenter_mutex.lock()
        try:
            self._segmenter.reset()
        finally:
            self._segmenter_mutex.unlock()

        if self.recorder.start_auto_recordings(port_name):
            self.recording_status_changed.emit(self.recorder.get_recording_status())

        msg = f"已连接 {port_name} @ {config.baud_rate}"
        if self.error_logger:
            self.error_logger.log_info(f"connect_port: {msg}", "CONNECTION")
        self.connection_status_changed.emit(True, msg)

        self.read_thread = SerialReadThread(self, transport, self)
        self.read_thread.start()
        return True

    def disconnect_port(self) -> None:
        if not self._claim_teardown():
            return
        if self.error_logger:
            self.error_logger.log_info("尝试断开串口连接", "CONNECTION")
        self._teardown("串口已关闭", join_reader=QThread.currentThread() is not self.read_thread)

    def shutdown(self) -> None:
        """程序退出时调用：断开连接并关闭所有录制文件"""
        self.disconnect_port()
        if self.read_thread is not None and self.read_thread.isRunning():
            self.read_thread.wait(Constants.READ_THREAD_JOIN_TIMEOUT_MS)
        status = self.recorder.get_recording_status()
        if status.text_recording_active or status.raw_recording_active:
            self.recorder.stop_all_recordings()
            self.recording_status_changed.emit(self.recorder.get_recording_status())

    def get_connection_status(self) -> ConnectionStatus:
        self._status_mutex.lock()
        try:
            return ConnectionStatus(
                is_connected=self._connected,
                port_name=self._port_name,
                config=self._active_config,
                bytes_sent=self._bytes_sent,
                bytes_received=self._bytes_received,
                connection_time=self._connection_time,
            )
        finally:
            self._status_mutex.unlock()

    def _claim_teardown(self) -> bool:
        # 只有一个线程能把状态从已连接切换到断开，后来者直接返回
        self._status_mutex.lock()
        try:
            if not self._connected:
                return False
            self._connected = False
            return True
        finally:
            self._status_mutex.unlock()

    def _teardown(self, message: str, join_reader: bool) -> None:
        thread = self.read_thread
        if thread is not None:
            thread.stop()
            if join_reader and thread.isRunning():
                if not thread.wait(Constants.READ_THREAD_JOIN_TIMEOUT_MS) and self.error_logger:
                    self.error_logger.log_warning("读线程未在超时时间内退出", "CONNECTION")

        # 缓冲区中未成帧的数据作为最后一帧写入日志
        self._segmenter_mutex.lock()
        try:
            frames = self._segmenter.flush(time.monotonic())
        finally:
            self._segmenter_mutex.unlock()
        self._log_frames(frames)

        status = self.recorder.get_recording_status()
        if status.text_recording_active or status.raw_recording_active:
            self.recorder.stop_all_recordings()
            self.recording_status_changed.emit(self.recorder.get_recording_status())

        self._status_mutex.lock()
        try:
            transport, self.transport = self.transport, None
        finally:
            self._status_mutex.unlock()
        if transport is not None:
            transport.close()

        if self.error_logger:
            self.error_logger.log_info(f"连接已关闭: {message}", "CONNECTION")
        self.connection_status_changed.emit(False, message)

    def _handle_read_error(self, message: str) -> None:
        """由读线程调用，不能在这里等待读线程自身结束"""
        if self.error_logger:
            self.error_logger.log_error(message, "READ")
        self.error_occurred_signal.emit(message)
        if self._claim_teardown():
            self._teardown(message, join_reader=False)

    def _handle_write_error(self, message: str) -> None:
        if self.error_logger:
            self.error_logger.log_error(message, "SEND")
        if self._claim_teardown():
            self._teardown(message, join_reader=QThread.currentThread() is not self.read_thread)

    def _log_and_emit_error(self, message: str, error_type: str = "VALIDATION"):
        """Helper to log and emit connection errors."""
        self.connection_status_changed.emit(False, f"错误: {message}")
        if self.error_logger:
            self.error_logger.log_error(message, error_type)

    # ------------------------------------------------------------------
    # 接收
    # ------------------------------------------------------------------

    def on_bytes_received(self, data: bytes, arrival_time: Optional[float] = None) -> List[LogEntry]:
        """读线程收到数据后调用，返回本次完成的帧对应的日志条目"""
        if not data:
            return []
        if arrival_time is None:
            arrival_time = time.monotonic()

        self._status_mutex.lock()
        try:
            self._bytes_received += len(data)
        finally:
            self._status_mutex.unlock()

        self._segmenter_mutex.lock()
        try:
            frames = self._segmenter.feed(bytes(data), arrival_time)
        finally:
            self._segmenter_mutex.unlock()
        return self._log_frames(frames)

    def process_idle(self, now: Optional[float] = None) -> List[LogEntry]:
        """空闲超时检查，读线程每次唤醒都会调用"""
        if now is None:
            now = time.monotonic()
        self._segmenter_mutex.lock()
        try:
            frames = self._segmenter.tick(now)
        finally:
            self._segmenter_mutex.unlock()
        return self._log_frames(frames)

    def next_idle_deadline(self, now: float) -> Optional[float]:
        self._segmenter_mutex.lock()
        try:
            return self._segmenter.next_deadline(now)
        finally:
            self._segmenter_mutex.unlock()

    def _log_frames(self, frames: List[Frame]) -> List[LogEntry]:
        return [self._append_log(frame.data, Direction.RECEIVED, self._wall_time(frame.arrival_time))
                for frame in frames]

    @staticmethod
    def _wall_time(arrival_time: float) -> datetime:
        # monotonic 到达时间换算成 UTC 时间
        elapsed = max(0.0, time.monotonic() - arrival_time)
        return datetime.now(timezone.utc) - timedelta(seconds=elapsed)

    def _append_log(self, data: bytes, direction: Direction, timestamp: datetime) -> LogEntry:
        settings = self.get_display_settings()
        self._status_mutex.lock()
        try:
            port_name = self._port_name or ""
        finally:
            self._status_mutex.unlock()

        entry = LogEntry(
            id=None,
            timestamp=timestamp,
            direction=direction,
            data=bytes(data),
            display_text=format_data_for_display(data, settings),
            timestamp_text=format_timestamp(timestamp, settings.timezone_offset_minutes)
            if settings.show_timestamps else None,
            port_name=port_name,
        )
        stored = self.log_store.append(entry)
        self._record(stored)
        self.log_appended.emit(stored)
        return stored

    def _record(self, entry: LogEntry) -> None:
        raw_ok = self.recorder.record_raw(entry.data)
        text_ok = self.recorder.record_text(entry.direction, entry.display_text, entry.timestamp)
        if not (raw_ok and text_ok):
            self.error_occurred_signal.emit(f"录制文件写入失败 (日志 #{entry.id})")

    # ------------------------------------------------------------------
    # 发送
    # ------------------------------------------------------------------

    def send(self, payload: bytes, checksum_config: Optional[ChecksumConfig] = None) -> LogEntry:
        """追加校验后写入串口，并把实际发送的字节记为 Sent 日志"""
        if not payload:
            raise ConfigurationError("发送数据为空", SerialErrorType.INVALID_INPUT)
        frame = append_checksum(payload, checksum_config or self.get_checksum_config())

        # 连接状态和串口对象一起取，断开连接的线程可能同时把它置空
        self._status_mutex.lock()
        try:
            transport = self.transport if self._connected else None
        finally:
            self._status_mutex.unlock()
        if transport is None or not transport.is_open:
            if self.error_logger:
                self.error_logger.log_warning("尝试在未连接的串口上写入数据。", "SEND")
            raise TransportError("串口未连接", SerialErrorType.NOT_CONNECTED)

        try:
            transport.write(frame)
        except TransportError as e:
            self._handle_write_error(str(e))
            raise

        self._status_mutex.lock()
        try:
            self._bytes_sent += len(frame)
        finally:
            self._status_mutex.unlock()

        if self.error_logger:
            self.error_logger.log_debug(f"发送 {len(frame)} 字节: {frame.hex(' ').upper()}", "SEND")
        return self._append_log(frame, Direction.SENT, datetime.now(timezone.utc))

    def send_data(self, data: str, data_format: DataFormat = DataFormat.TEXT,
                  encoding: Optional[TextEncoding] = None,
                  checksum_config: Optional[ChecksumConfig] = None,
                  line_ending: LineEnding = LineEnding.NONE) -> LogEntry:
        text = append_line_ending(data, line_ending, data_format is DataFormat.HEX)
        payload = encode_payload(text, data_format, encoding or self.get_display_settings().text_encoding,
                                 self.error_logger)
        return self.send(payload, checksum_config)

    # ------------------------------------------------------------------
    # 设置
    # ------------------------------------------------------------------

    def set_frame_segmentation(self, config: FrameSegmentationConfig) -> FrameSegmentationConfig:
        validated = validate_segmentation_config(config)
        self._segmenter_mutex.lock()
        try:
            return self._segmenter.set_config(validated)
        finally:
            self._segmenter_mutex.unlock()

    def get_frame_segmentation(self) -> FrameSegmentationConfig:
        self._segmenter_mutex.lock()
        try:
            return self._segmenter.config
        finally:
            self._segmenter_mutex.unlock()

    def get_display_settings(self) -> DisplaySettings:
        self._settings_mutex.lock()
        try:
            return self._display_settings
        finally:
            self._settings_mutex.unlock()

    def set_display_settings(self, settings: DisplaySettings) -> None:
        if not isinstance(settings.receive_format, ReceiveFormat):
            raise ConfigurationError(f"无效的显示格式: {settings.receive_format}")
        if not isinstance(settings.text_encoding, TextEncoding):
            raise ConfigurationError(f"无效的文本编码: {settings.text_encoding}")
        if not isinstance(settings.special_chars, SpecialCharConfig):
            raise ConfigurationError(f"无效的特殊字符配置: {settings.special_chars}")
        offset = validate_timezone_offset(settings.timezone_offset_minutes)
        self._settings_mutex.lock()
        try:
            self._display_settings = settings
        finally:
            self._settings_mutex.unlock()
        self.recorder.set_timezone_offset(offset)

    def _update_display_settings(self, **changes) -> None:
        self.set_display_settings(dataclasses.replace(self.get_display_settings(), **changes))

    def set_display_format(self, receive_format: ReceiveFormat) -> None:
        self._update_display_settings(receive_format=receive_format)

    def set_text_encoding(self, encoding: TextEncoding) -> None:
        self._update_display_settings(text_encoding=encoding)

    def set_special_char_config(self, config: SpecialCharConfig) -> None:
        self._update_display_settings(special_chars=config)

    def set_show_timestamps(self, show: bool) -> None:
        self._update_display_settings(show_timestamps=bool(show))

    def set_timezone_offset(self, offset_minutes: int) -> None:
        self._update_display_settings(timezone_offset_minutes=validate_timezone_offset(offset_minutes))

    def set_checksum_config(self, config: ChecksumConfig) -> None:
        if config.start_index < 0:
            raise ConfigurationError(f"校验起始下标不能为负: {config.start_index}")
        self._settings_mutex.lock()
        try:
            self._checksum_config = config
        finally:
            self._settings_mutex.unlock()

    def get_checksum_config(self) -> ChecksumConfig:
        self._settings_mutex.lock()
        try:
            return self._checksum_config
        finally:
            self._settings_mutex.unlock()

    @staticmethod
    def _clamp_log_limit(limit: int) -> int:
        return min(max(int(limit), Constants.MIN_LOG_LIMIT), Constants.MAX_LOG_LIMIT)

    def set_log_limit(self, limit: int) -> int:
        """返回钳位后的实际上限，缩小时立即淘汰最旧的日志"""
        clamped = self._clamp_log_limit(limit)
        evicted = self.log_store.resize(clamped)
        if self.error_logger:
            self.error_logger.log_info(f"日志上限设置为 {clamped}，淘汰 {evicted} 条", "CONFIG")
        return clamped

    def get_log_limit(self) -> int:
        return self.log_store.capacity

    # ------------------------------------------------------------------
    # 日志
    # ------------------------------------------------------------------

    def get_logs(self) -> List[LogEntry]:
        return self.log_store.get_entries()

    def get_logs_since(self, last_id: int) -> List[LogEntry]:
        return self.log_store.get_entries_since(last_id)

    def clear_logs(self) -> None:
        self.log_store.clear()

    def export_logs(self, filename: Union[str, Path], export_format: ExportFormat) -> bool:
        return self.recorder.export_logs(self.get_logs(), filename, export_format,
                                         self.get_display_settings().timezone_offset_minutes)

    # ------------------------------------------------------------------
    # 录制
    # ------------------------------------------------------------------

    def _current_port_name(self) -> Optional[str]:
        self._status_mutex.lock()
        try:
            return self._port_name
        finally:
            self._status_mutex.unlock()

    def start_text_recording(self) -> str:
        path = self.recorder.start_text_recording(self._current_port_name())
        self.recording_status_changed.emit(self.recorder.get_recording_status())
        return path

    def stop_text_recording(self) -> Optional[str]:
        path = self.recorder.stop_text_recording()
        self.recording_status_changed.emit(self.recorder.get_recording_status())
        return path

    def start_raw_recording(self) -> str:
        path = self.recorder.start_raw_recording(self._current_port_name())
        self.recording_status_changed.emit(self.recorder.get_recording_status())
        return path

    def stop_raw_recording(self) -> Optional[str]:
        path = self.recorder.stop_raw_recording()
        self.recording_status_changed.emit(self.recorder.get_recording_status())
        return path

    def get_recording_status(self) -> RecordingStatus:
        return self.recorder.get_recording_status()

    def set_log_directory(self, path: Union[str, Path]) -> None:
        self.recorder.set_log_directory(path)

    def set_auto_recording(self, text: bool, raw: bool) -> None:
        self.recorder.set_auto_recording(text, raw)

    # ------------------------------------------------------------------
    # 配置
    # ------------------------------------------------------------------

    def apply_config(self, config: Dict[str, Any]) -> None:
        """应用 ConfigManager 加载的配置；任一段非法时整体拒绝，保留原有设置"""
        try:
            port_config = SerialPortConfig.from_dict(config.get("serial_port", {}))
            segmentation = FrameSegmentationConfig.from_dict(config.get("frame_segmentation", {}))
            display = DisplaySettings.from_dict(config.get("display", {}))
            checksum = ChecksumConfig.from_dict(config.get("checksum", {}))
            log_limit = int(config.get("log_limit", self.get_log_limit()))
            recording = dict(config.get("recording", {}))
        except (ValueError, TypeError, KeyError, AttributeError) as e:
            raise ConfigurationError(f"配置格式错误: {e}") from e

        validate_serial_config(port_config)
        segmentation = validate_segmentation_config(segmentation)
        validate_timezone_offset(display.timezone_offset_minutes)
        if checksum.start_index < 0:
            raise ConfigurationError(f"校验起始下标不能为负: {checksum.start_index}")

        self.port_config = port_config
        self.set_frame_segmentation(segmentation)
        self.set_display_settings(display)
        self.set_checksum_config(checksum)
        self.set_log_limit(log_limit)
        if recording.get("log_directory"):
            self.set_log_directory(recording["log_directory"])
        self.set_auto_recording(recording.get("auto_text", False), recording.get("auto_raw", False))
        if self.error_logger:
            self.error_logger.log_info("配置已应用", "CONFIG")

    def export_config(self) -> Dict[str, Any]:
        return {
            "serial_port": self.port_config.to_dict(),
            "frame_segmentation": self.get_frame_segmentation().to_dict(),
            "display": self.get_display_settings().to_dict(),
            "checksum": self.get_checksum_config().to_dict(),
            "log_limit": self.get_log_limit(),
            "recording": {
                "log_directory": str(self.recorder.log_directory),
                "auto_text": self.recorder.auto_text,
                "auto_raw": self.recorder.auto_raw,
            },
        }


class SerialReadThread(QThread):
    """每个连接一个读线程，是接收帧的唯一生产者"""

    def __init__(self, manager: SerialManager, transport, parent: Optional[QObject] = None):
        super().__init__(parent)
        self.manager = manager
        self.transport = transport
        self._running = True

    def _read_wait(self) -> float:
        config = self.manager.get_connection_status().config
        timeout_s = config.timeout_ms / 1000.0 if config else Constants.READ_POLL_INTERVAL_S
        wait = min(timeout_s, Constants.READ_POLL_INTERVAL_S)
        now = time.monotonic()
        deadline = self.manager.next_idle_deadline(now)
        if deadline is not None:
            wait = min(wait, deadline - now)
        return max(wait, Constants.MIN_READ_WAIT_S)

    def run(self):
        error_logger = self.manager.error_logger
        if error_logger:
            error_logger.log_info("SerialReadThread started", "READ")

        while self._running:
            try:
                data = self.transport.read(self._read_wait())
            except TransportError as e:
                if self._running:
                    self.manager._handle_read_error(str(e))
                break
            if data:
                self.manager.on_bytes_received(data, time.monotonic())
            self.manager.process_idle(time.monotonic())

        if error_logger:
            error_logger.log_info("SerialReadThread stopped", "READ")

    def stop(self):
        self._running = False
