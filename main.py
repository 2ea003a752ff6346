# main.py
import argparse
import dataclasses
import logging
import signal
import sys
from typing import List, Optional

from PySide6.QtCore import QCoreApplication, QObject, QThread, QTimer, Signal, Slot

from core.errors import SerialDebugException
from core.serial_manager import SerialManager
from utils.config_manager import ConfigManager
from utils.constants import Constants
from utils.data_models import (
    DataFormat, FrameSegmentationMode, LineEnding, LogEntry, ReceiveFormat,
)
from utils.logger import ErrorLogger

MODE_CHOICES = {mode.value.lower(): mode for mode in FrameSegmentationMode}


class StdinReader(QThread):
    """从标准输入逐行读取待发送的数据"""
    line_entered = Signal(str)

    def run(self):
        for line in sys.stdin:
            self.line_entered.emit(line.rstrip("\r\n"))


class SerialTerminal(QObject):
    def __init__(self, args: argparse.Namespace, parent: Optional[QObject] = None):
        super().__init__(parent)
        self.args = args
        self.error_logger = ErrorLogger(level=logging.DEBUG if args.verbose else logging.INFO,
                                        console=args.verbose)
        self.config_manager = ConfigManager(filename=args.config, error_logger=self.error_logger)
        self.serial_manager = SerialManager(error_logger=self.error_logger, parent=self)
        self.send_format = DataFormat.HEX if args.send_hex else DataFormat.TEXT
        self.stdin_reader = StdinReader(self)

        self.serial_manager.apply_config(self.config_manager.load_config())
        self._apply_command_line()

        self.serial_manager.log_appended.connect(self.print_log_entry)
        self.serial_manager.connection_status_changed.connect(self.on_connection_status_changed)
        self.serial_manager.error_occurred_signal.connect(self.on_error)
        self.stdin_reader.line_entered.connect(self.send_line)

    def _apply_command_line(self):
        args = self.args
        if args.baud:
            self.serial_manager.port_config = dataclasses.replace(self.serial_manager.port_config,
                                                                  baud_rate=args.baud)
        if args.mode or args.timeout_ms:
            segmentation = self.serial_manager.get_frame_segmentation()
            if args.mode:
                segmentation = dataclasses.replace(segmentation, mode=MODE_CHOICES[args.mode])
            if args.timeout_ms:
                segmentation = dataclasses.replace(segmentation, timeout_ms=args.timeout_ms)
            self.serial_manager.set_frame_segmentation(segmentation)
        if args.hex:
            self.serial_manager.set_display_format(ReceiveFormat.HEX)
        if args.log_dir:
            self.serial_manager.set_log_directory(args.log_dir)
        if args.record_text or args.record_raw:
            self.serial_manager.set_auto_recording(args.record_text, args.record_raw)

    def start(self) -> bool:
        try:
            self.serial_manager.connect_port(self.args.port)
        except SerialDebugException as e:
            print(f"连接失败: {e}", file=sys.stderr)
            return False
        self.stdin_reader.start()
        return True

    @Slot(object)
    def print_log_entry(self, entry: LogEntry):
        prefix = f"[{entry.timestamp_text}] " if entry.timestamp_text else ""
        print(f"{prefix}{entry.direction.label}: {entry.display_text}", flush=True)

    @Slot(bool, str)
    def on_connection_status_changed(self, connected: bool, message: str):
        print(f"* {message}", file=sys.stderr, flush=True)
        if not connected:
            QCoreApplication.quit()

    @Slot(str)
    def on_error(self, message: str):
        print(f"! {message}", file=sys.stderr, flush=True)

    @Slot(str)
    def send_line(self, line: str):
        if not line:
            return
        try:
            self.serial_manager.send_data(line, self.send_format,
                                          line_ending=LineEnding.NONE if self.args.send_hex else LineEnding.CRLF)
        except SerialDebugException as e:
            self.on_error(str(e))

    def shutdown(self):
        self.error_logger.log_info("关闭应用程序，正在停止后台线程...")
        self.serial_manager.shutdown()
        if self.stdin_reader.isRunning():
            # 阻塞在 stdin 上的线程无法优雅停止
            self.stdin_reader.terminate()
            self.stdin_reader.wait()
        self.config_manager.save_config(self.serial_manager.export_config())
        self.error_logger.log_info("配置已自动保存。应用程序退出。")


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog=Constants.APP_NAME, description="串口调试终端")
    parser.add_argument("--port", help="串口名称，例如 COM3 或 /dev/ttyUSB0")
    parser.add_argument("--baud", type=int, help="波特率")
    parser.add_argument("--list", action="store_true", help="列出可用串口后退出")
    parser.add_argument("--hex", action="store_true", help="接收数据以十六进制显示")
    parser.add_argument("--send-hex", action="store_true", help="输入按十六进制发送")
    parser.add_argument("--mode", choices=sorted(MODE_CHOICES), help="分帧模式")
    parser.add_argument("--timeout-ms", type=int, help="分帧超时（毫秒）")
    parser.add_argument("--config", default=Constants.CONFIG_FILE_NAME, help="配置文件路径")
    parser.add_argument("--log-dir", help="录制文件目录")
    parser.add_argument("--record-text", action="store_true", help="连接后自动开始文本录制")
    parser.add_argument("--record-raw", action="store_true", help="连接后自动开始原始数据录制")
    parser.add_argument("-v", "--verbose", action="store_true", help="输出调试日志")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_arg_parser().parse_args(argv)

    if args.list:
        for port in SerialManager.list_ports():
            print(f"{port['name']}\t{port['description']}")
        return 0

    app = QCoreApplication(sys.argv[:1])
    try:
        terminal = SerialTerminal(args)
    except SerialDebugException as e:
        print(f"配置错误: {e}", file=sys.stderr)
        return 2
    app.aboutToQuit.connect(terminal.shutdown)

    # Ctrl+C 退出；定时器让 Python 有机会处理信号
    signal.signal(signal.SIGINT, lambda *_: QCoreApplication.quit())
    signal_timer = QTimer()
    signal_timer.timeout.connect(lambda: None)
    signal_timer.start(200)

    if not terminal.start():
        terminal.shutdown()
        return 1
    return app.exec()


if __name__ == '__main__':
    sys.exit(main())
