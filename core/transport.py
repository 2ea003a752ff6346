from typing import Dict, List, Optional

import serial
import serial.tools.list_ports

from core.errors import SerialErrorType, TransportError
from utils.constants import Constants
from utils.data_models import FlowControl, Parity, SerialPortConfig
from utils.logger import ErrorLogger

PARITY_MAP = {
    Parity.NONE: serial.PARITY_NONE,
    Parity.ODD: serial.PARITY_ODD,
    Parity.EVEN: serial.PARITY_EVEN,
    Parity.MARK: serial.PARITY_MARK,
    Parity.SPACE: serial.PARITY_SPACE,
}

STOP_BITS_MAP = {
    1: serial.STOPBITS_ONE,
    1.5: serial.STOPBITS_ONE_POINT_FIVE,
    2: serial.STOPBITS_TWO,
}


class SerialTransport:
    """pyserial 串口的薄封装，读写异常统一转换为 TransportError"""

    def __init__(self, error_logger: Optional[ErrorLogger] = None):
        self.error_logger = error_logger
        self.serial_port: Optional[serial.Serial] = None

    @staticmethod
    def list_ports() -> List[Dict[str, str]]:
        return [{"name": port.device, "description": port.description}
                for port in serial.tools.list_ports.comports()]

    @property
    def is_open(self) -> bool:
        return self.serial_port is not None and self.serial_port.is_open

    def open(self, port_name: str, config: SerialPortConfig) -> None:
        try:
            self.serial_port = serial.Serial(
                port=port_name,
                baudrate=config.baud_rate,
                bytesize=config.data_bits,
                parity=PARITY_MAP[config.parity],
                stopbits=STOP_BITS_MAP[config.stop_bits],
                timeout=config.timeout_ms / 1000.0,
                xonxoff=config.flow_control is FlowControl.SOFTWARE,
                rtscts=config.flow_control is FlowControl.HARDWARE,
                dsrdtr=False,
            )
        except (serial.SerialException, OSError, ValueError) as e:
            self.serial_port = None
            raise TransportError(f"打开串口 {port_name} 失败: {e}") from e
        if self.error_logger:
            self.error_logger.log_info(f"已打开 {port_name} @ {config.baud_rate} (pyserial)", "CONNECTION")

    def read(self, timeout_s: float) -> bytes:
        """最多等待 timeout_s 秒，超时返回空字节串"""
        if self.serial_port is None:
            raise TransportError("串口未打开", SerialErrorType.NOT_CONNECTED)
        try:
            self.serial_port.timeout = max(timeout_s, 0)
            return self.serial_port.read(min(self.serial_port.in_waiting, Constants.READ_CHUNK_SIZE) or 1)
        except (serial.SerialException, OSError) as e:
            raise TransportError(f"串口读取错误: {e}", SerialErrorType.READ_FAILED) from e

    def write(self, data: bytes) -> int:
        if self.serial_port is None:
            raise TransportError("串口未打开", SerialErrorType.NOT_CONNECTED)
        try:
            written = self.serial_port.write(bytes(data))
            self.serial_port.flush()
        except (serial.SerialException, OSError) as e:
            raise TransportError(f"串口写入错误: {e}", SerialErrorType.WRITE_FAILED) from e
        if written is not None and written != len(data):
            raise TransportError(f"串口部分写入: {written}/{len(data)} 字节", SerialErrorType.WRITE_FAILED)
        return len(data)

    def close(self) -> None:
        if self.serial_port is None:
            return
        try:
            if self.serial_port.is_open:
                self.serial_port.close()
        except (serial.SerialException, OSError) as e:
            if self.error_logger:
                self.error_logger.log_warning(f"关闭串口时出错: {e}", "CONNECTION")
        finally:
            self.serial_port = None
