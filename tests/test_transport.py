import pytest
import sys
import os
from unittest.mock import MagicMock, patch

import serial

# 添加项目根目录到Python路径
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from core.errors import SerialErrorType, TransportError
from core.transport import SerialTransport
from utils.data_models import FlowControl, Parity, SerialPortConfig


class TestSerialTransport:
    @patch("core.transport.serial.Serial")
    def test_open_maps_config(self, mock_serial_cls):
        transport = SerialTransport()
        config = SerialPortConfig(baud_rate=9600, data_bits=7, parity=Parity.EVEN, stop_bits=2,
                                  flow_control=FlowControl.HARDWARE, timeout_ms=500)
        transport.open("COM5", config)

        kwargs = mock_serial_cls.call_args.kwargs
        assert kwargs["port"] == "COM5"
        assert kwargs["baudrate"] == 9600
        assert kwargs["bytesize"] == 7
        assert kwargs["parity"] == serial.PARITY_EVEN
        assert kwargs["stopbits"] == serial.STOPBITS_TWO
        assert kwargs["rtscts"] is True
        assert kwargs["xonxoff"] is False
        assert kwargs["timeout"] == 0.5

    @patch("core.transport.serial.Serial", side_effect=serial.SerialException("access denied"))
    def test_open_failure_wrapped(self, _):
        transport = SerialTransport()
        with pytest.raises(TransportError) as exc_info:
            transport.open("COM5", SerialPortConfig())
        assert exc_info.value.error_type is SerialErrorType.PORT_UNAVAILABLE
        assert not transport.is_open

    @patch("core.transport.serial.Serial")
    def test_read_uses_waiting_bytes(self, mock_serial_cls):
        port = mock_serial_cls.return_value
        port.in_waiting = 3
        port.read.return_value = b"abc"
        transport = SerialTransport()
        transport.open("COM5", SerialPortConfig())

        assert transport.read(0.05) == b"abc"
        port.read.assert_called_with(3)
        assert port.timeout == 0.05

    @patch("core.transport.serial.Serial")
    def test_read_error_wrapped(self, mock_serial_cls):
        port = mock_serial_cls.return_value
        port.in_waiting = 0
        port.read.side_effect = serial.SerialException("device disconnected")
        transport = SerialTransport()
        transport.open("COM5", SerialPortConfig())

        with pytest.raises(TransportError) as exc_info:
            transport.read(0.01)
        assert exc_info.value.error_type is SerialErrorType.READ_FAILED

    @patch("core.transport.serial.Serial")
    def test_partial_write_is_an_error(self, mock_serial_cls):
        port = mock_serial_cls.return_value
        port.write.return_value = 2
        transport = SerialTransport()
        transport.open("COM5", SerialPortConfig())

        with pytest.raises(TransportError) as exc_info:
            transport.write(b"abcd")
        assert exc_info.value.error_type is SerialErrorType.WRITE_FAILED

    def test_read_write_before_open(self):
        transport = SerialTransport()
        with pytest.raises(TransportError):
            transport.read(0.01)
        with pytest.raises(TransportError):
            transport.write(b"x")
        transport.close()

    @patch("core.transport.serial.tools.list_ports.comports")
    def test_list_ports(self, mock_comports):
        mock_comports.return_value = [MagicMock(device="COM1", description="USB Serial")]
        assert SerialTransport.list_ports() == [{"name": "COM1", "description": "USB Serial"}]
