from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any

from utils.constants import Constants


class Parity(Enum):
    NONE = "None"
    ODD = "Odd"
    EVEN = "Even"
    MARK = "Mark"
    SPACE = "Space"


class FlowControl(Enum):
    NONE = "None"
    SOFTWARE = "Software"
    HARDWARE = "Hardware"


class FrameSegmentationMode(Enum):
    """分帧模式"""
    TIMEOUT = "Timeout"
    DELIMITER = "Delimiter"
    COMBINED = "Combined"


class DelimiterKind(Enum):
    ANY_NEWLINE = "AnyNewline"
    CR = "CR"
    LF = "LF"
    CRLF = "CRLF"
    CUSTOM = "Custom"


class ChecksumType(Enum):
    NONE = "None"
    XOR = "XOR"
    ADD8 = "ADD8"
    CRC8 = "CRC8"
    CRC16 = "CRC16"
    CCITT_CRC16 = "CCITT-CRC16"


class ReceiveFormat(Enum):
    """接收区显示格式"""
    HEX = "Hex"
    TEXT = "Text"


class TextEncoding(Enum):
    UTF8 = "utf-8"
    GBK = "gbk"


class DataFormat(Enum):
    """发送输入格式"""
    TEXT = "Text"
    HEX = "Hex"


class LineEnding(Enum):
    NONE = "None"
    CR = "\\r"
    LF = "\\n"
    CRLF = "\\r\\n"


class Direction(Enum):
    SENT = "Sent"
    RECEIVED = "Received"

    @property
    def label(self) -> str:
        return "TX" if self is Direction.SENT else "RX"


class ExportFormat(Enum):
    TXT = "Txt"
    CSV = "Csv"
    JSON = "Json"


@dataclass(frozen=True)
class SerialPortConfig:
    """串口配置数据类，连接建立后不可变"""
    port_name: Optional[str] = None
    baud_rate: int = Constants.DEFAULT_BAUD_RATE
    data_bits: int = 8
    parity: Parity = Parity.NONE
    stop_bits: float = 1
    flow_control: FlowControl = FlowControl.NONE
    timeout_ms: int = Constants.DEFAULT_READ_TIMEOUT_MS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "port_name": self.port_name,
            "baud_rate": self.baud_rate,
            "data_bits": self.data_bits,
            "parity": self.parity.value,
            "stop_bits": self.stop_bits,
            "flow_control": self.flow_control.value,
            "timeout_ms": self.timeout_ms,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SerialPortConfig":
        default = cls()
        return cls(
            port_name=data.get("port_name", default.port_name),
            baud_rate=int(data.get("baud_rate", default.baud_rate)),
            data_bits=int(data.get("data_bits", default.data_bits)),
            parity=Parity(data.get("parity", default.parity.value)),
            stop_bits=float(data.get("stop_bits", default.stop_bits)),
            flow_control=FlowControl(data.get("flow_control", default.flow_control.value)),
            timeout_ms=int(data.get("timeout_ms", default.timeout_ms)),
        )


@dataclass(frozen=True)
class FrameDelimiter:
    """帧分隔符。AnyNewline 同时匹配 CR、LF、CRLF"""
    kind: DelimiterKind = DelimiterKind.ANY_NEWLINE
    custom: bytes = b""

    @classmethod
    def any_newline(cls) -> "FrameDelimiter":
        return cls(DelimiterKind.ANY_NEWLINE)

    @classmethod
    def from_bytes(cls, sequence: bytes) -> "FrameDelimiter":
        return cls(DelimiterKind.CUSTOM, bytes(sequence))

    @property
    def is_any_newline(self) -> bool:
        return self.kind is DelimiterKind.ANY_NEWLINE

    def to_bytes(self) -> bytes:
        if self.kind is DelimiterKind.CR:
            return b"\r"
        if self.kind is DelimiterKind.LF:
            return b"\n"
        if self.kind is DelimiterKind.CRLF:
            return b"\r\n"
        if self.kind is DelimiterKind.CUSTOM:
            return self.custom
        return b""

    def to_config_value(self) -> Any:
        # 与配置文件格式一致: "CRLF" 或 {"Custom": [13, 10]}
        if self.kind is DelimiterKind.CUSTOM:
            return {"Custom": list(self.custom)}
        return self.kind.value

    @classmethod
    def from_config_value(cls, value: Any) -> "FrameDelimiter":
        if isinstance(value, dict):
            if "Custom" not in value:
                raise ValueError(f"未知的分隔符定义: {value}")
            return cls.from_bytes(bytes(value["Custom"]))
        kind = DelimiterKind(value)
        if kind is DelimiterKind.CUSTOM:
            raise ValueError("自定义分隔符必须给出字节序列")
        return cls(kind)


@dataclass(frozen=True)
class FrameSegmentationConfig:
    """分帧配置"""
    mode: FrameSegmentationMode = FrameSegmentationMode.TIMEOUT
    timeout_ms: int = Constants.DEFAULT_FRAME_TIMEOUT_MS
    delimiter: FrameDelimiter = field(default_factory=FrameDelimiter)
    include_delimiter: bool = True
    max_frame_bytes: int = Constants.MAX_FRAME_BYTES

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode.value,
            "timeout_ms": self.timeout_ms,
            "delimiter": self.delimiter.to_config_value(),
            "include_delimiter": self.include_delimiter,
            "max_frame_bytes": self.max_frame_bytes,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FrameSegmentationConfig":
        default = cls()
        delimiter = default.delimiter
        if "delimiter" in data:
            delimiter = FrameDelimiter.from_config_value(data["delimiter"])
        return cls(
            mode=FrameSegmentationMode(data.get("mode", default.mode.value)),
            timeout_ms=int(data.get("timeout_ms", default.timeout_ms)),
            delimiter=delimiter,
            include_delimiter=bool(data.get("include_delimiter", default.include_delimiter)),
            max_frame_bytes=int(data.get("max_frame_bytes", default.max_frame_bytes)),
        )


@dataclass(frozen=True)
class ChecksumConfig:
    """校验配置。end_index 支持负数下标，-1 表示最后一个字节"""
    checksum_type: ChecksumType = ChecksumType.NONE
    start_index: int = 0
    end_index: int = -1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.checksum_type.value,
            "start_index": self.start_index,
            "end_index": self.end_index,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChecksumConfig":
        return cls(
            checksum_type=ChecksumType(data.get("type", ChecksumType.NONE.value)),
            start_index=int(data.get("start_index", 0)),
            end_index=int(data.get("end_index", -1)),
        )


@dataclass(frozen=True)
class SpecialCharConfig:
    """特殊字符可视化开关"""
    enabled: bool = True
    convert_lf: bool = True
    convert_cr: bool = True
    convert_tab: bool = True
    convert_null: bool = True
    convert_esc: bool = True
    convert_spaces: bool = True


@dataclass(frozen=True)
class DisplaySettings:
    """显示设置，只影响设置变更之后产生的日志"""
    receive_format: ReceiveFormat = ReceiveFormat.TEXT
    text_encoding: TextEncoding = TextEncoding.UTF8
    special_chars: SpecialCharConfig = field(default_factory=SpecialCharConfig)
    show_timestamps: bool = True
    timezone_offset_minutes: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "receive_format": self.receive_format.value,
            "text_encoding": self.text_encoding.value,
            "special_chars": asdict(self.special_chars),
            "show_timestamps": self.show_timestamps,
            "timezone_offset_minutes": self.timezone_offset_minutes,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DisplaySettings":
        default = cls()
        special = default.special_chars
        if "special_chars" in data:
            special = SpecialCharConfig(**data["special_chars"])
        return cls(
            receive_format=ReceiveFormat(data.get("receive_format", default.receive_format.value)),
            text_encoding=TextEncoding(data.get("text_encoding", default.text_encoding.value)),
            special_chars=special,
            show_timestamps=bool(data.get("show_timestamps", default.show_timestamps)),
            timezone_offset_minutes=int(data.get("timezone_offset_minutes", default.timezone_offset_minutes)),
        )


@dataclass(frozen=True)
class LogEntry:
    """一条日志记录，创建后不再修改"""
    id: Optional[int]
    timestamp: datetime
    direction: Direction
    data: bytes
    display_text: str
    timestamp_text: Optional[str]
    port_name: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "direction": self.direction.value,
            "data": self.data.hex(),
            "display_text": self.display_text,
            "timestamp_text": self.timestamp_text,
            "port_name": self.port_name,
        }


@dataclass(frozen=True)
class ConnectionStatus:
    is_connected: bool = False
    port_name: Optional[str] = None
    config: Optional[SerialPortConfig] = None
    bytes_sent: int = 0
    bytes_received: int = 0
    connection_time: Optional[datetime] = None


@dataclass(frozen=True)
class RecordingStatus:
    text_recording_active: bool = False
    raw_recording_active: bool = False
    text_file_path: Optional[str] = None
    raw_file_path: Optional[str] = None
