"""
接收分帧

把到达时间不确定的字节流切成帧。三种模式：
  - Timeout: 空闲超过 timeout_ms 即成帧
  - Delimiter: 遇到分隔符成帧，空闲不会成帧
  - Combined: 两者同时生效，同一批数据内分隔符优先

分帧器本身不加锁，由调用方串行访问。
"""
import dataclasses
from dataclasses import dataclass
from typing import List, Optional, Tuple

from core.errors import ConfigurationError
from utils.constants import Constants
from utils.data_models import DelimiterKind, FrameSegmentationConfig, FrameSegmentationMode

CR = 0x0D
LF = 0x0A


@dataclass(frozen=True)
class Frame:
    data: bytes
    arrival_time: float  # 完成该帧的那批数据的到达时间（monotonic 秒）


def validate_segmentation_config(config: FrameSegmentationConfig) -> FrameSegmentationConfig:
    """校验分帧配置，返回超时已钳位后的配置"""
    if not isinstance(config.mode, FrameSegmentationMode):
        raise ConfigurationError(f"未知的分帧模式: {config.mode}")
    if config.delimiter.kind is DelimiterKind.CUSTOM and not config.delimiter.custom:
        raise ConfigurationError("自定义分隔符不能为空")
    try:
        requested_ms = int(config.timeout_ms)
        max_frame_bytes = int(config.max_frame_bytes)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"无效的分帧参数: {e}") from e
    if max_frame_bytes < 1:
        raise ConfigurationError(f"max_frame_bytes 必须为正数: {config.max_frame_bytes}")

    timeout_ms = min(max(requested_ms, Constants.MIN_FRAME_TIMEOUT_MS),
                     Constants.MAX_FRAME_TIMEOUT_MS)
    if timeout_ms != config.timeout_ms or max_frame_bytes != config.max_frame_bytes:
        config = dataclasses.replace(config, timeout_ms=timeout_ms, max_frame_bytes=max_frame_bytes)
    return config


class FrameSegmenter:
    def __init__(self, config: Optional[FrameSegmentationConfig] = None):
        self._config = validate_segmentation_config(config or FrameSegmentationConfig())
        self._buffer = bytearray()
        self._last_arrival: Optional[float] = None
        # 已确认不含分隔符起点的前缀长度，避免重复扫描
        self._scan_offset = 0

    @property
    def config(self) -> FrameSegmentationConfig:
        return self._config

    @property
    def pending_bytes(self) -> int:
        return len(self._buffer)

    def set_config(self, config: FrameSegmentationConfig) -> FrameSegmentationConfig:
        """新配置从下一次累积开始生效，缓冲区中已有的数据保留"""
        self._config = validate_segmentation_config(config)
        self._scan_offset = 0
        return self._config

    def reset(self):
        self._buffer.clear()
        self._last_arrival = None
        self._scan_offset = 0

    def feed(self, chunk: bytes, arrival_time: float) -> List[Frame]:
        frames: List[Frame] = []
        if not chunk:
            return frames

        # 距上一批数据已超过空闲时间，先把挂起的数据成帧，不依赖 tick 的调用频率
        if (self._uses_timeout() and self._buffer and self._last_arrival is not None
                and arrival_time - self._last_arrival >= self._timeout_s()):
            frames.extend(self._emit_residual(self._last_arrival))

        self._buffer.extend(chunk)
        self._last_arrival = arrival_time

        if self._uses_delimiter():
            frames.extend(self._scan(arrival_time, final=False))
        frames.extend(self._enforce_cap(arrival_time))
        return frames

    def tick(self, now: float) -> List[Frame]:
        """空闲检查，由读线程每次唤醒时调用"""
        if not self._buffer or self._last_arrival is None:
            return []
        if now - self._last_arrival < self._timeout_s():
            return []

        if self._uses_timeout():
            return self._emit_residual(self._last_arrival)
        # Delimiter 模式下空闲只用于确认缓冲区末尾的 CR 不是 CRLF 的前半
        if self._has_pending_cr():
            return self._scan(self._last_arrival, final=True)
        return []

    def flush(self, now: Optional[float] = None) -> List[Frame]:
        """把剩余数据作为最后一帧输出（断开连接时调用）"""
        if not self._buffer:
            self._last_arrival = None
            return []
        arrival = self._last_arrival if self._last_arrival is not None else now
        frames = self._emit_residual(arrival if arrival is not None else 0.0)
        self._last_arrival = None
        return frames

    def next_deadline(self, now: float) -> Optional[float]:
        """下一次需要 tick 的时间点，没有需要等待的数据时返回 None"""
        if not self._buffer or self._last_arrival is None:
            return None
        if self._uses_timeout() or self._has_pending_cr():
            return self._last_arrival + self._timeout_s()
        return None

    # ------------------------------------------------------------------

    def _timeout_s(self) -> float:
        return self._config.timeout_ms / 1000.0

    def _uses_timeout(self) -> bool:
        return self._config.mode in (FrameSegmentationMode.TIMEOUT, FrameSegmentationMode.COMBINED)

    def _uses_delimiter(self) -> bool:
        return self._config.mode in (FrameSegmentationMode.DELIMITER, FrameSegmentationMode.COMBINED)

    def _has_pending_cr(self) -> bool:
        return (self._uses_delimiter() and self._config.delimiter.is_any_newline
                and bool(self._buffer) and self._buffer[-1] == CR)

    def _find_delimiter(self, final: bool) -> Optional[Tuple[int, int]]:
        """返回第一个分隔符的 (起点, 终点)，找不到返回 None"""
        buf = self._buffer
        if self._config.delimiter.is_any_newline:
            positions = [p for p in (buf.find(b"\r", self._scan_offset),
                                     buf.find(b"\n", self._scan_offset)) if p >= 0]
            if not positions:
                self._scan_offset = len(buf)
                return None
            pos = min(positions)
            if buf[pos] == LF:
                return pos, pos + 1
            if pos + 1 < len(buf):
                return (pos, pos + 2) if buf[pos + 1] == LF else (pos, pos + 1)
            # CR 在缓冲区末尾，等下一个字节确定是否为 CRLF
            if final:
                return pos, pos + 1
            self._scan_offset = pos
            return None

        delimiter = self._config.delimiter.to_bytes()
        pos = buf.find(delimiter, self._scan_offset)
        if pos < 0:
            # 保留可能是分隔符前半部分的尾巴
            self._scan_offset = max(0, len(buf) - len(delimiter) + 1)
            return None
        return pos, pos + len(delimiter)

    def _scan(self, arrival_time: float, final: bool) -> List[Frame]:
        frames: List[Frame] = []
        while self._buffer:
            match = self._find_delimiter(final)
            if match is None:
                break
            start, end = match
            data = bytes(self._buffer[:end] if self._config.include_delimiter else self._buffer[:start])
            del self._buffer[:end]
            self._scan_offset = 0
            if data:
                frames.append(Frame(data, arrival_time))
        return frames

    def _emit_residual(self, arrival_time: float) -> List[Frame]:
        frames: List[Frame] = []
        if self._uses_delimiter():
            frames.extend(self._scan(arrival_time, final=True))
        if self._buffer:
            frames.append(Frame(bytes(self._buffer), arrival_time))
            self._buffer.clear()
        self._scan_offset = 0
        return frames

    def _pending_delimiter_prefix(self) -> int:
        """缓冲区末尾可能是分隔符前半部分的字节数"""
        if not self._uses_delimiter() or not self._buffer:
            return 0
        if self._config.delimiter.is_any_newline:
            return 1 if self._buffer[-1] == CR else 0
        delimiter = self._config.delimiter.to_bytes()
        for size in range(min(len(delimiter) - 1, len(self._buffer)), 0, -1):
            if self._buffer.endswith(delimiter[:size]):
                return size
        return 0

    def _enforce_cap(self, arrival_time: float) -> List[Frame]:
        # 截断时保留末尾的分隔符前缀，分隔符不会被拆到两帧中
        frames: List[Frame] = []
        limit = self._config.max_frame_bytes
        while len(self._buffer) - self._pending_delimiter_prefix() >= limit:
            frames.append(Frame(bytes(self._buffer[:limit]), arrival_time))
            del self._buffer[:limit]
            self._scan_offset = 0
        return frames
