"""
接收数据渲染

把一帧字节渲染为显示文本：十六进制，或按所选编码严格解码后做特殊字符可视化。
解码失败的帧单独回退为十六进制显示，不影响其他帧。
"""
import codecs
import re
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

from utils.constants import Constants
from utils.data_models import DisplaySettings, ReceiveFormat, SpecialCharConfig, TextEncoding

_MULTI_SPACE_RE = re.compile(r" {2,}")

GBK_EURO_BYTE = 0x80
_GBK_DECODE_ERRORS = "serial-gbk-euro"


def _gbk_euro_handler(exc: UnicodeError) -> Tuple[str, int]:
    # 单字节 0x80 按 €，其余非法序列照常报错
    if (isinstance(exc, UnicodeDecodeError) and exc.end == exc.start + 1
            and exc.object[exc.start] == GBK_EURO_BYTE):
        return "€", exc.end
    raise exc


codecs.register_error(_GBK_DECODE_ERRORS, _gbk_euro_handler)

# 接收端按 GB18030 解码 GBK 数据，四字节序列和 0x80 都能显示
_DECODE_CODECS = {
    TextEncoding.UTF8: ("utf-8", "strict"),
    TextEncoding.GBK: ("gb18030", _GBK_DECODE_ERRORS),
}


def format_bytes_as_hex(data: bytes) -> str:
    """'48 65 6C 6C 6F' 形式的大写十六进制，空数据返回空串"""
    return ' '.join(f'{b:02X}' for b in data)


def decode_strict(data: bytes, encoding: TextEncoding) -> Optional[str]:
    """严格解码，任何非法序列都返回 None"""
    codec, errors = _DECODE_CODECS.get(encoding, (encoding.value, "strict"))
    try:
        return bytes(data).decode(codec, errors=errors)
    except UnicodeDecodeError:
        return None


def visualize_spaces(text: str) -> str:
    # 行尾空格全部替换
    lines = []
    for line in text.split('\n'):
        trimmed = line.rstrip(' ')
        lines.append(trimmed + Constants.SYMBOL_SPACE * (len(line) - len(trimmed)))
    result = '\n'.join(lines)
    # 行中连续两个及以上的空格替换，单个空格保留
    return _MULTI_SPACE_RE.sub(lambda m: Constants.SYMBOL_SPACE * len(m.group(0)), result)


def visualize_special_chars(text: str, config: SpecialCharConfig) -> str:
    """按开关把控制字符替换为可见符号，替换顺序固定"""
    if not config.enabled:
        return text

    result = text
    if config.convert_lf:
        result = result.replace('\n', Constants.SYMBOL_LF)
    if config.convert_cr:
        result = result.replace('\r', Constants.SYMBOL_CR)
    if config.convert_tab:
        result = result.replace('\t', Constants.SYMBOL_TAB)
    if config.convert_null:
        result = result.replace('\x00', Constants.SYMBOL_NUL)
    if config.convert_esc:
        result = result.replace('\x1b', Constants.SYMBOL_ESC)
    if config.convert_spaces:
        result = visualize_spaces(result)
    return result


def format_bytes_as_text(data: bytes, encoding: TextEncoding,
                         special_chars: Optional[SpecialCharConfig] = None) -> str:
    text = decode_strict(data, encoding)
    if text is None:
        return format_bytes_as_hex(data)
    return visualize_special_chars(text, special_chars or SpecialCharConfig())


def format_data_for_display(data: bytes, settings: DisplaySettings) -> str:
    if settings.receive_format is ReceiveFormat.HEX:
        return format_bytes_as_hex(data)
    return format_bytes_as_text(data, settings.text_encoding, settings.special_chars)


def to_offset_time(dt: datetime, offset_minutes: int = 0) -> datetime:
    """把时间转换到 UTC+offset 时区；无时区信息的时间按 UTC 处理"""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone(timedelta(minutes=offset_minutes)))


def format_timestamp(dt: datetime, offset_minutes: int = 0) -> str:
    """HH:MM:SS.mmm"""
    return to_offset_time(dt, offset_minutes).strftime(Constants.TIMESTAMP_FORMAT)[:-3]
