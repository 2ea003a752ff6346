"""发送数据转换：文本/十六进制输入 -> 字节"""
import string
from typing import Optional

from core.errors import ConfigurationError, SerialErrorType
from utils.data_models import DataFormat, LineEnding, TextEncoding
from utils.logger import ErrorLogger

_LINE_ENDING_TEXT = {
    LineEnding.CR: "\r",
    LineEnding.LF: "\n",
    LineEnding.CRLF: "\r\n",
}

_LINE_ENDING_HEX = {
    LineEnding.CR: "0D",
    LineEnding.LF: "0A",
    LineEnding.CRLF: "0D 0A",
}


def parse_hex_string(hex_string: str) -> bytes:
    """严格解析十六进制输入，允许任意空白分隔

    长度为奇数或含非十六进制字符时抛出 ConfigurationError。
    """
    clean_hex = ''.join(hex_string.split())
    if len(clean_hex) % 2 != 0:
        raise ConfigurationError("Hex string must have even number of characters",
                                 SerialErrorType.INVALID_INPUT)
    if any(c not in string.hexdigits for c in clean_hex):
        raise ConfigurationError("Invalid hex characters", SerialErrorType.INVALID_INPUT)
    return bytes.fromhex(clean_hex)


def text_to_bytes(text: str, encoding: TextEncoding = TextEncoding.UTF8,
                  error_logger: Optional[ErrorLogger] = None) -> bytes:
    try:
        return text.encode(encoding.value)
    except UnicodeEncodeError as e:
        if encoding is TextEncoding.UTF8:
            raise ConfigurationError(f"文本无法编码为 UTF-8: {e}", SerialErrorType.INVALID_INPUT) from e
        # GBK 无法表示的字符以 &#NNNN; 形式发送，其余字符照常发送
        if error_logger:
            error_logger.log_warning(f"部分字符无法编码为 {encoding.value}，已替换为字符引用", "SEND")
        return text.encode(encoding.value, errors="xmlcharrefreplace")


def encode_payload(data: str, data_format: DataFormat,
                   encoding: Optional[TextEncoding] = None,
                   error_logger: Optional[ErrorLogger] = None) -> bytes:
    if data_format is DataFormat.HEX:
        return parse_hex_string(data)
    return text_to_bytes(data, encoding or TextEncoding.UTF8, error_logger)


def append_line_ending(data: str, line_ending: LineEnding, is_hex: bool) -> str:
    """快捷指令的行尾追加，十六进制输入以字节形式追加"""
    if line_ending is LineEnding.NONE:
        return data
    if is_hex:
        ending = _LINE_ENDING_HEX[line_ending]
        return f"{data} {ending}" if data.strip() else ending
    return data + _LINE_ENDING_TEXT[line_ending]
