import pytest
import sys
import os
from unittest.mock import MagicMock

# 添加项目根目录到Python路径
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from core.errors import ConfigurationError, SerialErrorType
from core.payload import append_line_ending, encode_payload, parse_hex_string, text_to_bytes
from utils.data_models import DataFormat, LineEnding, TextEncoding


class TestHexInput:
    def test_whitespace_is_ignored(self):
        assert parse_hex_string("48 65\n6c 6C\t6F") == b"Hello"

    def test_odd_length_rejected(self):
        with pytest.raises(ConfigurationError) as exc_info:
            parse_hex_string("48 6")
        assert exc_info.value.error_type is SerialErrorType.INVALID_INPUT

    def test_non_hex_rejected(self):
        with pytest.raises(ConfigurationError):
            parse_hex_string("4G")

    def test_empty(self):
        assert parse_hex_string("  ") == b""


class TestTextInput:
    def test_utf8(self):
        assert encode_payload("€", DataFormat.TEXT, TextEncoding.UTF8) == b"\xe2\x82\xac"

    def test_gbk(self):
        assert encode_payload("中文", DataFormat.TEXT, TextEncoding.GBK) == b"\xd6\xd0\xce\xc4"

    def test_gbk_unencodable_chars_replaced_and_logged(self):
        logger = MagicMock()
        data = text_to_bytes("a😀", TextEncoding.GBK, logger)
        assert data == b"a&#128512;"
        logger.log_warning.assert_called_once()

    def test_default_encoding_is_utf8(self):
        assert encode_payload("é", DataFormat.TEXT) == "é".encode("utf-8")


class TestLineEnding:
    @pytest.mark.parametrize("ending, expected", [
        (LineEnding.NONE, "AT"),
        (LineEnding.CR, "AT\r"),
        (LineEnding.LF, "AT\n"),
        (LineEnding.CRLF, "AT\r\n"),
    ])
    def test_text(self, ending, expected):
        assert append_line_ending("AT", ending, is_hex=False) == expected

    def test_hex(self):
        assert append_line_ending("41 54", LineEnding.CRLF, is_hex=True) == "41 54 0D 0A"
        assert parse_hex_string(append_line_ending("", LineEnding.LF, is_hex=True)) == b"\n"
