#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
错误定义模块

串口收发管线中使用的异常类和错误枚举。解码错误在渲染时就地回退为十六进制显示，
因此没有对应的异常类。
"""

from enum import Enum


class SerialErrorType(Enum):
    """错误类型枚举"""
    PORT_UNAVAILABLE = "port_unavailable"
    NOT_CONNECTED = "not_connected"
    READ_FAILED = "read_failed"
    WRITE_FAILED = "write_failed"
    INVALID_CONFIG = "invalid_config"
    INVALID_INPUT = "invalid_input"
    RECORDING_ACTIVE = "recording_active"
    RECORDING_IO = "recording_io"


class SerialDebugException(Exception):
    """异常基类"""
    def __init__(self, error_type: SerialErrorType, message: str):
        self.error_type = error_type
        super().__init__(f"[{error_type.value}] {message}")


class TransportError(SerialDebugException):
    """串口打开、读写失败"""
    def __init__(self, message: str, error_type: SerialErrorType = SerialErrorType.PORT_UNAVAILABLE):
        super().__init__(error_type, message)


class ConfigurationError(SerialDebugException, ValueError):
    """配置或输入非法，在进入管线之前被拒绝"""
    def __init__(self, message: str, error_type: SerialErrorType = SerialErrorType.INVALID_CONFIG):
        super().__init__(error_type, message)


class RecordingError(SerialDebugException):
    """录制会话状态错误或文件无法创建"""
    def __init__(self, message: str, error_type: SerialErrorType = SerialErrorType.RECORDING_IO):
        super().__init__(error_type, message)
