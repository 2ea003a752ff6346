"""
发送校验计算

校验只在 ChecksumConfig 指定的字节区间内计算，区间下标与 Python 切片一致地支持负数，
但两端都是闭区间: end_index=-1 表示最后一个字节。
"""
from typing import Callable, Dict, Tuple

import crcmod

from utils.constants import Constants
from utils.data_models import ChecksumConfig, ChecksumType

# CRC-8: poly 0x07, init 0x00, 不反转
crc8_func = crcmod.mkCrcFun(poly=0x107, initCrc=0x00, rev=False, xorOut=0x00)
# CRC-16 (IBM/MODBUS): poly 0x8005 反转(0xA001), init 0xFFFF
crc16_func = crcmod.mkCrcFun(poly=0x18005, initCrc=0xFFFF, rev=True, xorOut=0x0000)
# CRC-16/CCITT-FALSE: poly 0x1021, init 0xFFFF, 不反转
crc16_ccitt_false_func = crcmod.mkCrcFun(poly=0x11021, initCrc=0xFFFF, rev=False, xorOut=0x0000)


def resolve_checksum_range(length: int, start_index: int, end_index: int) -> Tuple[int, int]:
    """把用户配置的闭区间下标解析为半开区间 [start, end)

    空区间统一返回 (0, 0)。
    """
    start = max(0, start_index)
    if end_index < 0:
        end = length + end_index + 1
    else:
        end = min(end_index + 1, length)

    if start >= length or end <= start:
        return 0, 0
    return start, end


def get_checksum_range(data: bytes, start_index: int, end_index: int) -> bytes:
    start, end = resolve_checksum_range(len(data), start_index, end_index)
    return bytes(data[start:end])


def calculate_xor(data: bytes) -> bytes:
    result = 0
    for byte_val in data:
        result ^= byte_val
    return bytes([result & 0xFF])


def calculate_add8(data: bytes) -> bytes:
    return bytes([sum(data) & 0xFF])


def calculate_crc8(data: bytes) -> bytes:
    return bytes([crc8_func(bytes(data))])


def calculate_crc16(data: bytes) -> bytes:
    """CRC16 结果低字节在前"""
    return crc16_func(bytes(data)).to_bytes(2, "little")


def calculate_ccitt_crc16(data: bytes) -> bytes:
    """CCITT-CRC16 结果高字节在前"""
    return crc16_ccitt_false_func(bytes(data)).to_bytes(2, "big")


CHECKSUM_FUNCTIONS: Dict[ChecksumType, Callable[[bytes], bytes]] = {
    ChecksumType.XOR: calculate_xor,
    ChecksumType.ADD8: calculate_add8,
    ChecksumType.CRC8: calculate_crc8,
    ChecksumType.CRC16: calculate_crc16,
    ChecksumType.CCITT_CRC16: calculate_ccitt_crc16,
}


def checksum_length(checksum_type: ChecksumType) -> int:
    return Constants.CHECKSUM_WIDTHS[checksum_type.value]


def calculate_checksum(data: bytes, config: ChecksumConfig) -> bytes:
    """按配置计算校验值；类型为 None 或区间为空时返回空字节串"""
    if config.checksum_type is ChecksumType.NONE:
        return b""

    range_data = get_checksum_range(data, config.start_index, config.end_index)
    if not range_data:
        return b""

    return CHECKSUM_FUNCTIONS[config.checksum_type](range_data)


def append_checksum(data: bytes, config: ChecksumConfig) -> bytes:
    return bytes(data) + calculate_checksum(data, config)


def verify_checksum(frame: bytes, config: ChecksumConfig) -> bool:
    """检查帧尾的校验字节是否与前面负载按同一配置算出的校验一致"""
    width = checksum_length(config.checksum_type)
    if width == 0:
        return True
    if len(frame) <= width:
        return False
    payload, received = bytes(frame[:-width]), bytes(frame[-width:])
    return calculate_checksum(payload, config) == received
