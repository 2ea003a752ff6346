import copy
import json
from pathlib import Path
from typing import Optional, Dict, Any

from utils.constants import Constants
from utils.data_models import (
    SerialPortConfig, FrameSegmentationConfig, DisplaySettings, ChecksumConfig
)
from utils.logger import ErrorLogger


class ConfigManager:
    def __init__(self, filename: str = Constants.CONFIG_FILE_NAME, error_logger: Optional[ErrorLogger] = None):
        self.config_file = Path(filename)
        self.error_logger = error_logger

        self.default_config: Dict[str, Any] = {
            # 串口参数（端口名可为空，由命令行或界面指定）
            "serial_port": SerialPortConfig().to_dict(),
            # 接收分帧
            "frame_segmentation": FrameSegmentationConfig().to_dict(),
            # 接收显示
            "display": DisplaySettings().to_dict(),
            # 发送校验
            "checksum": ChecksumConfig().to_dict(),
            "log_limit": Constants.DEFAULT_LOG_LIMIT,
            "recording": {
                "log_directory": str(Constants.default_log_directory()),
                "auto_text": False,
                "auto_raw": False,
            },
        }

    def get_default_config(self) -> Dict[str, Any]:
        return copy.deepcopy(self.default_config)

    def load_config(self) -> Dict[str, Any]:
        if self.config_file.exists():
            try:
                with open(self.config_file, 'r', encoding='utf-8') as f:
                    loaded_config = json.load(f)
                if not isinstance(loaded_config, dict):
                    raise ValueError("配置文件顶层必须是 JSON 对象")

                # 以默认配置为基础，用加载的值覆盖，保证缺失的键使用默认值
                config_to_return = self.get_default_config()

                for key, default_value in self.default_config.items():
                    if key in loaded_config:
                        # 字典类型做浅合并，保留加载文件中缺失的默认子键
                        if isinstance(default_value, dict) and isinstance(loaded_config[key], dict):
                            merged_dict = copy.deepcopy(default_value)
                            merged_dict.update(loaded_config[key])
                            config_to_return[key] = merged_dict
                        else:
                            config_to_return[key] = loaded_config[key]

                # 保留默认配置中没有的键（旧版本遗留）
                for key, value in loaded_config.items():
                    if key not in config_to_return:
                        config_to_return[key] = value

                if self.error_logger:
                    self.error_logger.log_info(f"配置已从 '{self.config_file}' 加载。", "CONFIG")
                return config_to_return

            except (OSError, ValueError) as e:
                if self.error_logger:
                    self.error_logger.log_error(f"加载配置文件 '{self.config_file}' 失败: {e}. 使用默认配置。", "CONFIG")
                return self.get_default_config()

        if self.error_logger:
            self.error_logger.log_info(f"配置文件 '{self.config_file}' 未找到。使用默认配置。", "CONFIG")
        return self.get_default_config()

    def save_config(self, config: Dict[str, Any]) -> bool:
        try:
            self.config_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_file, 'w', encoding='utf-8') as f:
                json.dump(config, f, indent=4, ensure_ascii=False)
            if self.error_logger:
                self.error_logger.log_info(f"配置已保存到 '{self.config_file}'。", "CONFIG")
            return True
        except (OSError, TypeError) as e:
            if self.error_logger:
                self.error_logger.log_error(f"保存配置文件到 '{self.config_file}' 失败: {e}", "CONFIG")
            return False
