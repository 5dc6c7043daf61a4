# 日志配置管理工具

import logging
import logging.handlers
import os
from typing import Dict, Any

# 第三方库默认日志过于详细（每次HTTP请求都会输出）
_NOISY_LOGGERS = ('httpx', 'httpcore')


def _parse_size(size_str: str) -> int:
    """解析文件大小字符串，如 '10MB' -> 10485760"""
    size_str = str(size_str).strip().upper()
    units = {'KB': 1024, 'MB': 1024 ** 2, 'GB': 1024 ** 3}

    for suffix, multiplier in units.items():
        if size_str.endswith(suffix):
            return int(size_str[:-2]) * multiplier
    return int(size_str)


def setup_logging(config: Dict[str, Any]):
    """
    根据配置的 logging 段设置根日志器
    """
    log_config = config.get('logging', {})
    level_name = str(log_config.get('level', 'INFO')).upper()

    logger = logging.getLogger()

    # 清除现有的处理器，避免重复初始化时日志输出多次
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    logger.setLevel(getattr(logging, level_name, logging.INFO))

    formatter = logging.Formatter(log_config.get(
        'format',
        '%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s'
    ))

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_config.get('file_enabled', False):
        file_path = log_config.get('file_path', 'logs/checkout.log')
        log_dir = os.path.dirname(file_path)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            file_path,
            maxBytes=_parse_size(log_config.get('max_file_size', '10MB')),
            backupCount=log_config.get('backup_count', 5),
            encoding='utf-8'
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    third_party_level = log_config.get('third_party_level', 'WARNING')
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(getattr(logging, third_party_level, logging.WARNING))

    logging.info(f"日志系统初始化完成，级别: {level_name}")
