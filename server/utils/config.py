# 配置管理工具
# 按 CONFIG_ENV 选择 config/config-<env>.json，并替换其中的 ${ENV_VAR} 占位符

import json
import os
import logging
from typing import Dict, Any, Optional
import re

_PLACEHOLDER_PATTERN = re.compile(r'\$\{([^}]+)\}')

REQUIRED_SECTIONS = ['app', 'server', 'database', 'payments', 'logging']


def _replace_env_vars(value: str) -> str:
    """
    替换环境变量占位符
    环境变量不存在时保留原样，由 Config.get_secret 识别为未配置
    """
    def replace_match(match):
        env_var = match.group(1)
        return os.getenv(env_var, match.group(0))

    return _PLACEHOLDER_PATTERN.sub(replace_match, value)


def _process_config_values(config: Any) -> Any:
    """
    递归处理配置值，替换环境变量
    """
    if isinstance(config, dict):
        return {k: _process_config_values(v) for k, v in config.items()}
    elif isinstance(config, list):
        return [_process_config_values(item) for item in config]
    elif isinstance(config, str):
        return _replace_env_vars(config)
    else:
        return config


def _server_dir() -> str:
    script_dir = os.path.dirname(os.path.abspath(__file__))
    return os.path.dirname(script_dir)


def load_config() -> Dict[str, Any]:
    """
    加载配置文件

    Returns:
        配置字典
    """
    config_env = os.getenv('CONFIG_ENV', 'development')

    config_files = {
        'production': 'config/config-prod.json',
        'development': 'config/config-dev.json',
    }

    config_file = os.getenv('CONFIG_FILE') or config_files.get(config_env, 'config/config.json')

    if not os.path.isabs(config_file):
        config_file = os.path.join(_server_dir(), config_file)

    try:
        with open(config_file, 'r', encoding='utf-8') as f:
            config = json.load(f)

        config = _process_config_values(config)

        logging.info(f"成功加载配置文件: {config_file}")
        return config

    except FileNotFoundError:
        logging.error(f"配置文件不存在: {config_file}")
        raise
    except json.JSONDecodeError as e:
        logging.error(f"配置文件JSON格式错误: {e}")
        raise


def get_database_path(config: Dict[str, Any]) -> str:
    """
    获取数据库路径，相对路径以 server 目录为基准

    Args:
        config: 配置字典

    Returns:
        数据库文件的绝对路径（或 :memory:）
    """
    db_path = config.get('database', {}).get('path', 'data/grandlink.db')

    if db_path != ':memory:' and not os.path.isabs(db_path):
        db_path = os.path.join(_server_dir(), db_path)

    return db_path


def validate_config(config: Dict[str, Any]) -> bool:
    """
    验证配置文件的完整性

    Args:
        config: 配置字典

    Returns:
        验证结果
    """
    for section in REQUIRED_SECTIONS:
        if section not in config:
            logging.error(f"配置文件缺少必需的section: {section}")
            return False

    payments = config.get('payments', {})
    fee = payments.get('reservation_fee_cents')
    if not isinstance(fee, int) or fee < 0:
        logging.error(f"预约费配置无效: {fee!r}")
        return False

    rate = payments.get('paypal', {}).get('php_per_usd')
    if not isinstance(rate, (int, float)) or rate <= 0:
        logging.error(f"PayPal汇率配置无效: {rate!r}")
        return False

    return True


class Config:
    """
    配置管理类
    """
    def __init__(self):
        self.env = os.getenv('CONFIG_ENV', 'development')
        self.config = load_config()

        if not validate_config(self.config):
            raise ValueError("配置文件验证失败")

    def get(self, key: str, default=None):
        """
        获取配置项，支持点号分隔的嵌套键

        Args:
            key: 配置键，支持 'payments.currency' 格式
            default: 默认值

        Returns:
            配置值
        """
        keys = key.split('.')
        value = self.config

        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

    def get_secret(self, key: str) -> Optional[str]:
        """
        获取密钥类配置，空值或未替换的占位符返回None
        """
        value = self.get(key)
        if not value or not isinstance(value, str):
            return None
        if _PLACEHOLDER_PATTERN.search(value):
            return None
        return value

    def get_database_config(self) -> Dict[str, Any]:
        """
        获取数据库配置

        Returns:
            数据库配置字典
        """
        db_config = self.config.get('database', {}).copy()
        db_config['path'] = get_database_path(self.config)
        return db_config
