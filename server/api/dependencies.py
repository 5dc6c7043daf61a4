# FastAPI 依赖项：数据库连接、支付渠道和通知客户端
# 测试通过 app.dependency_overrides 替换

from typing import Any, Dict

from fastapi import Depends

from api.notifications.admin_notifier import AdminNotifier
from api.payments.paymongo_service import PayMongoService
from api.payments.paypal_service import PayPalService
from db.manager import DatabaseManager
from utils.config import Config

config = Config()


def get_config() -> Config:
    return config


def get_database():
    """获取数据库连接"""
    db_config = config.get_database_config()
    db_manager = DatabaseManager(db_config["path"], auto_connect=True)
    try:
        yield db_manager
    finally:
        db_manager.close()


def get_paymongo_service() -> PayMongoService:
    return PayMongoService.from_config(config)


def get_paypal_service() -> PayPalService:
    return PayPalService.from_config(config)


def get_payment_gateways(
    paymongo: PayMongoService = Depends(get_paymongo_service),
    paypal: PayPalService = Depends(get_paypal_service)
) -> Dict[str, Any]:
    return {"paymongo": paymongo, "paypal": paypal}


def get_admin_notifier() -> AdminNotifier:
    return AdminNotifier.from_config(config)
