# 管理员通知外发
# 付款确认后向外部通知系统发送一次摘要，失败只记日志，不重试

import logging
from typing import Any, Dict, Optional

import httpx

from utils.config import Config

logger = logging.getLogger(__name__)


class AdminNotifier:
    """管理员通知客户端，未配置 admin_url 时不发送"""

    def __init__(self, admin_url: Optional[str] = None, timeout: float = 5.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.admin_url = admin_url
        self.timeout = timeout
        self.transport = transport

    @classmethod
    def from_config(cls, config: Config) -> "AdminNotifier":
        return cls(
            admin_url=config.get_secret("notifications.admin_url"),
            timeout=config.get("notifications.timeout_seconds", 5),
        )

    async def notify(self, notification: Optional[Dict[str, Any]]) -> bool:
        """
        发送通知

        Returns:
            是否发送成功
        """
        if not notification:
            return False
        if not self.admin_url:
            logger.debug("管理员通知地址未配置，跳过外发")
            return False

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(self.admin_url, json=notification)
                response.raise_for_status()
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.error(f"管理员通知发送失败: {str(e)}")
            return False

        logger.info(f"管理员通知已发送: {notification.get('title')}")
        return True
