# 统一API响应格式工具

from datetime import datetime, timezone
from typing import Any, Dict, Optional


def _timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def create_success_response(
    data: Any = None,
    message: str = "操作成功"
) -> Dict[str, Any]:
    """
    创建成功响应

    Args:
        data: 响应数据
        message: 成功消息

    Returns:
        标准格式的成功响应
    """
    return {
        "success": True,
        "data": data,
        "message": message,
        "timestamp": _timestamp()
    }


def create_error_response(
    error: str,
    error_code: str = "error",
    data: Optional[Any] = None
) -> Dict[str, Any]:
    """
    创建错误响应

    Args:
        error: 错误描述信息
        error_code: 机器可读的错误代码，如 inventory_conflict
        data: 可选的错误数据（例如库存冲突的商品ID）

    Returns:
        标准格式的错误响应
    """
    return {
        "success": False,
        "error": error,
        "error_code": error_code,
        "data": data,
        "timestamp": _timestamp()
    }
