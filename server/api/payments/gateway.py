# 支付渠道公共结构

import hashlib
from dataclasses import dataclass, field
from typing import Any, Dict


@dataclass
class CheckoutSession:
    """支付渠道返回的结账会话"""
    provider: str
    session_id: str
    checkout_url: str
    currency: str
    provider_amount_cents: int
    raw: Dict[str, Any] = field(default_factory=dict)


def mock_session_id(prefix: str, reference: str) -> str:
    """模拟模式下根据 receipt_ref 生成稳定的会话ID"""
    digest = hashlib.md5(reference.encode()).hexdigest()[:24]
    return f"{prefix}_mock_{digest}"


def append_query(url: str, **params: str) -> str:
    query = "&".join(f"{key}={value}" for key, value in params.items())
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}{query}"
