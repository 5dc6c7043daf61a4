# FastAPI主应用

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from api.dependencies import config
from api.middleware import setup_middleware
from utils.exceptions import StoreError
from utils.logger import setup_logging
from utils.response import create_error_response

# 导入所有路由
from api.checkout import checkout_router
from api.webhooks import webhooks_router
from api.payments.routes import router as payments_router
from api.orders import orders_router
from api.reservations import reservations_router
from api.vouchers import vouchers_router

# 设置日志
setup_logging(config.config)
logger = logging.getLogger(__name__)

PAYMENT_SECRET_KEYS = (
    "payments.paymongo.secret_key",
    "payments.paymongo.webhook_secret",
    "payments.paypal.client_id",
    "payments.paypal.client_secret",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    logger.info(f"{config.config['app']['name']} 启动中...")
    logger.info(f"环境: {config.env}")
    logger.info(f"调试模式: {config.config['app']['debug']}")
    logger.info(f"预约费: {config.get('payments.reservation_fee_cents')} 分")

    if not config.config['app']['debug']:
        for key in PAYMENT_SECRET_KEYS:
            if not config.get_secret(key):
                logger.error(f"缺少支付配置 {key}，相关接口将返回 503")

    yield

    logger.info(f"{config.config['app']['name']} 关闭中...")


app = FastAPI(
    title=config.config['app']['name'],
    version=config.config['app']['version'],
    description=config.config['app']['description'],
    debug=config.config['app']['debug'],
    lifespan=lifespan
)

setup_middleware(app, config.config)

app.include_router(checkout_router, tags=["结账"])
app.include_router(webhooks_router, tags=["支付回调"])
app.include_router(payments_router, tags=["支付"])
app.include_router(orders_router, tags=["订单"])
app.include_router(reservations_router, tags=["预约"])
app.include_router(vouchers_router, tags=["优惠码"])


# 全局异常处理器
@app.exception_handler(StoreError)
async def store_exception_handler(request, exc: StoreError):
    """业务异常处理"""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} 失败: {exc.message}")
    else:
        logger.warning(f"{request.method} {request.url.path} 被拒绝: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content=create_error_response(exc.message, error_code=exc.error_code, data=exc.data)
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request, exc: RequestValidationError):
    """请求参数校验失败"""
    errors = [
        {"field": ".".join(str(part) for part in error.get("loc", [])), "message": error.get("msg")}
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content=create_error_response("请求参数错误", error_code="validation_error", data={"errors": errors})
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request, exc: HTTPException):
    """HTTP异常处理"""
    return JSONResponse(
        status_code=exc.status_code,
        content=create_error_response(str(exc.detail), error_code="http_error")
    )


@app.exception_handler(Exception)
async def general_exception_handler(request, exc):
    """通用异常处理"""
    logger.error(f"未处理的异常: {str(exc)}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content=create_error_response("服务器内部错误", error_code="internal_error")
    )


@app.get("/")
async def root():
    """根路径健康检查"""
    return {
        "message": f"{config.config['app']['name']} 运行中",
        "version": config.config['app']['version'],
        "status": "healthy"
    }


@app.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "version": config.config['app']['version'],
        "environment": config.env
    }


if __name__ == "__main__":
    import uvicorn

    server_config = config.config['server']

    uvicorn.run(
        "api.main:app",
        host=server_config.get('host', '127.0.0.1'),
        port=server_config.get('port', 8000),
        reload=server_config.get('reload', False),
        workers=1 if server_config.get('reload', False) else server_config.get('workers', 1),
        log_level="debug" if config.config['app']['debug'] else "info"
    )
