# 支付渠道服务与主动扣款路由
# 路由在 api.main 中通过 api.payments.routes 注册
