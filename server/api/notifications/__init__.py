# 通知模块
