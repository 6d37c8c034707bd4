"""基础设施：日志与会话存储。"""
