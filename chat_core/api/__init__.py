"""HTTP 接入层：ChatService 与 FastAPI 应用。"""
