"""HTTP 接入层（FastAPI）。

路由：
- GET  /health
- GET  /api/chat/models
- POST /api/chat            流式回答（text/event-stream）
- POST /api/chat/complete   非流式回答
- POST /api/chat/chain      链式处理

准入失败一律在发出任何流字节之前以 JSON 错误响应返回：
``{"error": <code>, "message": <text>, "timestamp": <iso>}``。
"""

import logging
from typing import Any, Dict, List, Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from chat_core.api.service import ChatService, get_default_service
from chat_core.config.settings import settings
from chat_core.domain.events import isoformat_z, utc_now
from chat_core.domain.exceptions import BusinessError
from chat_core.infrastructure.logging.logger import logger


class TurnRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: Optional[str] = None
    model: Optional[str] = None
    session_id: Optional[str] = Field(default=None, alias="sessionId")
    context: List[Dict[str, Any]] = Field(default_factory=list)
    attachments: List[Dict[str, Any]] = Field(default_factory=list)


class ChainRequest(BaseModel):
    message: Optional[str] = None
    chain: List[Dict[str, Any]] = Field(default_factory=list)
    context: Optional[Any] = None


SSE_HEADERS = {"Cache-Control": "no-cache", "X-Accel-Buffering": "no"}


def _error_body(code: str, message: str) -> Dict[str, Any]:
    return {"error": code, "message": message, "timestamp": isoformat_z(utc_now())}


def caller_key(request: Request) -> str:
    """限流用的调用方标识：客户端地址。

    Authorization 头未经校验，不能作为限流身份。
    """

    return request.client.host if request.client else "unknown"


def create_app(service: Optional[ChatService] = None) -> FastAPI:
    app = FastAPI(title="Chat Core API", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def _service() -> ChatService:
        return service or get_default_service()

    @app.exception_handler(BusinessError)
    async def business_error_handler(request: Request, exc: BusinessError) -> JSONResponse:
        status = exc.http_status if exc.http_status >= 400 else 500
        level = logging.ERROR if status >= 500 else logging.WARNING
        logger.log(
            level,
            "Request failed",
            extra={"extra": {"path": request.url.path, "code": exc.code, "error": exc.message, "status": status}},
        )
        return JSONResponse(status_code=status, content=_error_body(exc.code, exc.message))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        logger.info("Malformed request body", extra={"extra": {"path": request.url.path}})
        return JSONResponse(status_code=400, content=_error_body("VALIDATION_FAILED", "Malformed request body"))

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        return {"status": "ok", "timestamp": isoformat_z(utc_now())}

    @app.get("/api/chat/models")
    async def models() -> Dict[str, Any]:
        return _service().available_models()

    @app.post("/api/chat")
    async def chat_stream(body: TurnRequest, request: Request) -> StreamingResponse:
        svc = _service()
        req = svc.admit_turn(
            caller_key(request),
            body.message,
            model=body.model,
            session_id=body.session_id,
            context=body.context,
            attachments=body.attachments,
        )
        return StreamingResponse(svc.stream_turn(req), media_type="text/event-stream", headers=SSE_HEADERS)

    @app.post("/api/chat/complete")
    async def chat_complete(body: TurnRequest, request: Request) -> Dict[str, Any]:
        svc = _service()
        req = svc.admit_turn(
            caller_key(request),
            body.message,
            model=body.model,
            session_id=body.session_id,
            context=body.context,
            attachments=body.attachments,
        )
        return await svc.complete_turn(req)

    @app.post("/api/chat/chain")
    async def chat_chain(body: ChainRequest, request: Request) -> Dict[str, Any]:
        return await _service().run_chain(caller_key(request), body.message, body.chain)

    return app


def main() -> None:
    uvicorn.run(create_app(), host=settings.server_host, port=settings.server_port)


if __name__ == "__main__":
    main()
