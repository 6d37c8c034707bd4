"""流式传输层。

- sse: SSE 帧编码与增量解码。
- server: 服务端，Provider 增量 → StreamEvent → 字节帧。
- client: 客户端，字节帧 → 惰性的 StreamEvent 序列。
- admission: 准入校验与限流。
"""
