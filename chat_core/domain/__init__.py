"""领域层模型与协议。

包含：
- models: 统一的 ChatMessage / ChatRequest / ChatResult 模型。
- session: 会话、消息、附件模型及 SessionStore 抽象。
- events: 流式事件 StreamEvent。
- chain: 链式处理的 ChainStep / ChainStepResult。
- exceptions: 业务异常类型定义。
"""
