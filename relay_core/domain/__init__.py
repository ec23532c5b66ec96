"""领域层模型与协议。

包含：
- models: ChatMessage / Budget / ExchangeEvent 等统一模型。
- collaborators: 持久化与模型目录等外部协作方的协议。
- exceptions: 业务异常类型定义。
"""
