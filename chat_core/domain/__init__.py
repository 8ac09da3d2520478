"""领域层模型与协议。

包含：
- models: Message / Conversation / ServerEvent / ChatRequest 等统一模型。
- conversation: 认证与键值存储两个外部协作方的协议。
- exceptions: 业务异常类型定义。
"""
