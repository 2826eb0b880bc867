"""领域层模型与协议。

包含：
- models: 统一的 ChatMessage / ChatRequest / ModelDescriptor / StreamEvent 模型。
- conversation: 按笔记 ID 组织的会话条目及 ConversationStore 抽象。
- exceptions: 业务异常类型定义。
"""
