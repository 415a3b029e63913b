"""领域层模型与协议。

包含：
- models: Message / StreamEvent / RetryRequest 等会话引擎数据结构。
- collaborators: 凭证、API Key 查询与会话列表等外部协作方的协议。
- exceptions: 业务异常类型定义。
"""
