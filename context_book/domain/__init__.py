"""领域层模型与协议。

包含：
- models: Segment / ChatMessage / AnalyzeConfig / StreamToken 等数据模型。
- document: 文档实体与 DocumentStore 抽象。
- exceptions: 业务异常类型定义。
- export: 章节的文本导出。
"""
