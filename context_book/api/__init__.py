"""对外 API（分析文档、对话、列出文档）。"""
