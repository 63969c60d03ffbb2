"""分析流程与对话编排。"""
