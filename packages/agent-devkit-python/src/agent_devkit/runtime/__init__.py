"""本地运行时（InMemoryRunner）。"""
