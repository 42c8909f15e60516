"""核心契约、state 与回调上下文。"""
