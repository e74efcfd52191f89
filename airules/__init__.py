"""airules — AI 编码助手规则集包管理客户端"""

__version__ = "0.3.0"
