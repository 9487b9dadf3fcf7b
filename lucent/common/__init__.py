"""
Lucent 公共模块：异常、配置选项与工具函数
"""
