"""
railsup: 安装预编译 Ruby，并为 Ruby/Rails 工具构造运行环境。
"""

__version__ = "0.1.0"
