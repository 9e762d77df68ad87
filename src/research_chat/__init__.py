"""
research-chat: a web research assistant with streaming, tool-using conversations.
"""

__version__ = "0.1.0"
