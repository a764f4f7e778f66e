from .chat import register_chat_commands

__all__ = ["register_chat_commands"]
