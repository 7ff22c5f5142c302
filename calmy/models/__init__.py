# calmy/models/__init__.py

from calmy.database import Base

from .chat_message import ChatMessage

__all__ = ["Base", "ChatMessage"]
