from .chats import chats_router

__all__ = ["chats_router"]
