from chatsync.remote.client import RemoteChatClient

__all__ = ["RemoteChatClient"]
