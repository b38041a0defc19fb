from .api import ChatClient, ChatAPIError, RealtimeChannel
from .state import AppState, RowCache

__all__ = ['ChatClient', 'ChatAPIError', 'RealtimeChannel', 'AppState', 'RowCache']
