"""State container and the stores layered over it."""

from .branches import BranchDirectory
from .chats import ChatDirectory
from .folders import FolderDirectory
from .messages import MessageStore
from .state import ChatState
from .templates import TemplateLibrary

__all__ = [
    "BranchDirectory",
    "ChatDirectory",
    "ChatState",
    "FolderDirectory",
    "MessageStore",
    "TemplateLibrary",
]
