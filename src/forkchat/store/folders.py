"""Folder directory: named groups for organizing chats."""

from __future__ import annotations

from typing import Optional

from ..domain.chat import Chat, Folder
from ..errors import FolderNotFoundError
from ..logging import LOG_NAME_LIMIT, log_event, summarize_text
from .chats import ChatDirectory
from .state import ChatState


class FolderDirectory:
    """Registry of folders and the chats filed under them.

    A chat belongs to at most one folder. Deleting a folder keeps its chats
    and moves them back to the top level.
    """

    def __init__(self, state: ChatState, chats: ChatDirectory):
        self._state = state
        self._chats = chats

    def create(self, name: str) -> Folder:
        cleaned = " ".join(str(name).split())
        if not cleaned:
            raise ValueError("Folder name must not be empty")
        folder = Folder(id=self._state.new_id(), name=cleaned, created_at=self._state.clock.now())
        self._state.folders[folder.id] = folder
        log_event(
            "folder_created",
            folder_id=folder.id,
            name=summarize_text(folder.name, limit=LOG_NAME_LIMIT),
        )
        return folder

    def find(self, folder_id: str) -> Optional[Folder]:
        return self._state.folders.get(folder_id)

    def get(self, folder_id: str) -> Folder:
        """Raise FolderNotFoundError if not found."""
        folder = self._state.folders.get(folder_id)
        if folder is None:
            raise FolderNotFoundError(folder_id)
        return folder

    def list_folders(self) -> list[Folder]:
        """Folders in creation order."""
        return sorted(self._state.folders.values(), key=lambda f: f.created_at)

    def chats_in(self, folder_id: Optional[str]) -> list[Chat]:
        """Chats filed under *folder_id*, or the unfiled ones for None."""
        if folder_id is not None:
            self.get(folder_id)
        return [chat for chat in self._chats.list_chats() if chat.folder_id == folder_id]

    def chat_count(self, folder_id: str) -> int:
        self.get(folder_id)
        return sum(1 for chat in self._state.chats.values() if chat.folder_id == folder_id)

    def move(self, chat_id: str, folder_id: Optional[str]) -> Chat:
        """File a chat under *folder_id*, or take it out of its folder with None."""
        chat = self._chats.get(chat_id)
        if folder_id is not None:
            self.get(folder_id)
        chat.folder_id = folder_id
        log_event("chat_moved", chat_id=chat_id, folder_id=folder_id)
        return chat

    def delete(self, folder_id: str) -> Folder:
        """Remove the folder; its chats stay and become unfiled."""
        folder = self.get(folder_id)
        detached = 0
        for chat in self._state.chats.values():
            if chat.folder_id == folder_id:
                chat.folder_id = None
                detached += 1
        del self._state.folders[folder_id]
        self._state.id_set.discard(folder_id)
        log_event("folder_deleted", folder_id=folder_id, chats=detached)
        return folder
