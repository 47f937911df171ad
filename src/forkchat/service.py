"""Chat service: the public read/write API over chats, branches and messages.

``ChatService`` owns one ``ChatState`` and the components layered over it.
Synchronous methods mutate state atomically; the async protocols (send,
edit, regenerate) set up their messages synchronously, then await the
model while holding the chat's generation lock.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from .constants import DEFAULT_CHAT_TITLE
from .domain.chat import (
    Branch,
    Chat,
    Folder,
    Message,
    MessageDraft,
    MessageMetadata,
    MessageRole,
    PrimarySlot,
    VariantSlot,
)
from .domain.config import DEFAULT_TEMPLATE_ID, RuntimeProfile
from .domain.templates import PromptTemplate
from .errors import (
    MessageNotFoundError,
    ProviderNotConfiguredError,
    VariantNotAllowedError,
)
from .generation.lock import GenerationRegistry, GenerationToken
from .generation.openai_provider import OpenAICompatibleProvider
from .generation.provider import ModelProvider, format_request_messages
from .generation.turn import TurnResult, run_turn
from .logging import setup_logging
from .persistence import load_state, save_state
from .resolver import BranchNode, BranchResolver
from .store.branches import BranchDirectory
from .store.chats import ChatDirectory
from .store.folders import FolderDirectory
from .store.messages import MessageStore
from .store.state import ChatState
from .store.templates import TemplateLibrary


@dataclass(slots=True, frozen=True)
class EditResult:
    """Where an edited user message landed."""

    new_branch_id: str
    new_message_id: str
    original_branch_id: str
    turn: Optional[TurnResult] = None


def build_provider(profile: RuntimeProfile) -> OpenAICompatibleProvider:
    """Create the profile's provider, reading the API key from the environment."""
    api_key = os.environ.get(profile.api_key_env, "").strip()
    if not api_key:
        raise ValueError(f"Environment variable {profile.api_key_env} is not set")
    return OpenAICompatibleProvider(
        api_key=api_key,
        base_url=profile.base_url,
        timeout=profile.timeout,
    )


class ChatService:
    """Manages chats with a unified interface.

    All methods take explicit chat ids; there is no hidden current-chat
    argument. ``current_chat_id`` is tracked only for callers that want it.
    """

    def __init__(
        self,
        state: Optional[ChatState] = None,
        *,
        provider: Optional[ModelProvider] = None,
        profile: Optional[RuntimeProfile] = None,
        generations: Optional[GenerationRegistry] = None,
    ):
        self.state = state if state is not None else ChatState()
        self.provider = provider
        self.profile = profile
        self.chats = ChatDirectory(self.state)
        self.branches = BranchDirectory(self.state, self.chats)
        self.messages = MessageStore(self.state, self.chats, self.branches)
        self.folders = FolderDirectory(self.state, self.chats)
        self.templates = TemplateLibrary(self.state)
        self.resolver = BranchResolver(self.state)
        self.generations = generations if generations is not None else GenerationRegistry()

    @classmethod
    def from_profile(
        cls,
        profile: RuntimeProfile,
        *,
        provider: Optional[ModelProvider] = None,
    ) -> ChatService:
        """Load the profile's state file and wire its provider and log file.

        Logging is configured only when the profile names a log file; a
        host application's own logging setup is otherwise left alone.
        """
        if profile.log_file:
            setup_logging(profile.log_file)
        state = load_state(profile.state_file) if profile.state_file else ChatState()
        if provider is None:
            provider = build_provider(profile)
        return cls(state, provider=provider, profile=profile)

    async def save(self, path: Optional[str | Path] = None) -> bool:
        """Persist state to *path* or the profile's state file."""
        target = path or (self.profile.state_file if self.profile else None)
        if not target:
            raise ValueError("No state file configured")
        return await save_state(target, self.state)

    # ===================================================================
    # Chats
    # ===================================================================

    def create_chat(
        self,
        template_id: Optional[str] = None,
        title: Optional[str] = None,
        *,
        model: Optional[str] = None,
    ) -> Chat:
        """Create a chat with its default ``main`` branch and make it current."""
        if template_id is None:
            template_id = self.profile.default_template_id if self.profile else DEFAULT_TEMPLATE_ID
        template = self.templates.find(template_id)
        if not title:
            title = template.name if template is not None else DEFAULT_CHAT_TITLE

        chat_id = self.state.new_id()
        main = self.branches.create_main_branch(chat_id)
        return self.chats.create(
            chat_id,
            default_branch_id=main.id,
            title=title,
            template_id=template_id,
            selected_model=model,
        )

    def get_chat(self, chat_id: str) -> Chat:
        return self.chats.get(chat_id)

    def list_chats(self) -> list[Chat]:
        return self.chats.list_chats()

    def update_chat(self, chat_id: str, **fields: Any) -> Chat:
        return self.chats.update(chat_id, **fields)

    def pin_chat(self, chat_id: str) -> bool:
        return self.chats.toggle_pin(chat_id)

    def set_current_chat(self, chat_id: Optional[str]) -> None:
        self.chats.set_current(chat_id)

    @property
    def current_chat_id(self) -> Optional[str]:
        return self.chats.current_chat_id

    def delete_chat(self, chat_id: str) -> Chat:
        """Delete a chat, stopping any reply still streaming into it."""
        chat = self.chats.delete(chat_id)
        self.generations.cancel(chat_id)
        return chat

    # ===================================================================
    # Folders
    # ===================================================================

    def create_folder(self, name: str) -> Folder:
        return self.folders.create(name)

    def delete_folder(self, folder_id: str) -> Folder:
        """Delete a folder; its chats move back to the top level."""
        return self.folders.delete(folder_id)

    def move_to_folder(self, chat_id: str, folder_id: Optional[str]) -> Chat:
        return self.folders.move(chat_id, folder_id)

    def list_folders(self) -> list[Folder]:
        return self.folders.list_folders()

    def chats_in_folder(self, folder_id: Optional[str]) -> list[Chat]:
        return self.folders.chats_in(folder_id)

    # ===================================================================
    # Prompt templates
    # ===================================================================

    def list_templates(self) -> list[PromptTemplate]:
        return self.templates.list_templates()

    def add_template(
        self,
        name: str,
        system_prompt: str,
        *,
        description: str = "",
        category: str = "",
        tags: Optional[list[str]] = None,
    ) -> PromptTemplate:
        return self.templates.add(
            name, system_prompt, description=description, category=category, tags=tags
        )

    def update_template(self, template_id: str, **fields: Any) -> PromptTemplate:
        return self.templates.update(template_id, **fields)

    def delete_template(self, template_id: str, *, strict: bool = False) -> bool:
        return self.templates.delete(template_id, strict=strict)

    def toggle_favorite_template(self, template_id: str) -> bool:
        return self.templates.toggle_favorite(template_id)

    # ===================================================================
    # Branches
    # ===================================================================

    def create_branch(self, chat_id: str, from_message_id: str, name: str) -> Branch:
        return self.branches.fork(chat_id, from_message_id, name)

    def switch_branch(self, chat_id: str, branch_id: str) -> Branch:
        return self.branches.switch(chat_id, branch_id)

    def rename_branch(self, chat_id: str, branch_id: str, name: str) -> Branch:
        return self.branches.rename(chat_id, branch_id, name)

    def delete_branch(self, chat_id: str, branch_id: str, *, strict: bool = False) -> bool:
        """Delete a leaf branch, stopping a reply that is streaming onto it."""
        streaming_here = self._streaming_branch(chat_id) == branch_id
        deleted = self.branches.delete(chat_id, branch_id, strict=strict)
        if deleted and streaming_here:
            self.generations.cancel(chat_id)
        return deleted

    def _streaming_branch(self, chat_id: str) -> Optional[str]:
        token = self.generations.current(chat_id)
        if token is None or token.slot is None:
            return None
        message = self.messages.find(chat_id, token.slot.message_id)
        return message.branch_id if message is not None else None

    def active_branch(self, chat_id: str) -> Branch:
        chat = self.chats.get(chat_id)
        return self.branches.get(chat_id, chat.active_branch_id)

    def branch_tree(self, chat_id: str) -> list[BranchNode]:
        return self.resolver.branch_tree(chat_id)

    # ===================================================================
    # Reading
    # ===================================================================

    def resolve(self, chat_id: str, branch_id: Optional[str] = None) -> list[Message]:
        """Linear conversation of *branch_id*, or of the active branch."""
        if branch_id is None:
            chat = self.chats.find(chat_id)
            if chat is None:
                return []
            branch_id = chat.active_branch_id
        return self.resolver.resolve(chat_id, branch_id)

    # ===================================================================
    # Direct mutation
    # ===================================================================

    def append_message(
        self,
        chat_id: str,
        branch_id: str,
        role: MessageRole,
        content: str,
        *,
        streaming: bool = False,
    ) -> str:
        return self.messages.append(
            chat_id, branch_id, MessageDraft(role=role, content=content, streaming=streaming)
        )

    def update_message_content(self, chat_id: str, message_id: str, content: str) -> None:
        self.messages.update_content(chat_id, message_id, content)

    def set_message_streaming(self, chat_id: str, message_id: str, flag: bool) -> None:
        self.messages.set_streaming(chat_id, message_id, flag)

    def add_variant(self, chat_id: str, message_id: str, content: str) -> int:
        return self.messages.add_variant(chat_id, message_id, content)

    def set_active_variant(self, chat_id: str, message_id: str, index: int) -> None:
        self.messages.set_active_variant(chat_id, message_id, index)

    def rewrite_message(self, chat_id: str, message_id: str, content: str) -> None:
        """Edit assistant/system text in place, in whichever slot is displayed.

        User messages are never rewritten in place; use ``edit_message``.
        """
        message = self.messages.get(chat_id, message_id)
        if message.role == "user":
            raise ValueError("User messages are edited by forking; use edit_message()")
        self.messages.write_slot(chat_id, message.active_slot, content)

    def delete_message(self, chat_id: str, message_id: str) -> Message:
        """Delete one message, stopping a reply that is streaming into it."""
        streaming_into = self.generations.writing_to(chat_id, message_id) is not None
        deleted = self.messages.delete(chat_id, message_id)
        if streaming_into:
            self.generations.cancel(chat_id)
        return deleted

    def stop_generation(self, chat_id: str) -> bool:
        """Stop the chat's in-flight reply, keeping whatever text arrived.

        The message stops streaming and the chat accepts a new turn as soon
        as this returns; False when nothing was generating.
        """
        token = self.generations.cancel(chat_id)
        if token is None:
            return False
        if token.slot is not None and self.messages.find(chat_id, token.slot.message_id):
            self.messages.set_streaming(chat_id, token.slot.message_id, False)
        return True

    # ===================================================================
    # Edit-with-fork
    # ===================================================================

    def fork_for_edit(self, chat_id: str, message_id: str, new_content: str) -> EditResult:
        """Copy a user message with new text onto a new branch and switch to it.

        The new branch forks *before* the edited message: its fork point is
        the edited message's predecessor, so the original message and
        everything after it stay on the original branch.
        """
        original = self.messages.get(chat_id, message_id)
        if original.role != "user":
            raise ValueError("Only user messages are edited by forking")

        fork_point = self._edit_fork_point(chat_id, original)
        name = self.branches.next_edit_name(chat_id)
        if fork_point is None:
            branch = self.branches.create_root_branch(chat_id, name)
        else:
            branch = self.branches.fork(chat_id, fork_point, name)

        new_message_id = self.messages.append(
            chat_id,
            branch.id,
            MessageDraft(
                role="user",
                content=new_content,
                metadata=MessageMetadata(edited_from=message_id),
            ),
        )
        self.branches.switch(chat_id, branch.id)
        return EditResult(
            new_branch_id=branch.id,
            new_message_id=new_message_id,
            original_branch_id=original.branch_id,
        )

    def _edit_fork_point(self, chat_id: str, original: Message) -> Optional[str]:
        parent_id = original.parent_message_id
        if parent_id is not None and self.messages.find(chat_id, parent_id) is not None:
            return parent_id
        # Dangling parent: fall back to whatever precedes it on its branch.
        history = self.resolver.history_before(chat_id, original.branch_id, original.id)
        if history:
            return history[-1].id
        return None

    # ===================================================================
    # Model turns
    # ===================================================================

    def _require_provider(self) -> ModelProvider:
        if self.provider is None:
            raise ProviderNotConfiguredError()
        return self.provider

    def _resolve_model(self, chat: Chat, model: Optional[str]) -> str:
        resolved = model or chat.selected_model or (
            self.profile.default_model if self.profile else None
        )
        if not resolved:
            raise ValueError("No model selected for this chat")
        return resolved

    def _stream_enabled(self) -> bool:
        return self.profile.stream if self.profile else True

    def _begin(self, chat_id: str, model: Optional[str]) -> tuple[ModelProvider, str, GenerationToken]:
        provider = self._require_provider()
        chat = self.chats.get(chat_id)
        resolved_model = self._resolve_model(chat, model)
        return provider, resolved_model, self.generations.acquire(chat_id)

    def _start_assistant_reply(self, chat_id: str, branch_id: str, token: GenerationToken) -> str:
        assistant_id = self.messages.append(
            chat_id,
            branch_id,
            MessageDraft(role="assistant", content="", streaming=True),
        )
        token.bind(PrimarySlot(assistant_id))
        return assistant_id

    async def _drive(
        self,
        chat_id: str,
        history: list[Message],
        *,
        provider: ModelProvider,
        model: str,
        token: GenerationToken,
    ) -> TurnResult:
        chat = self.chats.get(chat_id)
        system_prompt = self.templates.system_prompt_for(chat.template_id)
        request = format_request_messages(history, system_prompt)
        result = await run_turn(
            provider,
            request,
            model=model,
            store=self.messages,
            registry=self.generations,
            token=token,
            stream=self._stream_enabled(),
        )
        if result.status == "completed" and self.messages.find(chat_id, result.message_id):
            self.messages.update_metadata(
                chat_id, result.message_id, model_used=model, latency_ms=result.latency_ms
            )
        return result

    async def send_message(
        self,
        chat_id: str,
        content: str,
        *,
        model: Optional[str] = None,
    ) -> TurnResult:
        """Append a user message to the active branch and generate the reply."""
        text = content.strip()
        if not text:
            raise ValueError("Message content must not be empty")

        provider, resolved_model, token = self._begin(chat_id, model)
        try:
            branch_id = self.chats.get(chat_id).active_branch_id
            self.messages.append(chat_id, branch_id, MessageDraft(role="user", content=text))
            assistant_id = self._start_assistant_reply(chat_id, branch_id, token)
            history = self.resolver.history_before(chat_id, branch_id, assistant_id) or []
        except BaseException:
            self.generations.release(token)
            raise

        return await self._drive(
            chat_id, history, provider=provider, model=resolved_model, token=token
        )

    async def edit_message(
        self,
        chat_id: str,
        message_id: str,
        new_content: str,
        *,
        model: Optional[str] = None,
    ) -> EditResult:
        """Fork on edit of a user message, then generate a reply on the new branch."""
        provider, resolved_model, token = self._begin(chat_id, model)
        try:
            edit = self.fork_for_edit(chat_id, message_id, new_content)
            assistant_id = self._start_assistant_reply(chat_id, edit.new_branch_id, token)
            history = (
                self.resolver.history_before(chat_id, edit.new_branch_id, assistant_id) or []
            )
        except BaseException:
            self.generations.release(token)
            raise

        turn = await self._drive(
            chat_id, history, provider=provider, model=resolved_model, token=token
        )
        return EditResult(
            new_branch_id=edit.new_branch_id,
            new_message_id=edit.new_message_id,
            original_branch_id=edit.original_branch_id,
            turn=turn,
        )

    async def regenerate(
        self,
        chat_id: str,
        message_id: str,
        *,
        model: Optional[str] = None,
    ) -> TurnResult:
        """Generate a new variant of an assistant reply without forking."""
        provider, resolved_model, token = self._begin(chat_id, model)
        try:
            message = self.messages.get(chat_id, message_id)
            if message.role != "assistant":
                raise VariantNotAllowedError(message_id, message.role)
            history = self.resolver.history_before(chat_id, message.branch_id, message_id)
            if history is None:
                raise MessageNotFoundError(chat_id, message_id)

            index = self.messages.add_variant(chat_id, message_id, "")
            self.messages.set_streaming(chat_id, message_id, True)
            token.bind(VariantSlot(message_id, index))
        except BaseException:
            self.generations.release(token)
            raise

        return await self._drive(
            chat_id, history, provider=provider, model=resolved_model, token=token
        )
