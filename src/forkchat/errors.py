"""Custom exception types for forkchat."""

from __future__ import annotations


class ForkChatError(Exception):
    """Base class for all forkchat errors."""


# ---------------------------------------------------------------------------
# Missing references
# ---------------------------------------------------------------------------


class NotFoundError(ForkChatError):
    """An operation referenced a record that does not exist."""


class ChatNotFoundError(NotFoundError):
    def __init__(self, chat_id: str) -> None:
        super().__init__(f"Chat {chat_id} not found.")
        self.chat_id = chat_id


class BranchNotFoundError(NotFoundError):
    def __init__(self, chat_id: str, branch_id: str) -> None:
        super().__init__(f"Branch {branch_id} not found in chat {chat_id}.")
        self.chat_id = chat_id
        self.branch_id = branch_id


class MessageNotFoundError(NotFoundError):
    def __init__(self, chat_id: str, message_id: str) -> None:
        super().__init__(f"Message {message_id} not found in chat {chat_id}.")
        self.chat_id = chat_id
        self.message_id = message_id


class FolderNotFoundError(NotFoundError):
    def __init__(self, folder_id: str) -> None:
        super().__init__(f"Folder {folder_id} not found.")
        self.folder_id = folder_id


class TemplateNotFoundError(NotFoundError):
    def __init__(self, template_id: str) -> None:
        super().__init__(f"Prompt template {template_id} not found.")
        self.template_id = template_id


# ---------------------------------------------------------------------------
# Structural invariants
# ---------------------------------------------------------------------------


class InvariantViolationError(ForkChatError):
    """A mutation would break chat/branch/message consistency."""


class DefaultBranchProtectedError(InvariantViolationError):
    def __init__(self, branch_id: str) -> None:
        super().__init__(f"Branch {branch_id} is the default branch and cannot be deleted.")


class ForkPointInUseError(InvariantViolationError):
    def __init__(self, message_id: str, branch_ids: list[str]) -> None:
        joined = ", ".join(branch_ids)
        super().__init__(
            f"Message {message_id} is the fork point of branch(es) {joined}."
        )
        self.branch_ids = list(branch_ids)


class BranchHasChildrenError(InvariantViolationError):
    def __init__(self, branch_id: str, child_ids: list[str]) -> None:
        joined = ", ".join(child_ids)
        super().__init__(f"Branch {branch_id} has child branch(es) {joined}.")
        self.child_ids = list(child_ids)


class TemplateProtectedError(InvariantViolationError):
    def __init__(self, template_id: str) -> None:
        super().__init__(f"Prompt template {template_id} is built in and cannot be deleted.")
        self.template_id = template_id


class VariantNotAllowedError(InvariantViolationError):
    def __init__(self, message_id: str, role: str) -> None:
        super().__init__(
            f"Message {message_id} has role '{role}'; only assistant messages hold variants."
        )


# ---------------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------------


class OutOfRangeError(ForkChatError):
    """A numeric argument fell outside its permitted range."""


class VariantIndexOutOfRangeError(OutOfRangeError):
    def __init__(self, message_id: str, index: int, variant_count: int) -> None:
        super().__init__(
            f"Variant index {index} out of range for message {message_id} "
            f"(expected 0..{variant_count})."
        )
        self.index = index


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------


class GenerationInProgressError(ForkChatError):
    def __init__(self, chat_id: str) -> None:
        super().__init__(f"A reply is already being generated in chat {chat_id}.")
        self.chat_id = chat_id


class UpstreamFailure(ForkChatError):
    """The model collaborator reported an error for one turn."""


class StateFileError(ForkChatError):
    """Persisted state could not be read or validated."""


class ProviderNotConfiguredError(ForkChatError):
    def __init__(self) -> None:
        super().__init__("No model provider is configured.")
