"""Application-level constants for ForkChat.

This module keeps only cross-cutting identity/format constants.
"""

# ============================================================================
# Branch naming
# ============================================================================

DEFAULT_BRANCH_NAME = "main"
EDIT_BRANCH_PREFIX = "edit-"

# ============================================================================
# Conversation content
# ============================================================================

DEFAULT_CHAT_TITLE = "New chat"

# Prefix of assistant content that records a failed turn
FAILURE_MARKER = "❌"
EMPTY_RESPONSE_TEXT = "Empty response from model"

# ============================================================================
# Persisted state
# ============================================================================

STATE_SCHEMA_VERSION = 1
