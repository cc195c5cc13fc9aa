from typing import Optional


class AdvisorError(Exception):
    """Base class for every error the service reports to callers.

    `code` is the stable tag clients switch on, `status_code` the HTTP
    status the API layer renders, and `message` the user-facing text.
    """

    code = "internal_error"
    status_code = 500
    message = "Internal error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.message
        super().__init__(self.message)


# Marks errors that the fork operation may raise
class ForkError(AdvisorError):
    pass


# Client fault, non-retryable
class AuthorizationError(AdvisorError):
    status_code = 403


class NotFoundError(AdvisorError):
    status_code = 404


# Server fault; may be transient, never retried by the core
class StorageError(AdvisorError):
    status_code = 500


class Unauthorized(ForkError, AuthorizationError):
    code = "unauthorized"
    status_code = 401
    message = "Unauthorized"


class SourceNotFound(ForkError, NotFoundError):
    code = "source_not_found"
    message = "Conversation not found"


class ConversationNotFound(NotFoundError):
    code = "conversation_not_found"
    message = "Conversation not found"


class AlreadyOwned(ForkError, AuthorizationError):
    code = "already_owned"
    status_code = 400
    message = "You already own this conversation"


class NotShared(ForkError, AuthorizationError):
    code = "not_shared"
    message = "This conversation is not shared"


class NotAMember(ForkError, AuthorizationError):
    code = "not_a_member"
    message = "Access denied - not a member of this organization"


class AccessDenied(AuthorizationError):
    code = "access_denied"
    message = "Access denied"


class InvalidMessage(AdvisorError):
    code = "invalid_message"
    status_code = 400
    message = "role and either content or sections are required"


class CreateFailed(ForkError, StorageError):
    code = "create_failed"
    message = "Failed to create conversation. Please try again."


class CopyFailed(ForkError, StorageError):
    code = "copy_failed"
    message = "Failed to copy messages. Please try again."


class AppendFailed(StorageError):
    code = "append_failed"
    message = "Failed to save message. Please try again."


class UpdateFailed(StorageError):
    code = "update_failed"
    message = "Failed to update conversation. Please try again."


class DeleteFailed(StorageError):
    code = "delete_failed"
    message = "Failed to delete conversation. Please try again."
