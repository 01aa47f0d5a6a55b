"""Exception hierarchy for the DocSync engine."""


class DocSyncError(Exception):
    """Base class for engine errors."""


class NotFoundError(DocSyncError):
    """A conversation, message, document or version does not exist."""


class PersistenceError(DocSyncError):
    """A write to the durable store failed.

    Surfaced to the client as a transient notice; in-memory state is kept.
    """


class DocumentHeadWriteError(PersistenceError):
    """A version was written but the document head could not be re-pointed.

    The next read of the document repairs the head from the latest version.
    """

    def __init__(self, message: str, version):
        super().__init__(message)
        # The DocumentVersion that was durably written
        self.version = version


class ConversationCreateError(PersistenceError):
    """The first write of a brand-new conversation failed; the action is void."""


class ProviderStreamError(DocSyncError):
    """The AI provider failed mid-stream (network or model failure)."""


class FunctionCallError(DocSyncError):
    """A provider-emitted command failed validation or its side effect."""


class GenerationCancelled(DocSyncError):
    """Raised internally when a job's cancellation token has been tripped.

    Cancellation is not an error for the user: no message or error field is set.
    """


class TokenLimitExceeded(DocSyncError):
    """The account has used its plan's token allowance."""


class PreconditionError(DocSyncError):
    """The action needs state that does not exist yet (e.g. an upstream document)."""


class ConfirmationRequired(DocSyncError):
    """The action would replace existing content; the caller must choose how."""
