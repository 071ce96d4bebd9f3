"""Error taxonomy for the keep-alive service."""


class AutoCommitError(Exception):
    """Base class for every error raised by this package."""


class FetchError(AutoCommitError):
    """Listing commits or reading the tracked file failed."""


class WriteFailed(AutoCommitError):
    """The compensating write was rejected or never reached the host."""


class WriteConflict(WriteFailed):
    """The write carried a stale revision sha."""


class ExecutionError(AutoCommitError):
    """The executor could not start a compensating write."""


class CredentialError(AutoCommitError):
    """A stored credential could not be decrypted or validated."""


class NotFoundError(AutoCommitError):
    """A subject or repository is missing from the registry or the host."""


class SubjectNotFound(NotFoundError):
    pass


class Unauthenticated(AutoCommitError):
    """The on-demand caller did not identify a subject."""


class CredentialInvalid(CredentialError):
    """The subject's credential is unusable; the caller must re-authenticate."""


class ConfigurationError(AutoCommitError):
    """A required setting (such as the sweep trigger secret) is missing."""


class TriggerUnauthorized(AutoCommitError):
    """The periodic trigger presented the wrong shared secret."""


class RateLimitExceeded(AutoCommitError):
    pass


class StoreUnavailable(AutoCommitError):
    """The subject registry cannot be reached at all."""


class ValidationError(AutoCommitError):
    pass


class DuplicateRepository(AutoCommitError):
    pass
