"""Error taxonomy shared by the store, the channels and the dispatcher."""

from collections.abc import Iterable


class NotifyError(Exception):
    """Base class for every error raised by pokenotify."""


class StoreError(NotifyError):
    """A store operation failed.

    Carries the operation name and the offending ids so the failing call can
    be reconstructed from the message alone. The underlying exception is kept
    as `cause` and chained by the raiser.
    """

    def __init__(self, op: str, ids: Iterable[str] = (), cause: BaseException | str | None = None) -> None:
        self.op = op
        self.ids = [i for i in ids if i]
        self.cause = cause
        super().__init__(f"{op} [{','.join(self.ids)}]: {cause}")


class NotFoundError(StoreError):
    """The requested poke, archived poke or record does not exist."""


class ChannelError(NotifyError):
    """A channel failed to deliver a poke.

    `record` describes the failed attempt; `status` mirrors its status, one
    of Error, Undelivered or Failed.
    """

    def __init__(self, message: str, record) -> None:
        self.record = record
        self.status = getattr(record, "status", None)
        super().__init__(message)


class ConfigurationError(NotifyError):
    """A component was built without a usable client, store or credential."""
