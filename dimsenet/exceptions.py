"""Exceptions raised by dimsenet."""

from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from dimsenet.presentation import PresentationContext


class MalformedPDU(ValueError):
    """Raised when a PDU or one of its items can't be decoded."""


class IncompleteMessage(RuntimeError):
    """Raised when an association ends with a DIMSE message part-assembled.

    Attributes
    ----------
    context_ids : list of int
        The IDs of the presentation contexts that had partial messages.
    """

    def __init__(self, msg: str, context_ids: list[int] | None = None) -> None:
        super().__init__(msg)
        self.context_ids = context_ids or []


class CapacityExceeded(RuntimeError):
    """Raised when sending a request would exceed the negotiated maximum
    number of outstanding operations.
    """


class AssociationClosed(RuntimeError):
    """Raised when an association has been released or aborted.

    Used as the terminal failure for every pending operation that was
    still unresolved when the association closed.
    """


class NegotiationError(RuntimeError):
    """Raised when association negotiation fails.

    Attributes
    ----------
    result : int or None
        The A-ASSOCIATE-RJ *Result* value, or ``None`` if the association
        was accepted with no accepted presentation contexts.
    source : int or None
        The A-ASSOCIATE-RJ *Source* value.
    reason : int or None
        The A-ASSOCIATE-RJ *Reason/Diag.* value.
    contexts : list of presentation.PresentationContext
        The outcome of every proposed presentation context, if known.
    """

    def __init__(
        self,
        msg: str,
        result: int | None = None,
        source: int | None = None,
        reason: int | None = None,
        contexts: list["PresentationContext"] | None = None,
    ) -> None:
        super().__init__(msg)
        self.result = result
        self.source = source
        self.reason = reason
        self.contexts = contexts or []
