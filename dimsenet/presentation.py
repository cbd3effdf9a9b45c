"""Implementation of Presentation Context negotiation.

A presentation context pairs one abstract syntax (the SOP Class) with the
transfer syntaxes that may be used to encode its datasets. The requestor
proposes contexts, the acceptor negotiates each one using a *policy*.

A policy is any callable with the signature::

    policy(abstract_syntax: UID, candidates: list[UID]) -> UID | int

It returns the accepted transfer syntax (which must be one of
`candidates`) or one of the rejection result codes:

* ``0x01`` - user rejection
* ``0x02`` - no reason (provider rejection)
* ``0x03`` - abstract syntax not supported
* ``0x04`` - transfer syntax not supported
"""

import logging
from typing import Any, Callable, Iterable, Sequence

from pydicom.uid import UID

from dimsenet._globals import (
    DEFAULT_TRANSFER_SYNTAXES,
    IMAGE_TRANSFER_SYNTAXES,
    UNCOMPRESSED_TRANSFER_SYNTAXES,
)
from dimsenet.sop_class import (
    CATEGORY_QR,
    CATEGORY_STORAGE,
    CATEGORY_VERIFICATION,
    QR_CLASS_UIDS,
    STORAGE_CLASS_UIDS,
    VERIFICATION_CLASS_UIDS,
    sop_class_category,
)
from dimsenet.utils import set_uid, validate_uid


LOGGER = logging.getLogger(__name__)

PolicyType = Callable[[UID, list[UID]], "UID | int"]

RESULT_ACCEPTANCE = 0x00
RESULT_USER_REJECTION = 0x01
RESULT_NO_REASON = 0x02
RESULT_ABSTRACT_SYNTAX_NOT_SUPPORTED = 0x03
RESULT_TRANSFER_SYNTAX_NOT_SUPPORTED = 0x04

CONTEXT_RESULTS = {
    RESULT_ACCEPTANCE: "Accepted",
    RESULT_USER_REJECTION: "User Rejection",
    RESULT_NO_REASON: "Provider Rejection",
    RESULT_ABSTRACT_SYNTAX_NOT_SUPPORTED: "Abstract Syntax Not Supported",
    RESULT_TRANSFER_SYNTAX_NOT_SUPPORTED: "Transfer Syntax Not Supported",
}


class PresentationContext:
    """A proposed or negotiated Presentation Context.

    Attributes
    ----------
    result : int or None
        ``None`` while the context is only proposed, otherwise the
        negotiation result (``0x00`` if accepted).

    Examples
    --------

    >>> from dimsenet.presentation import PresentationContext
    >>> cx = PresentationContext(1, "1.2.840.10008.1.1", ["1.2.840.10008.1.2"])
    >>> cx.context_id
    1
    """

    def __init__(
        self,
        context_id: int | None = None,
        abstract_syntax: str | None = None,
        transfer_syntax: Iterable[str] | None = None,
        result: int | None = None,
    ) -> None:
        self._context_id: int | None = None
        self.context_id = context_id
        # Stored without validation so malformed values received from a
        #   peer can be rejected during negotiation
        self.abstract_syntax = UID(abstract_syntax) if abstract_syntax else None
        self.transfer_syntax: list[UID] = [UID(ts) for ts in transfer_syntax or []]
        self.result = result

    def add_transfer_syntax(self, syntax: str) -> None:
        """Validate and append `syntax` to the proposed transfer syntaxes."""
        uid = set_uid(syntax, "transfer_syntax", allow_empty=False, allow_none=False)
        if uid not in self.transfer_syntax:
            self.transfer_syntax.append(uid)

    @property
    def context_id(self) -> int | None:
        """Get or set the presentation context ID, an odd int in [1, 255]."""
        return self._context_id

    @context_id.setter
    def context_id(self, value: int | None) -> None:
        if value is not None and not (1 <= value <= 255 and value % 2):
            msg = "'context_id' must be an odd integer between 1 and 255, inclusive"
            LOGGER.error(msg)
            raise ValueError(msg)

        self._context_id = value

    @property
    def is_accepted(self) -> bool:
        """Return ``True`` if the context was negotiated and accepted."""
        return self.result == RESULT_ACCEPTANCE

    @property
    def accepted_transfer_syntax(self) -> UID | None:
        """Return the negotiated transfer syntax, or ``None`` if not accepted."""
        if self.is_accepted and self.transfer_syntax:
            return self.transfer_syntax[0]

        return None

    @property
    def status(self) -> str:
        """Return a description of the negotiation result."""
        if self.result is None:
            return "Pending"

        return CONTEXT_RESULTS.get(self.result, "Unknown")

    def __eq__(self, other: Any) -> bool:
        if isinstance(other, PresentationContext):
            return (
                self.context_id == other.context_id
                and self.abstract_syntax == other.abstract_syntax
                and self.transfer_syntax == other.transfer_syntax
                and self.result == other.result
            )

        return NotImplemented

    def __hash__(self) -> int:
        return hash((self.context_id, self.abstract_syntax, tuple(self.transfer_syntax)))

    def __repr__(self) -> str:
        return f"PresentationContext({self.context_id}, {self.abstract_syntax!r})"

    def __str__(self) -> str:
        s = [f"ID: {self.context_id}"]
        if self.abstract_syntax is not None:
            s.append(f"Abstract Syntax: {self.abstract_syntax.name}")

        s.append("Transfer Syntax(es):")
        s.extend(f"    ={ts.name}" for ts in self.transfer_syntax)
        if self.result is not None:
            s.append(f"Result: {self.status}")

        return "\n".join(s)


def build_context(
    abstract_syntax: str, transfer_syntax: str | Sequence[str] | None = None
) -> PresentationContext:
    """Return a proposed :class:`PresentationContext` without a context ID.

    Parameters
    ----------
    abstract_syntax : str
        The abstract syntax UID.
    transfer_syntax : str or list of str, optional
        The transfer syntax UID(s), defaults to the Implicit and Explicit VR
        syntaxes in ``DEFAULT_TRANSFER_SYNTAXES``.
    """
    context = PresentationContext()
    context.abstract_syntax = set_uid(
        abstract_syntax, "abstract_syntax", allow_empty=False, allow_none=False
    )
    if transfer_syntax is None:
        transfer_syntax = DEFAULT_TRANSFER_SYNTAXES
    elif isinstance(transfer_syntax, str):
        transfer_syntax = [transfer_syntax]

    for syntax in transfer_syntax:
        context.add_transfer_syntax(syntax)

    return context


class SupportedContextPolicy:
    """A table driven policy built from the acceptor's supported contexts.

    Parameters
    ----------
    contexts : iterable of PresentationContext
        The supported contexts. Each abstract syntax should appear once; if
        it appears more than once the transfer syntaxes are combined.
    """

    def __init__(self, contexts: Iterable[PresentationContext]) -> None:
        self._supported: dict[str, frozenset[str]] = {}
        for cx in contexts:
            if cx.abstract_syntax is None:
                continue

            current = self._supported.get(cx.abstract_syntax, frozenset())
            self._supported[cx.abstract_syntax] = current | frozenset(
                cx.transfer_syntax
            )

    def __call__(self, abstract_syntax: UID, candidates: list[UID]) -> UID | int:
        if not validate_uid(abstract_syntax) or abstract_syntax not in self._supported:
            return RESULT_ABSTRACT_SYNTAX_NOT_SUPPORTED

        accepted = self._supported[abstract_syntax]
        for syntax in candidates:
            if validate_uid(syntax) and syntax in accepted:
                return syntax

        return RESULT_TRANSFER_SYNTAX_NOT_SUPPORTED


class CategoryPolicy:
    """A policy that accepts SOP Classes by their registry category.

    * Verification accepts the fixed uncompressed set
    * Storage accepts the broad image set, including compressed syntaxes
    * Query/Retrieve accepts the default set

    Parameters
    ----------
    categories : dict, optional
        Override the accepted transfer syntaxes per category, as
        ``{category: [transfer syntax UIDs]}``.
    """

    def __init__(self, categories: dict[str, Sequence[str]] | None = None) -> None:
        accepted: dict[str, Sequence[str]] = {
            CATEGORY_VERIFICATION: UNCOMPRESSED_TRANSFER_SYNTAXES,
            CATEGORY_STORAGE: IMAGE_TRANSFER_SYNTAXES,
            CATEGORY_QR: DEFAULT_TRANSFER_SYNTAXES,
        }
        accepted.update(categories or {})
        self._accepted = {kk: frozenset(vv) for kk, vv in accepted.items()}

    def __call__(self, abstract_syntax: UID, candidates: list[UID]) -> UID | int:
        if not validate_uid(abstract_syntax):
            return RESULT_ABSTRACT_SYNTAX_NOT_SUPPORTED

        accepted = self._accepted.get(sop_class_category(abstract_syntax))
        if accepted is None:
            return RESULT_ABSTRACT_SYNTAX_NOT_SUPPORTED

        for syntax in candidates:
            if validate_uid(syntax) and syntax in accepted:
                return syntax

        return RESULT_TRANSFER_SYNTAX_NOT_SUPPORTED


def default_policy() -> CategoryPolicy:
    """Return the standard acceptor policy."""
    return CategoryPolicy()


def _apply_policy(policy: PolicyType, context: PresentationContext) -> UID | int:
    """Return the outcome of `policy` for the proposed `context`."""
    if context.abstract_syntax is None:
        return RESULT_ABSTRACT_SYNTAX_NOT_SUPPORTED

    if not context.transfer_syntax:
        return RESULT_TRANSFER_SYNTAX_NOT_SUPPORTED

    try:
        outcome = policy(context.abstract_syntax, list(context.transfer_syntax))
    except Exception as exc:
        LOGGER.error(
            f"Exception in the presentation context policy for context ID "
            f"{context.context_id}"
        )
        LOGGER.exception(exc)
        return RESULT_NO_REASON

    # bool is an int subclass, never a valid outcome
    if isinstance(outcome, bool):
        return RESULT_NO_REASON

    if isinstance(outcome, int):
        if outcome in (0x01, 0x02, 0x03, 0x04):
            return outcome
    elif isinstance(outcome, str) and outcome in context.transfer_syntax:
        return UID(outcome)

    LOGGER.warning(
        f"Invalid presentation context policy outcome '{outcome}' for context "
        f"ID {context.context_id}, rejecting"
    )
    return RESULT_NO_REASON


def negotiate(
    proposed: Sequence[PresentationContext], policy: PolicyType
) -> list[PresentationContext]:
    """Negotiate the `proposed` contexts as the association acceptor.

    Parameters
    ----------
    proposed : list of PresentationContext
        The contexts proposed by the requestor, in the order proposed.
    policy : callable
        The acceptor's policy, see the module docstring.

    Returns
    -------
    list of PresentationContext
        One outcome per proposed context, in the same order and with the same
        context IDs. Accepted contexts have one transfer syntax; rejected
        contexts keep the first proposed transfer syntax (if any) so they can
        be encoded in the A-ASSOCIATE-AC.
    """
    results = []
    for context in proposed:
        outcome = _apply_policy(policy, context)
        if isinstance(outcome, UID):
            result = PresentationContext(
                context.context_id, context.abstract_syntax, [outcome], 0x00
            )
        else:
            result = PresentationContext(
                context.context_id,
                context.abstract_syntax,
                context.transfer_syntax[:1],
                outcome,
            )

        results.append(result)

    return results


def negotiate_as_requestor(
    proposed: Sequence[PresentationContext], responses: Sequence[Any]
) -> list[PresentationContext]:
    """Combine the `proposed` contexts with the acceptor's `responses`.

    Parameters
    ----------
    proposed : list of PresentationContext
        The contexts sent in the A-ASSOCIATE-RQ.
    responses : list of pdu_items.PresentationContextItemAC
        The context items received in the A-ASSOCIATE-AC.

    Returns
    -------
    list of PresentationContext
        The outcome of every proposed context, in the order proposed. A
        context missing from the response, or accepted with a transfer
        syntax that wasn't proposed, is treated as rejected with no reason.
    """
    by_id = {item.presentation_context_id: item for item in responses}
    results = []
    for context in proposed:
        item = by_id.get(context.context_id)
        if item is None:
            LOGGER.warning(
                f"No response received for presentation context ID "
                f"{context.context_id}"
            )
            result = RESULT_NO_REASON
            syntaxes = context.transfer_syntax[:1]
        elif item.result == RESULT_ACCEPTANCE:
            syntax = item.transfer_syntax
            if syntax in context.transfer_syntax:
                result = RESULT_ACCEPTANCE
                syntaxes = [syntax]
            else:
                LOGGER.warning(
                    f"Presentation context ID {context.context_id} was accepted "
                    f"with a transfer syntax that wasn't proposed: '{syntax}'"
                )
                result = RESULT_NO_REASON
                syntaxes = context.transfer_syntax[:1]
        else:
            result = item.result
            syntaxes = context.transfer_syntax[:1]

        results.append(
            PresentationContext(
                context.context_id, context.abstract_syntax, syntaxes, result
            )
        )

    return results


def _build_contexts(uids: Iterable[str]) -> list[PresentationContext]:
    return [build_context(uid) for uid in sorted(uids)]


VerificationPresentationContexts = _build_contexts(VERIFICATION_CLASS_UIDS)
"""Presentation contexts for the Verification service."""

StoragePresentationContexts = _build_contexts(STORAGE_CLASS_UIDS)
"""Presentation contexts for the registered storage SOP Classes."""

QueryRetrievePresentationContexts = _build_contexts(QR_CLASS_UIDS)
"""Presentation contexts for the Query/Retrieve service."""
