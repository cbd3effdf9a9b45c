"""
The association's finite state machine.

The state machine is driven only by the association's
:class:`~dimsenet.dul.DULServiceProvider` thread. Each ``(event, state)``
pair in ``TRANSITION_TABLE`` names an action in ``ACTIONS``; the action
function takes the DUL and the event payload, performs any sends or
indications and returns the next state.
"""

import logging
from typing import Any, Callable, TYPE_CHECKING

from dimsenet._globals import (
    ABORT_REASON_NOT_SPECIFIED,
    ABORT_REASON_UNEXPECTED_PDU,
    ABORT_REASON_UNRECOGNISED_PDU,
    ABORT_SOURCE_PROVIDER,
    ABORT_SOURCE_USER,
)
from dimsenet.pdu import (
    A_ABORT_RQ,
    A_ASSOCIATE_AC,
    A_ASSOCIATE_RJ,
    A_ASSOCIATE_RQ,
    A_RELEASE_RP,
    A_RELEASE_RQ,
    P_DATA_TF,
    PDU,
)

if TYPE_CHECKING:  # pragma: no cover
    from dimsenet.dul import DULServiceProvider


LOGGER = logging.getLogger(__name__)


class InvalidEventError(Exception):
    """Exception for use when an invalid event occurs for a given state."""


# States
STA_IDLE = "Idle"
STA_REQUESTING = "Requesting"
STA_AWAITING_LOCAL = "AwaitingLocalResponse"
STA_ESTABLISHED = "Established"
STA_RELEASING = "Releasing"
STA_CLOSED = "Closed"

STATES = {
    STA_IDLE: "Connection open, no association",
    STA_REQUESTING: "Awaiting A-ASSOCIATE-AC or A-ASSOCIATE-RJ PDU",
    STA_AWAITING_LOCAL: "Awaiting local A-ASSOCIATE response",
    STA_ESTABLISHED: "Association established and ready for data transfer",
    STA_RELEASING: "Awaiting A-RELEASE-RP PDU",
    STA_CLOSED: "Association closed and connection released",
}

# The states where the timer runs
TIMED_STATES = (STA_REQUESTING, STA_AWAITING_LOCAL, STA_RELEASING)
# The states where an association exists, or is being negotiated
OPEN_STATES = (STA_REQUESTING, STA_AWAITING_LOCAL, STA_ESTABLISHED, STA_RELEASING)

# Local events
EVT_LOCAL_ASSOCIATE_RQ = "local A-ASSOCIATE request"
EVT_LOCAL_ACCEPT = "local A-ASSOCIATE accept"
EVT_LOCAL_REJECT = "local A-ASSOCIATE reject"
EVT_LOCAL_P_DATA = "local P-DATA request"
EVT_LOCAL_RELEASE_RQ = "local A-RELEASE request"
EVT_LOCAL_ABORT = "local A-ABORT request"
LOCAL_EVENTS = (
    EVT_LOCAL_ASSOCIATE_RQ,
    EVT_LOCAL_ACCEPT,
    EVT_LOCAL_REJECT,
    EVT_LOCAL_P_DATA,
    EVT_LOCAL_RELEASE_RQ,
    EVT_LOCAL_ABORT,
)

# Received PDU events
EVT_RECV_ASSOCIATE_RQ = "A-ASSOCIATE-RQ PDU received"
EVT_RECV_ASSOCIATE_AC = "A-ASSOCIATE-AC PDU received"
EVT_RECV_ASSOCIATE_RJ = "A-ASSOCIATE-RJ PDU received"
EVT_RECV_P_DATA = "P-DATA-TF PDU received"
EVT_RECV_RELEASE_RQ = "A-RELEASE-RQ PDU received"
EVT_RECV_RELEASE_RP = "A-RELEASE-RP PDU received"
EVT_RECV_ABORT = "A-ABORT PDU received"

# Other events
EVT_TRANSPORT_CLOSED = "transport connection closed"
EVT_TIMER_EXPIRED = "timer expired"
EVT_INVALID_PDU = "invalid PDU received"

PDU_EVENTS: dict[type[PDU], str] = {
    A_ASSOCIATE_RQ: EVT_RECV_ASSOCIATE_RQ,
    A_ASSOCIATE_AC: EVT_RECV_ASSOCIATE_AC,
    A_ASSOCIATE_RJ: EVT_RECV_ASSOCIATE_RJ,
    P_DATA_TF: EVT_RECV_P_DATA,
    A_RELEASE_RQ: EVT_RECV_RELEASE_RQ,
    A_RELEASE_RP: EVT_RECV_RELEASE_RP,
    A_ABORT_RQ: EVT_RECV_ABORT,
}
RECEIVED_EVENTS = tuple(PDU_EVENTS.values()) + (EVT_INVALID_PDU,)


class StateMachine:
    """Implementation of the association state machine.

    Attributes
    ----------
    current_state : str
        The current state of the state machine.
    dul : dul.DULServiceProvider
        The DUL service provider for the association.
    """

    def __init__(self, dul: "DULServiceProvider") -> None:
        self.current_state = STA_IDLE
        self.dul = dul

    def do_action(self, event: str, payload: Any = None) -> str:
        """Execute the action triggered by `event` and return the new state.

        Parameters
        ----------
        event : str
            The event to be processed.
        payload : Any, optional
            The PDU received or to be sent, or another value depending on the
            event.

        Raises
        ------
        InvalidEventError
            If `event` is a local event that isn't valid for the current
            state. Received PDUs that aren't valid for the current state
            abort the association instead.
        """
        key = (event, self.current_state)
        if key in TRANSITION_TABLE:
            action_name = TRANSITION_TABLE[key]
        elif event in RECEIVED_EVENTS and self.current_state != STA_CLOSED:
            LOGGER.error(
                f"Received an unexpected PDU: '{event}' while in state "
                f"'{self.current_state}'"
            )
            action_name = "AA-unexpected"
        else:
            msg = f"Invalid event '{event}' for the current state '{self.current_state}'"
            LOGGER.error(msg)
            raise InvalidEventError(msg)

        _, func = ACTIONS[action_name]
        try:
            next_state = func(self.dul, payload)
        except Exception as exc:
            LOGGER.error(
                f"State Machine received an exception attempting to perform "
                f"the action '{action_name}' while in state '{self.current_state}'"
            )
            LOGGER.exception(exc)
            raise

        LOGGER.debug(
            f"{self.current_state} + {event} -> {action_name} -> {next_state}"
        )
        self.transition(next_state)

        return next_state

    def transition(self, state: str) -> None:
        """Transition the state machine to `state`.

        Raises
        ------
        ValueError
            If `state` is not a valid state.
        """
        if state not in STATES:
            msg = f"Invalid state '{state}' for State Machine"
            LOGGER.error(msg)
            raise ValueError(msg)

        self.current_state = state

    @property
    def is_closed(self) -> bool:
        """Return ``True`` if the state machine has reached ``Closed``."""
        return self.current_state == STA_CLOSED


# Association establishment
def AE_request(dul: "DULServiceProvider", pdu: A_ASSOCIATE_RQ) -> str:
    """Send the A-ASSOCIATE-RQ PDU and start the timer."""
    dul.send_pdu(pdu)
    dul.artim_timer.start()

    return STA_REQUESTING


def AE_indication(dul: "DULServiceProvider", pdu: A_ASSOCIATE_RQ) -> str:
    """Start the timer and pass the A-ASSOCIATE-RQ to the association.

    The association's reply arrives later as a local accept or reject.
    """
    dul.artim_timer.start()
    dul.assoc.handle_associate_rq(pdu)

    return STA_AWAITING_LOCAL


def AE_accept(dul: "DULServiceProvider", pdu: A_ASSOCIATE_AC) -> str:
    """Send the A-ASSOCIATE-AC PDU and stop the timer."""
    dul.artim_timer.stop()
    dul.send_pdu(pdu)
    dul.assoc.handle_established()

    return STA_ESTABLISHED


def AE_reject(dul: "DULServiceProvider", pdu: A_ASSOCIATE_RJ) -> str:
    """Send the A-ASSOCIATE-RJ PDU and close."""
    dul.artim_timer.stop()
    dul.send_pdu(pdu)

    return STA_CLOSED


def AE_confirm_accept(dul: "DULServiceProvider", pdu: A_ASSOCIATE_AC) -> str:
    """Pass the A-ASSOCIATE-AC to the association.

    If no presentation context was accepted the association is aborted and
    never reported as established.
    """
    dul.artim_timer.stop()
    if not dul.assoc.handle_associate_ac(pdu):
        dul.send_pdu(A_ABORT_RQ(ABORT_SOURCE_USER, ABORT_REASON_NOT_SPECIFIED))
        return STA_CLOSED

    dul.assoc.handle_established()

    return STA_ESTABLISHED


def AE_confirm_reject(dul: "DULServiceProvider", pdu: A_ASSOCIATE_RJ) -> str:
    """Pass the A-ASSOCIATE-RJ to the association and close."""
    dul.artim_timer.stop()
    dul.assoc.handle_associate_rj(pdu)

    return STA_CLOSED


# Data transfer
def DT_send(dul: "DULServiceProvider", pdu: P_DATA_TF) -> str:
    """Send a P-DATA-TF PDU."""
    dul.send_pdu(pdu)

    return dul.state_machine.current_state


def DT_indication(dul: "DULServiceProvider", pdu: P_DATA_TF) -> str:
    """Pass a received P-DATA-TF PDU to the association."""
    dul.assoc.handle_p_data(pdu)

    return dul.state_machine.current_state


# Association release
def AR_request(dul: "DULServiceProvider", pdu: A_RELEASE_RQ | None) -> str:
    """Send the A-RELEASE-RQ PDU and start the timer."""
    dul.send_pdu(pdu or A_RELEASE_RQ())
    dul.artim_timer.start()

    return STA_RELEASING


def AR_indication(dul: "DULServiceProvider", pdu: A_RELEASE_RQ) -> str:
    """Pass the release request to the association then send the
    A-RELEASE-RP PDU and close.
    """
    dul.assoc.handle_release_rq()
    dul.send_pdu(A_RELEASE_RP())

    return STA_CLOSED


def AR_collision(dul: "DULServiceProvider", pdu: A_RELEASE_RQ) -> str:
    """Release collision: send the A-RELEASE-RP PDU and keep waiting for the
    peer's A-RELEASE-RP.
    """
    LOGGER.debug("Release collision, sending A-RELEASE-RP")
    dul.send_pdu(A_RELEASE_RP())

    return STA_RELEASING


def AR_confirm(dul: "DULServiceProvider", pdu: A_RELEASE_RP) -> str:
    """Stop the timer and close."""
    dul.artim_timer.stop()

    return STA_CLOSED


# Association abort
def AA_local(dul: "DULServiceProvider", pdu: A_ABORT_RQ | None) -> str:
    """Send the A-ABORT PDU and close."""
    dul.artim_timer.stop()
    pdu = pdu or A_ABORT_RQ(ABORT_SOURCE_USER, ABORT_REASON_NOT_SPECIFIED)
    dul.send_pdu(pdu)
    dul.assoc.handle_abort(pdu.source, pdu.reason_diagnostic)

    return STA_CLOSED


def AA_indication(dul: "DULServiceProvider", pdu: A_ABORT_RQ) -> str:
    """Pass the received A-ABORT to the association and close."""
    dul.artim_timer.stop()
    dul.assoc.handle_abort(pdu.source, pdu.reason_diagnostic)

    return STA_CLOSED


def AA_transport(dul: "DULServiceProvider", exc: Exception | None) -> str:
    """The transport connection closed, stop the timer and close."""
    dul.artim_timer.stop()

    return STA_CLOSED


def AA_timeout(dul: "DULServiceProvider", payload: Any) -> str:
    """The timer expired, send an A-ABORT PDU and close."""
    LOGGER.error("The association timed out waiting for a response from the peer")
    dul.artim_timer.stop()
    dul.send_pdu(A_ABORT_RQ(ABORT_SOURCE_PROVIDER, ABORT_REASON_NOT_SPECIFIED))
    dul.assoc.handle_abort(ABORT_SOURCE_PROVIDER, ABORT_REASON_NOT_SPECIFIED)

    return STA_CLOSED


def _provider_abort(dul: "DULServiceProvider", reason: int) -> str:
    dul.artim_timer.stop()
    dul.send_pdu(A_ABORT_RQ(ABORT_SOURCE_PROVIDER, reason))
    dul.assoc.handle_abort(ABORT_SOURCE_PROVIDER, reason)

    return STA_CLOSED


def AA_invalid(dul: "DULServiceProvider", payload: Any) -> str:
    """An invalid PDU was received, send an A-ABORT PDU and close."""
    return _provider_abort(dul, ABORT_REASON_UNRECOGNISED_PDU)


def AA_unexpected(dul: "DULServiceProvider", payload: Any) -> str:
    """A PDU was received that isn't valid for the current state, send an
    A-ABORT PDU and close.
    """
    return _provider_abort(dul, ABORT_REASON_UNEXPECTED_PDU)


def AA_close(dul: "DULServiceProvider", payload: Any) -> str:
    """Local abort before any association request, close the connection."""
    dul.artim_timer.stop()
    dul.assoc.handle_abort(ABORT_SOURCE_USER, ABORT_REASON_NOT_SPECIFIED)

    return STA_CLOSED


def AA_ignore(dul: "DULServiceProvider", payload: Any) -> str:
    """Already closed, nothing to do."""
    return STA_CLOSED


ACTIONS: dict[str, tuple[str, Callable[["DULServiceProvider", Any], str]]] = {
    "AE-request": ("Send A-ASSOCIATE-RQ PDU and start timer", AE_request),
    "AE-indication": ("Issue A-ASSOCIATE indication and start timer", AE_indication),
    "AE-accept": ("Send A-ASSOCIATE-AC PDU", AE_accept),
    "AE-reject": ("Send A-ASSOCIATE-RJ PDU", AE_reject),
    "AE-confirm-accept": (
        "Issue A-ASSOCIATE accept confirmation, abort if no context accepted",
        AE_confirm_accept,
    ),
    "AE-confirm-reject": ("Issue A-ASSOCIATE reject confirmation", AE_confirm_reject),
    "DT-send": ("Send P-DATA-TF PDU", DT_send),
    "DT-indication": ("Issue P-DATA indication", DT_indication),
    "AR-request": ("Send A-RELEASE-RQ PDU and start timer", AR_request),
    "AR-indication": ("Issue A-RELEASE indication and send A-RELEASE-RP PDU", AR_indication),
    "AR-collision": ("Send A-RELEASE-RP PDU (release collision)", AR_collision),
    "AR-confirm": ("Issue A-RELEASE confirmation", AR_confirm),
    "AA-local": ("Send A-ABORT PDU", AA_local),
    "AA-indication": ("Issue A-ABORT indication", AA_indication),
    "AA-transport": ("Issue transport closed indication", AA_transport),
    "AA-timeout": ("Send A-ABORT PDU (timer expired)", AA_timeout),
    "AA-invalid": ("Send A-ABORT PDU (invalid PDU)", AA_invalid),
    "AA-unexpected": ("Send A-ABORT PDU (unexpected PDU)", AA_unexpected),
    "AA-close": ("Close the connection without sending", AA_close),
    "AA-ignore": ("Ignore event", AA_ignore),
}


TRANSITION_TABLE: dict[tuple[str, str], str] = {
    (EVT_LOCAL_ASSOCIATE_RQ, STA_IDLE): "AE-request",
    (EVT_RECV_ASSOCIATE_RQ, STA_IDLE): "AE-indication",
    (EVT_LOCAL_ACCEPT, STA_AWAITING_LOCAL): "AE-accept",
    (EVT_LOCAL_REJECT, STA_AWAITING_LOCAL): "AE-reject",
    (EVT_RECV_ASSOCIATE_AC, STA_REQUESTING): "AE-confirm-accept",
    (EVT_RECV_ASSOCIATE_RJ, STA_REQUESTING): "AE-confirm-reject",
    (EVT_LOCAL_P_DATA, STA_ESTABLISHED): "DT-send",
    (EVT_RECV_P_DATA, STA_ESTABLISHED): "DT-indication",
    (EVT_RECV_P_DATA, STA_RELEASING): "DT-indication",
    (EVT_LOCAL_RELEASE_RQ, STA_ESTABLISHED): "AR-request",
    (EVT_RECV_RELEASE_RQ, STA_ESTABLISHED): "AR-indication",
    (EVT_RECV_RELEASE_RQ, STA_RELEASING): "AR-collision",
    (EVT_RECV_RELEASE_RP, STA_RELEASING): "AR-confirm",
    (EVT_TRANSPORT_CLOSED, STA_CLOSED): "AA-ignore",
}
for _state in OPEN_STATES:
    TRANSITION_TABLE[(EVT_LOCAL_ABORT, _state)] = "AA-local"
    TRANSITION_TABLE[(EVT_RECV_ABORT, _state)] = "AA-indication"
    TRANSITION_TABLE[(EVT_INVALID_PDU, _state)] = "AA-invalid"

for _state in (STA_IDLE,) + OPEN_STATES:
    TRANSITION_TABLE[(EVT_TRANSPORT_CLOSED, _state)] = "AA-transport"

for _state in TIMED_STATES:
    TRANSITION_TABLE[(EVT_TIMER_EXPIRED, _state)] = "AA-timeout"

# An invalid or aborted PDU before any association request
TRANSITION_TABLE[(EVT_INVALID_PDU, STA_IDLE)] = "AA-invalid"
TRANSITION_TABLE[(EVT_RECV_ABORT, STA_IDLE)] = "AA-indication"
TRANSITION_TABLE[(EVT_LOCAL_ABORT, STA_IDLE)] = "AA-close"
