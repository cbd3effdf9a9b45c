"""
Implements the DICOM Upper Layer service provider.

The :class:`DULServiceProvider` runs in its own thread and is the only reader
of the association's socket and the only writer to it. Local events from
the application are placed on its queue, incoming PDUs are read from the
socket, and both drive the association's state machine.
"""

import logging
import queue
import threading
from typing import TYPE_CHECKING, Any

from dimsenet import evt
from dimsenet._globals import ABORT_REASON_NOT_SPECIFIED, ABORT_SOURCE_PROVIDER
from dimsenet.exceptions import MalformedPDU
from dimsenet.fsm import (
    EVT_INVALID_PDU,
    EVT_LOCAL_ABORT,
    EVT_TIMER_EXPIRED,
    EVT_TRANSPORT_CLOSED,
    PDU_EVENTS,
    STA_CLOSED,
    TIMED_STATES,
    InvalidEventError,
    StateMachine,
)
from dimsenet.pdu import A_ABORT_RQ, PDU, decode_pdu, read_pdu
from dimsenet.timer import Timer
from dimsenet.utils import make_target

if TYPE_CHECKING:  # pragma: no cover
    from dimsenet.association import Association
    from dimsenet.transport import AssociationSocket


LOGGER = logging.getLogger(__name__)


class DULServiceProvider(threading.Thread):
    """The DICOM Upper Layer Service Provider.

    Attributes
    ----------
    artim_timer : timer.Timer
        The ARTIM timer, used while waiting for a response to an association
        or release request.
    error : Exception or None
        The transport error that closed the connection, if any.
    socket : transport.AssociationSocket
        The socket connected to the peer.
    state_machine : fsm.StateMachine
        The association's state machine.
    to_provider_queue : queue.Queue
        Queue of ``(event, payload)`` local events waiting to be processed.
    """

    def __init__(self, assoc: "Association", socket: "AssociationSocket") -> None:
        """Create a new DUL service provider for `assoc`.

        Parameters
        ----------
        assoc : association.Association
            The DUL's parent :class:`~dimsenet.association.Association`
            instance.
        socket : transport.AssociationSocket
            The connected socket.
        """
        self._assoc = assoc
        self.socket = socket
        self.to_provider_queue: "queue.Queue[tuple[str, Any]]" = queue.Queue()
        self.artim_timer = Timer(assoc.acse_timeout)
        self._idle_timer = Timer(assoc.network_timeout)
        self.state_machine = StateMachine(self)
        self.error: Exception | None = None

        # The delay between checks for local events while the socket is idle
        self._run_loop_delay = 0.005
        self.socket.select_timeout = self._run_loop_delay

        super().__init__(target=make_target(self.run_reactor))
        self.daemon = True
        self.name = f"DUL-{assoc.mode}-{self.name}"

    @property
    def assoc(self) -> "Association":
        """Return the parent :class:`~dimsenet.association.Association`."""
        return self._assoc

    @property
    def is_closed(self) -> bool:
        """Return ``True`` if the state machine has reached ``Closed``."""
        return self.state_machine.is_closed

    def send_event(self, event: str, payload: Any = None) -> None:
        """Queue a local `event` with its `payload` for processing.

        Parameters
        ----------
        event : str
            One of the state machine's local events.
        payload : Any, optional
            The PDU to be sent, if any.
        """
        self.to_provider_queue.put((event, payload))

    def send_pdu(self, pdu: PDU) -> None:
        """Encode and send `pdu` to the peer.

        Only called by the state machine actions, so only from the DUL's own
        thread.
        """
        self.socket.send(pdu.encode())
        evt.trigger(self.assoc, evt.EVT_PDU_SENT, {"pdu": pdu})

    def run_reactor(self) -> None:
        """Run the DUL reactor.

        The main :class:`threading.Thread` run loop. Runs until the state
        machine reaches ``Closed``, processing the queued local events and
        reading any incoming PDUs.
        """
        self._idle_timer.start()
        try:
            while not self.is_closed:
                if self._process_local_events() or self.is_closed:
                    continue

                if self.artim_timer.expired:
                    if self.state_machine.current_state in TIMED_STATES:
                        self.state_machine.do_action(EVT_TIMER_EXPIRED)
                        continue

                    self.artim_timer.reset()

                if self._idle_timer.expired:
                    LOGGER.error("Network timeout reached")
                    self.state_machine.do_action(
                        EVT_LOCAL_ABORT,
                        A_ABORT_RQ(ABORT_SOURCE_PROVIDER, ABORT_REASON_NOT_SPECIFIED),
                    )
                    continue

                if self.socket.ready:
                    self._read_pdu()
                    self._idle_timer.restart()
        except OSError as exc:
            LOGGER.error(f"The connection to the peer failed: {exc}")
            self.error = exc
        except Exception as exc:
            LOGGER.error("Exception in the DUL reactor, aborting the association")
            LOGGER.exception(exc)
            self._abort_on_error()
        finally:
            if not self.is_closed:
                self.state_machine.transition(STA_CLOSED)

            self.socket.close()
            self.assoc.handle_closed(self.error)

    def _abort_on_error(self) -> None:
        """Bypass the state machine to send an A-ABORT and mark the
        association as aborted.
        """
        try:
            self.socket.send(
                A_ABORT_RQ(ABORT_SOURCE_PROVIDER, ABORT_REASON_NOT_SPECIFIED).encode()
            )
        except OSError as exc:
            LOGGER.debug(f"Unable to send the A-ABORT: {exc}")

        self.assoc.handle_abort(ABORT_SOURCE_PROVIDER, ABORT_REASON_NOT_SPECIFIED)

    def _process_local_events(self) -> bool:
        """Process the queued local events.

        Returns
        -------
        bool
            ``True`` if at least one event was processed.
        """
        processed = False
        while not self.is_closed:
            try:
                event, payload = self.to_provider_queue.get(block=False)
            except queue.Empty:
                break

            processed = True
            self._idle_timer.restart()
            try:
                self.state_machine.do_action(event, payload)
            except InvalidEventError:
                # Already logged by the state machine
                continue

        return processed

    def _read_pdu(self) -> None:
        """Read and decode the next PDU then pass it to the state machine."""
        assoc = self.assoc
        local = assoc.requestor if assoc.is_requestor else assoc.acceptor
        try:
            data = read_pdu(self.socket.recv, local.maximum_length)
        except ConnectionError as exc:
            LOGGER.debug(f"Transport connection closed: {exc}")
            self.error = exc
            self.state_machine.do_action(EVT_TRANSPORT_CLOSED, exc)
            return
        except MalformedPDU as exc:
            LOGGER.error(f"Invalid PDU received: {exc}")
            self.state_machine.do_action(EVT_INVALID_PDU, exc)
            return

        try:
            pdu = decode_pdu(data)
        except MalformedPDU as exc:
            LOGGER.error(f"Unable to decode the received PDU: {exc}")
            self.state_machine.do_action(EVT_INVALID_PDU, exc)
            return

        evt.trigger(self.assoc, evt.EVT_PDU_RECV, {"pdu": pdu})
        self.state_machine.do_action(PDU_EVENTS[type(pdu)], pdu)

    def wait_closed(self, timeout: float | None = None) -> bool:
        """Block until the reactor has stopped, returning ``True`` if it
        stopped within `timeout` seconds.
        """
        if threading.current_thread() is self:
            return self.is_closed

        if self.ident is not None:
            self.join(timeout)

        return not self.is_alive()
