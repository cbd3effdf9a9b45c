"""Defines the Association class which handles associating with peers."""

from concurrent import futures
from functools import partial
import logging
import queue
import threading
from typing import TYPE_CHECKING, Any, Callable, cast

from pydicom.dataset import Dataset

from dimsenet import _config, evt
from dimsenet._globals import (
    ABORT_REASON_INVALID_PARAMETER,
    ABORT_REASON_NOT_SPECIFIED,
    ABORT_SOURCE_PROVIDER,
    ABORT_SOURCE_USER,
    DEFAULT_MAX_LENGTH,
    MINIMUM_PDU_LENGTH,
    MODE_ACCEPTOR,
    MODE_REQUESTOR,
)
from dimsenet._handlers import (
    standard_dimse_recv_handler,
    standard_dimse_sent_handler,
    standard_pdu_recv_handler,
    standard_pdu_sent_handler,
)
from dimsenet.acse import ACSE
from dimsenet.dimse import Assembler, Disassembler
from dimsenet.dimse_messages import (  # type: ignore[attr-defined]
    C_CANCEL_RQ,
    C_ECHO_RQ,
    C_FIND_RQ,
    C_GET_RQ,
    C_MOVE_RQ,
    C_STORE_RQ,
    DIMSEMessage,
    response_for,
)
from dimsenet.dsutils import decode_for, encode_for, pretty_dataset
from dimsenet.dul import DULServiceProvider
from dimsenet.exceptions import (
    AssociationClosed,
    CapacityExceeded,
    IncompleteMessage,
    NegotiationError,
)
from dimsenet.fsm import (
    EVT_LOCAL_ABORT,
    EVT_LOCAL_ACCEPT,
    EVT_LOCAL_ASSOCIATE_RQ,
    EVT_LOCAL_P_DATA,
    EVT_LOCAL_REJECT,
    EVT_LOCAL_RELEASE_RQ,
)
from dimsenet.pdu import A_ABORT_RQ, A_ASSOCIATE_AC, A_ASSOCIATE_RQ, P_DATA_TF
from dimsenet.pdu_items import PDUItem
from dimsenet.presentation import PresentationContext
from dimsenet.sop_class import Verification  # type: ignore[attr-defined]
from dimsenet.status import Status, is_pending
from dimsenet.utils import make_target, set_ae

if TYPE_CHECKING:  # pragma: no cover
    from dimsenet.ae import ApplicationEntity
    from dimsenet.events import AssociationEventSink
    from dimsenet.pdu import A_ASSOCIATE_RJ
    from dimsenet.transport import AssociationServer, AssociationSocket


LOGGER = logging.getLogger(__name__)

HandlerType = dict[
    evt.EventType, list[tuple[Callable, list[Any]]] | tuple[Callable, list[Any]]
]

# Response command set elements returned as part of the status
_STATUS_KEYWORDS = (
    "ErrorComment",
    "OffendingElement",
    "NumberOfRemainingSuboperations",
    "NumberOfCompletedSuboperations",
    "NumberOfFailedSuboperations",
    "NumberOfWarningSuboperations",
)


class PendingOperation:
    """A request sent to the peer that's waiting on its final response.

    Attributes
    ----------
    future : concurrent.futures.Future
        Resolves with the final response, or fails with
        :class:`~dimsenet.exceptions.AssociationClosed` if the association
        ends first.
    request : dimse_messages.DIMSEMessage
        The request that was sent.
    responses : list of dimse_messages.DIMSEMessage
        The *Pending* responses received so far, in the order received.
    """

    def __init__(self, request: DIMSEMessage) -> None:
        self.request = request
        self.responses: list[DIMSEMessage] = []
        self.future: "futures.Future[DIMSEMessage]" = futures.Future()

    @property
    def context_id(self) -> int:
        """Return the ID of the context the request was sent on."""
        return self.request.context_id  # type: ignore[return-value]

    @property
    def message_id(self) -> int:
        """Return the request's *Message ID*."""
        return self.request.message_id  # type: ignore[return-value]

    @property
    def is_done(self) -> bool:
        """Return ``True`` if the operation has been resolved."""
        return self.future.done()

    def _add_response(self, rsp: DIMSEMessage) -> bool:
        """Add a response, returning ``True`` if it was the final one."""
        if rsp.status is not None and is_pending(rsp.status):
            self.responses.append(rsp)
            return False

        if not self.future.done():
            self.future.set_result(rsp)

        return True

    def _fail(self, exc: Exception) -> None:
        if not self.future.done():
            self.future.set_exception(exc)

    def wait(self, timeout: float | None = None) -> DIMSEMessage:
        """Block until the final response is received and return it.

        Raises
        ------
        exceptions.AssociationClosed
            If the association ended before the final response.
        concurrent.futures.TimeoutError
            If `timeout` seconds pass without a final response.
        """
        return self.future.result(timeout)

    def __repr__(self) -> str:
        return (
            f"PendingOperation({self.request.message_type}, "
            f"message_id={self.message_id}, responses={len(self.responses)})"
        )


class Association(threading.Thread):
    """Manage an Association with a peer AE.

    The association runs two threads. The
    :class:`~dimsenet.dul.DULServiceProvider` reads from and writes to the
    socket and runs the state machine, while the association's own thread
    (the worker) serves the requests received from the peer and calls the
    sink's callbacks.

    Attributes
    ----------
    acceptor : association.ServiceUser
        Representation of the association's *acceptor* AE.
    acse : acse.ACSE
        The association's ACSE service provider.
    dul : dul.DULServiceProvider
        The association's DICOM Upper Layer service provider.
    is_aborted : bool
        ``True`` if the association has been aborted, ``False`` otherwise.
    is_established : bool
        ``True`` if the association has been established, ``False``
        otherwise.
    is_rejected : bool
        ``True`` if the association was rejected, ``False`` otherwise.
    is_released : bool
        ``True`` if the association has been released, ``False`` otherwise.
    mode : str
        The mode of the local AE, either ``'requestor'`` or ``'acceptor'``.
    requestor : association.ServiceUser
        Representation of the association's *requestor* AE.
    sink : events.AssociationEventSink
        The application callbacks.
    """

    def __init__(
        self,
        ae: "ApplicationEntity",
        mode: str,
        socket: "AssociationSocket | None" = None,
        sink: "AssociationEventSink | None" = None,
        server: "AssociationServer | None" = None,
        handlers: list[evt.HandlerArgType] | None = None,
    ) -> None:
        """Create a new :class:`Association` instance.

        Parameters
        ----------
        ae : ae.ApplicationEntity
            The local AE.
        mode : str
            Must be ``'requestor'`` or ``'acceptor'``.
        socket : transport.AssociationSocket
            The socket connected to the peer.
        sink : events.AssociationEventSink, optional
            The application callbacks, default
            :class:`~dimsenet.events.HandlerEventSink`.
        server : transport.AssociationServer, optional
            If the local AE is the acceptor, the server that accepted the
            connection.
        handlers : list of tuple, optional
            The ``(event, handler)`` or ``(event, handler, args)`` to bind.
        """
        if mode not in (MODE_REQUESTOR, MODE_ACCEPTOR):
            raise ValueError(
                f"Invalid association mode '{mode}', must be "
                f"'{MODE_REQUESTOR}' or '{MODE_ACCEPTOR}'"
            )

        if socket is None:
            raise ValueError("An association requires a connected socket")

        self._ae = ae
        self.mode = mode
        self.server = server
        self.sink: "AssociationEventSink" = sink or evt.HandlerEventSink()

        # Represents the association requestor and acceptor users
        self.requestor = ServiceUser(self, MODE_REQUESTOR)
        self.acceptor = ServiceUser(self, MODE_ACCEPTOR)
        self._init_users(socket)

        # Status attributes
        self.is_established = False
        self.is_rejected = False
        self.is_aborted = False
        self.is_released = False
        self._sent_abort = False
        self._sent_release = False
        self._negotiation_error: NegotiationError | None = None
        self._abort_info: tuple[int, int] = (ABORT_SOURCE_USER, ABORT_REASON_NOT_SPECIFIED)
        # Set once negotiation has ended, either way
        self._negotiated = threading.Event()

        # Negotiated parameters
        self._contexts: list[PresentationContext] = []
        self._operations_limits: tuple[int, int] = (1, 1)
        self._roles: dict[str, tuple[bool, bool]] = {}

        # Timeouts (in seconds), needs to be set before the DUL is created
        self.acse_timeout: float | None = ae.acse_timeout
        self.dimse_timeout: float | None = ae.dimse_timeout
        self.network_timeout: float | None = ae.network_timeout

        # Event handlers
        self._handler_lock = threading.Lock()
        self._handlers: HandlerType = {}
        self._bind_defaults()
        for args in handlers or []:
            self.bind(*args)

        # Message handling
        self._assembler: Assembler | None = None
        self._disassembler = Disassembler()
        self._send_lock = threading.Lock()
        self._pending: dict[int, PendingOperation] = {}
        self._pending_cv = threading.Condition()
        self._last_message_id = 0
        self._cancelled: set[int] = set()
        # Requests received from the peer and not yet served
        self._performing = 0
        self._performing_lock = threading.Lock()

        # Work for the association's thread, ``None`` stops the thread
        self._work: "queue.Queue[Callable[[], None] | None]" = queue.Queue()

        # Service providers
        self.acse = ACSE(self)
        self.dul = DULServiceProvider(self, socket)

        super().__init__(target=make_target(self.run_worker))
        self.daemon = True
        self.name = f"Association-{mode}-{self.name}"

    def _init_users(self, socket: "AssociationSocket") -> None:
        """Set the local service user's parameters from the AE."""
        ae = self.ae
        local = self.requestor if self.is_requestor else self.acceptor
        local.ae_title = ae.ae_title
        local.maximum_length = ae.maximum_pdu_size
        local.implementation_class_uid = ae.implementation_class_uid
        local.implementation_version_name = ae.implementation_version_name
        local.asynchronous_operations = (
            ae.maximum_operations_invoked,
            ae.maximum_operations_performed,
        )

        peer = self.acceptor if self.is_requestor else self.requestor
        peer.address, peer.port = socket.get_peer()

    def abort(self) -> None:
        """Abort the :class:`Association` by sending an A-ABORT to the peer.

        Every pending operation fails with
        :class:`~dimsenet.exceptions.AssociationClosed`. Blocks until the
        connection has closed, unless called from the association's DUL
        thread.
        """
        # Only allow a single abort message to be sent
        if self._sent_abort or self.dul.is_closed:
            return

        self._sent_abort = True
        LOGGER.info("Aborting Association")
        self.dul.send_event(
            EVT_LOCAL_ABORT, A_ABORT_RQ(ABORT_SOURCE_USER, ABORT_REASON_NOT_SPECIFIED)
        )
        self._wait_ended()

    @property
    def accepted_contexts(self) -> list[PresentationContext]:
        """Return a :class:`list` of accepted
        :class:`~dimsenet.presentation.PresentationContext` items.
        """
        accepted = [cx for cx in self._contexts if cx.is_accepted]
        return sorted(accepted, key=lambda x: x.context_id or 0)

    @property
    def ae(self) -> "ApplicationEntity":
        """Return the parent :class:`~dimsenet.ae.ApplicationEntity`."""
        return self._ae

    def bind(
        self, event: evt.EventType, handler: Callable, args: list[Any] | None = None
    ) -> None:
        """Bind a callable `handler` to an `event`.

        Parameters
        ----------
        event : collections.namedtuple
            The event to bind the function to.
        handler : callable
            The function that will be called if the event occurs.
        args : list, optional
            Optional extra arguments to be passed to the handler (default:
            no extra arguments passed to the handler).
        """
        # Make sure no access to `_handlers` while its being changed
        with self._handler_lock:
            if event.is_intervention:
                self._handlers[event] = (handler, args or [])
                return

            bound = cast(list, self._handlers.setdefault(event, []))
            if handler not in [func for func, _ in bound]:
                bound.append((handler, args or []))

    def _bind_defaults(self) -> None:
        """Bind the default event handlers."""
        if _config.LOG_HANDLER_LEVEL == "standard":
            self.bind(evt.EVT_DIMSE_RECV, standard_dimse_recv_handler)
            self.bind(evt.EVT_DIMSE_SENT, standard_dimse_sent_handler)
            self.bind(evt.EVT_PDU_RECV, standard_pdu_recv_handler)
            self.bind(evt.EVT_PDU_SENT, standard_pdu_sent_handler)

    def get_context(self, context_id: int) -> PresentationContext:
        """Return the accepted presentation context with ID `context_id`.

        Raises
        ------
        KeyError
            If there's no accepted context with the ID.
        """
        for cx in self.accepted_contexts:
            if cx.context_id == context_id:
                return cx

        raise KeyError(f"No accepted presentation context with ID {context_id}")

    def get_events(self) -> list[evt.EventType]:
        """Return a :class:`list` of currently bound events."""
        with self._handler_lock:
            return sorted(self._handlers.keys(), key=lambda x: x.name)

    def get_handlers(self, event: evt.EventType) -> Any:
        """Return the handlers bound to a specific `event`.

        Returns
        -------
        2-tuple of (callable, args), list of 2-tuple
            If the event is a notification event then returns a list of
            2-tuples containing the callable functions bound to `event` and
            the arguments passed to the callable as ``(callable, args)``. If
            the event is an intervention event then returns the bound
            ``(callable, args)``, or the event's default handler if none has
            been bound.
        """
        with self._handler_lock:
            if event.is_intervention:
                return self._handlers.get(event, (evt.get_default_handler(event), []))

            return list(self._handlers.get(event, []))

    def _get_valid_context(
        self, abstract_syntax: str | None, context_id: int | None = None
    ) -> PresentationContext:
        """Return an accepted context for `abstract_syntax`.

        Parameters
        ----------
        abstract_syntax : str
            The abstract syntax the context must have.
        context_id : int, optional
            If used then the context with this ID must be accepted and have
            a matching abstract syntax, otherwise the accepted context with
            the lowest ID is returned.

        Raises
        ------
        ValueError
            If there's no matching accepted context.
        """
        for cx in self.accepted_contexts:
            if context_id is not None and cx.context_id != context_id:
                continue

            if abstract_syntax is None or cx.abstract_syntax == abstract_syntax:
                return cx

        if context_id is not None:
            msg = (
                f"No accepted presentation context with ID {context_id} for "
                f"'{abstract_syntax}'"
            )
        else:
            msg = f"No accepted presentation context for '{abstract_syntax}'"

        LOGGER.error(msg)
        raise ValueError(msg)

    @property
    def is_acceptor(self) -> bool:
        """Return ``True`` if the local AE is the association *acceptor*."""
        return self.mode == MODE_ACCEPTOR

    @property
    def is_requestor(self) -> bool:
        """Return ``True`` if the local AE is the association *requestor*."""
        return self.mode == MODE_REQUESTOR

    def is_cancelled(self, msg_id: int) -> bool:
        """Return ``True`` if a C-CANCEL has been received for the request
        with *Message ID* `msg_id`.
        """
        return msg_id in self._cancelled

    @property
    def operations_limit(self) -> int:
        """Return the maximum number of requests the local AE may have
        outstanding, ``0`` for unlimited.
        """
        invoked, performed = self._operations_limits
        return invoked if self.is_requestor else performed

    @property
    def peer_operations_limit(self) -> int:
        """Return the maximum number of requests the peer may have
        outstanding with the local AE, ``0`` for unlimited.
        """
        invoked, performed = self._operations_limits
        return performed if self.is_requestor else invoked

    @property
    def pending_operations(self) -> list[PendingOperation]:
        """Return the operations still waiting on their final response."""
        with self._pending_cv:
            return list(self._pending.values())

    @property
    def rejected_contexts(self) -> list[PresentationContext]:
        """Return a :class:`list` of rejected
        :class:`~dimsenet.presentation.PresentationContext`.
        """
        return [cx for cx in self._contexts if not cx.is_accepted]

    def release(self) -> None:
        """Release the association.

        Outstanding operations are given up to
        :attr:`~dimsenet._config.RELEASE_DRAIN_TIMEOUT` seconds to complete,
        after which the association is aborted instead.
        """
        if not self.is_established or self._sent_release:
            return

        LOGGER.info("Releasing Association")
        timeout = _config.RELEASE_DRAIN_TIMEOUT
        # The DUL thread is the one that resolves the operations
        if threading.current_thread() is self.dul:
            timeout = 0

        with self._pending_cv:
            drained = self._pending_cv.wait_for(lambda: not self._pending, timeout)

        if not drained:
            LOGGER.warning(
                "Operations still pending after waiting for release, aborting "
                "the association"
            )
            self.abort()
            return

        self._sent_release = True
        self.dul.send_event(EVT_LOCAL_RELEASE_RQ)
        self._wait_ended()

    def request(self) -> None:
        """Request an association with the peer.

        Sends an A-ASSOCIATE-RQ built from the requestor's proposed contexts
        and blocks until the association is accepted, rejected or closed.
        """
        pdu = self.acse.build_request()
        LOGGER.info("Requesting Association")
        self.dul.send_event(EVT_LOCAL_ASSOCIATE_RQ, pdu)
        self.start()
        self._negotiated.wait()

    def run_worker(self) -> None:
        """The main :class:`threading.Thread` run loop.

        Starts the DUL then runs the queued work until the association
        has ended.
        """
        self.dul.start()
        while True:
            task = self._work.get()
            if task is None:
                break

            try:
                task()
            except Exception as exc:
                LOGGER.error("Exception raised in the association's worker thread")
                LOGGER.exception(exc)

        self.dul.join()

    def _wait_ended(self) -> None:
        """Block until the connection has closed and the application has
        been notified.

        Returns immediately when called from one of the association's own
        threads.
        """
        if threading.current_thread() in (self, self.dul):
            return

        self.dul.wait_closed()
        if self.ident is not None:
            self.join()

    def unbind(self, event: evt.EventType, handler: Callable) -> None:
        """Unbind a callable `handler` from an `event`.

        Unbinding an intervention event's handler restores its default.
        """
        with self._handler_lock:
            bound = self._handlers.get(event)
            if bound is None:
                return

            if event.is_intervention:
                if bound[0] == handler:
                    del self._handlers[event]

                return

            bound = cast(list, bound)
            bound[:] = [(func, args) for func, args in bound if func != handler]
            if not bound:
                del self._handlers[event]

    # State machine indications, only called by the DUL thread
    def handle_abort(self, source: int, reason: int) -> None:
        """The association has been aborted by either AE or the provider."""
        if self.is_rejected:
            return

        LOGGER.info("Association Aborted")
        self.is_aborted = True
        self.is_established = False
        self._abort_info = (source, reason)

    def handle_associate_ac(self, pdu: A_ASSOCIATE_AC) -> bool:
        """Apply the peer's acceptance, returning ``False`` if no
        presentation context was accepted.
        """
        return self.acse.process_accept(pdu)

    def handle_associate_rj(self, pdu: "A_ASSOCIATE_RJ") -> None:
        """Apply the peer's rejection."""
        self.acse.process_reject(pdu)

    def handle_associate_rq(self, pdu: A_ASSOCIATE_RQ) -> None:
        """Negotiate the peer's association request and queue the reply."""
        reply = self.acse.negotiate_request(pdu)
        if isinstance(reply, A_ASSOCIATE_AC):
            self.dul.send_event(EVT_LOCAL_ACCEPT, reply)
        else:
            self.dul.send_event(EVT_LOCAL_REJECT, reply)

    def handle_closed(self, error: Exception | None) -> None:
        """The connection has closed, fail any pending operations and
        notify the application.
        """
        self.is_established = False
        try:
            self._disassembler.reset()
        except IncompleteMessage as exc:
            LOGGER.warning(str(exc))
            error = error or exc

        self.is_released = (
            error is None
            and self._assembler is not None
            and not (self.is_aborted or self.is_rejected)
        )
        self._fail_pending(AssociationClosed("The association has been closed"))
        self._negotiated.set()
        self._work.put(partial(self._notify_terminal, error))
        self._work.put(None)

    def handle_established(self) -> None:
        """The association has been established."""
        peer = self.acceptor if self.is_requestor else self.requestor
        max_length = peer.maximum_length
        if 0 < max_length < MINIMUM_PDU_LENGTH:
            LOGGER.warning(
                f"The peer's maximum PDU length of {max_length} bytes is too "
                f"small, using {MINIMUM_PDU_LENGTH} bytes instead"
            )
            max_length = MINIMUM_PDU_LENGTH

        self._assembler = Assembler(max_length)
        self.is_established = True
        self._negotiated.set()
        self._work.put(partial(self.sink.on_association_accepted, self))

    def handle_p_data(self, pdu: P_DATA_TF) -> None:
        """Reassemble the DIMSE messages in a received P-DATA-TF PDU."""
        try:
            messages = self._disassembler.feed_pdu(pdu)
        except ValueError as exc:
            LOGGER.error(f"Unable to decode the received DIMSE message: {exc}")
            self._provider_abort()
            return

        for msg in messages:
            evt.trigger(self, evt.EVT_DIMSE_RECV, {"message": msg})
            if msg.context_id not in [cx.context_id for cx in self.accepted_contexts]:
                LOGGER.error(
                    f"Received a {msg.message_type} message with an invalid or "
                    f"rejected context ID: {msg.context_id}"
                )
                self._provider_abort()
                return

            if msg.message_type == "C-CANCEL-RQ":
                self._cancelled.add(msg.message_id_being_responded_to)
            elif msg.is_request:
                self._track_performing(msg)
                self._work.put(partial(self._serve_request, msg))
            else:
                self._handle_response(msg)

    def handle_release_rq(self) -> None:
        """The peer has requested the association be released."""
        LOGGER.info("Association Released")
        self.is_established = False
        self._work.put(partial(self.sink.on_release_requested, self))

    def _handle_response(self, rsp: DIMSEMessage) -> None:
        """Correlate a response with its pending operation."""
        msg_id = rsp.message_id_being_responded_to
        with self._pending_cv:
            operation = self._pending.get(msg_id)  # type: ignore[arg-type]

        if operation is None:
            LOGGER.warning(
                f"Received a {rsp.message_type} for an unknown Message ID "
                f"{msg_id}, ignoring"
            )
            return

        try:
            self.sink.on_response_received(self, operation.request, rsp)
        except Exception as exc:
            LOGGER.error("Exception raised by the sink's 'on_response_received'")
            LOGGER.exception(exc)

        if operation._add_response(rsp):
            with self._pending_cv:
                del self._pending[msg_id]  # type: ignore[arg-type]
                self._pending_cv.notify_all()

    def _fail_pending(self, exc: Exception) -> None:
        with self._pending_cv:
            operations = list(self._pending.values())
            self._pending.clear()
            self._pending_cv.notify_all()

        for operation in operations:
            operation._fail(exc)

    def _provider_abort(self) -> None:
        self.dul.send_event(
            EVT_LOCAL_ABORT,
            A_ABORT_RQ(ABORT_SOURCE_PROVIDER, ABORT_REASON_INVALID_PARAMETER),
        )

    def _reject(self, error: NegotiationError) -> None:
        """Mark the association as rejected with `error`."""
        self.is_rejected = True
        self._negotiation_error = error

    # Worker thread
    def _notify_terminal(self, error: Exception | None) -> None:
        """Notify the sink that the association has ended."""
        if self.is_rejected:
            rejection = cast(NegotiationError, self._negotiation_error)
            self.sink.on_association_rejected(self, rejection)
        elif self.is_aborted:
            self.sink.on_abort(self, *self._abort_info)
        else:
            self.sink.on_connection_closed(self, error)

    def _track_performing(self, req: DIMSEMessage) -> None:
        """Count a request received from the peer against its window."""
        with self._performing_lock:
            self._performing += 1
            performing = self._performing

        limit = self.peer_operations_limit
        if limit and performing > limit:
            LOGGER.warning(
                f"The peer has {performing} outstanding requests, exceeding "
                f"the negotiated maximum of {limit}; the {req.message_type} "
                f"request with Message ID {req.message_id} will still be served"
            )

    def _serve_request(self, req: DIMSEMessage) -> None:
        """Serve a request received from the peer, sending each response
        as it's produced.
        """
        final_sent = False
        try:
            if self._sent_release or not self.is_established:
                LOGGER.warning(
                    f"{req.message_type} message received during association "
                    "release, ignoring"
                )
                return

            result = self.sink.on_request_received(self, req)
            if result is None:
                LOGGER.error(f"No service available for the {req.message_type} request")
                result = [response_for(req, Status.SOP_CLASS_NOT_SUPPORTED)]
            elif isinstance(result, DIMSEMessage):
                result = [result]

            for rsp in result:
                self._send_response(req, rsp)
                final_sent = rsp.status is None or not is_pending(rsp.status)
                if final_sent:
                    break

            if not final_sent and self.is_established:
                LOGGER.error(
                    f"The {req.message_type} request was served without a "
                    "final response"
                )
                final_sent = True
                self._send_response(req, response_for(req, Status.UNHANDLED_EXCEPTION))
        except AssociationClosed:
            LOGGER.warning(
                f"The association closed before the {req.message_type} "
                "response could be sent"
            )
        except Exception as exc:
            LOGGER.error(f"Exception raised while serving the {req.message_type} request")
            LOGGER.exception(exc)
            if not final_sent and self.is_established:
                self._send_response(req, response_for(req, Status.UNHANDLED_EXCEPTION))
        finally:
            self._cancelled.discard(req.message_id)  # type: ignore[arg-type]
            with self._performing_lock:
                self._performing = max(self._performing - 1, 0)

    def _send_response(self, req: DIMSEMessage, rsp: DIMSEMessage) -> None:
        rsp.context_id = req.context_id
        if rsp["MessageIDBeingRespondedTo"] is None:
            rsp["MessageIDBeingRespondedTo"] = req.message_id

        self._send_message(rsp)

    # DIMSE messaging
    def _next_message_id(self) -> int:
        """Return an unused *Message ID*, must be called with the pending
        lock held.
        """
        for _ in range(0xFFFF):
            self._last_message_id = self._last_message_id % 0xFFFF + 1
            if self._last_message_id not in self._pending:
                return self._last_message_id

        raise CapacityExceeded("No Message IDs are available")

    def _send_message(self, msg: DIMSEMessage) -> None:
        """Queue the P-DATA-TF PDUs for `msg` to be sent.

        Raises
        ------
        exceptions.AssociationClosed
            If the association isn't established.
        """
        with self._send_lock:
            if not self.is_established or self.dul.is_closed or self._assembler is None:
                raise AssociationClosed(
                    f"Unable to send the {msg.message_type} message, the "
                    "association isn't established"
                )

            # Queued together so another message's PDUs can't be interleaved
            for pdu in self._assembler.assemble(msg):
                self.dul.send_event(EVT_LOCAL_P_DATA, pdu)

        evt.trigger(self, evt.EVT_DIMSE_SENT, {"message": msg})

    def send_request(
        self, message: DIMSEMessage, context_id: int | None = None
    ) -> PendingOperation:
        """Send a request to the peer.

        A new *Message ID* is assigned to `message`.

        Parameters
        ----------
        message : dimse_messages.DIMSEMessage
            The request to send.
        context_id : int, optional
            The ID of the accepted context to send the request on, default
            is the first accepted context for the request's *Affected SOP
            Class UID*.

        Returns
        -------
        association.PendingOperation
            The operation, whose ``future`` resolves with the final response.

        Raises
        ------
        exceptions.AssociationClosed
            If the association isn't established.
        exceptions.CapacityExceeded
            If the negotiated maximum number of outstanding operations has
            been reached.
        ValueError
            If there's no accepted context for the request.
        """
        if not message.is_request or message.message_type == "C-CANCEL-RQ":
            raise ValueError(f"A {message.message_type} message can't be sent as a request")

        if not self.is_established:
            raise AssociationClosed(
                "The association must be established before sending a "
                f"{message.message_type} request"
            )

        context = self._get_valid_context(message.affected_sop_class, context_id)
        limit = self.operations_limit
        with self._pending_cv:
            if limit and len(self._pending) >= limit:
                raise CapacityExceeded(
                    f"Unable to send the {message.message_type} request, the "
                    f"maximum of {limit} outstanding operation(s) has been reached"
                )

            message["MessageID"] = self._next_message_id()
            message.context_id = context.context_id
            operation = PendingOperation(message)
            self._pending[operation.message_id] = operation

        try:
            self._send_message(message)
        except AssociationClosed:
            with self._pending_cv:
                self._pending.pop(operation.message_id, None)
                self._pending_cv.notify_all()

            raise

        return operation

    def _wait(self, operation: PendingOperation) -> DIMSEMessage:
        """Return the final response to `operation`, aborting the
        association if the DIMSE timeout expires first.
        """
        try:
            return operation.wait(self.dimse_timeout)
        except futures.TimeoutError:
            LOGGER.error(
                "DIMSE timeout reached while waiting for the response to the "
                f"{operation.request.message_type} request"
            )
            self.abort()
            raise AssociationClosed(
                "The association was aborted after the DIMSE timeout expired"
            ) from None

    @staticmethod
    def _status_dataset(rsp: DIMSEMessage) -> Dataset:
        """Return a :class:`~pydicom.dataset.Dataset` containing the
        response's *Status* and any status related elements.
        """
        status = Dataset()
        status.Status = rsp.status
        for keyword in _STATUS_KEYWORDS:
            if keyword in rsp.keywords and rsp[keyword] is not None:
                setattr(status, keyword, rsp[keyword])

        return status

    def _collect(self, operation: PendingOperation) -> list[tuple[Dataset, Dataset | None]]:
        """Wait for `operation` and return its responses as
        ``(status, identifier)``.
        """
        final = self._wait(operation)
        syntax = self.get_context(operation.context_id).accepted_transfer_syntax
        results = []
        for rsp in operation.responses + [final]:
            identifier = None
            if rsp.data_set:
                identifier = decode_for(rsp.data_set, syntax)  # type: ignore[arg-type]
                if _config.LOG_RESPONSE_IDENTIFIERS and is_pending(rsp.status or 0):
                    LOGGER.debug("Response Identifier:")
                    for line in pretty_dataset(identifier):
                        LOGGER.debug(line)

            results.append((self._status_dataset(rsp), identifier))

        return results

    def send_c_cancel(self, msg_id: int, context_id: int) -> None:
        """Send a C-CANCEL request to the peer.

        Parameters
        ----------
        msg_id : int
            The *Message ID* of the C-FIND, C-GET or C-MOVE request to be
            cancelled.
        context_id : int
            The ID of the presentation context the request was sent on.
        """
        msg = C_CANCEL_RQ(context_id=context_id, MessageIDBeingRespondedTo=msg_id)
        self._send_message(msg)

    def send_c_echo_async(self, context_id: int | None = None) -> PendingOperation:
        """Send a C-ECHO request without waiting for the response."""
        req = C_ECHO_RQ(AffectedSOPClassUID=Verification)
        return self.send_request(req, context_id)

    def send_c_echo(self, context_id: int | None = None) -> Dataset:
        """Send a C-ECHO request to the peer AE.

        Returns
        -------
        pydicom.dataset.Dataset
            A :class:`~pydicom.dataset.Dataset` containing the (0000,0900)
            *Status* element and any optional status related elements.

        Raises
        ------
        exceptions.AssociationClosed
            If the association isn't established or closes before the
            response is received.
        ValueError
            If the association has no accepted presentation context for
            *Verification SOP Class*.
        """
        rsp = self._wait(self.send_c_echo_async(context_id))
        return self._status_dataset(rsp)

    def send_c_store_async(
        self,
        dataset: Dataset,
        priority: int = 2,
        originator_aet: str | None = None,
        originator_id: int | None = None,
        context_id: int | None = None,
    ) -> PendingOperation:
        """Send a C-STORE request without waiting for the response.

        Raises
        ------
        ValueError
            If `dataset` has no *SOP Class UID* or *SOP Instance UID*, there's
            no accepted context for its SOP Class or it can't be encoded.
        """
        try:
            sop_class = dataset.SOPClassUID
            sop_instance = dataset.SOPInstanceUID
        except AttributeError as exc:
            raise ValueError(
                "Unable to send the C-STORE request, the dataset is missing a "
                "required element"
            ) from exc

        context = self._get_valid_context(sop_class, context_id)
        try:
            data_set = encode_for(dataset, context.accepted_transfer_syntax)  # type: ignore[arg-type]
        except Exception as exc:
            LOGGER.exception(exc)
            raise ValueError("Failed to encode the supplied dataset") from exc

        req = C_STORE_RQ(
            data_set=data_set,
            AffectedSOPClassUID=sop_class,
            AffectedSOPInstanceUID=sop_instance,
            Priority=priority,
            MoveOriginatorApplicationEntityTitle=set_ae(
                originator_aet, "originator_aet"
            ),
            MoveOriginatorMessageID=originator_id,
        )
        return self.send_request(req, context.context_id)

    def send_c_store(
        self,
        dataset: Dataset,
        priority: int = 2,
        originator_aet: str | None = None,
        originator_id: int | None = None,
        context_id: int | None = None,
    ) -> Dataset:
        """Send a C-STORE request to the peer AE.

        Parameters
        ----------
        dataset : pydicom.dataset.Dataset
            The dataset to send, must contain *SOP Class UID* and *SOP
            Instance UID* elements.
        priority : int, optional
            The request priority, ``0`` medium, ``1`` high or ``2`` low
            (default).
        originator_aet : str, optional
            The AE title of the peer that requested the C-MOVE this C-STORE
            is a sub-operation of.
        originator_id : int, optional
            The *Message ID* of the C-MOVE request this C-STORE is a
            sub-operation of.
        context_id : int, optional
            The ID of the accepted context to use.

        Returns
        -------
        pydicom.dataset.Dataset
            The response's *Status* and any status related elements.
        """
        operation = self.send_c_store_async(
            dataset, priority, originator_aet, originator_id, context_id
        )
        return self._status_dataset(self._wait(operation))

    def _query(
        self,
        cls: type[DIMSEMessage],
        identifier: Dataset,
        query_model: str,
        priority: int,
        **kwargs: Any,
    ) -> PendingOperation:
        context = self._get_valid_context(query_model)
        try:
            data_set = encode_for(identifier, context.accepted_transfer_syntax)  # type: ignore[arg-type]
        except Exception as exc:
            LOGGER.exception(exc)
            raise ValueError("Failed to encode the supplied identifier") from exc

        req = cls(
            data_set=data_set,
            AffectedSOPClassUID=query_model,
            Priority=priority,
            **kwargs,
        )
        return self.send_request(req, context.context_id)

    def send_c_find_async(
        self, identifier: Dataset, query_model: str, priority: int = 2
    ) -> PendingOperation:
        """Send a C-FIND request without waiting for the responses.

        The *Pending* responses accumulate in the operation's ``responses``.
        """
        return self._query(C_FIND_RQ, identifier, query_model, priority)

    def send_c_find(
        self, identifier: Dataset, query_model: str, priority: int = 2
    ) -> list[tuple[Dataset, Dataset | None]]:
        """Send a C-FIND request to the peer AE.

        Parameters
        ----------
        identifier : pydicom.dataset.Dataset
            The query *Identifier*.
        query_model : str
            The UID of the query/retrieve information model to use.
        priority : int, optional
            The request priority, default ``2`` (low).

        Returns
        -------
        list of tuple
            ``(status, identifier)`` for each response, in the order
            received and ending with the final response. The *Identifier* is
            ``None`` if the response had none.
        """
        return self._collect(self.send_c_find_async(identifier, query_model, priority))

    def send_c_get_async(
        self, identifier: Dataset, query_model: str, priority: int = 2
    ) -> PendingOperation:
        """Send a C-GET request without waiting for the responses.

        The peer's C-STORE sub-operations are served by the sink while the
        request is pending.
        """
        return self._query(C_GET_RQ, identifier, query_model, priority)

    def send_c_get(
        self, identifier: Dataset, query_model: str, priority: int = 2
    ) -> list[tuple[Dataset, Dataset | None]]:
        """Send a C-GET request to the peer AE and return the
        ``(status, identifier)`` for each response.
        """
        return self._collect(self.send_c_get_async(identifier, query_model, priority))

    def send_c_move_async(
        self, identifier: Dataset, move_aet: str, query_model: str, priority: int = 2
    ) -> PendingOperation:
        """Send a C-MOVE request without waiting for the responses."""
        move_aet = set_ae(move_aet, "move_aet", False, False)  # type: ignore[assignment]
        return self._query(
            C_MOVE_RQ, identifier, query_model, priority, MoveDestination=move_aet
        )

    def send_c_move(
        self, identifier: Dataset, move_aet: str, query_model: str, priority: int = 2
    ) -> list[tuple[Dataset, Dataset | None]]:
        """Send a C-MOVE request to the peer AE.

        Parameters
        ----------
        identifier : pydicom.dataset.Dataset
            The query *Identifier*.
        move_aet : str
            The AE title of the *Move Destination*.
        query_model : str
            The UID of the query/retrieve information model to use.
        priority : int, optional
            The request priority, default ``2`` (low).
        """
        operation = self.send_c_move_async(identifier, move_aet, query_model, priority)
        return self._collect(operation)


class ServiceUser:
    """Information about an association requestor or acceptor.

    Attributes
    ----------
    address : str
        The IP address of the AE.
    ae_title : str
        The AE title.
    asynchronous_operations : tuple of int
        The ``(invoked, performed)`` maximum number of outstanding
        operations, ``0`` for unlimited. Default ``(1, 1)``.
    assoc : association.Association
        The parent association.
    extended_negotiation : list of pdu_items.PDUItem
        SOP Class Extended Negotiation items.
    implementation_class_uid : pydicom.uid.UID or None
        The *Implementation Class UID*.
    implementation_version_name : str or None
        The *Implementation Version Name*.
    maximum_length : int
        The maximum PDU length the AE can receive, ``0`` for unlimited.
    mode : str
        ``'requestor'`` or ``'acceptor'``.
    port : int or None
        The port number of the AE.
    requested_contexts : list of presentation.PresentationContext
        The contexts proposed by the requestor.
    role_selection : dict
        ``{SOP Class UID: (SCU role, SCP role)}``.
    """

    def __init__(self, assoc: Association, mode: str) -> None:
        self.assoc = assoc
        self.mode = mode
        self.address = ""
        self.port: int | None = None
        self.ae_title = ""
        self.maximum_length = DEFAULT_MAX_LENGTH
        self.implementation_class_uid: str | None = None
        self.implementation_version_name: str | None = None
        self.asynchronous_operations: tuple[int, int] = (1, 1)
        self.role_selection: dict[str, tuple[bool, bool]] = {}
        self.extended_negotiation: list[PDUItem] = []
        self.requested_contexts: list[PresentationContext] = []

    @property
    def info(self) -> dict[str, Any]:
        """Return a :class:`dict` containing information about the user."""
        return {
            "ae_title": self.ae_title,
            "address": self.address,
            "port": self.port,
            "mode": self.mode,
            "pdv_size": self.maximum_length,
        }

    @property
    def is_acceptor(self) -> bool:
        """Return ``True`` if the user is the association *acceptor*."""
        return self.mode == MODE_ACCEPTOR

    @property
    def is_requestor(self) -> bool:
        """Return ``True`` if the user is the association *requestor*."""
        return self.mode == MODE_REQUESTOR

    def __repr__(self) -> str:
        return f"ServiceUser({self.mode}, {self.ae_title!r}, {self.address}:{self.port})"
