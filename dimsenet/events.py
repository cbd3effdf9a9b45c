"""Module used to support events and event handling, not to be confused with
the state machine events.

Applications receive association callbacks through an
:class:`AssociationEventSink`. The default sink, :class:`HandlerEventSink`,
routes the callbacks to the handlers bound to the ``evt.EVT_*`` events.
"""

from collections import namedtuple
from datetime import datetime
import inspect
import logging
import sys
from typing import TYPE_CHECKING, Any, Callable, Iterable

from pydicom.dataset import Dataset

from dimsenet.dsutils import decode_for

if TYPE_CHECKING:  # pragma: no cover
    from dimsenet.association import Association
    from dimsenet.dimse_messages import DIMSEMessage
    from dimsenet.exceptions import NegotiationError
    from dimsenet.pdu import A_ASSOCIATE_RQ
    from dimsenet.presentation import PresentationContext


LOGGER = logging.getLogger(__name__)


# Notification events
#   No returns/yields needed, can have multiple handlers per event
NotificationEvent = namedtuple("NotificationEvent", ["name", "description"])
"""Representation of a notification event.

Possible notification events are:

* :class:`EVT_ABORTED`
* :class:`EVT_ACCEPTED`
* :class:`EVT_CONN_CLOSE`
* :class:`EVT_DIMSE_RECV`
* :class:`EVT_DIMSE_SENT`
* :class:`EVT_ESTABLISHED`
* :class:`EVT_PDU_RECV`
* :class:`EVT_PDU_SENT`
* :class:`EVT_REJECTED`
* :class:`EVT_RELEASED`
* :class:`EVT_REQUESTED`
* :class:`EVT_RESPONSE_RECV`
"""
NotificationEvent.is_intervention = False
NotificationEvent.is_notification = True

# pylint: disable=line-too-long
EVT_ABORTED = NotificationEvent("EVT_ABORTED", "Association aborted")
EVT_ACCEPTED = NotificationEvent("EVT_ACCEPTED", "Association request accepted")
EVT_CONN_CLOSE = NotificationEvent("EVT_CONN_CLOSE", "Connection closed")
EVT_DIMSE_RECV = NotificationEvent("EVT_DIMSE_RECV", "Complete DIMSE message received and decoded")
EVT_DIMSE_SENT = NotificationEvent("EVT_DIMSE_SENT", "DIMSE message encoded and P-DATA-TF PDUs queued")
EVT_ESTABLISHED = NotificationEvent("EVT_ESTABLISHED", "Association established")
EVT_PDU_RECV = NotificationEvent("EVT_PDU_RECV", "PDU received and decoded")
EVT_PDU_SENT = NotificationEvent("EVT_PDU_SENT", "PDU encoded and sent")
EVT_REJECTED = NotificationEvent("EVT_REJECTED", "Association request rejected")
EVT_RELEASED = NotificationEvent("EVT_RELEASED", "Association released")
EVT_REQUESTED = NotificationEvent("EVT_REQUESTED", "Association requested")
EVT_RESPONSE_RECV = NotificationEvent("EVT_RESPONSE_RECV", "Response to a pending operation received")

# Intervention events
#   Returns/yields needed if bound, can only have one handler per event
InterventionEvent = namedtuple("InterventionEvent", ["name", "description"])
"""Representation of an intervention event.

Possible intervention events are:

* :class:`EVT_C_ECHO`
* :class:`EVT_C_FIND`
* :class:`EVT_C_GET`
* :class:`EVT_C_MOVE`
* :class:`EVT_C_STORE`
"""
InterventionEvent.is_intervention = True
InterventionEvent.is_notification = False

EVT_C_ECHO = InterventionEvent("EVT_C_ECHO", "C-ECHO request received")
EVT_C_FIND = InterventionEvent("EVT_C_FIND", "C-FIND request received")
EVT_C_GET = InterventionEvent("EVT_C_GET", "C-GET request received")
EVT_C_MOVE = InterventionEvent("EVT_C_MOVE", "C-MOVE request received")
EVT_C_STORE = InterventionEvent("EVT_C_STORE", "C-STORE request received")
# pylint: enable=line-too-long

_INTERVENTION_EVENTS = [
    ii[1]
    for ii in inspect.getmembers(
        sys.modules[__name__], lambda x: isinstance(x, InterventionEvent)
    )
]
_NOTIFICATION_EVENTS = [
    ii[1]
    for ii in inspect.getmembers(
        sys.modules[__name__], lambda x: isinstance(x, NotificationEvent)
    )
]

EventType = NotificationEvent | InterventionEvent
HandlerArgType = (
    tuple[EventType, Callable] | tuple[EventType, Callable, list[Any]]
)


def _c_echo_handler(event: "Event") -> int:
    """Default handler for when a C-ECHO request is received.

    Returns ``0x0000`` (Success).
    """
    return 0x0000


def _c_find_handler(event: "Event") -> Any:
    """Default handler for when a C-FIND request is received."""
    raise NotImplementedError("No handler has been bound to 'evt.EVT_C_FIND'")


def _c_get_handler(event: "Event") -> Any:
    """Default handler for when a C-GET request is received."""
    raise NotImplementedError("No handler has been bound to 'evt.EVT_C_GET'")


def _c_move_handler(event: "Event") -> Any:
    """Default handler for when a C-MOVE request is received."""
    raise NotImplementedError("No handler has been bound to 'evt.EVT_C_MOVE'")


def _c_store_handler(event: "Event") -> Any:
    """Default handler for when a C-STORE request is received."""
    raise NotImplementedError("No handler has been bound to 'evt.EVT_C_STORE'")


_DEFAULT_HANDLERS = {
    EVT_C_ECHO: _c_echo_handler,
    EVT_C_FIND: _c_find_handler,
    EVT_C_GET: _c_get_handler,
    EVT_C_MOVE: _c_move_handler,
    EVT_C_STORE: _c_store_handler,
}


def get_default_handler(event: InterventionEvent) -> Callable[["Event"], Any]:
    """Return the default handler for an intervention `event`."""
    return _DEFAULT_HANDLERS[event]


def trigger(
    assoc: "Association", event: EventType, attrs: dict[str, Any] | None = None
) -> Any:
    """Trigger an `event` and call any bound handler(s).

    Notification events can be bound to multiple handlers, intervention events
    can only be bound to a single handler.

    Parameters
    ----------
    assoc : association.Association
        The association in which the event occurred.
    event : events.NotificationEvent or events.InterventionEvent
        The event to trigger.
    attrs : dict, optional
        The attributes to set in the :class:`Event` instance that is passed to
        the event's corresponding handler functions as
        ``{attribute name : value}``, default ``{}``.

    Returns
    -------
    Any
        The value returned by an intervention event's handler, or ``None``.

    Raises
    ------
    Exception
        If an exception occurs in an intervention event handler then the
        exception will be raised. If an exception occurs in a notification
        handler then the exception will be caught and logged instead.
    """
    handlers = assoc.get_handlers(event)
    if not handlers:
        return None

    evt = Event(assoc, event, attrs or {})

    if event.is_intervention:
        func, args = handlers
        return func(evt, *args)

    for func, args in handlers:
        try:
            func(evt, *args)
        except Exception as exc:
            LOGGER.error(
                f"Exception raised in user's 'evt.{event.name}' event handler "
                f"'{func.__name__}'"
            )
            LOGGER.exception(exc)

    return None


class Event:
    """Representation of an event.

    .. warning::

       Some of :class:`Event`'s attributes are set dynamically when an event is
       triggered and are available only for a specific event. For example, the
       ``Event.request`` attribute is only available for events such as
       ``evt.EVT_C_ECHO``, ``evt.EVT_C_STORE``, etc.

    Attributes
    ----------
    assoc : association.Association
        The association in which the event occurred.
    timestamp : datetime.datetime
        The date/time the event was created.
    """

    def __init__(
        self,
        assoc: "Association",
        event: EventType,
        attrs: dict[str, Any] | None = None,
    ) -> None:
        self.assoc = assoc
        self._event = event
        self.timestamp = datetime.now()
        self._decoded: Dataset | None = None

        attrs = attrs or {}
        for kk, vv in attrs.items():
            if hasattr(self, kk):
                raise AttributeError(f"'Event' object already has an attribute '{kk}'")

            setattr(self, kk, vv)

    @property
    def event(self) -> EventType:
        """Return the corresponding event."""
        return self._event

    @property
    def context(self) -> "PresentationContext":
        """Return the presentation context the request was sent under.

        Raises
        ------
        AttributeError
            If the corresponding event is not a DIMSE request.
        """
        request = self._get_request("has no presentation context")
        return self.assoc.get_context(request.context_id)

    def _get_request(self, msg: str) -> "DIMSEMessage":
        request = getattr(self, "request", None)
        if request is None:
            raise AttributeError(f"The corresponding event is not a request and {msg}")

        return request

    def _get_dataset(self, message_types: tuple[str, ...], msg: str) -> Dataset:
        """Return the request's decoded data set, decoding it once."""
        request = getattr(self, "request", None)
        if request is None or request.message_type not in message_types:
            raise AttributeError(msg)

        if self._decoded is None:
            syntax = self.context.accepted_transfer_syntax
            self._decoded = decode_for(request.data_set or b"", syntax)

        return self._decoded

    @property
    def dataset(self) -> Dataset:
        """Return a C-STORE request's *Data Set* as a *pydicom*
        :class:`~pydicom.dataset.Dataset`.

        Raises
        ------
        AttributeError
            If the corresponding event is not a C-STORE request.
        """
        return self._get_dataset(
            ("C-STORE-RQ",),
            "The corresponding event is not a C-STORE request and has no "
            "'Data Set' parameter",
        )

    @property
    def identifier(self) -> Dataset:
        """Return a C-FIND, C-GET or C-MOVE request's *Identifier* as a
        *pydicom* :class:`~pydicom.dataset.Dataset`.

        Raises
        ------
        AttributeError
            If the corresponding event is not a C-FIND, C-GET or C-MOVE
            request.
        """
        return self._get_dataset(
            ("C-FIND-RQ", "C-GET-RQ", "C-MOVE-RQ"),
            "The corresponding event is not a C-FIND, C-GET or C-MOVE request "
            "and has no 'Identifier' parameter",
        )

    @property
    def is_cancelled(self) -> bool:
        """Return ``True`` if a C-CANCEL request has been received for the
        request that triggered the event.

        Raises
        ------
        AttributeError
            If the corresponding event is not a request.
        """
        request = self._get_request("can't be cancelled")
        return self.assoc.is_cancelled(request.message_id)

    @property
    def move_destination(self) -> str:
        """Return a C-MOVE request's *Move Destination*.

        Raises
        ------
        AttributeError
            If the corresponding event is not a C-MOVE request.
        """
        request = getattr(self, "request", None)
        if request is None or request.message_type != "C-MOVE-RQ":
            raise AttributeError(
                "The corresponding event is not a C-MOVE request and has no "
                "'Move Destination' parameter"
            )

        return request["MoveDestination"]


class AssociationDecision:
    """The reply to an association request, to reject the association.

    Returned by :meth:`AssociationEventSink.on_incoming_association`.

    Attributes
    ----------
    result : int
        The A-ASSOCIATE-RJ *Result*, ``0x01`` permanent or ``0x02``
        transient.
    source : int
        The A-ASSOCIATE-RJ *Source*, ``0x01`` service-user, ``0x02``
        service-provider (ACSE) or ``0x03`` service-provider (presentation).
    reason : int
        The A-ASSOCIATE-RJ *Reason/Diag.* value.
    """

    def __init__(self, result: int = 0x01, source: int = 0x01, reason: int = 0x01) -> None:
        if result not in (0x01, 0x02):
            raise ValueError(f"Invalid association rejection result '{result}'")

        if source not in (0x01, 0x02, 0x03):
            raise ValueError(f"Invalid association rejection source '{source}'")

        self.result = result
        self.source = source
        self.reason = reason

    def __repr__(self) -> str:
        return (
            f"AssociationDecision(result={self.result}, source={self.source}, "
            f"reason={self.reason})"
        )


class AssociationEventSink:
    """The callbacks an application receives from its associations.

    Every method has a default implementation that does nothing, so
    applications only need to override the callbacks they care about. The
    engine calls :meth:`on_incoming_association` and
    :meth:`on_response_received` from the association's reader thread and
    every other callback from its worker thread. Exactly one of
    :meth:`on_association_rejected`, :meth:`on_abort` or
    :meth:`on_connection_closed` is called when an association ends.
    """

    def on_incoming_association(
        self, assoc: "Association", request: "A_ASSOCIATE_RQ"
    ) -> AssociationDecision | None:
        """Decide whether to accept an association request.

        Called once the presentation contexts have been negotiated and are
        available from ``assoc.accepted_contexts``. Return ``None`` to accept
        or an :class:`AssociationDecision` to reject.
        """
        return None

    def on_association_accepted(self, assoc: "Association") -> None:
        """Called once the association has been established."""

    def on_association_rejected(
        self, assoc: "Association", error: "NegotiationError"
    ) -> None:
        """Called when the association request was rejected, or accepted with
        no presentation contexts.
        """

    def on_request_received(
        self, assoc: "Association", message: "DIMSEMessage"
    ) -> "DIMSEMessage | Iterable[DIMSEMessage] | None":
        """Serve a request received from the peer.

        Return the response, an iterable of responses that ends with the
        final response, or ``None`` to send a failure response.
        """
        return None

    def on_response_received(
        self,
        assoc: "Association",
        request: "DIMSEMessage",
        response: "DIMSEMessage",
    ) -> None:
        """Called for every response correlated to a pending request."""

    def on_release_requested(self, assoc: "Association") -> None:
        """Called when the peer requests the association be released."""

    def on_abort(self, assoc: "Association", source: int, reason: int) -> None:
        """Called when the association is aborted by either side, or times
        out.
        """

    def on_connection_closed(
        self, assoc: "Association", error: Exception | None
    ) -> None:
        """Called when the association ends after a release (`error` is
        ``None``) or a transport failure.
        """


class HandlerEventSink(AssociationEventSink):
    """The default sink, routes the callbacks to the association's bound
    event handlers.

    Requests are served by the service class for the request's message type
    which triggers the corresponding intervention event.
    """

    def on_incoming_association(
        self, assoc: "Association", request: "A_ASSOCIATE_RQ"
    ) -> AssociationDecision | None:
        trigger(assoc, EVT_REQUESTED, {"pdu": request})
        return None

    def on_association_accepted(self, assoc: "Association") -> None:
        trigger(assoc, EVT_ACCEPTED)
        trigger(assoc, EVT_ESTABLISHED)

    def on_association_rejected(
        self, assoc: "Association", error: "NegotiationError"
    ) -> None:
        trigger(assoc, EVT_REJECTED, {"error": error})
        trigger(assoc, EVT_CONN_CLOSE, {"error": error})

    def on_request_received(
        self, assoc: "Association", message: "DIMSEMessage"
    ) -> "Iterable[DIMSEMessage] | None":
        from dimsenet.service_class import service_for

        service = service_for(message)
        if service is None:
            return None

        return service(assoc).SCP(message)

    def on_response_received(
        self,
        assoc: "Association",
        request: "DIMSEMessage",
        response: "DIMSEMessage",
    ) -> None:
        trigger(assoc, EVT_RESPONSE_RECV, {"request": request, "response": response})

    def on_abort(self, assoc: "Association", source: int, reason: int) -> None:
        trigger(assoc, EVT_ABORTED, {"source": source, "reason": reason})
        trigger(assoc, EVT_CONN_CLOSE, {"error": None})

    def on_connection_closed(
        self, assoc: "Association", error: Exception | None
    ) -> None:
        if error is None:
            trigger(assoc, EVT_RELEASED)

        trigger(assoc, EVT_CONN_CLOSE, {"error": error})
