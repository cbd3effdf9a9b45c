"""Tests for the events module and the service classes."""

import logging

import pytest

from pydicom.dataset import Dataset
from pydicom.uid import ImplicitVRLittleEndian

from dimsenet import AE, evt
from dimsenet.association import Association
from dimsenet.dimse_messages import (  # type: ignore[attr-defined]
    C_CANCEL_RQ,
    C_ECHO_RQ,
    C_FIND_RQ,
    C_MOVE_RQ,
    C_STORE_RQ,
    response_for,
)
from dimsenet.dsutils import encode_for
from dimsenet.events import (
    AssociationDecision,
    AssociationEventSink,
    Event,
    HandlerEventSink,
)
from dimsenet.exceptions import NegotiationError
from dimsenet.presentation import PresentationContext
from dimsenet.service_class import (
    QueryRetrieveServiceClass,
    ServiceClass,
    StorageServiceClass,
    VerificationServiceClass,
    attempt,
    service_for,
)
from dimsenet.sop_class import (  # type: ignore[attr-defined]
    CTImageStorage,
    PatientRootQueryRetrieveInformationModelFind,
    PatientRootQueryRetrieveInformationModelMove,
    Verification,
)


LOGGER = logging.getLogger("dimsenet")
LOGGER.setLevel(logging.CRITICAL)


class DummySocket:
    def __init__(self):
        self.select_timeout = None

    def get_peer(self):
        return ("localhost", 11112)

    def close(self):
        pass


def make_assoc():
    assoc = Association(AE(), "acceptor", socket=DummySocket())
    assoc.is_established = True
    assoc._contexts = [
        PresentationContext(1, Verification, [ImplicitVRLittleEndian], 0x00),
        PresentationContext(3, CTImageStorage, [ImplicitVRLittleEndian], 0x00),
        PresentationContext(
            5, PatientRootQueryRetrieveInformationModelFind, [ImplicitVRLittleEndian], 0x00
        ),
        PresentationContext(
            7, PatientRootQueryRetrieveInformationModelMove, [ImplicitVRLittleEndian], 0x00
        ),
    ]
    return assoc


def echo_request():
    return C_ECHO_RQ(context_id=1, MessageID=1, AffectedSOPClassUID=Verification)


def store_request():
    ds = Dataset()
    ds.SOPClassUID = CTImageStorage
    ds.SOPInstanceUID = "1.2.3.4"
    ds.PatientName = "Test^Events"
    return C_STORE_RQ(
        data_set=encode_for(ds, ImplicitVRLittleEndian),
        context_id=3,
        MessageID=2,
        AffectedSOPClassUID=CTImageStorage,
        AffectedSOPInstanceUID="1.2.3.4",
        Priority=0,
    )


def find_request():
    ds = Dataset()
    ds.QueryRetrieveLevel = "PATIENT"
    ds.PatientName = "Test*"
    return C_FIND_RQ(
        data_set=encode_for(ds, ImplicitVRLittleEndian),
        context_id=5,
        MessageID=3,
        AffectedSOPClassUID=PatientRootQueryRetrieveInformationModelFind,
        Priority=0,
    )


class TestEventTypes:
    """Tests for the event definitions."""

    def test_intervention(self):
        """Test the intervention events."""
        for event in (
            evt.EVT_C_ECHO,
            evt.EVT_C_FIND,
            evt.EVT_C_GET,
            evt.EVT_C_MOVE,
            evt.EVT_C_STORE,
        ):
            assert event.is_intervention
            assert not event.is_notification
            assert event in evt._INTERVENTION_EVENTS

    def test_notification(self):
        """Test the notification events."""
        assert len(evt._NOTIFICATION_EVENTS) == 12
        for event in evt._NOTIFICATION_EVENTS:
            assert event.is_notification
            assert not event.is_intervention

    def test_default_handlers(self):
        """Test the default intervention handlers."""
        assert evt.get_default_handler(evt.EVT_C_ECHO)(None) == 0x0000
        for event in (evt.EVT_C_FIND, evt.EVT_C_GET, evt.EVT_C_MOVE, evt.EVT_C_STORE):
            with pytest.raises(NotImplementedError, match=event.name):
                evt.get_default_handler(event)(None)


class TestBinding:
    """Tests for binding handlers to an association."""

    def setup_method(self):
        self.assoc = make_assoc()

    def test_bind_notification(self):
        """Test binding multiple handlers to a notification event."""

        def handle_a(event):
            pass

        def handle_b(event, value):
            pass

        self.assoc.bind(evt.EVT_RELEASED, handle_a)
        self.assoc.bind(evt.EVT_RELEASED, handle_b, ["value"])
        # Binding the same handler twice is ignored
        self.assoc.bind(evt.EVT_RELEASED, handle_a)
        assert self.assoc.get_handlers(evt.EVT_RELEASED) == [
            (handle_a, []),
            (handle_b, ["value"]),
        ]
        assert evt.EVT_RELEASED in self.assoc.get_events()

        self.assoc.unbind(evt.EVT_RELEASED, handle_a)
        assert self.assoc.get_handlers(evt.EVT_RELEASED) == [(handle_b, ["value"])]
        self.assoc.unbind(evt.EVT_RELEASED, handle_b)
        assert self.assoc.get_handlers(evt.EVT_RELEASED) == []
        assert evt.EVT_RELEASED not in self.assoc.get_events()

    def test_bind_intervention(self):
        """Test binding an intervention event replaces the handler."""

        def handle_a(event):
            return 0x0000

        def handle_b(event):
            return 0x0110

        default = evt.get_default_handler(evt.EVT_C_STORE)
        assert self.assoc.get_handlers(evt.EVT_C_STORE) == (default, [])

        self.assoc.bind(evt.EVT_C_STORE, handle_a)
        self.assoc.bind(evt.EVT_C_STORE, handle_b, [1])
        assert self.assoc.get_handlers(evt.EVT_C_STORE) == (handle_b, [1])

        # Only the bound handler can be unbound
        self.assoc.unbind(evt.EVT_C_STORE, handle_a)
        assert self.assoc.get_handlers(evt.EVT_C_STORE) == (handle_b, [1])
        self.assoc.unbind(evt.EVT_C_STORE, handle_b)
        assert self.assoc.get_handlers(evt.EVT_C_STORE) == (default, [])

    def test_unbind_not_bound(self):
        """Test unbinding an unbound handler does nothing."""
        self.assoc.unbind(evt.EVT_ABORTED, print)
        self.assoc.unbind(evt.EVT_C_ECHO, print)
        assert self.assoc.get_handlers(evt.EVT_ABORTED) == []


class TestTrigger:
    """Tests for evt.trigger()."""

    def setup_method(self):
        self.assoc = make_assoc()

    def test_no_handlers(self):
        """Test triggering an unbound notification event."""
        assert evt.trigger(self.assoc, evt.EVT_ABORTED) is None

    def test_notification(self):
        """Test the handlers receive the event and their arguments."""
        events = []

        def handle(event, *args):
            events.append((event, args))

        self.assoc.bind(evt.EVT_ABORTED, handle, ["a", 2])
        evt.trigger(self.assoc, evt.EVT_ABORTED, {"source": 2, "reason": 0})

        assert len(events) == 1
        event, args = events[0]
        assert args == ("a", 2)
        assert event.assoc is self.assoc
        assert event.event == evt.EVT_ABORTED
        assert event.source == 2
        assert event.reason == 0

    def test_notification_exception(self, caplog):
        """Test exceptions in notification handlers are logged."""
        calls = []

        def handle_raise(event):
            raise ValueError("bad handler")

        def handle(event):
            calls.append(event)

        self.assoc.bind(evt.EVT_RELEASED, handle_raise)
        self.assoc.bind(evt.EVT_RELEASED, handle)
        with caplog.at_level(logging.ERROR, logger="dimsenet"):
            assert evt.trigger(self.assoc, evt.EVT_RELEASED) is None

        assert len(calls) == 1
        assert (
            "Exception raised in user's 'evt.EVT_RELEASED' event handler "
            "'handle_raise'"
        ) in caplog.text
        assert "bad handler" in caplog.text

    def test_intervention(self):
        """Test the intervention handler's return value is returned."""

        def handle(event, offset):
            return 0x0100 + offset

        self.assoc.bind(evt.EVT_C_ECHO, handle, [7])
        assert evt.trigger(self.assoc, evt.EVT_C_ECHO, {"request": echo_request()}) == 0x0107

    def test_intervention_default(self):
        """Test the default intervention handler is used."""
        assert evt.trigger(self.assoc, evt.EVT_C_ECHO, {"request": echo_request()}) == 0

    def test_intervention_exception(self):
        """Test exceptions in intervention handlers are raised."""

        def handle(event):
            raise RuntimeError("bad handler")

        self.assoc.bind(evt.EVT_C_ECHO, handle)
        with pytest.raises(RuntimeError, match="bad handler"):
            evt.trigger(self.assoc, evt.EVT_C_ECHO, {"request": echo_request()})


class TestEvent:
    """Tests for Event."""

    def setup_method(self):
        self.assoc = make_assoc()

    def test_init(self):
        """Test a new event."""
        event = Event(self.assoc, evt.EVT_RELEASED, {"value": 1})
        assert event.assoc is self.assoc
        assert event.event == evt.EVT_RELEASED
        assert event.value == 1
        assert event.timestamp is not None

    def test_attribute_clash(self):
        """Test attributes can't replace existing ones."""
        with pytest.raises(AttributeError, match="already has an attribute 'assoc'"):
            Event(self.assoc, evt.EVT_RELEASED, {"assoc": None})

        with pytest.raises(AttributeError, match="already has an attribute 'timestamp'"):
            Event(self.assoc, evt.EVT_RELEASED, {"timestamp": None})

    def test_not_a_request(self):
        """Test the request properties raise for non-request events."""
        event = Event(self.assoc, evt.EVT_RELEASED)
        with pytest.raises(AttributeError, match="has no presentation context"):
            event.context

        with pytest.raises(AttributeError, match="can't be cancelled"):
            event.is_cancelled

        with pytest.raises(AttributeError, match="not a C-STORE request"):
            event.dataset

        with pytest.raises(AttributeError, match="not a C-FIND, C-GET or C-MOVE"):
            event.identifier

        with pytest.raises(AttributeError, match="not a C-MOVE request"):
            event.move_destination

    def test_echo_request(self):
        """Test an event for a C-ECHO request."""
        event = Event(self.assoc, evt.EVT_C_ECHO, {"request": echo_request()})
        assert event.context.context_id == 1
        assert event.context.abstract_syntax == Verification
        assert event.is_cancelled is False

        with pytest.raises(AttributeError):
            event.dataset

        with pytest.raises(AttributeError):
            event.identifier

    def test_dataset(self):
        """Test a C-STORE request's dataset is decoded once."""
        event = Event(self.assoc, evt.EVT_C_STORE, {"request": store_request()})
        ds = event.dataset
        assert ds.PatientName == "Test^Events"
        assert ds.SOPInstanceUID == "1.2.3.4"
        assert event.dataset is ds

        with pytest.raises(AttributeError):
            event.identifier

    def test_identifier(self):
        """Test a C-FIND request's identifier."""
        event = Event(self.assoc, evt.EVT_C_FIND, {"request": find_request()})
        assert event.identifier.QueryRetrieveLevel == "PATIENT"
        assert event.identifier.PatientName == "Test*"

        with pytest.raises(AttributeError):
            event.dataset

        with pytest.raises(AttributeError):
            event.move_destination

    def test_move_destination(self):
        """Test a C-MOVE request's move destination."""
        ds = Dataset()
        ds.QueryRetrieveLevel = "PATIENT"
        request = C_MOVE_RQ(
            data_set=encode_for(ds, ImplicitVRLittleEndian),
            context_id=7,
            MessageID=4,
            AffectedSOPClassUID=PatientRootQueryRetrieveInformationModelMove,
            Priority=0,
            MoveDestination="STORESCP",
        )
        event = Event(self.assoc, evt.EVT_C_MOVE, {"request": request})
        assert event.move_destination == "STORESCP"
        assert event.identifier.QueryRetrieveLevel == "PATIENT"

    def test_is_cancelled(self):
        """Test a cancelled request."""
        request = find_request()
        event = Event(self.assoc, evt.EVT_C_FIND, {"request": request})
        assert not event.is_cancelled

        self.assoc._cancelled.add(request.message_id)
        assert event.is_cancelled


class TestAssociationDecision:
    """Tests for AssociationDecision."""

    def test_defaults(self):
        """Test the default rejection."""
        decision = AssociationDecision()
        assert decision.result == 0x01
        assert decision.source == 0x01
        assert decision.reason == 0x01
        assert repr(decision) == "AssociationDecision(result=1, source=1, reason=1)"

    def test_valid(self):
        """Test a transient rejection by the ACSE provider."""
        decision = AssociationDecision(0x02, 0x02, 0x02)
        assert (decision.result, decision.source, decision.reason) == (2, 2, 2)

    @pytest.mark.parametrize("result, source", [(0, 1), (3, 1), (1, 0), (1, 4)])
    def test_invalid(self, result, source):
        """Test invalid result and source values raise."""
        with pytest.raises(ValueError, match="Invalid association rejection"):
            AssociationDecision(result, source)


class TestEventSinks:
    """Tests for the association event sinks."""

    def setup_method(self):
        self.assoc = make_assoc()

    def test_default_sink(self):
        """Test the default sink callbacks do nothing."""
        sink = AssociationEventSink()
        request = echo_request()
        assert sink.on_incoming_association(self.assoc, None) is None
        assert sink.on_request_received(self.assoc, request) is None
        assert sink.on_association_accepted(self.assoc) is None
        assert sink.on_association_rejected(self.assoc, NegotiationError("x")) is None
        assert sink.on_response_received(self.assoc, request, response_for(request)) is None
        assert sink.on_release_requested(self.assoc) is None
        assert sink.on_abort(self.assoc, 0, 0) is None
        assert sink.on_connection_closed(self.assoc, None) is None

    def test_handler_sink_accepted(self):
        """Test the accepted callback triggers the events in order."""
        triggered = []
        self.assoc.bind(evt.EVT_ACCEPTED, lambda event: triggered.append("accepted"))
        self.assoc.bind(evt.EVT_ESTABLISHED, lambda event: triggered.append("established"))
        HandlerEventSink().on_association_accepted(self.assoc)
        assert triggered == ["accepted", "established"]

    def test_handler_sink_incoming(self):
        """Test the incoming association callback triggers EVT_REQUESTED."""
        requests = []
        self.assoc.bind(evt.EVT_REQUESTED, lambda event: requests.append(event.pdu))
        assert HandlerEventSink().on_incoming_association(self.assoc, "pdu") is None
        assert requests == ["pdu"]

    def test_handler_sink_closed(self):
        """Test a release and a transport failure."""
        triggered = []
        self.assoc.bind(evt.EVT_RELEASED, lambda event: triggered.append("released"))
        self.assoc.bind(
            evt.EVT_CONN_CLOSE, lambda event: triggered.append(("closed", event.error))
        )
        sink = HandlerEventSink()
        sink.on_connection_closed(self.assoc, None)
        assert triggered == ["released", ("closed", None)]

        error = OSError("reset")
        triggered.clear()
        sink.on_connection_closed(self.assoc, error)
        assert triggered == [("closed", error)]

    def test_handler_sink_abort(self):
        """Test the abort callback."""
        triggered = []
        self.assoc.bind(
            evt.EVT_ABORTED, lambda event: triggered.append((event.source, event.reason))
        )
        self.assoc.bind(evt.EVT_CONN_CLOSE, lambda event: triggered.append("closed"))
        HandlerEventSink().on_abort(self.assoc, 2, 6)
        assert triggered == [(2, 6), "closed"]

    def test_handler_sink_rejected(self):
        """Test the rejected callback."""
        triggered = []
        error = NegotiationError("rejected")
        self.assoc.bind(evt.EVT_REJECTED, lambda event: triggered.append(event.error))
        HandlerEventSink().on_association_rejected(self.assoc, error)
        assert triggered == [error]

    def test_handler_sink_response(self):
        """Test the response callback triggers EVT_RESPONSE_RECV."""
        received = []
        request = echo_request()
        response = response_for(request)
        self.assoc.bind(
            evt.EVT_RESPONSE_RECV,
            lambda event: received.append((event.request, event.response)),
        )
        HandlerEventSink().on_response_received(self.assoc, request, response)
        assert received == [(request, response)]

    def test_handler_sink_request(self):
        """Test requests are served by the service classes."""
        self.assoc.bind(evt.EVT_C_ECHO, lambda event: 0x0107)
        responses = list(HandlerEventSink().on_request_received(self.assoc, echo_request()))
        assert len(responses) == 1
        assert responses[0].message_type == "C-ECHO-RSP"
        assert responses[0].status == 0x0107
        assert responses[0].message_id_being_responded_to == 1

    def test_handler_sink_no_service(self):
        """Test a request with no service class."""
        request = C_CANCEL_RQ(MessageIDBeingRespondedTo=1)
        assert HandlerEventSink().on_request_received(self.assoc, request) is None


class TestServiceClass:
    """Tests for the service classes."""

    def setup_method(self):
        self.assoc = make_assoc()

    def test_service_for(self):
        """Test the service class lookup."""
        assert service_for(echo_request()) is VerificationServiceClass
        assert service_for(store_request()) is StorageServiceClass
        assert service_for(find_request()) is QueryRetrieveServiceClass
        assert service_for(C_CANCEL_RQ(MessageIDBeingRespondedTo=1)) is None

    def test_attempt(self):
        """Test the attempt context manager."""
        rsp = response_for(echo_request())
        with attempt(rsp) as ctx:
            pass

        assert ctx.success
        assert rsp.status == 0x0000

        with attempt(rsp) as ctx:
            ctx.error_status = 0xC310
            raise ValueError("failed")

        assert not ctx.success
        assert rsp.status == 0xC310

    def test_validate_status_int(self):
        """Test an int status is used as the response status."""
        service = ServiceClass(self.assoc)
        rsp = service.validate_status(0x0122, response_for(echo_request()))
        assert rsp.status == 0x0122

    def test_validate_status_dataset(self):
        """Test a status dataset sets the allowed elements."""
        service = ServiceClass(self.assoc)
        status = Dataset()
        status.Status = 0x0110
        status.ErrorComment = "Something went wrong"
        status.PatientName = "Not^Allowed"
        rsp = service.validate_status(status, response_for(echo_request()))
        assert rsp.status == 0x0110
        assert rsp["ErrorComment"] == "Something went wrong"

    def test_validate_status_invalid(self):
        """Test invalid status values."""
        service = ServiceClass(self.assoc)
        rsp = service.validate_status(Dataset(), response_for(echo_request()))
        assert rsp.status == 0xC001

        rsp = service.validate_status("0x0000", response_for(echo_request()))
        assert rsp.status == 0xC002

    def test_is_valid_status(self):
        """Test checking the status values."""
        service = StorageServiceClass(self.assoc)
        assert service.is_valid_status(0x0000)
        assert service.is_valid_status(0xA700)
        assert service.is_valid_status(0xC123)
        assert not service.is_valid_status(0x0002)

    def test_base_scp(self):
        """Test the base class has no SCP."""
        with pytest.raises(NotImplementedError, match="C-ECHO-RQ request"):
            ServiceClass(self.assoc).SCP(echo_request())

    def test_storage_scp(self):
        """Test the Storage SCP."""
        stored = []

        def handle_store(event):
            stored.append(event.dataset.SOPInstanceUID)
            return 0x0000

        self.assoc.bind(evt.EVT_C_STORE, handle_store)
        responses = list(StorageServiceClass(self.assoc).SCP(store_request()))
        assert stored == ["1.2.3.4"]
        assert [rsp.status for rsp in responses] == [0x0000]
        assert responses[0]["AffectedSOPInstanceUID"] == "1.2.3.4"

    def test_storage_scp_unbound(self):
        """Test the Storage SCP with no bound handler."""
        responses = list(StorageServiceClass(self.assoc).SCP(store_request()))
        assert [rsp.status for rsp in responses] == [0xC211]
