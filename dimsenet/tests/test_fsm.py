"""Tests for the association state machine."""

import logging

import pytest

from dimsenet import fsm
from dimsenet.fsm import (
    InvalidEventError,
    StateMachine,
    STA_AWAITING_LOCAL,
    STA_CLOSED,
    STA_ESTABLISHED,
    STA_IDLE,
    STA_RELEASING,
    STA_REQUESTING,
)
from dimsenet.pdu import (
    A_ABORT_RQ,
    A_ASSOCIATE_AC,
    A_ASSOCIATE_RJ,
    A_ASSOCIATE_RQ,
    A_RELEASE_RP,
    A_RELEASE_RQ,
    P_DATA_TF,
)
from dimsenet.timer import Timer


LOGGER = logging.getLogger("dimsenet")
LOGGER.setLevel(logging.CRITICAL)


class DummyAssociation:
    """Record the indications passed up from the state machine."""

    def __init__(self):
        self.calls = []
        self.accept_ac = True

    def handle_associate_rq(self, pdu):
        self.calls.append(("associate_rq", pdu))

    def handle_established(self):
        self.calls.append(("established", None))

    def handle_associate_ac(self, pdu):
        self.calls.append(("associate_ac", pdu))
        return self.accept_ac

    def handle_associate_rj(self, pdu):
        self.calls.append(("associate_rj", pdu))

    def handle_p_data(self, pdu):
        self.calls.append(("p_data", pdu))

    def handle_release_rq(self):
        self.calls.append(("release_rq", None))

    def handle_abort(self, source, reason):
        self.calls.append(("abort", (source, reason)))


class DummyDUL:
    """A DUL that records sent PDUs instead of writing to a socket."""

    def __init__(self):
        self.assoc = DummyAssociation()
        self.artim_timer = Timer(30)
        self.sent = []
        self.state_machine = StateMachine(self)

    def send_pdu(self, pdu):
        self.sent.append(pdu)


class TestStateMachine:
    """Tests for StateMachine."""

    def setup_method(self):
        self.dul = DummyDUL()
        self.fsm = self.dul.state_machine

    def establish_requestor(self):
        self.fsm.do_action(fsm.EVT_LOCAL_ASSOCIATE_RQ, A_ASSOCIATE_RQ())
        self.fsm.do_action(fsm.EVT_RECV_ASSOCIATE_AC, A_ASSOCIATE_AC())
        assert self.fsm.current_state == STA_ESTABLISHED
        self.dul.sent.clear()
        self.dul.assoc.calls.clear()

    def test_init(self):
        """Test the initial state."""
        assert self.fsm.current_state == STA_IDLE
        assert not self.fsm.is_closed

    def test_requestor_accepted(self):
        """Test the requestor's path to established."""
        rq = A_ASSOCIATE_RQ()
        assert self.fsm.do_action(fsm.EVT_LOCAL_ASSOCIATE_RQ, rq) == STA_REQUESTING
        assert self.dul.sent == [rq]
        assert self.dul.artim_timer.is_running

        ac = A_ASSOCIATE_AC()
        assert self.fsm.do_action(fsm.EVT_RECV_ASSOCIATE_AC, ac) == STA_ESTABLISHED
        assert not self.dul.artim_timer.is_running
        assert self.dul.assoc.calls == [("associate_ac", ac), ("established", None)]

    def test_requestor_no_contexts(self):
        """Test the requestor aborts if no context was accepted."""
        self.dul.assoc.accept_ac = False
        self.fsm.do_action(fsm.EVT_LOCAL_ASSOCIATE_RQ, A_ASSOCIATE_RQ())
        assert self.fsm.do_action(fsm.EVT_RECV_ASSOCIATE_AC, A_ASSOCIATE_AC()) == STA_CLOSED
        assert isinstance(self.dul.sent[-1], A_ABORT_RQ)
        assert ("established", None) not in self.dul.assoc.calls
        assert self.fsm.is_closed

    def test_requestor_rejected(self):
        """Test the requestor being rejected."""
        self.fsm.do_action(fsm.EVT_LOCAL_ASSOCIATE_RQ, A_ASSOCIATE_RQ())
        rj = A_ASSOCIATE_RJ(1, 1, 3)
        assert self.fsm.do_action(fsm.EVT_RECV_ASSOCIATE_RJ, rj) == STA_CLOSED
        assert self.dul.assoc.calls == [("associate_rj", rj)]

    def test_acceptor_accept(self):
        """Test the acceptor's path to established."""
        rq = A_ASSOCIATE_RQ()
        assert self.fsm.do_action(fsm.EVT_RECV_ASSOCIATE_RQ, rq) == STA_AWAITING_LOCAL
        assert self.dul.assoc.calls == [("associate_rq", rq)]
        assert self.dul.artim_timer.is_running

        ac = A_ASSOCIATE_AC()
        assert self.fsm.do_action(fsm.EVT_LOCAL_ACCEPT, ac) == STA_ESTABLISHED
        assert self.dul.sent == [ac]
        assert not self.dul.artim_timer.is_running

    def test_acceptor_reject(self):
        """Test the acceptor rejecting."""
        self.fsm.do_action(fsm.EVT_RECV_ASSOCIATE_RQ, A_ASSOCIATE_RQ())
        rj = A_ASSOCIATE_RJ(2, 3, 2)
        assert self.fsm.do_action(fsm.EVT_LOCAL_REJECT, rj) == STA_CLOSED
        assert self.dul.sent == [rj]

    def test_data_transfer(self):
        """Test sending and receiving P-DATA-TF."""
        self.establish_requestor()
        outbound, inbound = P_DATA_TF(), P_DATA_TF()
        assert self.fsm.do_action(fsm.EVT_LOCAL_P_DATA, outbound) == STA_ESTABLISHED
        assert self.fsm.do_action(fsm.EVT_RECV_P_DATA, inbound) == STA_ESTABLISHED
        assert self.dul.sent == [outbound]
        assert self.dul.assoc.calls == [("p_data", inbound)]

    def test_local_release(self):
        """Test a locally requested release."""
        self.establish_requestor()
        assert self.fsm.do_action(fsm.EVT_LOCAL_RELEASE_RQ) == STA_RELEASING
        assert isinstance(self.dul.sent[-1], A_RELEASE_RQ)
        assert self.dul.artim_timer.is_running

        # Data can still arrive while releasing
        self.fsm.do_action(fsm.EVT_RECV_P_DATA, P_DATA_TF())
        assert self.fsm.do_action(fsm.EVT_RECV_RELEASE_RP, A_RELEASE_RP()) == STA_CLOSED
        assert not self.dul.artim_timer.is_running

    def test_peer_release(self):
        """Test the peer requesting release."""
        self.establish_requestor()
        assert self.fsm.do_action(fsm.EVT_RECV_RELEASE_RQ, A_RELEASE_RQ()) == STA_CLOSED
        assert isinstance(self.dul.sent[-1], A_RELEASE_RP)
        assert self.dul.assoc.calls == [("release_rq", None)]

    def test_release_collision(self):
        """Test both peers requesting release."""
        self.establish_requestor()
        self.fsm.do_action(fsm.EVT_LOCAL_RELEASE_RQ)
        assert self.fsm.do_action(fsm.EVT_RECV_RELEASE_RQ, A_RELEASE_RQ()) == STA_RELEASING
        assert isinstance(self.dul.sent[-1], A_RELEASE_RP)
        assert self.fsm.do_action(fsm.EVT_RECV_RELEASE_RP, A_RELEASE_RP()) == STA_CLOSED

    def test_local_abort(self):
        """Test a local abort."""
        self.establish_requestor()
        assert self.fsm.do_action(fsm.EVT_LOCAL_ABORT) == STA_CLOSED
        pdu = self.dul.sent[-1]
        assert isinstance(pdu, A_ABORT_RQ)
        assert (pdu.source, pdu.reason_diagnostic) == (0, 0)
        assert self.dul.assoc.calls == [("abort", (0, 0))]

    def test_local_abort_idle(self):
        """Test a local abort before any request is sent nothing."""
        assert self.fsm.do_action(fsm.EVT_LOCAL_ABORT) == STA_CLOSED
        assert self.dul.sent == []

    def test_peer_abort(self):
        """Test the peer aborting."""
        self.establish_requestor()
        assert self.fsm.do_action(fsm.EVT_RECV_ABORT, A_ABORT_RQ(2, 6)) == STA_CLOSED
        assert self.dul.sent == []
        assert self.dul.assoc.calls == [("abort", (2, 6))]

    @pytest.mark.parametrize(
        "event, pdu",
        [
            (fsm.EVT_RECV_ASSOCIATE_RQ, A_ASSOCIATE_RQ()),
            (fsm.EVT_RECV_ASSOCIATE_AC, A_ASSOCIATE_AC()),
            (fsm.EVT_RECV_RELEASE_RP, A_RELEASE_RP()),
        ],
    )
    def test_unexpected_pdu(self, event, pdu):
        """Test a PDU that isn't valid for the current state."""
        self.establish_requestor()
        assert self.fsm.do_action(event, pdu) == STA_CLOSED
        abort = self.dul.sent[-1]
        assert (abort.source, abort.reason_diagnostic) == (2, 2)
        assert self.dul.assoc.calls == [("abort", (2, 2))]

    def test_invalid_pdu(self):
        """Test receiving an undecodable PDU."""
        self.establish_requestor()
        assert self.fsm.do_action(fsm.EVT_INVALID_PDU) == STA_CLOSED
        abort = self.dul.sent[-1]
        assert (abort.source, abort.reason_diagnostic) == (2, 1)

    def test_timer_expired(self):
        """Test the timer expiring while awaiting a response."""
        self.fsm.do_action(fsm.EVT_LOCAL_ASSOCIATE_RQ, A_ASSOCIATE_RQ())
        assert self.fsm.do_action(fsm.EVT_TIMER_EXPIRED) == STA_CLOSED
        abort = self.dul.sent[-1]
        assert (abort.source, abort.reason_diagnostic) == (2, 0)
        assert self.dul.assoc.calls == [("abort", (2, 0))]

    def test_transport_closed(self):
        """Test the connection closing."""
        self.establish_requestor()
        assert self.fsm.do_action(fsm.EVT_TRANSPORT_CLOSED) == STA_CLOSED
        assert self.dul.sent == []
        # Once closed, further closure events are ignored
        assert self.fsm.do_action(fsm.EVT_TRANSPORT_CLOSED) == STA_CLOSED

    @pytest.mark.parametrize(
        "event",
        [
            fsm.EVT_LOCAL_P_DATA,
            fsm.EVT_LOCAL_RELEASE_RQ,
            fsm.EVT_LOCAL_ACCEPT,
            fsm.EVT_LOCAL_REJECT,
        ],
    )
    def test_invalid_local_event(self, event):
        """Test a local event that isn't valid in the idle state."""
        with pytest.raises(InvalidEventError):
            self.fsm.do_action(event)

        assert self.fsm.current_state == STA_IDLE

    def test_events_after_closed(self):
        """Test local events after the association closed."""
        self.fsm.do_action(fsm.EVT_LOCAL_ABORT)
        with pytest.raises(InvalidEventError):
            self.fsm.do_action(fsm.EVT_LOCAL_P_DATA, P_DATA_TF())

        with pytest.raises(InvalidEventError):
            self.fsm.do_action(fsm.EVT_RECV_P_DATA, P_DATA_TF())

    def test_transition_invalid(self):
        """Test transitioning to an unknown state."""
        with pytest.raises(ValueError, match="Invalid state"):
            self.fsm.transition("Nowhere")

    def test_action_exception(self):
        """Test an exception raised by an action propagates."""

        def send_pdu(pdu):
            raise OSError("Connection lost")

        self.dul.send_pdu = send_pdu
        with pytest.raises(OSError):
            self.fsm.do_action(fsm.EVT_LOCAL_ASSOCIATE_RQ, A_ASSOCIATE_RQ())

        assert self.fsm.current_state == STA_IDLE


class TestTransitionTable:
    """Sanity checks for the transition table."""

    def test_actions_exist(self):
        """Test every transition names a defined action."""
        for action in fsm.TRANSITION_TABLE.values():
            assert action in fsm.ACTIONS

    def test_open_states_abort(self):
        """Test every open state handles aborts and closure."""
        for state in fsm.OPEN_STATES:
            assert (fsm.EVT_LOCAL_ABORT, state) in fsm.TRANSITION_TABLE
            assert (fsm.EVT_RECV_ABORT, state) in fsm.TRANSITION_TABLE
            assert (fsm.EVT_TRANSPORT_CLOSED, state) in fsm.TRANSITION_TABLE
