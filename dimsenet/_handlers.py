"""Standard logging event handlers."""

import logging
from typing import TYPE_CHECKING, Callable

from pydicom.uid import UID

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
from dimsenet.presentation import CONTEXT_RESULTS
from dimsenet.utils import pretty_bytes

if TYPE_CHECKING:  # pragma: no cover
    from dimsenet.dimse_messages import DIMSEMessage
    from dimsenet.events import Event
    from dimsenet.pdu_items import UserInformationItem


LOGGER = logging.getLogger(__name__)


# Debugging handlers
def standard_pdu_recv_handler(event: "Event") -> list[str]:
    """Standard handler when a PDU is received and decoded.

    **Event**

    ``evt.EVT_PDU_RECV``

    Parameters
    ----------
    event : events.Event
        The ``evt.EVT_PDU_RECV`` event corresponding to receiving and decoding
        a PDU from the peer. :class:`~dimsenet.events.Event` attributes are:

        * :attr:`~dimsenet.events.Event.assoc`: the
          :class:`~dimsenet.association.Association` that received the PDU.
        * ``pdu``: the PDU that was received, one of the ``pdu.PDU``
          subclasses.
        * :attr:`~dimsenet.events.Event.timestamp`: the date and time that
          the PDU was received as :class:`datetime.datetime`.
    """
    return _log_pdu(event.pdu, "INCOMING")


def standard_pdu_sent_handler(event: "Event") -> list[str]:
    """Standard handler when a PDU is encoded and sent.

    **Event**

    ``evt.EVT_PDU_SENT``

    Parameters
    ----------
    event : events.Event
        The ``evt.EVT_PDU_SENT`` event corresponding to encoding and sending
        a PDU to the peer. :class:`~dimsenet.events.Event` attributes are:

        * :attr:`~dimsenet.events.Event.assoc`: the
          :class:`~dimsenet.association.Association` that sent the PDU.
        * ``pdu``: the PDU that was sent, one of the ``pdu.PDU`` subclasses.
        * :attr:`~dimsenet.events.Event.timestamp`: the date and time that
          the PDU was sent as :class:`datetime.datetime`.
    """
    return _log_pdu(event.pdu, "OUTGOING")


def standard_dimse_recv_handler(event: "Event") -> list[str]:
    """Standard handler for a DIMSE message that was received and decoded.

    Parameters
    ----------
    event : events.Event
        The ``evt.EVT_DIMSE_RECV`` event. :class:`~dimsenet.events.Event`
        attributes are:

        * :attr:`~dimsenet.events.Event.assoc`: the
          :class:`~dimsenet.association.Association` that received the
          message.
        * ``message``: the DIMSE message that was received.
    """
    msg = event.message
    summary = _RECV_SUMMARY.get(msg.message_type)
    if summary:
        LOGGER.info(summary.format(msg=msg))

    return _log_message(msg, "INCOMING")


def standard_dimse_sent_handler(event: "Event") -> list[str]:
    """Standard handler for a DIMSE message that was encoded and queued to
    be sent.

    Parameters
    ----------
    event : events.Event
        The ``evt.EVT_DIMSE_SENT`` event. :class:`~dimsenet.events.Event`
        attributes are:

        * :attr:`~dimsenet.events.Event.assoc`: the
          :class:`~dimsenet.association.Association` that sent the message.
        * ``message``: the DIMSE message that was sent.
    """
    msg = event.message
    summary = _SENT_SUMMARY.get(msg.message_type)
    if summary:
        LOGGER.info(summary.format(msg=msg))

    return _log_message(msg, "OUTGOING")


def _log_pdu(pdu: PDU, direction: str) -> list[str]:
    """Log the `pdu` at DEBUG and return the logged lines."""
    handlers: dict[type[PDU], Callable[[PDU], list[str]]] = {
        A_ASSOCIATE_RQ: _associate_rq,
        A_ASSOCIATE_AC: _associate_ac,
        A_ASSOCIATE_RJ: _associate_rj,
        A_RELEASE_RQ: _release,
        A_RELEASE_RP: _release,
        A_ABORT_RQ: _abort,
        P_DATA_TF: _data_tf,
    }
    lines = handlers[type(pdu)](pdu)
    if not lines:
        return []

    name = type(pdu).__name__.replace("_", "-")
    s = [f"{f' {direction} {name} PDU ':=^76}"]
    s.extend(lines)
    s.append(f"{f' END {name} PDU ':=^76}")
    for line in s:
        LOGGER.debug(line)

    return s


def _user_information(user_info: "UserInformationItem | None") -> list[str]:
    if user_info is None:
        return ["User Information: None"]

    class_uid = user_info.implementation_class_uid or "unknown"
    version = user_info.implementation_version_name or "unknown"
    s = [
        f"Implementation Class UID:      {class_uid}",
        f"Implementation Version Name:   {version}",
        f"Max PDU Receive Size:          {user_info.maximum_length}",
    ]

    async_ops = user_info.async_ops_window
    if async_ops is not None:
        s.append("Asynchronous Operations Window Negotiation:")
        s.append(
            f"  Maximum Invoked Operations:     "
            f"{async_ops.maximum_number_operations_invoked}"
        )
        s.append(
            f"  Maximum Performed Operations:   "
            f"{async_ops.maximum_number_operations_performed}"
        )
    else:
        s.append("Asynchronous Operations Window Negotiation: None")

    for uid, role in user_info.role_selection.items():
        roles = [name for name, flag in (("SCP", role.scp_role), ("SCU", role.scu_role)) if flag]
        s.append(f"SCP/SCU Role: ={UID(uid).name}: {'/'.join(roles) or 'None'}")

    if user_info.ext_neg:
        s.append("Extended Negotiation:")
        for item in user_info.ext_neg:
            s.append(f"  SOP Class: ={item.sop_class_uid}")
            s.extend(
                f"  {line}"
                for line in pretty_bytes(item.service_class_application_information)
            )
    else:
        s.append("Extended Negotiation: None")

    return s


def _associate_rq(pdu: A_ASSOCIATE_RQ) -> list[str]:
    s = [
        f"Application Context Name:    {pdu.application_context_name}",
        f"Calling Application Name:    {pdu.calling_ae_title}",
        f"Called Application Name:     {pdu.called_ae_title}",
    ]
    s.extend(_user_information(pdu.user_information))
    contexts = sorted(
        pdu.presentation_context, key=lambda x: x.presentation_context_id
    )
    s.append("Presentation Context:" if len(contexts) == 1 else "Presentation Contexts:")
    for item in contexts:
        abstract = item.abstract_syntax
        s.append(f"  Context ID:        {item.presentation_context_id} (Proposed)")
        s.append(f"    Abstract Syntax: ={abstract.name if abstract else 'None'}")
        s.append("    Proposed Transfer Syntaxes:")
        s.extend(f"      ={ts.name}" for ts in item.transfer_syntax)

    return s


def _associate_ac(pdu: A_ASSOCIATE_AC) -> list[str]:
    s = [
        f"Application Context Name:    {pdu.application_context_name}",
        f"Calling Application Name:    {pdu.calling_ae_title}",
        f"Called Application Name:     {pdu.called_ae_title}",
    ]
    s.extend(_user_information(pdu.user_information))
    contexts = sorted(
        pdu.presentation_context, key=lambda x: x.presentation_context_id
    )
    s.append("Presentation Context:" if len(contexts) == 1 else "Presentation Contexts:")
    accepted = 0
    for item in contexts:
        result = CONTEXT_RESULTS.get(item.result, "Unknown")
        s.append(f"  Context ID:        {item.presentation_context_id} ({result})")
        if item.result == 0x00:
            accepted += 1
            syntax = item.transfer_syntax
            s.append(f"    Accepted Transfer Syntax: ={syntax.name if syntax else 'None'}")

    s.append(f"Accepted Presentation Contexts: {accepted} of {len(contexts)}")

    return s


def _associate_rj(pdu: A_ASSOCIATE_RJ) -> list[str]:
    return [
        f"Result:    {pdu.result_str}",
        f"Source:    {pdu.source_str}",
        f"Reason:    {pdu.reason_str}",
    ]


def _abort(pdu: A_ABORT_RQ) -> list[str]:
    return [
        f"Abort Source: {pdu.source_str}",
        f"Abort Reason: {pdu.reason_str}",
    ]


def _release(pdu: A_RELEASE_RQ | A_RELEASE_RP) -> list[str]:
    return []


def _data_tf(pdu: P_DATA_TF) -> list[str]:
    # P-DATA-TF contents are logged as DIMSE messages
    return []


# Keyword, label pairs in the order they're logged
_MESSAGE_FIELDS = (
    ("MessageID", "Message ID"),
    ("MessageIDBeingRespondedTo", "Message ID Being Responded To"),
    ("AffectedSOPClassUID", "Affected SOP Class UID"),
    ("AffectedSOPInstanceUID", "Affected SOP Instance UID"),
    ("MoveDestination", "Move Destination"),
    ("MoveOriginatorApplicationEntityTitle", "Move Originator AE Title"),
    ("MoveOriginatorMessageID", "Move Originator Message ID"),
    ("NumberOfRemainingSuboperations", "Remaining Sub-operations"),
    ("NumberOfCompletedSuboperations", "Completed Sub-operations"),
    ("NumberOfFailedSuboperations", "Failed Sub-operations"),
    ("NumberOfWarningSuboperations", "Warning Sub-operations"),
    ("ErrorComment", "Error Comment"),
)

_PRIORITY = {0: "Medium", 1: "High", 2: "Low"}

_SENT_SUMMARY = {
    "C-ECHO-RQ": "Sending Echo Request: MsgID {msg.message_id}",
    "C-STORE-RQ": "Sending Store Request: MsgID {msg.message_id}",
    "C-FIND-RQ": "Sending Find Request: MsgID {msg.message_id}",
    "C-GET-RQ": "Sending Get Request: MsgID {msg.message_id}",
    "C-MOVE-RQ": "Sending Move Request: MsgID {msg.message_id}",
    "C-CANCEL-RQ": (
        "Sending C-CANCEL for MsgID {msg.message_id_being_responded_to}"
    ),
}

_RECV_SUMMARY = {
    "C-ECHO-RQ": "Received Echo Request (MsgID {msg.message_id})",
    "C-STORE-RQ": "Received Store Request",
    "C-FIND-RQ": "Received Find Request",
    "C-GET-RQ": "Received Get Request",
    "C-MOVE-RQ": "Received Move Request",
    "C-ECHO-RSP": "Received Echo Response (Status: 0x{msg.status:04X})",
    "C-STORE-RSP": "Received Store Response (Status: 0x{msg.status:04X})",
}


def _log_message(msg: "DIMSEMessage", direction: str) -> list[str]:
    """Log the command set of `msg` at DEBUG and return the logged lines."""
    s = [
        f"{f' {direction} DIMSE MESSAGE ':=^76}",
        f"Message Type                  : {msg.message_type.replace('-', ' ', 1)}",
        f"Presentation Context ID       : {msg.context_id}",
    ]
    for keyword, label in _MESSAGE_FIELDS:
        value = msg[keyword] if keyword in msg.keywords else None
        if value is None:
            continue

        if keyword == "AffectedSOPClassUID":
            value = UID(value).name

        s.append(f"{label:<30}: {value}")

    if "Priority" in msg.keywords and msg["Priority"] is not None:
        s.append(f"{'Priority':<30}: {_PRIORITY.get(msg['Priority'], 'Unknown')}")

    if msg.message_type not in ("C-ECHO-RQ", "C-ECHO-RSP", "C-STORE-RSP", "C-CANCEL-RQ"):
        label = "Data Set" if msg.message_type == "C-STORE-RQ" else "Identifier"
        s.append(f"{label:<30}: {'Present' if msg.has_dataset else 'None'}")

    if msg.status is not None:
        s.append(f"{'Status':<30}: 0x{msg.status:04X}")

    s.append(f"{' END DIMSE MESSAGE ':=^76}")
    for line in s:
        LOGGER.debug(line)

    return s
