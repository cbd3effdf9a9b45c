"""Define the DIMSE-C Message classes.

A DIMSE message is a *Command Set* plus an optional *Data Set*. The
*Command Set* is always encoded as Implicit VR Little Endian (PS3.7 6.3.1),
the *Data Set* is kept encoded using the transfer syntax of the
presentation context the message is sent on.

The message types form a closed set, one class per *Command Field* value::

    0x0001  C-STORE-RQ      0x8001  C-STORE-RSP
    0x0010  C-GET-RQ        0x8010  C-GET-RSP
    0x0020  C-FIND-RQ       0x8020  C-FIND-RSP
    0x0021  C-MOVE-RQ       0x8021  C-MOVE-RSP
    0x0030  C-ECHO-RQ       0x8030  C-ECHO-RSP
    0x0FFF  C-CANCEL-RQ
"""

import logging
from typing import Any

from pydicom.dataset import Dataset

from dimsenet.dsutils import decode, encode


LOGGER = logging.getLogger(__name__)


# PS3.7 Section 9.3
_COMMAND_SET_KEYWORDS = {
    "C-ECHO-RQ": (
        "CommandGroupLength",
        "AffectedSOPClassUID",
        "CommandField",
        "MessageID",
        "CommandDataSetType",
    ),
    "C-ECHO-RSP": (
        "CommandGroupLength",
        "AffectedSOPClassUID",
        "CommandField",
        "MessageIDBeingRespondedTo",
        "CommandDataSetType",
        "Status",
        "ErrorComment",
    ),
    "C-STORE-RQ": (
        "CommandGroupLength",
        "AffectedSOPClassUID",
        "CommandField",
        "MessageID",
        "Priority",
        "CommandDataSetType",
        "AffectedSOPInstanceUID",
        "MoveOriginatorApplicationEntityTitle",
        "MoveOriginatorMessageID",
    ),
    "C-STORE-RSP": (
        "CommandGroupLength",
        "AffectedSOPClassUID",
        "CommandField",
        "MessageIDBeingRespondedTo",
        "CommandDataSetType",
        "Status",
        "AffectedSOPInstanceUID",
        "OffendingElement",
        "ErrorComment",
    ),
    "C-FIND-RQ": (
        "CommandGroupLength",
        "AffectedSOPClassUID",
        "CommandField",
        "MessageID",
        "Priority",
        "CommandDataSetType",
    ),
    "C-FIND-RSP": (
        "CommandGroupLength",
        "AffectedSOPClassUID",
        "CommandField",
        "MessageIDBeingRespondedTo",
        "CommandDataSetType",
        "Status",
        "OffendingElement",
        "ErrorComment",
    ),
    "C-CANCEL-RQ": (
        "CommandGroupLength",
        "CommandField",
        "MessageIDBeingRespondedTo",
        "CommandDataSetType",
    ),
    "C-GET-RQ": (
        "CommandGroupLength",
        "AffectedSOPClassUID",
        "CommandField",
        "MessageID",
        "Priority",
        "CommandDataSetType",
    ),
    "C-GET-RSP": (
        "CommandGroupLength",
        "AffectedSOPClassUID",
        "CommandField",
        "MessageIDBeingRespondedTo",
        "CommandDataSetType",
        "Status",
        "NumberOfRemainingSuboperations",
        "NumberOfCompletedSuboperations",
        "NumberOfFailedSuboperations",
        "NumberOfWarningSuboperations",
        "OffendingElement",
        "ErrorComment",
    ),
    "C-MOVE-RQ": (
        "CommandGroupLength",
        "AffectedSOPClassUID",
        "CommandField",
        "MessageID",
        "Priority",
        "CommandDataSetType",
        "MoveDestination",
    ),
    "C-MOVE-RSP": (
        "CommandGroupLength",
        "AffectedSOPClassUID",
        "CommandField",
        "MessageIDBeingRespondedTo",
        "CommandDataSetType",
        "Status",
        "NumberOfRemainingSuboperations",
        "NumberOfCompletedSuboperations",
        "NumberOfFailedSuboperations",
        "NumberOfWarningSuboperations",
        "OffendingElement",
        "ErrorComment",
    ),
}

# The elements that are managed by the message itself
_MANAGED_KEYWORDS = ("CommandGroupLength", "CommandField", "CommandDataSetType")

# Message types that never carry a data set
_NO_DATASET = ("C-ECHO-RQ", "C-ECHO-RSP", "C-STORE-RSP", "C-CANCEL-RQ")

NO_DATASET_PRESENT = 0x0101
DATASET_PRESENT = 0x0001


class DIMSEMessage:
    """A DIMSE-C Message.

    Use one of the subclasses, which are keyed by *Command Field* in
    ``_MESSAGE_TYPES``. Command set elements may be given as keyword
    arguments:

    >>> from dimsenet.dimse_messages import C_ECHO_RQ
    >>> msg = C_ECHO_RQ(MessageID=1, AffectedSOPClassUID="1.2.840.10008.1.1")
    >>> msg.message_id
    1

    Attributes
    ----------
    command_set : pydicom.dataset.Dataset
        The message *Command Set* (see PS3.7 6.3).
    context_id : int or None
        The ID of the presentation context the message was sent or received
        on.
    data_set : bytes or None
        The encoded message *Data Set*, or ``None`` if there is none.
    """

    message_type: str = ""
    command_field: int = 0x0000

    def __init__(
        self, data_set: bytes | None = None, context_id: int | None = None, **kwargs: Any
    ) -> None:
        if not self.message_type:
            raise TypeError("Use one of the DIMSE message subclasses")

        if data_set and self.message_type in _NO_DATASET:
            raise ValueError(f"A {self.message_type} message has no Data Set")

        self.context_id = context_id
        self.command_set = Dataset()
        self.data_set = data_set or None
        for keyword, value in kwargs.items():
            self[keyword] = value

    def __getitem__(self, keyword: str) -> Any:
        """Return the value of the command set element `keyword`, or ``None``."""
        return getattr(self.command_set, keyword, None)

    def __setitem__(self, keyword: str, value: Any) -> None:
        """Set the command set element `keyword`, removing it if `value` is
        ``None``.
        """
        if keyword not in _COMMAND_SET_KEYWORDS[self.message_type]:
            raise ValueError(
                f"'{keyword}' is not a valid Command Set element for a "
                f"{self.message_type} message"
            )

        if keyword in _MANAGED_KEYWORDS:
            raise ValueError(f"'{keyword}' is set automatically when encoding")

        if value is None:
            if keyword in self.command_set:
                delattr(self.command_set, keyword)

            return

        setattr(self.command_set, keyword, value)

    @property
    def is_request(self) -> bool:
        """Return ``True`` if the message is a request."""
        return self.message_type.endswith("-RQ")

    @property
    def is_response(self) -> bool:
        """Return ``True`` if the message is a response."""
        return self.message_type.endswith("-RSP")

    @property
    def has_dataset(self) -> bool:
        """Return ``True`` if the message carries a data set."""
        return bool(self.data_set)

    @property
    def message_id(self) -> int | None:
        """Return the *Message ID*, or ``None`` if not a request."""
        return self["MessageID"] if "MessageID" in self.keywords else None

    @property
    def message_id_being_responded_to(self) -> int | None:
        """Return the *Message ID Being Responded To*, or ``None``."""
        return self["MessageIDBeingRespondedTo"]

    @property
    def status(self) -> int | None:
        """Return the response *Status*, or ``None`` for requests."""
        return self["Status"]

    @property
    def affected_sop_class(self) -> str | None:
        """Return the *Affected SOP Class UID*, or ``None``."""
        return self["AffectedSOPClassUID"]

    @property
    def keywords(self) -> tuple[str, ...]:
        """Return the command set keywords allowed for the message type."""
        return _COMMAND_SET_KEYWORDS[self.message_type]

    def encode_command(self) -> bytes:
        """Return the *Command Set* encoded as Implicit VR Little Endian.

        The *Command Field*, *Command Data Set Type* and *Command Group
        Length* elements are set before encoding.
        """
        cs = self.command_set
        cs.CommandField = self.command_field
        cs.CommandDataSetType = (
            DATASET_PRESENT if self.data_set else NO_DATASET_PRESENT
        )
        if "CommandGroupLength" in cs:
            del cs.CommandGroupLength

        # The group length is the length of every element following it
        cs.CommandGroupLength = len(encode(cs, True, True))

        return encode(cs, True, True)

    def __str__(self) -> str:
        ident = self.message_id
        if ident is None:
            ident = self.message_id_being_responded_to

        s = f"{self.message_type} (ID {ident}, context {self.context_id})"
        if self.status is not None:
            s += f", status 0x{self.status:04X}"

        return s


# Create the DIMSEMessage subclasses and add them to the module
_MESSAGE_TYPES: dict[int, type[DIMSEMessage]] = {}
for _name, _field in (
    ("C-STORE-RQ", 0x0001),
    ("C-STORE-RSP", 0x8001),
    ("C-GET-RQ", 0x0010),
    ("C-GET-RSP", 0x8010),
    ("C-FIND-RQ", 0x0020),
    ("C-FIND-RSP", 0x8020),
    ("C-MOVE-RQ", 0x0021),
    ("C-MOVE-RSP", 0x8021),
    ("C-ECHO-RQ", 0x0030),
    ("C-ECHO-RSP", 0x8030),
    ("C-CANCEL-RQ", 0x0FFF),
):
    _cls = type(
        _name.replace("-", "_"),
        (DIMSEMessage,),
        {"message_type": _name, "command_field": _field, "__module__": __name__},
    )
    globals()[_cls.__name__] = _cls
    _MESSAGE_TYPES[_field] = _cls

# Response type for each request type
_RESPONSE_TYPES = {
    0x0001: 0x8001,
    0x0010: 0x8010,
    0x0020: 0x8020,
    0x0021: 0x8021,
    0x0030: 0x8030,
}


def message_class(command_field: int) -> type[DIMSEMessage]:
    """Return the message class for `command_field`.

    Raises
    ------
    ValueError
        If `command_field` isn't one of the DIMSE-C *Command Field* values.
    """
    try:
        return _MESSAGE_TYPES[command_field]
    except KeyError:
        raise ValueError(
            f"Unknown DIMSE message type with Command Field 0x{command_field:04X}"
        ) from None


def decode_message(
    command: bytes, data_set: bytes | None = None, context_id: int | None = None
) -> DIMSEMessage:
    """Return a message from its encoded *Command Set* and *Data Set*.

    Parameters
    ----------
    command : bytes
        The Implicit VR Little Endian encoded *Command Set*.
    data_set : bytes, optional
        The encoded *Data Set*, if any.
    context_id : int, optional
        The ID of the presentation context the message was received on.

    Raises
    ------
    ValueError
        If the *Command Set* has no *Command Field* or its value isn't one
        of the DIMSE-C message types.
    """
    cs = decode(command, True, True)
    if "CommandField" not in cs:
        raise ValueError("The received Command Set has no Command Field element")

    cls = message_class(cs.CommandField)
    msg = cls(data_set=data_set, context_id=context_id)
    msg.command_set = cs

    return msg


def response_for(request: DIMSEMessage, status: int = 0x0000, **kwargs: Any) -> DIMSEMessage:
    """Return a new response to `request` with its identifying elements set.

    Parameters
    ----------
    request : dimse_messages.DIMSEMessage
        The request being responded to.
    status : int, optional
        The response *Status*, default ``0x0000``.
    **kwargs
        Other command set elements, or ``data_set`` for the encoded
        *Identifier*.

    Raises
    ------
    ValueError
        If `request` is a C-CANCEL-RQ or a response, which have no response.
    """
    field = _RESPONSE_TYPES.get(request.command_field)
    if field is None:
        raise ValueError(f"A {request.message_type} message has no response type")

    data_set = kwargs.pop("data_set", None)
    rsp = _MESSAGE_TYPES[field](data_set=data_set, context_id=request.context_id)
    rsp["MessageIDBeingRespondedTo"] = request.message_id
    rsp["AffectedSOPClassUID"] = request.affected_sop_class
    rsp["Status"] = int(status)
    if "AffectedSOPInstanceUID" in rsp.keywords:
        rsp["AffectedSOPInstanceUID"] = request["AffectedSOPInstanceUID"]

    for keyword, value in kwargs.items():
        rsp[keyword] = value

    return rsp
