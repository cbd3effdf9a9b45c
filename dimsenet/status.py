"""DIMSE *Status* values and their categories."""

from enum import IntEnum

from dimsenet._globals import (
    STATUS_SUCCESS,
    STATUS_FAILURE,
    STATUS_WARNING,
    STATUS_CANCEL,
    STATUS_PENDING,
    STATUS_UNKNOWN,
)


# Non-Service Class specific statuses - PS3.7 Annex C
GENERAL_STATUS = {
    0x0000: (STATUS_SUCCESS, ""),
    0x0107: (STATUS_WARNING, "Attribute List Error"),
    0x0110: (STATUS_FAILURE, "Processing Failure"),
    0x0111: (STATUS_FAILURE, "Duplicate SOP Instance"),
    0x0117: (STATUS_FAILURE, "Invalid Object Instance"),
    0x0118: (STATUS_FAILURE, "No Such SOP Class"),
    0x0122: (STATUS_FAILURE, "Refused: SOP Class Not Supported"),
    0x0124: (STATUS_FAILURE, "Refused: Not Authorised"),
    0x0210: (STATUS_FAILURE, "Duplicate Invocation"),
    0x0211: (STATUS_FAILURE, "Unrecognised Operation"),
    0x0212: (STATUS_FAILURE, "Mistyped Argument"),
    0x0213: (STATUS_FAILURE, "Resource Limitation"),
    0xFE00: (STATUS_CANCEL, ""),
}

# Storage Service Class specific statuses - PS3.4 Annex B.2.3
STORAGE_SERVICE_CLASS_STATUS = {
    0xA700: (STATUS_FAILURE, "Refused: Out of Resources"),
    0xA900: (STATUS_FAILURE, "Data Set Does Not Match SOP Class"),
    0xB000: (STATUS_WARNING, "Coercion of Data Elements"),
    0xB006: (STATUS_WARNING, "Element Discarded"),
    0xB007: (STATUS_WARNING, "Data Set Does Not Match SOP Class"),
    0xC000: (STATUS_FAILURE, "Cannot Understand"),
    0xC211: (STATUS_FAILURE, "Unhandled exception raised by the handler"),
}

# Query/Retrieve Service Class specific statuses - PS3.4 Annex C.4
QR_SERVICE_CLASS_STATUS = {
    0xA700: (STATUS_FAILURE, "Refused: Out of Resources"),
    0xA701: (STATUS_FAILURE, "Refused: Out of Resources, Unable to Calculate Matches"),
    0xA702: (STATUS_FAILURE, "Refused: Out of Resources, Unable to Perform Sub-operations"),
    0xA801: (STATUS_FAILURE, "Refused: Move Destination Unknown"),
    0xA900: (STATUS_FAILURE, "Identifier Does Not Match SOP Class"),
    0xB000: (STATUS_WARNING, "Sub-operations Complete, One or More Failures"),
    0xC000: (STATUS_FAILURE, "Unable to Process"),
    0xFF00: (STATUS_PENDING, "Matches are continuing"),
    0xFF01: (STATUS_PENDING, "Matches are continuing, one or more Optional Keys not supported"),
}


class Status(IntEnum):
    """Constants for common status codes."""

    SUCCESS = 0x0000
    """``0x0000`` - Success"""
    CANCEL = 0xFE00
    """``0xFE00`` - Operation terminated"""
    PENDING = 0xFF00
    """``0xFF00`` - Matches or sub-operations are continuing"""
    PENDING_WARNING = 0xFF01
    """``0xFF01`` - Matches are continuing, optional keys not supported"""
    MOVE_DESTINATION_UNKNOWN = 0xA801
    """``0xA801`` - Move destination unknown"""
    UNABLE_TO_PROCESS = 0xC000
    """``0xC000`` - Unable to process"""
    UNHANDLED_EXCEPTION = 0xC211
    """``0xC211`` - The request handler raised an exception"""
    SOP_CLASS_NOT_SUPPORTED = 0x0122
    """``0x0122`` - SOP Class not supported"""


def code_to_category(code: int) -> str:
    """Return a *Status* category as :class:`str` or ``'Unknown'`` if not
    recognised.

    Raises
    ------
    ValueError
        If `code` isn't a non-negative :class:`int`.
    """
    if not isinstance(code, int) or code < 0:
        raise ValueError("'code' must be a positive integer.")

    if code == 0x0000:
        return STATUS_SUCCESS

    if code in (0xFF00, 0xFF01):
        return STATUS_PENDING

    if code == 0xFE00:
        return STATUS_CANCEL

    if code in GENERAL_STATUS:
        return GENERAL_STATUS[code][0]

    if 0xA000 <= code < 0xB000 or 0xC000 <= code < 0xD000:
        return STATUS_FAILURE

    if 0xB000 <= code < 0xC000 or code in (0x0001, 0x0116):
        return STATUS_WARNING

    return STATUS_UNKNOWN


def is_pending(code: int) -> bool:
    """Return ``True`` if `code` means more responses will follow."""
    return code in (0xFF00, 0xFF01)
