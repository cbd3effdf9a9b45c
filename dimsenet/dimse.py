"""Fragmentation and reassembly of DIMSE messages.

Outbound messages are split into Presentation Data Value items that are
packed into P-DATA-TF PDUs no larger than the peer's maximum length.
Inbound PDV items are buffered per presentation context until the message
they belong to is complete.

Each PDV item is::

    1 - 4       | 5          | 6                       | 7 ->
    Item length | Context ID | Message control header  | Fragment ->

so the largest fragment that fits a maximum length of `n` is ``n - 6``
bytes (PS3.8 Annex D.1 and E.2).
"""

import logging
from typing import Iterator

from dimsenet._globals import MINIMUM_PDU_LENGTH
from dimsenet.dimse_messages import (
    DIMSEMessage,
    NO_DATASET_PRESENT,
    decode_message,
)
from dimsenet.exceptions import IncompleteMessage
from dimsenet.pdu import P_DATA_TF
from dimsenet.pdu_items import PresentationDataValueItem


LOGGER = logging.getLogger(__name__)

# Item length (4), context ID (1) and message control header (1)
PDV_OVERHEAD = 6


def _generate_fragments(bytestream: bytes, max_length: int) -> Iterator[bytes]:
    """Yield `bytestream` in fragments that fit a PDV item of `max_length`.

    A `max_length` of 0 means unlimited and yields `bytestream` whole.
    """
    if max_length == 0:
        yield bytestream
        return

    fragment_length = max_length - PDV_OVERHEAD
    offset = 0
    while True:
        yield bytestream[offset : offset + fragment_length]
        offset += fragment_length
        if offset >= len(bytestream):
            return


def _generate_items(
    command: bytes, data_set: bytes | None, context_id: int, max_length: int
) -> Iterator[PresentationDataValueItem]:
    """Yield the PDV items for a message, command fragments first."""
    fragments = list(_generate_fragments(command, max_length))
    for ii, fragment in enumerate(fragments, 1):
        yield PresentationDataValueItem.from_fragment(
            context_id, fragment, True, ii == len(fragments)
        )

    if not data_set:
        return

    fragments = list(_generate_fragments(data_set, max_length))
    for ii, fragment in enumerate(fragments, 1):
        yield PresentationDataValueItem.from_fragment(
            context_id, fragment, False, ii == len(fragments)
        )


def fragment_message(
    command: bytes, data_set: bytes | None, context_id: int, max_length: int
) -> list[P_DATA_TF]:
    """Return the P-DATA-TF PDUs needed to send a DIMSE message.

    Parameters
    ----------
    command : bytes
        The encoded *Command Set*.
    data_set : bytes or None
        The encoded *Data Set*, if any.
    context_id : int
        The ID of the presentation context the message is sent on.
    max_length : int
        The peer's maximum length for the variable field of a P-DATA-TF, 0
        for unlimited.

    Returns
    -------
    list of pdu.P_DATA_TF
        The PDUs, in the order they must be sent. Consecutive PDV items are
        packed into the same PDU while they fit.

    Raises
    ------
    ValueError
        If `max_length` is non-zero but too small for any fragment data.
    """
    if max_length < 0 or 0 < max_length < MINIMUM_PDU_LENGTH:
        raise ValueError(
            f"The maximum PDU length must be 0 or at least {MINIMUM_PDU_LENGTH} "
            f"bytes, not {max_length}"
        )

    pdus: list[P_DATA_TF] = []
    current: list[PresentationDataValueItem] = []
    current_length = 0
    for item in _generate_items(command, data_set, context_id, max_length):
        if current and max_length and current_length + len(item) > max_length:
            pdus.append(P_DATA_TF(current))
            current, current_length = [], 0

        current.append(item)
        current_length += len(item)

    if current:
        pdus.append(P_DATA_TF(current))

    return pdus


class Assembler:
    """Convert outbound DIMSE messages to P-DATA-TF PDUs.

    Parameters
    ----------
    max_length : int
        The peer's maximum P-DATA-TF length, 0 for unlimited.
    """

    def __init__(self, max_length: int) -> None:
        if max_length < 0 or 0 < max_length < MINIMUM_PDU_LENGTH:
            raise ValueError(
                f"The maximum PDU length must be 0 or at least "
                f"{MINIMUM_PDU_LENGTH} bytes, not {max_length}"
            )

        self.max_length = max_length

    def assemble(self, message: DIMSEMessage) -> list[P_DATA_TF]:
        """Return the PDUs for `message`, which must have its context ID set."""
        if message.context_id is None:
            raise ValueError("The message has no presentation context ID")

        return fragment_message(
            message.encode_command(),
            message.data_set,
            message.context_id,
            self.max_length,
        )


class _PartialMessage:
    """The fragments received so far for one presentation context."""

    def __init__(self) -> None:
        self.command = bytearray()
        self.data = bytearray()
        self.message: DIMSEMessage | None = None


class Disassembler:
    """Reassemble inbound PDV items into DIMSE messages.

    Items must be given in arrival order. Command and data fragments are
    buffered separately for each presentation context.

    Examples
    --------

    >>> disassembler = Disassembler()
    >>> for msg in disassembler.feed_pdu(pdu):
    ...     print(msg)
    """

    def __init__(self) -> None:
        self._partial: dict[int, _PartialMessage] = {}

    @property
    def is_idle(self) -> bool:
        """Return ``True`` if no context holds a partial message."""
        return not self._partial

    def feed(self, item: PresentationDataValueItem) -> DIMSEMessage | None:
        """Add a PDV `item`, returning the message it completes, if any.

        Raises
        ------
        ValueError
            If the item is out of sequence or the completed command set
            can't be decoded.
        """
        context_id = item.presentation_context_id
        partial = self._partial.setdefault(context_id, _PartialMessage())
        if item.is_command:
            if partial.message is not None:
                del self._partial[context_id]
                raise ValueError(
                    f"Received a command fragment for context ID {context_id} "
                    "after its command set was complete"
                )

            partial.command.extend(item.fragment)
            if not item.is_last:
                return None

            try:
                partial.message = decode_message(bytes(partial.command), None, context_id)
            except Exception:
                del self._partial[context_id]
                raise

            if partial.message["CommandDataSetType"] == NO_DATASET_PRESENT:
                del self._partial[context_id]
                return partial.message

            return None

        if partial.message is None:
            del self._partial[context_id]
            raise ValueError(
                f"Received a data set fragment for context ID {context_id} "
                "without a complete command set"
            )

        partial.data.extend(item.fragment)
        if not item.is_last:
            return None

        del self._partial[context_id]
        partial.message.data_set = bytes(partial.data)
        return partial.message

    def feed_pdu(self, pdu: P_DATA_TF) -> list[DIMSEMessage]:
        """Add every PDV item in `pdu`, returning the completed messages."""
        messages = []
        for item in pdu.presentation_data_value_items:
            msg = self.feed(item)
            if msg is not None:
                messages.append(msg)

        return messages

    def reset(self) -> None:
        """Discard all partial state.

        Raises
        ------
        exceptions.IncompleteMessage
            If any context held a partially received message.
        """
        context_ids = sorted(self._partial)
        self._partial.clear()
        if context_ids:
            raise IncompleteMessage(
                "The association ended with partially received messages on "
                f"context ID(s) {', '.join(str(ii) for ii in context_ids)}",
                context_ids,
            )
