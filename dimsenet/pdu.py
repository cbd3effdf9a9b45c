"""DICOM Upper Layer Protocol Data Units (PDUs).

There are seven different PDUs:

- A_ASSOCIATE_RQ
- A_ASSOCIATE_AC
- A_ASSOCIATE_RJ
- P_DATA_TF
- A_RELEASE_RQ
- A_RELEASE_RP
- A_ABORT_RQ

::

                 encode_pdu()
  +------------+  ------>  +-------------+
  |    PDU     |           |    bytes    |
  +------------+  <------  +-------------+
                 decode_pdu()

Every PDU starts with the same 6 byte header: the *PDU Type*, a reserved
byte and the 4 byte big endian *PDU Length*, which is the number of bytes
that follow the header.
"""

import logging
from struct import error as StructError
from typing import Any, Callable, Iterator, TYPE_CHECKING

from pydicom.uid import UID

from dimsenet._globals import APPLICATION_CONTEXT_NAME, PROTOCOL_VERSION
from dimsenet.exceptions import MalformedPDU
from dimsenet.pdu_items import (
    ApplicationContextItem,
    PresentationContextItemRQ,
    PresentationContextItemAC,
    PresentationDataValueItem,
    UserInformationItem,
    PDUItem,
    PACK_UCHAR,
    PACK_UINT2,
    PACK_UINT4,
    UNPACK_UCHAR,
    UNPACK_UINT2,
    UNPACK_UINT4,
    _DecoderType,
    _EncoderType,
)
from dimsenet.utils import decode_bytes

if TYPE_CHECKING:  # pragma: no cover
    from dimsenet.presentation import PresentationContext


LOGGER = logging.getLogger(__name__)


class PDU:
    """Base class for PDUs.

    Protocol Data Units (PDUs) are the message formats exchanged between peer
    entities within a layer. A PDU consists of protocol control information
    and user data. PDUs are constructed by mandatory fixed fields followed by
    optional variable fields that contain one or more items and/or sub-items.

    References
    ----------

    * DICOM Standard, Part 8, Section 9.3
    """

    def decode(self, bytestream: bytes) -> None:
        """Decode `bytestream` and use the result to set the field values of
        the PDU.

        Parameters
        ----------
        bytestream : bytes
            The PDU data to be decoded, including the 6 byte header.

        Raises
        ------
        exceptions.MalformedPDU
            If the PDU can't be decoded.
        """
        try:
            for (offset, length), attr_name, func, args in self._decoders:
                if length:
                    sl = slice(offset, offset + length)
                else:
                    sl = slice(offset, None)

                setattr(self, attr_name, func(bytestream[sl], *args))
        except MalformedPDU:
            raise
        except (StructError, IndexError, ValueError) as exc:
            raise MalformedPDU(
                f"Unable to decode the {type(self).__name__} PDU: {exc}"
            ) from exc

    @property
    def _decoders(self) -> _DecoderType:
        """Return an iterable of ((offset, length), attr_name, func, args)."""
        raise NotImplementedError

    def encode(self) -> bytes:
        """Return the encoded PDU as :class:`bytes`."""
        bytestream = bytearray()
        for attr_name, func, args in self._encoders:
            if attr_name:
                bytestream += func(getattr(self, attr_name), *args)
            else:
                bytestream += func(*args)

        return bytes(bytestream)

    @property
    def _encoders(self) -> _EncoderType:
        """Return an iterable of (attr_name, func, args)."""
        raise NotImplementedError

    def __eq__(self, other: Any) -> bool:
        """Return ``True`` if `self` equals `other`."""
        if other is self:
            return True

        if isinstance(other, type(self)):
            self_dict = {en[0]: getattr(self, en[0]) for en in self._encoders if en[0]}
            other_dict = {
                en[0]: getattr(other, en[0]) for en in other._encoders if en[0]
            }
            return self_dict == other_dict

        return NotImplemented

    def __ne__(self, other: Any) -> bool:
        """Return ``True`` if `self` does not equal `other`."""
        return not self == other

    def __len__(self) -> int:
        """Return the total length of the encoded PDU."""
        return 6 + self.pdu_length

    @property
    def pdu_length(self) -> int:
        """Return the *PDU Length* field value as :class:`int`."""
        raise NotImplementedError

    @property
    def pdu_type(self) -> int:
        """Return the *PDU Type* field value as :class:`int`."""
        return _PDU_TO_TYPE[type(self)]

    @staticmethod
    def _wrap_bytes(bytestream: bytes) -> bytes:
        """Return `bytestream` as :class:`bytes`."""
        return bytes(bytestream)

    @staticmethod
    def _wrap_encode_items(items: list[PDUItem]) -> bytes:
        """Return `items` encoded as :class:`bytes`."""
        return b"".join(item.encode() for item in items)

    @staticmethod
    def _wrap_encode_ae(value: str) -> bytes:
        """Return the AE title `value` as 16 bytes, padded with spaces."""
        return value.encode("ascii").ljust(16, b" ")

    @staticmethod
    def _wrap_decode_ae(bytestream: bytes) -> str:
        """Return the AE title in `bytestream` without padding."""
        return decode_bytes(bytes(bytestream)).strip()

    def _wrap_generate_items(self, bytestream: bytes) -> list[PDUItem]:
        """Return a list of decoded variable items from `bytestream`."""
        # The item header is the same for PDUs and items
        holder = UserInformationItem()
        return holder._wrap_generate_items(bytestream)

    @staticmethod
    def _wrap_pack(value: Any, packer: Callable[[Any], bytes]) -> bytes:
        """Return `value` encoded using `packer`."""
        return packer(value)

    @staticmethod
    def _wrap_unpack(bytestream: bytes, unpacker: Callable[[bytes], tuple[Any]]) -> Any:
        """Return the first value from `unpacker` run on `bytestream`."""
        return unpacker(bytestream)[0]


class _AssociatePDU(PDU):
    """Shared fields of the A-ASSOCIATE-RQ and A-ASSOCIATE-AC PDUs.

    **Encoding**

    +--------+-------------+-------------------------+
    | Offset | Length      | Description             |
    +========+=============+=========================+
    | 0      | 1           | PDU type                |
    | 1      | 1           | Reserved                |
    | 2      | 4           | PDU length              |
    | 6      | 2           | Protocol version        |
    | 8      | 2           | Reserved                |
    | 10     | 16          | Called AE title         |
    | 26     | 16          | Calling AE title        |
    | 42     | 32          | Reserved                |
    | 74     | Variable    | Variable items          |
    +--------+-------------+-------------------------+

    In the A-ASSOCIATE-AC the AE title fields are reserved but should be
    sent with the values from the corresponding request.
    """

    _item_cls: type[PDUItem] = PDUItem

    def __init__(self) -> None:
        self.protocol_version: int = PROTOCOL_VERSION
        self.called_ae_title: str = ""
        self.calling_ae_title: str = ""
        self.variable_items: list[PDUItem] = []

    def decode(self, bytestream: bytes) -> None:
        if len(bytestream) < 74:
            raise MalformedPDU(
                f"An {type(self).__name__} PDU must be at least 74 bytes long"
            )

        super().decode(bytestream)

    @property
    def _decoders(self) -> _DecoderType:
        return [
            ((6, 2), "protocol_version", self._wrap_unpack, [UNPACK_UINT2]),
            ((10, 16), "called_ae_title", self._wrap_decode_ae, []),
            ((26, 16), "calling_ae_title", self._wrap_decode_ae, []),
            ((74, None), "variable_items", self._wrap_generate_items, []),
        ]

    @property
    def _encoders(self) -> _EncoderType:
        return [
            ("pdu_type", PACK_UCHAR, []),
            (None, self._wrap_pack, [0x00, PACK_UCHAR]),
            ("pdu_length", PACK_UINT4, []),
            ("protocol_version", PACK_UINT2, []),
            (None, self._wrap_pack, [0x0000, PACK_UINT2]),
            ("called_ae_title", self._wrap_encode_ae, []),
            ("calling_ae_title", self._wrap_encode_ae, []),
            (None, self._wrap_bytes, [bytes(32)]),
            ("variable_items", self._wrap_encode_items, []),
        ]

    @property
    def pdu_length(self) -> int:
        return 68 + sum(len(item) for item in self.variable_items)

    @property
    def application_context_name(self) -> UID | None:
        """Return the *Application Context Name*, if present."""
        for item in self.variable_items:
            if isinstance(item, ApplicationContextItem):
                return item.application_context_name

        return None

    @property
    def user_information(self) -> UserInformationItem | None:
        """Return the User Information Item, if present."""
        for item in self.variable_items:
            if isinstance(item, UserInformationItem):
                return item

        return None

    @property
    def presentation_context(self) -> list[Any]:
        """Return the Presentation Context Items, in the order sent."""
        return [ii for ii in self.variable_items if isinstance(ii, self._item_cls)]

    def __str__(self) -> str:
        s = [
            f"{type(self).__name__}: {self.calling_ae_title or '(none)'} -> "
            f"{self.called_ae_title or '(none)'}",
            f"  Application Context Name: {self.application_context_name}",
        ]
        for cx in self.presentation_context:
            s.extend(f"  {line}" for line in str(cx).splitlines())

        user_info = self.user_information
        if user_info:
            s.append(f"  Maximum Length: {user_info.maximum_length}")
            s.append(
                f"  Implementation Class UID: {user_info.implementation_class_uid}"
            )

        return "\n".join(s)


class A_ASSOCIATE_RQ(_AssociatePDU):
    """An A-ASSOCIATE-RQ PDU.

    Sent by the association requestor to propose an association and its
    presentation contexts.

    References
    ----------

    * DICOM Standard, Part 8, Section 9.3.2
    """

    _item_cls = PresentationContextItemRQ

    @classmethod
    def build(
        cls,
        called_ae_title: str,
        calling_ae_title: str,
        contexts: list["PresentationContext"],
        user_info: UserInformationItem,
    ) -> "A_ASSOCIATE_RQ":
        """Return a new A-ASSOCIATE-RQ with the given parameters."""
        pdu = cls()
        pdu.called_ae_title = called_ae_title
        pdu.calling_ae_title = calling_ae_title
        pdu.variable_items.append(ApplicationContextItem(APPLICATION_CONTEXT_NAME))
        for cx in contexts:
            pdu.variable_items.append(PresentationContextItemRQ.from_context(cx))

        pdu.variable_items.append(user_info)

        return pdu


class A_ASSOCIATE_AC(_AssociatePDU):
    """An A-ASSOCIATE-AC PDU.

    Sent by the association acceptor with the outcome of every proposed
    presentation context.

    References
    ----------

    * DICOM Standard, Part 8, Section 9.3.3
    """

    _item_cls = PresentationContextItemAC

    @classmethod
    def build(
        cls,
        request: A_ASSOCIATE_RQ,
        contexts: list["PresentationContext"],
        user_info: UserInformationItem,
    ) -> "A_ASSOCIATE_AC":
        """Return a new A-ASSOCIATE-AC in response to `request`."""
        pdu = cls()
        pdu.called_ae_title = request.called_ae_title
        pdu.calling_ae_title = request.calling_ae_title
        pdu.variable_items.append(ApplicationContextItem(APPLICATION_CONTEXT_NAME))
        for cx in contexts:
            pdu.variable_items.append(PresentationContextItemAC.from_context(cx))

        pdu.variable_items.append(user_info)

        return pdu


class A_ASSOCIATE_RJ(PDU):
    """An A-ASSOCIATE-RJ PDU.

    **Encoding**

    +--------+-------------+-------------------------+
    | Offset | Length      | Description             |
    +========+=============+=========================+
    | 0      | 1           | PDU type                |
    | 1      | 1           | Reserved                |
    | 2      | 4           | PDU length (4)          |
    | 6      | 1           | Reserved                |
    | 7      | 1           | Result                  |
    | 8      | 1           | Source                  |
    | 9      | 1           | Reason/diagnostic       |
    +--------+-------------+-------------------------+

    References
    ----------

    * DICOM Standard, Part 8, Section 9.3.4
    """

    def __init__(self, result: int = 0x01, source: int = 0x01, reason: int = 0x01) -> None:
        self.result = result
        self.source = source
        self.reason_diagnostic = reason

    @property
    def _decoders(self) -> _DecoderType:
        return [
            ((7, 1), "result", self._wrap_unpack, [UNPACK_UCHAR]),
            ((8, 1), "source", self._wrap_unpack, [UNPACK_UCHAR]),
            ((9, 1), "reason_diagnostic", self._wrap_unpack, [UNPACK_UCHAR]),
        ]

    @property
    def _encoders(self) -> _EncoderType:
        return [
            ("pdu_type", PACK_UCHAR, []),
            (None, self._wrap_pack, [0x00, PACK_UCHAR]),
            ("pdu_length", PACK_UINT4, []),
            (None, self._wrap_pack, [0x00, PACK_UCHAR]),
            ("result", PACK_UCHAR, []),
            ("source", PACK_UCHAR, []),
            ("reason_diagnostic", PACK_UCHAR, []),
        ]

    @property
    def pdu_length(self) -> int:
        return 4

    @property
    def result_str(self) -> str:
        """Return a description of the *Result* field value."""
        return _REJECT_RESULT.get(self.result, "(Reserved)")

    @property
    def source_str(self) -> str:
        """Return a description of the *Source* field value."""
        return _REJECT_SOURCE.get(self.source, "(Reserved)")

    @property
    def reason_str(self) -> str:
        """Return a description of the *Reason/Diag.* field value."""
        reasons = _REJECT_REASON.get(self.source, {})
        return reasons.get(self.reason_diagnostic, "(Reserved)")

    def __str__(self) -> str:
        return (
            f"A-ASSOCIATE-RJ: {self.result_str}, {self.source_str}, "
            f"{self.reason_str}"
        )


class P_DATA_TF(PDU):
    """A P-DATA-TF PDU.

    Carries one or more Presentation Data Value items.

    References
    ----------

    * DICOM Standard, Part 8, Section 9.3.5
    """

    def __init__(self, items: list[PresentationDataValueItem] | None = None) -> None:
        self.presentation_data_value_items: list[PresentationDataValueItem] = (
            items or []
        )

    @property
    def _decoders(self) -> _DecoderType:
        return [((6, None), "presentation_data_value_items", self._wrap_pdvs, [])]

    @property
    def _encoders(self) -> _EncoderType:
        return [
            ("pdu_type", PACK_UCHAR, []),
            (None, self._wrap_pack, [0x00, PACK_UCHAR]),
            ("pdu_length", PACK_UINT4, []),
            ("presentation_data_value_items", self._wrap_encode_items, []),
        ]

    @staticmethod
    def _generate_pdvs(bytestream: bytes) -> Iterator[bytes]:
        """Yield each encoded PDV item in `bytestream`.

        Unlike the other items the PDV item has no type field and a 4 byte
        *Item Length*.
        """
        offset = 0
        total = len(bytestream)
        while offset < total:
            if total - offset < 4:
                raise MalformedPDU("Insufficient data for a PDV item length")

            item_length = UNPACK_UINT4(bytestream[offset : offset + 4])[0]
            item_data = bytestream[offset : offset + 4 + item_length]
            if len(item_data) != 4 + item_length:
                raise MalformedPDU(
                    f"The PDV item declares a length of {item_length} bytes but "
                    f"only {len(item_data) - 4} are available"
                )

            yield item_data
            offset += 4 + item_length

    def _wrap_pdvs(self, bytestream: bytes) -> list[PresentationDataValueItem]:
        items = []
        for item_data in self._generate_pdvs(bytestream):
            item = PresentationDataValueItem()
            item.decode(item_data)
            items.append(item)

        if not items:
            raise MalformedPDU("A P-DATA-TF PDU must contain at least one PDV item")

        return items

    @property
    def pdu_length(self) -> int:
        return sum(len(item) for item in self.presentation_data_value_items)

    def __str__(self) -> str:
        s = [f"P-DATA-TF: {len(self.presentation_data_value_items)} PDV(s)"]
        s.extend(f"  {item}" for item in self.presentation_data_value_items)
        return "\n".join(s)


class _ReleasePDU(PDU):
    """Shared fields of the A-RELEASE-RQ and A-RELEASE-RP PDUs.

    Both consist of the header and 4 reserved bytes.
    """

    @property
    def _decoders(self) -> _DecoderType:
        return []

    @property
    def _encoders(self) -> _EncoderType:
        return [
            ("pdu_type", PACK_UCHAR, []),
            (None, self._wrap_pack, [0x00, PACK_UCHAR]),
            ("pdu_length", PACK_UINT4, []),
            (None, self._wrap_pack, [0x00000000, PACK_UINT4]),
        ]

    @property
    def pdu_length(self) -> int:
        return 4

    def __str__(self) -> str:
        return type(self).__name__.replace("_", "-")


class A_RELEASE_RQ(_ReleasePDU):
    """An A-RELEASE-RQ PDU.

    References
    ----------

    * DICOM Standard, Part 8, Section 9.3.6
    """


class A_RELEASE_RP(_ReleasePDU):
    """An A-RELEASE-RP PDU.

    References
    ----------

    * DICOM Standard, Part 8, Section 9.3.7
    """


class A_ABORT_RQ(PDU):
    """An A-ABORT PDU.

    **Encoding**

    +--------+-------------+-------------------------+
    | Offset | Length      | Description             |
    +========+=============+=========================+
    | 0      | 1           | PDU type                |
    | 1      | 1           | Reserved                |
    | 2      | 4           | PDU length (4)          |
    | 6      | 2           | Reserved                |
    | 8      | 1           | Source                  |
    | 9      | 1           | Reason/diagnostic       |
    +--------+-------------+-------------------------+

    References
    ----------

    * DICOM Standard, Part 8, Section 9.3.8
    """

    def __init__(self, source: int = 0x00, reason: int = 0x00) -> None:
        self.source = source
        self.reason_diagnostic = reason

    @property
    def _decoders(self) -> _DecoderType:
        return [
            ((8, 1), "source", self._wrap_unpack, [UNPACK_UCHAR]),
            ((9, 1), "reason_diagnostic", self._wrap_unpack, [UNPACK_UCHAR]),
        ]

    @property
    def _encoders(self) -> _EncoderType:
        return [
            ("pdu_type", PACK_UCHAR, []),
            (None, self._wrap_pack, [0x00, PACK_UCHAR]),
            ("pdu_length", PACK_UINT4, []),
            (None, self._wrap_pack, [0x0000, PACK_UINT2]),
            ("source", PACK_UCHAR, []),
            ("reason_diagnostic", PACK_UCHAR, []),
        ]

    @property
    def pdu_length(self) -> int:
        return 4

    @property
    def source_str(self) -> str:
        """Return a description of the *Source* field value."""
        return _ABORT_SOURCE.get(self.source, "(Reserved)")

    @property
    def reason_str(self) -> str:
        """Return a description of the *Reason/Diag.* field value."""
        if self.source == 0x02:
            return _ABORT_REASON.get(self.reason_diagnostic, "(Reserved)")

        return "No reason given"

    def __str__(self) -> str:
        return f"A-ABORT: {self.source_str}, {self.reason_str}"


_REJECT_RESULT = {0x01: "Rejected (Permanent)", 0x02: "Rejected (Transient)"}
_REJECT_SOURCE = {
    0x01: "Service User",
    0x02: "Service Provider (ACSE)",
    0x03: "Service Provider (Presentation)",
}
_REJECT_REASON = {
    0x01: {
        0x01: "No reason given",
        0x02: "Application context name not supported",
        0x03: "Calling AE title not recognised",
        0x07: "Called AE title not recognised",
    },
    0x02: {0x01: "No reason given", 0x02: "Protocol version not supported"},
    0x03: {0x01: "Temporary congestion", 0x02: "Local limit exceeded"},
}
_ABORT_SOURCE = {
    0x00: "DUL service-user",
    0x01: "Reserved",
    0x02: "DUL service-provider",
}
_ABORT_REASON = {
    0x00: "No reason given",
    0x01: "Unrecognised PDU",
    0x02: "Unexpected PDU",
    0x03: "Reserved",
    0x04: "Unrecognised PDU parameter",
    0x05: "Unexpected PDU parameter",
    0x06: "Invalid PDU parameter value",
}

PDU_TYPES: dict[int, type[PDU]] = {
    0x01: A_ASSOCIATE_RQ,
    0x02: A_ASSOCIATE_AC,
    0x03: A_ASSOCIATE_RJ,
    0x04: P_DATA_TF,
    0x05: A_RELEASE_RQ,
    0x06: A_RELEASE_RP,
    0x07: A_ABORT_RQ,
}

_PDU_TO_TYPE = {vv: kk for kk, vv in PDU_TYPES.items()}

# The exact PDU Length for the fixed size PDUs
_FIXED_LENGTHS = {0x03: 4, 0x05: 4, 0x06: 4, 0x07: 4}


def encode_pdu(pdu: PDU) -> bytes:
    """Return `pdu` encoded as :class:`bytes`."""
    return pdu.encode()


def decode_pdu(bytestream: bytes) -> PDU:
    """Return the PDU decoded from `bytestream`.

    Parameters
    ----------
    bytestream : bytes
        A single complete encoded PDU, including its header.

    Returns
    -------
    pdu.PDU
        The decoded PDU.

    Raises
    ------
    exceptions.MalformedPDU
        If `bytestream` is shorter or longer than the header declares, the
        *PDU Type* isn't recognised or the contents can't be decoded.
    """
    if len(bytestream) < 6:
        raise MalformedPDU(
            f"Insufficient data for a PDU header, got {len(bytestream)} bytes"
        )

    pdu_type = bytestream[0]
    pdu_length = UNPACK_UINT4(bytestream[2:6])[0]
    if pdu_type not in PDU_TYPES:
        raise MalformedPDU(f"Unrecognised PDU type 0x{pdu_type:02X}")

    if len(bytestream) - 6 != pdu_length:
        raise MalformedPDU(
            f"The PDU declares a length of {pdu_length} bytes but "
            f"{len(bytestream) - 6} were received"
        )

    expected = _FIXED_LENGTHS.get(pdu_type)
    if expected is not None and pdu_length != expected:
        raise MalformedPDU(
            f"Invalid PDU length {pdu_length} for PDU type 0x{pdu_type:02X}"
        )

    pdu = PDU_TYPES[pdu_type]()
    pdu.decode(bytestream)

    return pdu


def read_pdu(recv: Callable[[int], bytes], max_length: int = 0) -> bytes:
    """Read one complete encoded PDU using `recv`.

    The length of a P-DATA-TF PDU is checked against `max_length` before
    its body is read, so an oversized PDU is never buffered.

    Parameters
    ----------
    recv : callable
        A callable that takes the number of bytes to read and returns up to
        that many bytes, returning fewer only if the stream has ended.
    max_length : int, optional
        The largest P-DATA-TF PDU length that will be accepted, ``0``
        (default) for unlimited.

    Returns
    -------
    bytes
        The encoded PDU, including its header.

    Raises
    ------
    ConnectionError
        If the stream ended before any part of the header was read.
    exceptions.MalformedPDU
        If the stream ended part way through the PDU or a P-DATA-TF PDU
        is longer than `max_length`.
    """
    header = recv(6)
    if not header:
        raise ConnectionError("The peer closed the connection")

    if len(header) < 6:
        raise MalformedPDU("The stream ended part way through a PDU header")

    pdu_length = UNPACK_UINT4(header[2:6])[0]
    if header[0] == 0x04 and max_length and pdu_length > max_length:
        raise MalformedPDU(
            f"The P-DATA-TF PDU length of {pdu_length} bytes exceeds the "
            f"maximum of {max_length} bytes"
        )

    body = recv(pdu_length) if pdu_length else b""
    if len(body) < pdu_length:
        raise MalformedPDU(
            f"The stream ended after {len(body)} of {pdu_length} PDU bytes"
        )

    return bytes(header) + bytes(body)
