"""DICOM Upper Layer PDU Items and Sub-items.

**A-ASSOCIATE-RQ and -AC PDU Items**

- ApplicationContextItem
- PresentationContextItemRQ / PresentationContextItemAC

  - AbstractSyntaxSubItem
  - TransferSyntaxSubItem
- UserInformationItem

  - MaximumLengthSubItem
  - ImplementationClassUIDSubItem
  - ImplementationVersionNameSubItem
  - AsynchronousOperationsWindowSubItem
  - SCP_SCU_RoleSelectionSubItem
  - SOPClassExtendedNegotiationSubItem
  - UnknownSubItem (any other user information sub-item, kept as raw bytes)

**P-DATA-TF PDU Items**

- PresentationDataValueItem
"""

import logging
from struct import Struct, error as StructError
from typing import Any, Callable, Iterator, TYPE_CHECKING

from pydicom.uid import UID

from dimsenet.exceptions import MalformedPDU
from dimsenet.utils import decode_bytes

if TYPE_CHECKING:  # pragma: no cover
    from dimsenet.presentation import PresentationContext


LOGGER = logging.getLogger(__name__)

# Predefine some structs to make decoding and encoding faster
UCHAR = Struct("B")
UINT2 = Struct(">H")
UINT4 = Struct(">I")

UNPACK_UCHAR = UCHAR.unpack
UNPACK_UINT2 = UINT2.unpack
UNPACK_UINT4 = UINT4.unpack

PACK_UCHAR = UCHAR.pack
PACK_UINT2 = UINT2.pack
PACK_UINT4 = UINT4.pack


_DecoderType = list[tuple[tuple[int, int | None], str, Callable, list[Any]]]
_EncoderType = list[tuple[str | None, Callable, list[Any]]]


class PDUItem:
    """Base class for PDU Items and Sub-items.

    Subclasses describe their fields with two tables, ``_decoders`` and
    ``_encoders``, which :meth:`decode`, :meth:`encode` and ``__eq__`` are
    built from.

    See Also
    --------
    pdu.PDU
    """

    def decode(self, bytestream: bytes) -> None:
        """Decode `bytestream` and use the result to set the field values of
        the PDU item.

        Parameters
        ----------
        bytestream : bytes
            The encoded item, including the item header.

        Raises
        ------
        exceptions.MalformedPDU
            If the item can't be decoded.
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
                f"Unable to decode the {type(self).__name__}: {exc}"
            ) from exc

    @property
    def _decoders(self) -> _DecoderType:
        """Return an iterable of ((offset, length), attr_name, func, args)."""
        raise NotImplementedError

    def encode(self) -> bytes:
        """Return the encoded item as :class:`bytes`."""
        bytestream = bytearray()
        for attr_name, func, args in self._encoders:
            # A field without an attribute name is reserved
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
        """Return the total length of the encoded item."""
        return 4 + self.item_length

    @staticmethod
    def _generate_items(bytestream: bytes) -> Iterator[tuple[int, bytes]]:
        """Yield ``(item type, encoded item)`` for each item in `bytestream`.

        Items and sub-items (other than the Presentation Data Value Item) all
        share the same header::

            +--------+-------------+-------------+
            | Offset | Length      | Description |
            +========+=============+=============+
            | 0      | 1           | Item type   |
            | 1      | 1           | Reserved    |
            | 2      | 2           | Item length |
            | 4      | Item length | Item data   |
            +--------+-------------+-------------+

        Raises
        ------
        exceptions.MalformedPDU
            If an item's declared length runs past the end of `bytestream`.

        References
        ----------

        * DICOM Standard, Part 8, Section 9.3
        """
        offset = 0
        total = len(bytestream)
        while offset < total:
            if total - offset < 4:
                raise MalformedPDU("Insufficient data for a PDU item header")

            item_type = bytestream[offset]
            item_length = UNPACK_UINT2(bytestream[offset + 2 : offset + 4])[0]
            item_data = bytestream[offset : offset + 4 + item_length]
            if len(item_data) != 4 + item_length:
                raise MalformedPDU(
                    f"The PDU item (type 0x{item_type:02X}) declares a length of "
                    f"{item_length} bytes but only {len(item_data) - 4} are "
                    "available"
                )

            yield item_type, item_data
            offset += 4 + item_length

    @property
    def item_length(self) -> int:
        """Return the item's *Item Length* field value as :class:`int`."""
        raise NotImplementedError

    @property
    def item_type(self) -> int:
        """Return the item's *Item Type* field value as :class:`int`."""
        return _TYPE_TO_PDU_ITEM[type(self)]

    @staticmethod
    def _wrap_bytes(bytestream: bytes) -> bytes:
        """Return `bytestream` as :class:`bytes`."""
        return bytes(bytestream)

    @staticmethod
    def _wrap_encode_items(items: list["PDUItem"]) -> bytes:
        """Return `items` encoded as :class:`bytes`."""
        return b"".join(item.encode() for item in items)

    @staticmethod
    def _wrap_encode_uid(value: UID) -> bytes:
        """Return `value` as ASCII encoded :class:`bytes`.

        UIDs used in negotiation are never padded to even length (Part 8,
        Annex F).
        """
        return value.encode("ascii", errors="strict")

    @staticmethod
    def _wrap_decode_uid(bytestream: bytes) -> UID:
        """Return `bytestream` as a :class:`~pydicom.uid.UID`.

        Any trailing null padding is removed. Bytes that aren't ASCII are
        replaced rather than raising, so a malformed UID from a peer can be
        rejected during negotiation instead of aborting the association.
        """
        if bytestream[-1:] == b"\x00":
            bytestream = bytestream[:-1]

        return UID(bytes(bytestream).decode("ascii", errors="replace"))

    @staticmethod
    def _wrap_pack(value: Any, packer: Callable[[Any], bytes]) -> bytes:
        """Return `value` encoded using `packer`."""
        return packer(value)

    @staticmethod
    def _wrap_unpack(bytestream: bytes, unpacker: Callable[[bytes], tuple[Any]]) -> Any:
        """Return the first value from `unpacker` run on `bytestream`."""
        return unpacker(bytestream)[0]

    def _wrap_generate_items(self, bytestream: bytes) -> list["PDUItem"]:
        """Return a list of decoded items from `bytestream`."""
        items: list[PDUItem] = []
        for item_type, item_bytes in self._generate_items(bytestream):
            item_cls = PDU_ITEM_TYPES.get(item_type)
            if item_cls is None:
                item = UnknownSubItem(item_type)
            else:
                item = item_cls()

            item.decode(item_bytes)
            items.append(item)

        return items


# A-ASSOCIATE-RQ and -AC items
class ApplicationContextItem(PDUItem):
    """An Application Context Item.

    Only one application context name is defined by the current version of
    the DICOM Standard, ``1.2.840.10008.3.1.1.1``.

    Attributes
    ----------
    application_context_name : pydicom.uid.UID
        The application context name.

    References
    ----------

    * DICOM Standard, Part 8, Section 9.3.2.1 and Annex A.2.1
    """

    def __init__(self, name: str = "") -> None:
        self.application_context_name = UID(name)

    @property
    def _decoders(self) -> _DecoderType:
        return [((4, None), "application_context_name", self._wrap_decode_uid, [])]

    @property
    def _encoders(self) -> _EncoderType:
        return [
            ("item_type", PACK_UCHAR, []),
            (None, self._wrap_pack, [0x00, PACK_UCHAR]),
            ("item_length", PACK_UINT2, []),
            ("application_context_name", self._wrap_encode_uid, []),
        ]

    @property
    def item_length(self) -> int:
        return len(self.application_context_name)

    def __str__(self) -> str:
        return f"Application Context Name: {self.application_context_name}"


class AbstractSyntaxSubItem(PDUItem):
    """An Abstract Syntax Sub-item, the SOP class of a presentation context.

    References
    ----------

    * DICOM Standard, Part 8, Section 9.3.2.2.1
    """

    def __init__(self, uid: str = "") -> None:
        self.abstract_syntax_name = UID(uid)

    @property
    def _decoders(self) -> _DecoderType:
        return [((4, None), "abstract_syntax_name", self._wrap_decode_uid, [])]

    @property
    def _encoders(self) -> _EncoderType:
        return [
            ("item_type", PACK_UCHAR, []),
            (None, self._wrap_pack, [0x00, PACK_UCHAR]),
            ("item_length", PACK_UINT2, []),
            ("abstract_syntax_name", self._wrap_encode_uid, []),
        ]

    @property
    def item_length(self) -> int:
        return len(self.abstract_syntax_name)


class TransferSyntaxSubItem(PDUItem):
    """A Transfer Syntax Sub-item.

    In an A-ASSOCIATE-RQ there may be one or more per presentation context,
    in an A-ASSOCIATE-AC there's at most one.

    References
    ----------

    * DICOM Standard, Part 8, Sections 9.3.2.2.2 and 9.3.3.2.1
    """

    def __init__(self, uid: str = "") -> None:
        self.transfer_syntax_name = UID(uid)

    @property
    def _decoders(self) -> _DecoderType:
        return [((4, None), "transfer_syntax_name", self._wrap_decode_uid, [])]

    @property
    def _encoders(self) -> _EncoderType:
        return [
            ("item_type", PACK_UCHAR, []),
            (None, self._wrap_pack, [0x00, PACK_UCHAR]),
            ("item_length", PACK_UINT2, []),
            ("transfer_syntax_name", self._wrap_encode_uid, []),
        ]

    @property
    def item_length(self) -> int:
        return len(self.transfer_syntax_name)


class PresentationContextItemRQ(PDUItem):
    """A Presentation Context Item as used in the A-ASSOCIATE-RQ.

    **Encoding**

    +--------+-------------+--------------------------------+
    | Offset | Length      | Description                    |
    +========+=============+================================+
    | 0      | 1           | Item type (0x20)               |
    | 1      | 1           | Reserved                       |
    | 2      | 2           | Item length                    |
    | 4      | 1           | Presentation context ID        |
    | 5      | 3           | Reserved                       |
    | 8      | Variable    | Abstract/Transfer Syntax items |
    +--------+-------------+--------------------------------+

    References
    ----------

    * DICOM Standard, Part 8, Section 9.3.2.2
    """

    def __init__(self) -> None:
        self.presentation_context_id: int = 0
        self.abstract_transfer_syntax_sub_items: list[PDUItem] = []

    @classmethod
    def from_context(cls, context: "PresentationContext") -> "PresentationContextItemRQ":
        """Return a new item built from the proposed `context`."""
        item = cls()
        item.presentation_context_id = context.context_id
        item.abstract_transfer_syntax_sub_items.append(
            AbstractSyntaxSubItem(context.abstract_syntax)
        )
        for syntax in context.transfer_syntax:
            item.abstract_transfer_syntax_sub_items.append(
                TransferSyntaxSubItem(syntax)
            )

        return item

    def to_context(self) -> "PresentationContext":
        """Return the item as a proposed presentation context."""
        from dimsenet.presentation import PresentationContext

        return PresentationContext(
            self.presentation_context_id,
            self.abstract_syntax,
            self.transfer_syntax,
        )

    @property
    def _decoders(self) -> _DecoderType:
        return [
            ((4, 1), "presentation_context_id", self._wrap_unpack, [UNPACK_UCHAR]),
            (
                (8, None),
                "abstract_transfer_syntax_sub_items",
                self._wrap_generate_items,
                [],
            ),
        ]

    @property
    def _encoders(self) -> _EncoderType:
        return [
            ("item_type", PACK_UCHAR, []),
            (None, self._wrap_pack, [0x00, PACK_UCHAR]),
            ("item_length", PACK_UINT2, []),
            ("presentation_context_id", PACK_UCHAR, []),
            (None, self._wrap_bytes, [b"\x00\x00\x00"]),
            ("abstract_transfer_syntax_sub_items", self._wrap_encode_items, []),
        ]

    @property
    def abstract_syntax(self) -> UID | None:
        """Return the proposed abstract syntax, or ``None`` if missing."""
        for item in self.abstract_transfer_syntax_sub_items:
            if isinstance(item, AbstractSyntaxSubItem):
                return item.abstract_syntax_name

        return None

    @property
    def transfer_syntax(self) -> list[UID]:
        """Return the proposed transfer syntaxes, in proposal order."""
        return [
            item.transfer_syntax_name
            for item in self.abstract_transfer_syntax_sub_items
            if isinstance(item, TransferSyntaxSubItem)
        ]

    @property
    def item_length(self) -> int:
        return 4 + sum(len(ii) for ii in self.abstract_transfer_syntax_sub_items)

    def __str__(self) -> str:
        s = [
            f"Presentation Context ID: {self.presentation_context_id}",
            f"  Abstract Syntax: {self.abstract_syntax}",
        ]
        s.extend(f"  Transfer Syntax: {ts}" for ts in self.transfer_syntax)
        return "\n".join(s)


class PresentationContextItemAC(PDUItem):
    """A Presentation Context Item as used in the A-ASSOCIATE-AC.

    **Encoding**

    +--------+-------------+--------------------------------+
    | Offset | Length      | Description                    |
    +========+=============+================================+
    | 0      | 1           | Item type (0x21)               |
    | 1      | 1           | Reserved                       |
    | 2      | 2           | Item length                    |
    | 4      | 1           | Presentation context ID        |
    | 5      | 1           | Reserved                       |
    | 6      | 1           | Result/reason                  |
    | 7      | 1           | Reserved                       |
    | 8      | Variable    | Transfer Syntax sub-item       |
    +--------+-------------+--------------------------------+

    References
    ----------

    * DICOM Standard, Part 8, Section 9.3.3.2
    """

    def __init__(self) -> None:
        self.presentation_context_id: int = 0
        self.result_reason: int = 0
        self.transfer_syntax_sub_item: list[PDUItem] = []

    @classmethod
    def from_context(cls, context: "PresentationContext") -> "PresentationContextItemAC":
        """Return a new item built from the negotiated `context`."""
        item = cls()
        item.presentation_context_id = context.context_id
        item.result_reason = context.result if context.result is not None else 0x02
        # A rejected context still carries a (meaningless) transfer syntax
        #   sub-item, Part 8 Section 9.3.3.2
        syntax = context.transfer_syntax[0] if context.transfer_syntax else ""
        item.transfer_syntax_sub_item = [TransferSyntaxSubItem(syntax)]

        return item

    @property
    def _decoders(self) -> _DecoderType:
        return [
            ((4, 1), "presentation_context_id", self._wrap_unpack, [UNPACK_UCHAR]),
            ((6, 1), "result_reason", self._wrap_unpack, [UNPACK_UCHAR]),
            ((8, None), "transfer_syntax_sub_item", self._wrap_generate_items, []),
        ]

    @property
    def _encoders(self) -> _EncoderType:
        return [
            ("item_type", PACK_UCHAR, []),
            (None, self._wrap_pack, [0x00, PACK_UCHAR]),
            ("item_length", PACK_UINT2, []),
            ("presentation_context_id", PACK_UCHAR, []),
            (None, self._wrap_pack, [0x00, PACK_UCHAR]),
            ("result_reason", PACK_UCHAR, []),
            (None, self._wrap_pack, [0x00, PACK_UCHAR]),
            ("transfer_syntax_sub_item", self._wrap_encode_items, []),
        ]

    @property
    def result(self) -> int:
        """Return the *Result/reason* field value."""
        return self.result_reason

    @property
    def result_str(self) -> str:
        """Return a description of the *Result/reason* field value."""
        return _CONTEXT_RESULTS.get(self.result_reason, "(Reserved)")

    @property
    def transfer_syntax(self) -> UID | None:
        """Return the accepted transfer syntax, or ``None`` if rejected."""
        if self.result_reason != 0x00:
            return None

        for item in self.transfer_syntax_sub_item:
            if isinstance(item, TransferSyntaxSubItem):
                return item.transfer_syntax_name

        return None

    @property
    def item_length(self) -> int:
        return 4 + sum(len(ii) for ii in self.transfer_syntax_sub_item)

    def __str__(self) -> str:
        return (
            f"Presentation Context ID: {self.presentation_context_id}\n"
            f"  Result/Reason: {self.result_str}\n"
            f"  Transfer Syntax: {self.transfer_syntax}"
        )


_CONTEXT_RESULTS = {
    0x00: "Accepted",
    0x01: "User Rejection",
    0x02: "Provider Rejection",
    0x03: "Abstract Syntax Not Supported",
    0x04: "Transfer Syntax Not Supported",
}


class UserInformationItem(PDUItem):
    """A User Information Item.

    Holds the user information sub-items. Convenience properties give access
    to the sub-items used during negotiation.

    References
    ----------

    * DICOM Standard, Part 8, Section 9.3.2.3 and Part 7, Annex D.3
    """

    def __init__(self) -> None:
        self.user_data: list[PDUItem] = []

    @property
    def _decoders(self) -> _DecoderType:
        return [((4, None), "user_data", self._wrap_generate_items, [])]

    @property
    def _encoders(self) -> _EncoderType:
        return [
            ("item_type", PACK_UCHAR, []),
            (None, self._wrap_pack, [0x00, PACK_UCHAR]),
            ("item_length", PACK_UINT2, []),
            ("user_data", self._wrap_encode_items, []),
        ]

    @property
    def item_length(self) -> int:
        return sum(len(ii) for ii in self.user_data)

    def _first(self, cls: type) -> Any:
        for item in self.user_data:
            if isinstance(item, cls):
                return item

        return None

    @property
    def maximum_length(self) -> int | None:
        """Return the *Maximum Length Received*, or ``None`` if absent."""
        item = self._first(MaximumLengthSubItem)
        return item.maximum_length_received if item else None

    @property
    def implementation_class_uid(self) -> UID | None:
        """Return the *Implementation Class UID*, or ``None`` if absent."""
        item = self._first(ImplementationClassUIDSubItem)
        return item.implementation_class_uid if item else None

    @property
    def implementation_version_name(self) -> str | None:
        """Return the *Implementation Version Name*, or ``None`` if absent."""
        item = self._first(ImplementationVersionNameSubItem)
        return item.implementation_version_name if item else None

    @property
    def async_ops_window(self) -> "AsynchronousOperationsWindowSubItem | None":
        """Return the Asynchronous Operations Window sub-item, if present."""
        return self._first(AsynchronousOperationsWindowSubItem)

    @property
    def role_selection(self) -> dict[UID, "SCP_SCU_RoleSelectionSubItem"]:
        """Return the SCP/SCU Role Selection sub-items keyed by SOP class."""
        return {
            item.sop_class_uid: item
            for item in self.user_data
            if isinstance(item, SCP_SCU_RoleSelectionSubItem)
        }

    @property
    def ext_neg(self) -> list["SOPClassExtendedNegotiationSubItem"]:
        """Return the SOP Class Extended Negotiation sub-items."""
        return [
            item
            for item in self.user_data
            if isinstance(item, SOPClassExtendedNegotiationSubItem)
        ]


class MaximumLengthSubItem(PDUItem):
    """A Maximum Length Sub-item.

    The maximum length of the variable field of the P-DATA-TF PDUs the
    sender is prepared to receive, ``0`` for unlimited.

    References
    ----------

    * DICOM Standard, Part 8, Annex D.1
    """

    def __init__(self, maximum_length: int = 0) -> None:
        self.maximum_length_received = maximum_length

    @property
    def _decoders(self) -> _DecoderType:
        return [((4, 4), "maximum_length_received", self._wrap_unpack, [UNPACK_UINT4])]

    @property
    def _encoders(self) -> _EncoderType:
        return [
            ("item_type", PACK_UCHAR, []),
            (None, self._wrap_pack, [0x00, PACK_UCHAR]),
            ("item_length", PACK_UINT2, []),
            ("maximum_length_received", PACK_UINT4, []),
        ]

    @property
    def item_length(self) -> int:
        return 4


class ImplementationClassUIDSubItem(PDUItem):
    """An Implementation Class UID Sub-item.

    References
    ----------

    * DICOM Standard, Part 7, Annex D.3.3.2.1
    """

    def __init__(self, uid: str = "") -> None:
        self.implementation_class_uid = UID(uid)

    @property
    def _decoders(self) -> _DecoderType:
        return [((4, None), "implementation_class_uid", self._wrap_decode_uid, [])]

    @property
    def _encoders(self) -> _EncoderType:
        return [
            ("item_type", PACK_UCHAR, []),
            (None, self._wrap_pack, [0x00, PACK_UCHAR]),
            ("item_length", PACK_UINT2, []),
            ("implementation_class_uid", self._wrap_encode_uid, []),
        ]

    @property
    def item_length(self) -> int:
        return len(self.implementation_class_uid)


class ImplementationVersionNameSubItem(PDUItem):
    """An Implementation Version Name Sub-item, 1 to 16 characters.

    References
    ----------

    * DICOM Standard, Part 7, Annex D.3.3.2.3
    """

    def __init__(self, name: str = "") -> None:
        self.implementation_version_name = name

    @property
    def _decoders(self) -> _DecoderType:
        return [((4, None), "implementation_version_name", decode_bytes, [])]

    @property
    def _encoders(self) -> _EncoderType:
        return [
            ("item_type", PACK_UCHAR, []),
            (None, self._wrap_pack, [0x00, PACK_UCHAR]),
            ("item_length", PACK_UINT2, []),
            ("implementation_version_name", str.encode, ["ascii"]),
        ]

    @property
    def item_length(self) -> int:
        return len(self.implementation_version_name)


class AsynchronousOperationsWindowSubItem(PDUItem):
    """An Asynchronous Operations Window Sub-item.

    A value of ``0`` for either field means unlimited. If the sub-item isn't
    present then both limits default to ``1``.

    References
    ----------

    * DICOM Standard, Part 7, Annex D.3.3.3
    """

    def __init__(self, invoked: int = 1, performed: int = 1) -> None:
        self.maximum_number_operations_invoked = invoked
        self.maximum_number_operations_performed = performed

    @property
    def _decoders(self) -> _DecoderType:
        return [
            (
                (4, 2),
                "maximum_number_operations_invoked",
                self._wrap_unpack,
                [UNPACK_UINT2],
            ),
            (
                (6, 2),
                "maximum_number_operations_performed",
                self._wrap_unpack,
                [UNPACK_UINT2],
            ),
        ]

    @property
    def _encoders(self) -> _EncoderType:
        return [
            ("item_type", PACK_UCHAR, []),
            (None, self._wrap_pack, [0x00, PACK_UCHAR]),
            ("item_length", PACK_UINT2, []),
            ("maximum_number_operations_invoked", PACK_UINT2, []),
            ("maximum_number_operations_performed", PACK_UINT2, []),
        ]

    @property
    def item_length(self) -> int:
        return 4


class SCP_SCU_RoleSelectionSubItem(PDUItem):
    """An SCP/SCU Role Selection Sub-item.

    References
    ----------

    * DICOM Standard, Part 7, Annex D.3.3.4
    """

    def __init__(self, uid: str = "", scu_role: int = 1, scp_role: int = 0) -> None:
        self.sop_class_uid = UID(uid)
        self.scu_role = scu_role
        self.scp_role = scp_role

    def decode(self, bytestream: bytes) -> None:
        """Decode the variable length SOP class UID then the role fields."""
        if len(bytestream) < 6:
            raise MalformedPDU("Insufficient data for an SCP/SCU Role Selection item")

        uid_length = UNPACK_UINT2(bytestream[4:6])[0]
        if len(bytestream) != 8 + uid_length:
            raise MalformedPDU("Invalid SCP/SCU Role Selection item length")

        self.sop_class_uid = self._wrap_decode_uid(bytestream[6 : 6 + uid_length])
        self.scu_role = bytestream[6 + uid_length]
        self.scp_role = bytestream[7 + uid_length]

    @property
    def _encoders(self) -> _EncoderType:
        return [
            ("item_type", PACK_UCHAR, []),
            (None, self._wrap_pack, [0x00, PACK_UCHAR]),
            ("item_length", PACK_UINT2, []),
            ("uid_length", PACK_UINT2, []),
            ("sop_class_uid", self._wrap_encode_uid, []),
            ("scu_role", PACK_UCHAR, []),
            ("scp_role", PACK_UCHAR, []),
        ]

    @property
    def uid_length(self) -> int:
        return len(self.sop_class_uid)

    @property
    def item_length(self) -> int:
        return 4 + self.uid_length


class SOPClassExtendedNegotiationSubItem(PDUItem):
    """A SOP Class Extended Negotiation Sub-item.

    The *Service Class Application Information* is opaque to the engine.

    References
    ----------

    * DICOM Standard, Part 7, Annex D.3.3.5
    """

    def __init__(self, uid: str = "", app_info: bytes = b"") -> None:
        self.sop_class_uid = UID(uid)
        self.service_class_application_information = app_info

    def decode(self, bytestream: bytes) -> None:
        """Decode the variable length SOP class UID then the application
        information.
        """
        if len(bytestream) < 6:
            raise MalformedPDU(
                "Insufficient data for a SOP Class Extended Negotiation item"
            )

        uid_length = UNPACK_UINT2(bytestream[4:6])[0]
        if len(bytestream) < 6 + uid_length:
            raise MalformedPDU("Invalid SOP Class Extended Negotiation item length")

        self.sop_class_uid = self._wrap_decode_uid(bytestream[6 : 6 + uid_length])
        self.service_class_application_information = bytes(
            bytestream[6 + uid_length :]
        )

    @property
    def _encoders(self) -> _EncoderType:
        return [
            ("item_type", PACK_UCHAR, []),
            (None, self._wrap_pack, [0x00, PACK_UCHAR]),
            ("item_length", PACK_UINT2, []),
            ("uid_length", PACK_UINT2, []),
            ("sop_class_uid", self._wrap_encode_uid, []),
            ("service_class_application_information", self._wrap_bytes, []),
        ]

    @property
    def uid_length(self) -> int:
        return len(self.sop_class_uid)

    @property
    def item_length(self) -> int:
        return 2 + self.uid_length + len(self.service_class_application_information)


class UnknownSubItem(PDUItem):
    """A user information sub-item without a dedicated class.

    Kept as raw bytes so it survives a decode and encode unchanged.
    """

    def __init__(self, item_type: int = 0x00, data: bytes = b"") -> None:
        self._item_type = item_type
        self.item_data = data

    @property
    def _decoders(self) -> _DecoderType:
        return [
            ((0, 1), "_item_type", self._wrap_unpack, [UNPACK_UCHAR]),
            ((4, None), "item_data", self._wrap_bytes, []),
        ]

    @property
    def _encoders(self) -> _EncoderType:
        return [
            ("item_type", PACK_UCHAR, []),
            (None, self._wrap_pack, [0x00, PACK_UCHAR]),
            ("item_length", PACK_UINT2, []),
            ("item_data", self._wrap_bytes, []),
        ]

    @property
    def item_type(self) -> int:
        return self._item_type

    @property
    def item_length(self) -> int:
        return len(self.item_data)


# P-DATA-TF item
class PresentationDataValueItem(PDUItem):
    """A Presentation Data Value Item.

    **Encoding**

    +--------+-------------+-------------------------------+
    | Offset | Length      | Description                   |
    +========+=============+===============================+
    | 0      | 4           | Item length                   |
    | 4      | 1           | Presentation context ID       |
    | 5      | 1           | Message control header        |
    | 6      | Variable    | Message fragment              |
    +--------+-------------+-------------------------------+

    The message control header uses only its two least significant bits:

    - bit 0: ``1`` if the fragment is command information, ``0`` for data
    - bit 1: ``1`` if the fragment is the last of its command or data set

    Attributes
    ----------
    presentation_context_id : int
        The ID of the presentation context the fragment belongs to.
    presentation_data_value : bytes
        The message control header followed by the fragment.

    References
    ----------

    * DICOM Standard, Part 8, Section 9.3.5.1 and Annex E.2
    """

    def __init__(self, context_id: int = 0, value: bytes = b"\x00") -> None:
        self.presentation_context_id = context_id
        self.presentation_data_value = value

    @classmethod
    def from_fragment(
        cls, context_id: int, fragment: bytes, is_command: bool, is_last: bool
    ) -> "PresentationDataValueItem":
        """Return a new item for `fragment` with the given flags."""
        header = (0x01 if is_command else 0x00) | (0x02 if is_last else 0x00)
        return cls(context_id, bytes([header]) + bytes(fragment))

    def decode(self, bytestream: bytes) -> None:
        """Decode a complete PDV item, including its 4-byte length."""
        if len(bytestream) < 6:
            raise MalformedPDU("A Presentation Data Value item must be 6 bytes or more")

        super().decode(bytestream)

    @property
    def _decoders(self) -> _DecoderType:
        return [
            ((4, 1), "presentation_context_id", self._wrap_unpack, [UNPACK_UCHAR]),
            ((5, None), "presentation_data_value", self._wrap_bytes, []),
        ]

    @property
    def _encoders(self) -> _EncoderType:
        return [
            ("item_length", PACK_UINT4, []),
            ("presentation_context_id", PACK_UCHAR, []),
            ("presentation_data_value", self._wrap_bytes, []),
        ]

    @property
    def message_control_header(self) -> int:
        """Return the message control header as :class:`int`."""
        return self.presentation_data_value[0]

    @property
    def is_command(self) -> bool:
        """Return ``True`` if the fragment is command information."""
        return bool(self.message_control_header & 0x01)

    @property
    def is_last(self) -> bool:
        """Return ``True`` if this is the last fragment of its stream."""
        return bool(self.message_control_header & 0x02)

    @property
    def fragment(self) -> bytes:
        """Return the fragment data without the message control header."""
        return self.presentation_data_value[1:]

    @property
    def item_length(self) -> int:
        return 1 + len(self.presentation_data_value)

    @property
    def item_type(self) -> int:
        """Raise NotImplementedError as PDV Items have no *Item Type* field."""
        raise NotImplementedError

    def __len__(self) -> int:
        return 4 + self.item_length

    def __str__(self) -> str:
        kind = "Command" if self.is_command else "Dataset"
        last = "last" if self.is_last else "not last"
        return (
            f"PDV: context {self.presentation_context_id}, {kind}, {last}, "
            f"{len(self.fragment)} bytes"
        )


PDU_ITEM_TYPES: dict[int, type[PDUItem]] = {
    0x10: ApplicationContextItem,
    0x20: PresentationContextItemRQ,
    0x21: PresentationContextItemAC,
    0x30: AbstractSyntaxSubItem,
    0x40: TransferSyntaxSubItem,
    0x50: UserInformationItem,
    0x51: MaximumLengthSubItem,
    0x52: ImplementationClassUIDSubItem,
    0x53: AsynchronousOperationsWindowSubItem,
    0x54: SCP_SCU_RoleSelectionSubItem,
    0x55: ImplementationVersionNameSubItem,
    0x56: SOPClassExtendedNegotiationSubItem,
}

_TYPE_TO_PDU_ITEM = {vv: kk for kk, vv in PDU_ITEM_TYPES.items()}
