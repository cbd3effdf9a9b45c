"""Tests for the PDU codec."""

import logging

import pytest

from dimsenet import _config
from dimsenet.exceptions import MalformedPDU
from dimsenet.pdu import (
    A_ABORT_RQ,
    A_ASSOCIATE_AC,
    A_ASSOCIATE_RJ,
    A_ASSOCIATE_RQ,
    A_RELEASE_RP,
    A_RELEASE_RQ,
    P_DATA_TF,
    decode_pdu,
    encode_pdu,
    read_pdu,
)
from dimsenet.pdu_items import (
    AsynchronousOperationsWindowSubItem,
    ImplementationClassUIDSubItem,
    ImplementationVersionNameSubItem,
    MaximumLengthSubItem,
    PresentationDataValueItem,
    SCP_SCU_RoleSelectionSubItem,
    SOPClassExtendedNegotiationSubItem,
    UnknownSubItem,
    UserInformationItem,
)
from dimsenet.presentation import PresentationContext


LOGGER = logging.getLogger("dimsenet")
LOGGER.setLevel(logging.CRITICAL)

VERIFICATION = "1.2.840.10008.1.1"
CT_IMAGE = "1.2.840.10008.5.1.4.1.1.2"
IMPLICIT = "1.2.840.10008.1.2"
EXPLICIT = "1.2.840.10008.1.2.1"


def user_information(max_length=16382):
    item = UserInformationItem()
    item.user_data.append(MaximumLengthSubItem(max_length))
    item.user_data.append(ImplementationClassUIDSubItem("1.2.826.0.1.3680043.9.3811.2"))
    item.user_data.append(ImplementationVersionNameSubItem("DIMSENET_040"))
    return item


def associate_rq():
    contexts = [
        PresentationContext(1, VERIFICATION, [IMPLICIT, EXPLICIT]),
        PresentationContext(3, CT_IMAGE, [EXPLICIT]),
    ]
    return A_ASSOCIATE_RQ.build("ANY-SCP", "ECHOSCU", contexts, user_information())


def byte_reader(data):
    """Return a recv() style callable reading from `data`."""
    buffer = bytearray(data)

    def recv(nr_bytes):
        chunk = bytes(buffer[:nr_bytes])
        del buffer[:nr_bytes]
        return chunk

    return recv


class TestRoundTrip:
    """Decoding an encoded PDU gives an equal PDU."""

    def test_associate_rq(self):
        """Test A-ASSOCIATE-RQ."""
        pdu = associate_rq()
        encoded = encode_pdu(pdu)
        assert encoded[0] == 0x01
        assert len(encoded) == len(pdu)

        result = decode_pdu(encoded)
        assert isinstance(result, A_ASSOCIATE_RQ)
        assert result == pdu
        assert result.called_ae_title == "ANY-SCP"
        assert result.calling_ae_title == "ECHOSCU"
        assert result.application_context_name == "1.2.840.10008.3.1.1.1"
        contexts = [item.to_context() for item in result.presentation_context]
        assert [cx.context_id for cx in contexts] == [1, 3]
        assert contexts[0].transfer_syntax == [IMPLICIT, EXPLICIT]
        assert result.user_information.maximum_length == 16382
        assert result.user_information.implementation_version_name == "DIMSENET_040"

    def test_associate_ac(self):
        """Test A-ASSOCIATE-AC, including a rejected context."""
        contexts = [
            PresentationContext(1, VERIFICATION, [IMPLICIT], 0x00),
            PresentationContext(3, CT_IMAGE, [EXPLICIT], 0x03),
        ]
        pdu = A_ASSOCIATE_AC.build(associate_rq(), contexts, user_information(0))
        result = decode_pdu(encode_pdu(pdu))
        assert isinstance(result, A_ASSOCIATE_AC)
        assert result == pdu
        items = result.presentation_context
        assert items[0].result == 0x00
        assert items[0].transfer_syntax == IMPLICIT
        assert items[1].result == 0x03
        assert result.user_information.maximum_length == 0

    @pytest.mark.parametrize("result, source, reason", [(1, 1, 1), (2, 3, 2), (1, 2, 2)])
    def test_associate_rj(self, result, source, reason):
        """Test A-ASSOCIATE-RJ."""
        pdu = A_ASSOCIATE_RJ(result, source, reason)
        encoded = encode_pdu(pdu)
        assert encoded == bytes([0x03, 0, 0, 0, 0, 4, 0, result, source, reason])
        assert decode_pdu(encoded) == pdu

    def test_p_data_tf(self):
        """Test P-DATA-TF with several PDV items."""
        items = [
            PresentationDataValueItem.from_fragment(1, b"\x01\x02", True, False),
            PresentationDataValueItem.from_fragment(1, b"\x03", True, True),
            PresentationDataValueItem.from_fragment(1, b"\x04" * 10, False, True),
        ]
        pdu = P_DATA_TF(items)
        result = decode_pdu(encode_pdu(pdu))
        assert result == pdu
        fragments = result.presentation_data_value_items
        assert [item.is_command for item in fragments] == [True, True, False]
        assert [item.is_last for item in fragments] == [False, True, True]
        assert fragments[2].fragment == b"\x04" * 10

    def test_p_data_tf_empty_fragment(self):
        """Test a zero length fragment is preserved."""
        item = PresentationDataValueItem.from_fragment(3, b"", False, True)
        pdu = P_DATA_TF([item])
        encoded = encode_pdu(pdu)
        # PDU header, PDV item length, context ID, control header
        assert len(encoded) == 6 + 4 + 1 + 1
        result = decode_pdu(encoded)
        assert result.presentation_data_value_items[0].fragment == b""
        assert result.presentation_data_value_items[0].is_last

    def test_maximum_length_upper_bound(self):
        """Test the largest Maximum Length Received value."""
        item = MaximumLengthSubItem(0xFFFFFFFF)
        assert item.encode() == b"\x51\x00\x00\x04\xff\xff\xff\xff"

        pdu = A_ASSOCIATE_RQ.build(
            "ANY-SCP",
            "ECHOSCU",
            [PresentationContext(1, VERIFICATION, [IMPLICIT])],
            user_information(max_length=0xFFFFFFFF),
        )
        result = decode_pdu(encode_pdu(pdu))
        assert result.user_information.maximum_length == 0xFFFFFFFF

    def test_maximum_length_unlimited(self):
        """Test a Maximum Length Received of 0."""
        item = MaximumLengthSubItem(0)
        assert item.encode() == b"\x51\x00\x00\x04\x00\x00\x00\x00"

        decoded = MaximumLengthSubItem()
        decoded.decode(item.encode())
        assert decoded.maximum_length_received == 0

    def test_p_data_length_upper_bound(self, monkeypatch):
        """Test the 4-byte PDU and PDV item lengths at their largest values."""
        # Report the lengths of a maximum sized PDV without allocating it
        monkeypatch.setattr(
            PresentationDataValueItem, "item_length", property(lambda self: 0xFFFFFFFB)
        )
        item = PresentationDataValueItem.from_fragment(1, b"\x00", True, True)
        pdu = P_DATA_TF([item])
        assert pdu.pdu_length == 0xFFFFFFFF

        encoded = encode_pdu(pdu)
        assert encoded[:6] == b"\x04\x00\xff\xff\xff\xff"
        assert encoded[6:10] == b"\xff\xff\xff\xfb"
        assert encoded[10:] == b"\x01\x03\x00"

    def test_p_data_pdv_length_upper_bound_decode(self):
        """Test a PDV declaring the largest item length is rejected."""
        body = b"\xff\xff\xff\xff\x01\x03\x00"
        encoded = b"\x04\x00" + len(body).to_bytes(4, "big") + body
        with pytest.raises(MalformedPDU, match="length of 4294967295 bytes"):
            decode_pdu(encoded)

    def test_release(self):
        """Test A-RELEASE-RQ and A-RELEASE-RP."""
        assert encode_pdu(A_RELEASE_RQ()) == b"\x05\x00\x00\x00\x00\x04\x00\x00\x00\x00"
        assert encode_pdu(A_RELEASE_RP()) == b"\x06\x00\x00\x00\x00\x04\x00\x00\x00\x00"
        assert isinstance(decode_pdu(encode_pdu(A_RELEASE_RQ())), A_RELEASE_RQ)
        assert isinstance(decode_pdu(encode_pdu(A_RELEASE_RP())), A_RELEASE_RP)

    def test_abort(self):
        """Test A-ABORT."""
        pdu = A_ABORT_RQ(2, 6)
        encoded = encode_pdu(pdu)
        assert encoded == b"\x07\x00\x00\x00\x00\x04\x00\x00\x02\x06"
        result = decode_pdu(encoded)
        assert result.source == 2
        assert result.reason_diagnostic == 6

    def test_user_information_sub_items(self):
        """Test the optional negotiation sub-items."""
        user_info = user_information()
        user_info.user_data.append(AsynchronousOperationsWindowSubItem(5, 0))
        user_info.user_data.append(SCP_SCU_RoleSelectionSubItem(CT_IMAGE, 0, 1))
        user_info.user_data.append(
            SOPClassExtendedNegotiationSubItem(CT_IMAGE, b"\x01\x00")
        )
        pdu = A_ASSOCIATE_RQ.build(
            "ANY-SCP", "ECHOSCU", [PresentationContext(1, CT_IMAGE, [IMPLICIT])], user_info
        )
        result = decode_pdu(encode_pdu(pdu)).user_information
        window = result.async_ops_window
        assert window.maximum_number_operations_invoked == 5
        assert window.maximum_number_operations_performed == 0
        role = result.role_selection[CT_IMAGE]
        assert (role.scu_role, role.scp_role) == (0, 1)
        assert result.ext_neg[0].service_class_application_information == b"\x01\x00"

    def test_unknown_sub_item_preserved(self):
        """Test an unrecognised sub-item survives a round trip."""
        user_info = user_information()
        user_info.user_data.append(UnknownSubItem(0x5F, b"\x00\x01\x02"))
        pdu = A_ASSOCIATE_RQ.build(
            "ANY-SCP", "ECHOSCU", [PresentationContext(1, CT_IMAGE, [IMPLICIT])], user_info
        )
        result = decode_pdu(encode_pdu(pdu))
        unknown = result.user_information.user_data[-1]
        assert isinstance(unknown, UnknownSubItem)
        assert unknown.item_type == 0x5F
        assert unknown.item_data == b"\x00\x01\x02"


class TestDecodeErrors:
    """Malformed PDUs raise MalformedPDU."""

    def test_short_header(self):
        """Test fewer than 6 bytes."""
        with pytest.raises(MalformedPDU, match="Insufficient data"):
            decode_pdu(b"\x07\x00\x00")

    def test_unknown_type(self):
        """Test an unrecognised PDU type."""
        with pytest.raises(MalformedPDU, match="Unrecognised PDU type 0x09"):
            decode_pdu(b"\x09\x00\x00\x00\x00\x04\x00\x00\x00\x00")

    def test_length_mismatch(self):
        """Test the declared length differs from the data."""
        with pytest.raises(MalformedPDU, match="declares a length"):
            decode_pdu(b"\x07\x00\x00\x00\x00\x05\x00\x00\x00\x00")

    def test_fixed_length(self):
        """Test a fixed length PDU with the wrong length."""
        with pytest.raises(MalformedPDU, match="Invalid PDU length"):
            decode_pdu(b"\x05\x00\x00\x00\x00\x05\x00\x00\x00\x00\x00")

    def test_truncated_item(self):
        """Test a variable item running past the end of the PDU."""
        encoded = bytearray(encode_pdu(associate_rq()))
        # Increase the length of the Application Context item
        encoded[76] = 0xFF
        with pytest.raises(MalformedPDU):
            decode_pdu(bytes(encoded))

    def test_short_associate(self):
        """Test an A-ASSOCIATE-RQ without the fixed fields."""
        with pytest.raises(MalformedPDU, match="at least 74 bytes"):
            decode_pdu(b"\x01\x00\x00\x00\x00\x02\x00\x01")

    def test_empty_p_data(self):
        """Test a P-DATA-TF without any PDV items."""
        with pytest.raises(MalformedPDU, match="at least one PDV"):
            decode_pdu(b"\x04\x00\x00\x00\x00\x00")


class TestReadPDU:
    """Tests for read_pdu()."""

    def test_read_sequential(self):
        """Test reading consecutive PDUs from a stream."""
        stream = encode_pdu(A_RELEASE_RQ()) + encode_pdu(A_ABORT_RQ(0, 0))
        recv = byte_reader(stream)
        assert read_pdu(recv) == encode_pdu(A_RELEASE_RQ())
        assert read_pdu(recv) == encode_pdu(A_ABORT_RQ(0, 0))

    def test_closed(self):
        """Test the stream ending before a PDU."""
        with pytest.raises(ConnectionError):
            read_pdu(byte_reader(b""))

    def test_partial(self):
        """Test the stream ending part way through a PDU."""
        with pytest.raises(MalformedPDU):
            read_pdu(byte_reader(b"\x07\x00\x00"))

        with pytest.raises(MalformedPDU):
            read_pdu(byte_reader(b"\x07\x00\x00\x00\x00\x04\x00"))

    def test_p_data_too_long(self):
        """Test a P-DATA-TF longer than the maximum is rejected unread."""
        requested = []

        def recv(nr_bytes):
            requested.append(nr_bytes)
            if len(requested) == 1:
                return b"\x04\x00" + (22200).to_bytes(4, "big")

            return b"\x00" * nr_bytes

        with pytest.raises(MalformedPDU, match="22200 bytes exceeds the maximum of 16382"):
            read_pdu(recv, 16382)

        assert requested == [6]

    def test_p_data_length_upper_bound(self):
        """Test a P-DATA-TF declaring the largest length."""
        requested = []

        def recv(nr_bytes):
            requested.append(nr_bytes)
            return b"\x04\x00\xff\xff\xff\xff" if len(requested) == 1 else b""

        with pytest.raises(MalformedPDU, match="4294967295 bytes exceeds"):
            read_pdu(recv, 16382)

        assert requested == [6]

        # Unlimited, so the body is read
        requested.clear()
        with pytest.raises(MalformedPDU, match="after 0 of 4294967295"):
            read_pdu(recv)

        assert requested == [6, 0xFFFFFFFF]

    def test_p_data_at_maximum(self):
        """Test a P-DATA-TF at the maximum length is read."""
        item = PresentationDataValueItem.from_fragment(1, b"\x00" * 10, False, True)
        encoded = encode_pdu(P_DATA_TF([item]))
        assert len(encoded) == 6 + 16
        assert read_pdu(byte_reader(encoded), 16) == encoded

        with pytest.raises(MalformedPDU, match="exceeds the maximum"):
            read_pdu(byte_reader(encoded), 15)

    def test_maximum_only_p_data(self):
        """Test the maximum only applies to P-DATA-TF PDUs."""
        encoded = encode_pdu(associate_rq())
        assert len(encoded) > 100
        assert read_pdu(byte_reader(encoded), 100) == encoded


class TestAETitleCodecs:
    """AE titles in the A-ASSOCIATE PDUs."""

    def setup_method(self):
        self.codecs = _config.CODECS

    def teardown_method(self):
        _config.CODECS = self.codecs

    def test_padding_removed(self):
        """Test the AE title padding is stripped when decoding."""
        encoded = encode_pdu(associate_rq())
        assert encoded[10:26] == b"ANY-SCP         "
        assert decode_pdu(encoded).called_ae_title == "ANY-SCP"

    def test_fallback_codec(self):
        """Test a non-ASCII AE title is decoded with the fallback codecs.

        Characters outside ASCII are dropped after decoding.
        """
        _config.CODECS = ("ascii", "latin_1")
        encoded = bytearray(encode_pdu(associate_rq()))
        encoded[26:42] = "ÉCHO".encode("latin_1").ljust(16, b" ")
        assert decode_pdu(bytes(encoded)).calling_ae_title == "CHO"
