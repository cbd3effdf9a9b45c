"""DICOM dataset utility functions."""

from io import BytesIO
import logging
import zlib

from pydicom.dataset import Dataset
from pydicom.filebase import DicomBytesIO
from pydicom.filereader import read_dataset
from pydicom.filewriter import write_dataset
from pydicom.uid import UID, DeflatedExplicitVRLittleEndian


LOGGER = logging.getLogger(__name__)


def transfer_syntax_encoding(transfer_syntax: str) -> tuple[bool, bool, bool]:
    """Return the dataset encoding used by `transfer_syntax`.

    Parameters
    ----------
    transfer_syntax : str
        The transfer syntax UID.

    Returns
    -------
    tuple of bool
        (implicit VR, little endian, deflated)
    """
    uid = UID(transfer_syntax)
    deflated = uid == DeflatedExplicitVRLittleEndian
    if deflated:
        return False, True, True

    # Compressed transfer syntaxes use Explicit VR Little Endian for the
    #   dataset itself
    if not uid.is_transfer_syntax:
        return False, True, False

    return uid.is_implicit_VR, uid.is_little_endian, False


def decode(
    bytestring: BytesIO | bytes,
    is_implicit_vr: bool,
    is_little_endian: bool,
    deflated: bool = False,
) -> Dataset:
    """Decode `bytestring` to a *pydicom* :class:`~pydicom.dataset.Dataset`.

    Parameters
    ----------
    bytestring : io.BytesIO or bytes
        The encoded dataset from the DIMSE message sent by the peer.
    is_implicit_vr : bool
        The dataset is encoded as implicit (``True``) or explicit VR
        (``False``).
    is_little_endian : bool
        The byte ordering of the encoded dataset.
    deflated : bool, optional
        ``True`` if the dataset has been encoded using *Deflated Explicit VR
        Little Endian* (default ``False``).

    Returns
    -------
    pydicom.dataset.Dataset
        The decoded dataset.
    """
    if isinstance(bytestring, (bytes, bytearray)):
        bytestring = BytesIO(bytestring)

    bytestring.seek(0)
    if deflated:
        bytestring = BytesIO(zlib.decompress(bytestring.getvalue(), -zlib.MAX_WBITS))
        is_implicit_vr, is_little_endian = False, True

    return read_dataset(bytestring, is_implicit_vr, is_little_endian)


def encode(
    ds: Dataset, is_implicit_vr: bool, is_little_endian: bool, deflated: bool = False
) -> bytes:
    """Encode a *pydicom* :class:`~pydicom.dataset.Dataset` `ds`.

    Parameters
    ----------
    ds : pydicom.dataset.Dataset
        The dataset to encode.
    is_implicit_vr : bool
        ``True`` for implicit VR, ``False`` for explicit VR.
    is_little_endian : bool
        ``True`` for little endian, ``False`` for big endian.
    deflated : bool, optional
        ``True`` to compress the encoded dataset using *Deflated Explicit VR
        Little Endian* (default ``False``).

    Returns
    -------
    bytes
        The encoded dataset.
    """
    fp = DicomBytesIO()
    fp.is_implicit_VR = is_implicit_vr
    fp.is_little_endian = is_little_endian
    write_dataset(fp, ds)
    bytestring: bytes = fp.getvalue()
    fp.close()

    if deflated:
        compressor = zlib.compressobj(
            zlib.Z_DEFAULT_COMPRESSION, zlib.DEFLATED, -zlib.MAX_WBITS
        )
        bytestring = compressor.compress(bytestring) + compressor.flush()
        bytestring += b"\x00" if len(bytestring) % 2 else b""

    return bytestring


def encode_for(ds: Dataset, transfer_syntax: str) -> bytes:
    """Return `ds` encoded using the transfer syntax `transfer_syntax`."""
    return encode(ds, *transfer_syntax_encoding(transfer_syntax))


def decode_for(bytestring: bytes, transfer_syntax: str) -> Dataset:
    """Return `bytestring` decoded using the transfer syntax `transfer_syntax`."""
    return decode(bytestring, *transfer_syntax_encoding(transfer_syntax))


def pretty_dataset(ds: Dataset, indent: int = 0, indent_char: str = "  ") -> list[str]:
    """Return a list of pretty dataset strings, one line per element.

    Sequences are recursed into and indented by `indent_char`.
    """
    out = []
    prefix = indent_char * indent
    for elem in ds:
        tag = f"({elem.tag.group:04X},{elem.tag.element:04X})"
        if elem.VR == "SQ":
            out.append(f"{prefix}{tag} {elem.name}: {len(elem.value)} item(s)")
            for item in elem.value:
                out.extend(pretty_dataset(item, indent + 1, indent_char))

            continue

        value = elem.repval if elem.VR in ("OB", "OW", "OF", "UN") else elem.value
        out.append(f"{prefix}{tag} {elem.VR} {elem.name}: {value}")

    return out
