"""Global variables for dimsenet."""


# The default Maximum PDU Length (in bytes)
# Must be 0 or greater than 7.
# A value of 0 indicates unlimited maximum length
DEFAULT_MAX_LENGTH: int = 16382

# The smallest non-zero maximum PDU length that still leaves room for a
#   PDV item header (4 + 1 + 1) and one byte of fragment data
MINIMUM_PDU_LENGTH: int = 7

# The largest value representable by the 4-byte PDU length field
MAXIMUM_PDU_LENGTH: int = 0xFFFFFFFF

# DICOM Application Context Name - see Part 7, Annex A.2.1
APPLICATION_CONTEXT_NAME: str = "1.2.840.10008.3.1.1.1"

# Upper layer protocol version, Part 8 Section 9.3.2
PROTOCOL_VERSION: int = 0x0001

UNCOMPRESSED_TRANSFER_SYNTAXES: list[str] = [
    "1.2.840.10008.1.2.1",  # Explicit VR Little Endian
    "1.2.840.10008.1.2.2",  # Explicit VR Big Endian
    "1.2.840.10008.1.2",  # Implicit VR Little Endian
]
"""The fixed transfer syntaxes accepted for verification.

* Explicit VR Little Endian
* Explicit VR Big Endian (retired)
* Implicit VR Little Endian
"""

DEFAULT_TRANSFER_SYNTAXES: list[str] = [
    "1.2.840.10008.1.2",  # Implicit VR Little Endian,
    "1.2.840.10008.1.2.1",  # Explicit VR Little Endian,
    "1.2.840.10008.1.2.1.99",  # Deflated Explicit VR Little Endian
    "1.2.840.10008.1.2.2",  # Explicit VR Big Endian,
]
"""Default transfer syntaxes used when creating presentation contexts.

* Implicit VR Little Endian
* Explicit VR Little Endian
* Deflated Explicit VR Little Endian
* Explicit VR Big Endian (retired)
"""

IMAGE_TRANSFER_SYNTAXES: list[str] = [
    "1.2.840.10008.1.2.4.80",  # JPEG-LS Lossless
    "1.2.840.10008.1.2.4.81",  # JPEG-LS Lossy
    "1.2.840.10008.1.2.4.90",  # JPEG 2000 Lossless
    "1.2.840.10008.1.2.4.91",  # JPEG 2000
    "1.2.840.10008.1.2.4.92",  # JPEG 2000 Multi-Component Lossless
    "1.2.840.10008.1.2.4.93",  # JPEG 2000 Multi-Component
    "1.2.840.10008.1.2.4.70",  # JPEG Lossless SV1
    "1.2.840.10008.1.2.4.57",  # JPEG Lossless
    "1.2.840.10008.1.2.5",  # RLE Lossless
    "1.2.840.10008.1.2.4.50",  # JPEG Baseline 8 Bit
    "1.2.840.10008.1.2.4.51",  # JPEG Extended 12 Bit
    "1.2.840.10008.1.2.4.201",  # High-Throughput JPEG 2000 Lossless
    "1.2.840.10008.1.2.4.202",  # High-Throughput JPEG 2000 RPCL
    "1.2.840.10008.1.2.4.203",  # High-Throughput JPEG 2000
    "1.2.840.10008.1.2.1",  # Explicit VR Little Endian
    "1.2.840.10008.1.2.1.99",  # Deflated Explicit VR Little Endian
    "1.2.840.10008.1.2.2",  # Explicit VR Big Endian
    "1.2.840.10008.1.2",  # Implicit VR Little Endian
]
"""The broad set of transfer syntaxes accepted for storage SOP classes.

Compressed syntaxes are listed before the uncompressed ones, however
negotiation always follows the order proposed by the requestor.
"""

# Association modes
MODE_REQUESTOR: str = "requestor"
MODE_ACCEPTOR: str = "acceptor"

# Status categories
STATUS_SUCCESS: str = "Success"
STATUS_FAILURE: str = "Failure"
STATUS_WARNING: str = "Warning"
STATUS_CANCEL: str = "Cancel"
STATUS_PENDING: str = "Pending"
STATUS_UNKNOWN: str = "Unknown"

# A-ABORT sources, Part 8 Section 9.3.8
ABORT_SOURCE_USER: int = 0x00
ABORT_SOURCE_PROVIDER: int = 0x02

# A-ABORT provider reasons
ABORT_REASON_NOT_SPECIFIED: int = 0x00
ABORT_REASON_UNRECOGNISED_PDU: int = 0x01
ABORT_REASON_UNEXPECTED_PDU: int = 0x02
ABORT_REASON_INVALID_PARAMETER: int = 0x06
