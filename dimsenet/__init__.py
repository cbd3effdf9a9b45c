"""Set module shortcuts and globals"""

import logging

from pydicom.uid import PYDICOM_ROOT_UID, UID

from ._version import __version__


_version = __version__.split(".")[:3]

# Encoded as UI, maximum 64 characters
DIMSENET_UID_PREFIX = f"{PYDICOM_ROOT_UID}7."
"""The UID root used by *dimsenet*."""

# Encoded as SH, maximum 16 characters
DIMSENET_IMPLEMENTATION_VERSION: str = f"DIMSENET_{''.join(_version)}"
"""The *Implementation Version Name* used by *dimsenet*"""
assert 1 <= len(DIMSENET_IMPLEMENTATION_VERSION) <= 16

DIMSENET_IMPLEMENTATION_UID: UID = UID(f"{DIMSENET_UID_PREFIX}{'.'.join(_version)}")
"""The *Implementation Class UID* used by *dimsenet*"""
assert DIMSENET_IMPLEMENTATION_UID.is_valid


# Convenience imports
# ruff: noqa: E402,F401
from dimsenet import events as evt
from dimsenet.ae import ApplicationEntity as AE
from dimsenet.association import Association, PendingOperation
from dimsenet.events import AssociationDecision, AssociationEventSink
from dimsenet._globals import DEFAULT_TRANSFER_SYNTAXES
from dimsenet.presentation import (
    build_context,
    QueryRetrievePresentationContexts,
    StoragePresentationContexts,
    VerificationPresentationContexts,
)


# Setup default logging
logging.getLogger(__name__).addHandler(logging.NullHandler())


def debug_logger() -> None:
    """Setup the logging for debugging."""
    logger = logging.getLogger(__name__)
    # Ensure only have one StreamHandler
    logger.handlers = []
    handler = logging.StreamHandler()
    logger.setLevel(logging.DEBUG)
    formatter = logging.Formatter("%(levelname).1s: %(message)s")
    handler.setFormatter(formatter)
    logger.addHandler(handler)


__all__ = [
    "__version__",
    "DIMSENET_UID_PREFIX",
    "DIMSENET_IMPLEMENTATION_VERSION",
    "DIMSENET_IMPLEMENTATION_UID",
    "evt",
    "AE",
    "Association",
    "AssociationDecision",
    "AssociationEventSink",
    "PendingOperation",
    "DEFAULT_TRANSFER_SYNTAXES",
    "build_context",
    "QueryRetrievePresentationContexts",
    "StoragePresentationContexts",
    "VerificationPresentationContexts",
    "debug_logger",
]
