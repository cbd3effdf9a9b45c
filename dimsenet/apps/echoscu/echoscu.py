#!/usr/bin/env python
"""An Echo SCU application.

Used for verifying basic DICOM connectivity and as such has a focus on
providing useful debugging and logging information.
"""

import argparse
import sys

from pydicom.uid import (
    ExplicitVRBigEndian,
    ExplicitVRLittleEndian,
    ImplicitVRLittleEndian,
)

from dimsenet import AE, DEFAULT_TRANSFER_SYNTAXES
from dimsenet.apps.common import add_logging_options, setup_logging
from dimsenet._globals import DEFAULT_MAX_LENGTH
from dimsenet.exceptions import AssociationClosed, NegotiationError
from dimsenet.sop_class import Verification  # type: ignore
from dimsenet.status import code_to_category


__version__ = "0.1.0"


def _setup_argparser(args: list[str] | None = None) -> argparse.Namespace:
    """Setup the command line arguments"""
    # Description
    parser = argparse.ArgumentParser(
        description=(
            "The echoscu application implements a Service Class User "
            "(SCU) for the Verification Service Class. It sends a DICOM "
            "C-ECHO message to a Service Class Provider (SCP) and "
            "waits for a response. The application can be used to "
            "verify basic DICOM connectivity."
        ),
        usage="echoscu [options] addr port",
    )

    # Parameters
    req_opts = parser.add_argument_group("Parameters")
    req_opts.add_argument("addr", help="TCP/IP address of DICOM peer", type=str)
    req_opts.add_argument("port", help="TCP/IP port number of peer", type=int)

    add_logging_options(parser)

    # Network Options
    net_opts = parser.add_argument_group("Network Options")
    net_opts.add_argument(
        "-aet",
        "--calling-aet",
        metavar="[a]etitle",
        help="set my calling AE title (default: ECHOSCU)",
        type=str,
        default="ECHOSCU",
    )
    net_opts.add_argument(
        "-aec",
        "--called-aet",
        metavar="[a]etitle",
        help="set called AE title of peer (default: ANY-SCP)",
        type=str,
        default="ANY-SCP",
    )
    net_opts.add_argument(
        "-ta",
        "--acse-timeout",
        metavar="[s]econds",
        help="timeout for ACSE messages (default: 30 s)",
        type=float,
        default=30,
    )
    net_opts.add_argument(
        "-td",
        "--dimse-timeout",
        metavar="[s]econds",
        help="timeout for DIMSE messages (default: 30 s)",
        type=float,
        default=30,
    )
    net_opts.add_argument(
        "-tn",
        "--network-timeout",
        metavar="[s]econds",
        help="timeout for the network (default: 30 s)",
        type=float,
        default=30,
    )
    net_opts.add_argument(
        "-pdu",
        "--max-pdu",
        metavar="[n]umber of bytes",
        help=(
            f"set max receive pdu to n bytes (0 for unlimited, default: "
            f"{DEFAULT_MAX_LENGTH})"
        ),
        type=int,
        default=DEFAULT_MAX_LENGTH,
    )

    # Transfer Syntaxes
    ts_opts = parser.add_argument_group("Transfer Syntax Options")
    syntax = ts_opts.add_mutually_exclusive_group()
    syntax.add_argument(
        "-xe",
        "--request-little",
        help="request explicit VR little endian TS only",
        action="store_true",
    )
    syntax.add_argument(
        "-xb",
        "--request-big",
        help="request explicit VR big endian TS only",
        action="store_true",
    )
    syntax.add_argument(
        "-xi",
        "--request-implicit",
        help="request implicit VR little endian TS only",
        action="store_true",
    )

    # Miscellaneous Options
    misc_opts = parser.add_argument_group("Miscellaneous Options")
    misc_opts.add_argument(
        "--repeat",
        metavar="[n]umber",
        help="repeat echo request n times",
        type=int,
        default=1,
    )
    misc_opts.add_argument(
        "--abort",
        help="abort association instead of releasing it",
        action="store_true",
    )

    return parser.parse_args(args)


def main(args: list[str] | None = None) -> None:
    """Run the application."""
    parsed = _setup_argparser(args)

    if parsed.version:
        print(f"echoscu.py v{__version__}")
        sys.exit()

    APP_LOGGER = setup_logging(parsed, "echoscu")
    APP_LOGGER.debug(f"echoscu.py v{__version__}")
    APP_LOGGER.debug("")

    # Set Transfer Syntax options
    transfer_syntax = DEFAULT_TRANSFER_SYNTAXES[:]
    if parsed.request_little:
        transfer_syntax = [ExplicitVRLittleEndian]
    elif parsed.request_big:
        transfer_syntax = [ExplicitVRBigEndian]
    elif parsed.request_implicit:
        transfer_syntax = [ImplicitVRLittleEndian]

    # Create local AE
    ae = AE(ae_title=parsed.calling_aet)
    ae.add_requested_context(Verification, transfer_syntax)

    # Set timeouts
    ae.acse_timeout = parsed.acse_timeout
    ae.dimse_timeout = parsed.dimse_timeout
    ae.network_timeout = parsed.network_timeout

    # Request association with remote AE
    try:
        assoc = ae.associate(
            parsed.addr, parsed.port, ae_title=parsed.called_aet, max_pdu=parsed.max_pdu
        )
    except (NegotiationError, AssociationClosed) as exc:
        # Failed to associate: timeout, refused, connection closed, aborted
        APP_LOGGER.error(f"Association failed: {exc}")
        sys.exit(1)

    try:
        for _ in range(parsed.repeat):
            # `status` is a pydicom Dataset
            status = assoc.send_c_echo()
            APP_LOGGER.info(
                f"C-ECHO response: 0x{status.Status:04X} "
                f"({code_to_category(status.Status)})"
            )
    except AssociationClosed as exc:
        APP_LOGGER.error(f"C-ECHO failed: {exc}")
        sys.exit(1)

    # Abort or release association
    if parsed.abort:
        assoc.abort()
    else:
        assoc.release()


if __name__ == "__main__":
    main()
