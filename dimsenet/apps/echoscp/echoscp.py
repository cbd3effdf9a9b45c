#!/usr/bin/env python
"""A Verification SCP application."""

import argparse
import sys

from pydicom.uid import (
    ExplicitVRBigEndian,
    ExplicitVRLittleEndian,
    ImplicitVRLittleEndian,
)

from dimsenet import AE, evt
from dimsenet.apps.common import add_logging_options, setup_logging
from dimsenet._globals import DEFAULT_MAX_LENGTH, UNCOMPRESSED_TRANSFER_SYNTAXES
from dimsenet.sop_class import Verification  # type: ignore


__version__ = "0.1.0"


def _setup_argparser(args: list[str] | None = None) -> argparse.Namespace:
    """Setup the command line arguments"""
    # Description
    parser = argparse.ArgumentParser(
        description=(
            "The echoscp application implements a Service Class "
            "Provider (SCP) for the Verification SOP Class. It "
            "listens for a DICOM C-ECHO message from a Service Class "
            "User (SCU) and sends a response. The application can be "
            "used to verify basic DICOM connectivity."
        ),
        usage="echoscp [options] port",
    )

    # Parameters
    req_opts = parser.add_argument_group("Parameters")
    req_opts.add_argument("port", help="TCP/IP port number to listen on", type=int)

    add_logging_options(parser)

    # Network Options
    net_opts = parser.add_argument_group("Network Options")
    net_opts.add_argument(
        "-aet",
        "--ae-title",
        metavar="[a]etitle",
        help="set my AE title (default: ECHOSCP)",
        type=str,
        default="ECHOSCP",
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
        help="timeout for the network (default: 60 s)",
        type=float,
        default=60,
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
    net_opts.add_argument(
        "-ba",
        "--bind-address",
        metavar="[a]ddress",
        help=(
            "The address of the network interface to listen on. If not "
            "specified, listen on all interfaces."
        ),
        default="",
    )

    # Transfer Syntaxes
    ts_opts = parser.add_argument_group("Preferred Transfer Syntaxes")
    ts = ts_opts.add_mutually_exclusive_group()
    ts.add_argument(
        "-xe",
        "--prefer-little",
        help="prefer explicit VR little endian TS",
        action="store_true",
    )
    ts.add_argument(
        "-xb",
        "--prefer-big",
        help="prefer explicit VR big endian TS",
        action="store_true",
    )
    ts.add_argument(
        "-xi",
        "--implicit",
        help="accept implicit VR little endian TS only",
        action="store_true",
    )

    return parser.parse_args(args)


def handle_echo(event: evt.Event) -> int:
    """Return a Success status for every C-ECHO request."""
    return 0x0000


def main(args: list[str] | None = None) -> None:
    """Run the application."""
    parsed = _setup_argparser(args)

    if parsed.version:
        print(f"echoscp.py v{__version__}")
        sys.exit()

    APP_LOGGER = setup_logging(parsed, "echoscp")
    APP_LOGGER.debug(f"echoscp.py v{__version__}")
    APP_LOGGER.debug("")

    # Set Transfer Syntax options
    transfer_syntax = UNCOMPRESSED_TRANSFER_SYNTAXES[:]
    if parsed.prefer_little:
        transfer_syntax.remove(ExplicitVRLittleEndian)
        transfer_syntax.insert(0, ExplicitVRLittleEndian)
    elif parsed.prefer_big:
        transfer_syntax.remove(ExplicitVRBigEndian)
        transfer_syntax.insert(0, ExplicitVRBigEndian)
    elif parsed.implicit:
        transfer_syntax = [ImplicitVRLittleEndian]

    handlers = [(evt.EVT_C_ECHO, handle_echo)]

    # Create application entity
    ae = AE(ae_title=parsed.ae_title)
    ae.add_supported_context(Verification, transfer_syntax)
    ae.maximum_pdu_size = parsed.max_pdu
    ae.network_timeout = parsed.network_timeout
    ae.acse_timeout = parsed.acse_timeout
    ae.dimse_timeout = parsed.dimse_timeout

    APP_LOGGER.info(f"Listening on port {parsed.port}")
    ae.start_server((parsed.bind_address, parsed.port), evt_handlers=handlers)


if __name__ == "__main__":
    main()
