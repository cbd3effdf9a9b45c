"""Utility functions for the apps."""

import argparse
import logging


def add_logging_options(parser: argparse.ArgumentParser) -> None:
    """Add the ``-q``, ``-v``, ``-d`` and ``-ll`` options to `parser`."""
    gen_opts = parser.add_argument_group("General Options")
    gen_opts.add_argument(
        "--version", help="print version information and exit", action="store_true"
    )
    output = gen_opts.add_mutually_exclusive_group()
    output.add_argument(
        "-q",
        "--quiet",
        help="quiet mode, print no warnings and errors",
        action="store_const",
        dest="log_type",
        const="q",
    )
    output.add_argument(
        "-v",
        "--verbose",
        help="verbose mode, print processing details",
        action="store_const",
        dest="log_type",
        const="v",
    )
    output.add_argument(
        "-d",
        "--debug",
        help="debug mode, print debug information",
        action="store_const",
        dest="log_type",
        const="d",
    )
    gen_opts.add_argument(
        "-ll",
        "--log-level",
        metavar="[l]",
        help="use level l for the logger (critical, error, warn, info, debug)",
        type=str,
        choices=["critical", "error", "warn", "info", "debug"],
    )


def setup_logging(args: argparse.Namespace, app_name: str) -> logging.Logger:
    """Return the application logger.

    Parameters
    ----------
    args : argparse.Namespace
        The namespace should contain ``args.log_type`` and ``args.log_level``
        attributes.
    app_name : str
        The name of the application.

    Returns
    -------
    logging.Logger
        The logger to use for logging.
    """
    formatter = logging.Formatter("%(levelname).1s: %(message)s")

    # Setup the library's logging
    lib_logger = logging.getLogger("dimsenet")
    handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    lib_logger.addHandler(handler)
    lib_logger.setLevel(logging.ERROR)

    # Setup application's logging
    app_logger = logging.Logger(app_name)
    handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    app_logger.addHandler(handler)
    app_logger.setLevel(logging.ERROR)

    if args.log_type == "q":
        app_logger.handlers = []
        app_logger.addHandler(logging.NullHandler())
        lib_logger.handlers = []
        lib_logger.addHandler(logging.NullHandler())
    elif args.log_type == "v":
        app_logger.setLevel(logging.INFO)
        lib_logger.setLevel(logging.INFO)
    elif args.log_type == "d":
        app_logger.setLevel(logging.DEBUG)
        lib_logger.setLevel(logging.DEBUG)

    if args.log_level:
        levels = {
            "critical": logging.CRITICAL,
            "error": logging.ERROR,
            "warn": logging.WARNING,
            "info": logging.INFO,
            "debug": logging.DEBUG,
        }
        app_logger.setLevel(levels[args.log_level])
        lib_logger.setLevel(levels[args.log_level])

    return app_logger
