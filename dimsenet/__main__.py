"""CLI interface for dimsenet"""

import importlib
import sys

from dimsenet import __version__


_APPS = {
    "echoscp": "dimsenet.apps.echoscp.echoscp",
    "echoscu": "dimsenet.apps.echoscu.echoscu",
}


def main(args: list[str] | None = None) -> None:
    """Run the app named by the first argument."""
    args = sys.argv[1:] if args is None else args
    if not args or args[0] not in _APPS and args[0] != "--version":
        print(f"usage: python -m dimsenet [--version | {' | '.join(_APPS)}] ...")
        sys.exit(1)

    if args[0] == "--version":
        print(__version__)
        return

    app = importlib.import_module(_APPS[args[0]])
    app.main(args[1:])


if __name__ == "__main__":
    main()
