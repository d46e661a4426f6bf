"""butter-video package entrypoint."""

import sys

from butter_video.cli.app import main as _cli_main


def main() -> None:
    """Run the butter-video CLI."""

    sys.exit(_cli_main())
