"""Tyro CLI application entrypoint."""

from __future__ import annotations

from typing import Annotated

import tyro

from butter_video.cli import commands_score


TopLevelCommand = Annotated[
    commands_score.ButterCommand,
    tyro.conf.subcommand(name="butter"),
] | Annotated[
    commands_score.SsimulacraCommand,
    tyro.conf.subcommand(name="ssimulacra"),
] | Annotated[
    commands_score.Ssimulacra2Command,
    tyro.conf.subcommand(name="ssimulacra2"),
]


def dispatch(command: TopLevelCommand) -> int:
    """Dispatch parsed top-level command object and return the exit code."""

    if isinstance(command, commands_score.ScoreCommand):
        return commands_score.execute(command)
    raise TypeError(f"Unsupported command type: {type(command).__name__}")


def main(argv: list[str] | None = None) -> int:
    """Parse CLI arguments and run requested command."""

    command = tyro.cli(
        TopLevelCommand,
        args=argv,
        description="Calculates butteraugli and ssimulacra/ssimulacra2 metrics for videos",
    )
    return dispatch(command)
