"""
Render matched builds, and artifacts of the selected build, as a table.
"""
import io
import typing as t

import rich.box
import rich.console
import rich.table
import rich.text

from jenky.api import Artifact
from jenky.search import MatchResult

HEADERS = ("pipeline", "job", "build")
ARTIFACTS_HEADER = "artifacts"


def build_table(
    matches: t.Sequence[MatchResult], artifacts: t.Optional[t.Sequence[Artifact]] = None
) -> rich.table.Table:
    """
    Build a table with a row per match, in the given order.

    The artifacts column is only added when `artifacts` is not None.
    Artifacts are resolved for a single build only, so they are listed
    in the first row. Cells are plain text, never console markup.
    """

    table = rich.table.Table(box=rich.box.ASCII, header_style="bold")
    for header in HEADERS:
        table.add_column(header, overflow="fold")
    if artifacts is not None:
        table.add_column(ARTIFACTS_HEADER, overflow="fold")

    for index, match in enumerate(matches):
        cells = [match.pipeline_name, match.job_name, str(match.build_number)]
        if artifacts is not None:
            cells.append(
                "\n".join(artifact.relative_path for artifact in artifacts)
                if index == 0
                else ""
            )
        table.add_row(
            *(rich.text.Text(cell) for cell in cells),
            style="yellow" if match.building else None,
        )
    return table


def render(
    matches: t.Sequence[MatchResult],
    artifacts: t.Optional[t.Sequence[Artifact]] = None,
    width: int = 200,
) -> str:
    """Return the table as plain text, without any terminal styling."""

    console = rich.console.Console(
        file=io.StringIO(), width=width, color_system=None, highlight=False
    )
    console.print(build_table(matches, artifacts))
    return console.file.getvalue()
