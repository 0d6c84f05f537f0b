"""Tests for the `jenky.table` module."""
from jenky.api import Artifact
from jenky.search import MatchResult
from jenky.table import render


def parse_rows(text):
    """Split the visible table back into a list of cell lists."""

    return [
        [cell.strip() for cell in line.strip().strip("|").split("|")]
        for line in text.splitlines()
        if line.startswith("| ")
    ]


def test_header_only():
    rows = parse_rows(render([]))

    assert rows == [["pipeline", "job", "build"]]


def test_rows_round_trip():
    """Test each row can be read back into the original values."""

    matches = [
        MatchResult("core", "build", 3),
        MatchResult("infra-services", "deploy-production", 125, building=True),
        MatchResult("core", "a/b", 10),
    ]

    header, *rows = parse_rows(render(matches))

    assert header == ["pipeline", "job", "build"]
    assert [MatchResult(p, j, int(b)) for p, j, b in rows] == [
        MatchResult(m.pipeline_name, m.job_name, m.build_number) for m in matches
    ]


def test_artifacts_column(artifacts):
    text = render([MatchResult("core", "build", 2)], artifacts)
    rows = parse_rows(text)

    assert rows[0] == ["pipeline", "job", "build", "artifacts"]
    assert rows[1] == ["core", "build", "2", "dist/app.zip"]
    assert [row[3] for row in rows[2:]] == ["reports/report7.zip", "notes.txt"]


def test_empty_artifacts_column():
    """Test the column is shown when artifacts were resolved but none matched."""

    rows = parse_rows(render([MatchResult("core", "build", 2)], []))

    assert rows == [["pipeline", "job", "build", "artifacts"], ["core", "build", "2", ""]]


def test_no_artifacts_column_when_not_resolved():
    assert "artifacts" not in render([MatchResult("core", "build", 2)])


def test_cells_are_not_markup():
    """Test bracketed names are shown as they are."""

    text = render(
        [MatchResult("[core]", "build", 2)],
        [Artifact(file_name="app.zip", relative_path="dist/[arm64]/app.zip")],
    )

    assert parse_rows(text)[1] == ["[core]", "build", "2", "dist/[arm64]/app.zip"]
