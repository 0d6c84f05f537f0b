"""
Filter the pipeline tree and resolve artifacts of the selected build.

All matching uses `re.search`, so a pattern matches anywhere within a
name, e.g. "12" matches build number 125. Build numbers are matched in
their decimal string form.
"""
import dataclasses
import enum
import logging
import re
import typing as t

from jenky.api import Artifact, JenkinsApiHandler, Pipeline, build_path

logger = logging.getLogger(__name__)

MATCH_ALL = ".*"


class InvalidPatternError(ValueError):
    """
    Raised when a user supplied filter is not a valid regular expression.
    """

    def __init__(self, filter_name: str, pattern: str, reason: str):
        super().__init__(f"Invalid {filter_name} pattern '{pattern}': {reason}")
        self.filter_name = filter_name
        self.pattern = pattern
        self.reason = reason


@dataclasses.dataclass(frozen=True)
class Patterns:
    """
    Compiled filters for each level of the tree.

    `artifact` is None when artifacts were not asked for.
    """

    pipeline: t.Pattern
    job: t.Pattern
    build: t.Pattern
    artifact: t.Optional[t.Pattern] = None


def _compile(filter_name: str, pattern: t.Optional[str]) -> t.Pattern:
    if pattern is None:
        pattern = MATCH_ALL
    try:
        return re.compile(pattern)
    except re.error as err:
        raise InvalidPatternError(filter_name, pattern, str(err)) from err


def compile_patterns(
    pipeline: t.Optional[str] = None,
    job: t.Optional[str] = None,
    build: t.Optional[str] = None,
    artifact: t.Optional[str] = None,
) -> Patterns:
    """
    Compile the given filters, defaulting missing ones to match everything.

    Raises
    ------
    InvalidPatternError
        Naming the first filter which does not compile, checked in the
        order pipeline, job, build, artifact.
    """

    return Patterns(
        pipeline=_compile("pipeline", pipeline),
        job=_compile("job", job),
        build=_compile("build", build),
        artifact=_compile("artifact", artifact) if artifact is not None else None,
    )


@dataclasses.dataclass(frozen=True)
class MatchResult:
    """
    A build which survived the pipeline, job and build filters.

    Holds copies of the names, not references into the fetched tree.
    """

    pipeline_name: str
    job_name: str
    build_number: int
    building: bool = False

    @property
    def path(self) -> str:
        return build_path(self.pipeline_name, self.job_name, self.build_number)

    def __str__(self) -> str:
        return f"{self.pipeline_name}/{self.job_name} #{self.build_number}"


def filter_builds(
    pipelines: t.Iterable[Pipeline],
    pipeline_pattern: t.Pattern,
    job_pattern: t.Pattern,
    build_pattern: t.Pattern,
) -> t.List[MatchResult]:
    """
    Walk the tree and flatten every matching build into a `MatchResult`.

    Jobs are only visited within matching pipelines and builds only
    within matching jobs. Output keeps the order given by the server.
    The given tree is not modified.
    """

    results = []
    for pipeline in pipelines:
        if not pipeline_pattern.search(pipeline.name):
            continue
        for job in pipeline.jobs:
            if not job_pattern.search(job.name):
                continue
            for build in job.builds:
                if build_pattern.search(str(build.number)):
                    results.append(
                        MatchResult(
                            pipeline_name=pipeline.name,
                            job_name=job.name,
                            build_number=build.number,
                            building=build.building,
                        )
                    )

    logger.debug("%d builds matched the filters", len(results))
    return results


class SkipKind(enum.Enum):
    NOT_REQUESTED = "not_requested"
    NO_BUILD_SELECTED = "no_build_selected"
    AMBIGUOUS_BUILD = "ambiguous_build"


@dataclasses.dataclass(frozen=True)
class SkipReason:
    """
    Why artifacts were not resolved. Informational, not an error.

    `count` is the number of matched builds.
    """

    kind: SkipKind
    count: int = 0

    @property
    def message(self) -> str:
        if self.kind is SkipKind.NOT_REQUESTED:
            return "Artifacts were not requested"
        if self.kind is SkipKind.NO_BUILD_SELECTED:
            return "No build matched the filters, no artifacts to query"
        return (
            f"{self.count} builds found, artifacts can only be retrieved for one "
            "build at a time, refine filters to query build artifacts"
        )


def resolve_artifacts(
    api: JenkinsApiHandler,
    matches: t.Sequence[MatchResult],
    artifact_pattern: t.Optional[t.Pattern],
) -> t.Union[t.List[Artifact], SkipReason]:
    """
    Fetch and filter the artifacts of the single matched build.

    No request is made unless artifacts were asked for and exactly one
    build matched, fetching artifacts for several builds would take a
    request per build.

    Raises
    ------
    FetchError
        If the build could not be fetched.

    Returns
    -------
    List of Artifacts whose file name matches `artifact_pattern`,
    possibly empty, or a SkipReason.
    """

    if artifact_pattern is None:
        return SkipReason(SkipKind.NOT_REQUESTED, len(matches))
    if len(matches) == 0:
        return SkipReason(SkipKind.NO_BUILD_SELECTED)
    if len(matches) > 1:
        return SkipReason(SkipKind.AMBIGUOUS_BUILD, len(matches))

    match = matches[0]
    build = api.build(match.pipeline_name, match.job_name, match.build_number)
    if build.building:
        logger.warning("%s is still running, artifact list may be incomplete", match)

    artifacts = [
        artifact
        for artifact in build.artifacts or []
        if artifact_pattern.search(artifact.file_name)
    ]
    logger.debug(
        "%d of %d artifacts matched '%s'",
        len(artifacts),
        len(build.artifacts or []),
        artifact_pattern.pattern,
    )
    return artifacts
