"""Shared test fixtures."""
import io
import typing as t

import pytest

from jenky.api import (
    Artifact,
    Build,
    FetchError,
    JenkinsApiContext,
    JenkinsApiHandler,
    Job,
    Pipeline,
)

CORE_BUILD = "http://jenkins.test/job/core/job/build/"
INFRA_DEPLOY = "http://jenkins.test/job/infra/job/deploy/"


class FakeResponse:
    """Stand-in for `http.client.HTTPResponse`."""

    def __init__(self, body: bytes, headers: t.Optional[t.Dict[str, str]] = None):
        self._stream = io.BytesIO(body)
        self._headers = (
            headers if headers is not None else {"Content-Length": str(len(body))}
        )
        self.closed = False

    def read(self, size: int = -1) -> bytes:
        return self._stream.read(size)

    def info(self) -> t.Dict[str, str]:
        return self._headers

    def close(self):
        self.closed = True


class FakeApi(JenkinsApiHandler):
    """
    API handler serving a fixed tree without touching the network.

    Counts calls per method in `calls`. `artifact_bodies` maps an
    artifact url to its content; urls missing from it fail to open.
    """

    def __init__(
        self,
        pipelines: t.List[Pipeline],
        builds: t.Optional[t.Dict[t.Tuple[str, str, int], Build]] = None,
        artifact_bodies: t.Optional[t.Dict[str, bytes]] = None,
    ):
        super().__init__(JenkinsApiContext(url="http://jenkins.test"))
        self.pipelines = pipelines
        self.builds = builds or {}
        self.artifact_bodies = artifact_bodies or {}
        self.calls: t.Dict[str, int] = {"home": 0, "build": 0, "open": 0}
        self.home_error: t.Optional[FetchError] = None
        self.build_error: t.Optional[FetchError] = None

    def home(self) -> t.List[Pipeline]:
        self.calls["home"] += 1
        if self.home_error is not None:
            raise self.home_error
        return self.pipelines

    def build(self, pipeline_name: str, job_name: str, number: int) -> Build:
        self.calls["build"] += 1
        if self.build_error is not None:
            raise self.build_error
        return self.builds[(pipeline_name, job_name, number)]

    def open(self, url: str) -> FakeResponse:  # type: ignore[override]
        self.calls["open"] += 1
        if url not in self.artifact_bodies:
            raise FetchError(f"GET {url} returned HTTP 404 Not Found")
        return FakeResponse(self.artifact_bodies[url])


def make_build(job_url: str, number: int, building: bool = False) -> Build:
    return Build(number=number, url=f"{job_url}{number}/", building=building)


@pytest.fixture
def pipelines() -> t.List[Pipeline]:
    """Return a tree with pipelines `core` and `infra`."""

    return [
        Pipeline(
            name="core",
            jobs=[
                Job(
                    name="build",
                    url=CORE_BUILD,
                    builds=[make_build(CORE_BUILD, n) for n in (1, 2, 3)],
                ),
            ],
        ),
        Pipeline(
            name="infra",
            jobs=[
                Job(
                    name="deploy",
                    url=INFRA_DEPLOY,
                    builds=[
                        make_build(INFRA_DEPLOY, 27),
                        make_build(INFRA_DEPLOY, 125, building=True),
                    ],
                ),
                Job(name="lint", url="http://jenkins.test/job/infra/job/lint/"),
            ],
        ),
    ]


@pytest.fixture
def artifacts() -> t.List[Artifact]:
    return [
        Artifact(file_name="app.zip", relative_path="dist/app.zip"),
        Artifact(file_name="report7.zip", relative_path="reports/report7.zip"),
        Artifact(file_name="notes.txt", relative_path="notes.txt"),
    ]


@pytest.fixture
def fake_api(pipelines, artifacts) -> FakeApi:
    """Return a FakeApi where `core/build #2` carries artifacts."""

    full_build = Build(
        number=2,
        url="http://jenkins.test/job/core/job/build/2/",
        building=False,
        artifacts=artifacts,
    )
    bodies = {
        "http://jenkins.test/job/core/job/build/2/artifact/dist/app.zip": b"app",
        "http://jenkins.test/job/core/job/build/2/artifact/reports/report7.zip": b"r7",
        "http://jenkins.test/job/core/job/build/2/artifact/notes.txt": b"notes",
    }
    return FakeApi(pipelines, {("core", "build", 2): full_build}, bodies)
