"""
Query a Jenkins server and decode its responses into dataclasses.

The server is asked for a shallow tree of pipelines (top-level folders),
the jobs within each pipeline and the builds within each job. Artifact
metadata is left out of that request, as it is expensive for the server
to compute across every build. It is only requested for a single build,
see `JenkinsApiHandler.build`.
"""
import base64
import dataclasses
import http.client
import json
import logging
import typing as t
import urllib.error
import urllib.parse
import urllib.request

from typing_extensions import runtime_checkable

logger = logging.getLogger(__name__)

_JSON_TYPE = t.Union[t.List[t.Dict[str, t.Any]], t.Dict[str, t.Any]]

DEFAULT_URL = "http://localhost:8080"
DEFAULT_TIMEOUT = 30.0
API_SUFFIX = "api/json"
ARTIFACT_SEGMENT = "artifact/"


class FetchError(Exception):
    """
    Raised when a request to the Jenkins server fails.

    Covers network failures, non-success HTTP statuses and response
    bodies which cannot be decoded into the expected objects.
    """


@runtime_checkable
class _DataclassProtocol(t.Protocol):
    """
    Define protocol for dataclass objects.

    Use as a type hint for dataclasses.
    """

    __dataclass_fields__: t.Dict
    __call__: t.Callable


def _json_name(field: dataclasses.Field) -> str:
    """Return the key used for the given field in Jenkins' JSON."""

    return field.metadata.get("json", field.name)


@dataclasses.dataclass(frozen=True)
class Artifact:
    """
    Item of the `artifacts` list of a Jenkins build.
    """

    file_name: str = dataclasses.field(metadata={"json": "fileName"})
    relative_path: str = dataclasses.field(metadata={"json": "relativePath"})

    def __repr__(self) -> str:
        return self.relative_path


@dataclasses.dataclass(frozen=True)
class Build:
    """
    Item of the `builds` list of a Jenkins job.

    `artifacts` is only populated when the build is requested on its
    own, see `JenkinsApiHandler.build`.
    """

    number: int
    url: str
    building: bool
    artifacts: t.Optional[t.List[Artifact]] = None

    def __repr__(self) -> str:
        return f"#{self.number}" + (" (running)" if self.building else "")


@dataclasses.dataclass(frozen=True)
class Job:
    """
    Item of the `jobs` list of a pipeline.
    """

    name: str
    url: str
    builds: t.List[Build] = dataclasses.field(default_factory=list)


@dataclasses.dataclass(frozen=True)
class Pipeline:
    """
    Top-level folder on the Jenkins server, holding jobs.
    """

    name: str
    jobs: t.List[Job] = dataclasses.field(default_factory=list)


@dataclasses.dataclass(frozen=True)
class Home:
    """
    Response to the root `api/json` endpoint.

    Jenkins calls every item `jobs`, here the top-level ones are
    pipelines.
    """

    pipelines: t.List[Pipeline] = dataclasses.field(
        default_factory=list, metadata={"json": "jobs"}
    )


@dataclasses.dataclass
class JenkinsApiContext:
    """
    Set Jenkins API parameters.

    `user` and `token` are only used when both are given, in which
    case requests are authenticated using HTTP Basic auth.
    """

    url: str = DEFAULT_URL
    user: t.Optional[str] = None
    token: t.Optional[str] = None
    timeout: float = DEFAULT_TIMEOUT

    @property
    def base_url(self) -> str:
        return self.url.rstrip("/")


def _list_item_type(field_type: t.Any) -> t.Optional[t.Any]:
    """
    Return the item type of a `t.List[...]` or `t.Optional[t.List[...]]`.

    Returns None for any other type.
    """

    if getattr(field_type, "__origin__", None) is t.Union:
        args = [arg for arg in field_type.__args__ if arg is not type(None)]
        if len(args) != 1:
            return None
        field_type = args[0]
    # If a field has a type of t.List[_DataclassProtocol], then it's
    # __origin__ attribute will be set to 'list' and it's __args__
    # attribute will contain the _DataclassProtocol as the first item.
    if getattr(field_type, "__origin__", None) is list:
        return field_type.__args__[0]
    return None


def _is_optional(field: dataclasses.Field) -> bool:
    return getattr(field.type, "__origin__", None) is t.Union


def tree_query(dataclass: _DataclassProtocol) -> str:
    """
    Build the value of Jenkins' `tree` query parameter for a dataclass.

    Nested lists of dataclasses become `key[...]` projections. Fields
    marked as optional are left out, so that e.g. artifacts are not
    requested for every build.

    >>> tree_query(Home)
    'jobs[name,jobs[name,url,builds[number,url,building]]]'
    """

    parts = []
    for field in dataclasses.fields(dataclass):
        if _is_optional(field):
            continue
        item_type = _list_item_type(field.type)
        if isinstance(item_type, _DataclassProtocol):
            parts.append(f"{_json_name(field)}[{tree_query(item_type)}]")
        else:
            parts.append(_json_name(field))
    return ",".join(parts)


def build_path(pipeline_name: str, job_name: str, number: int) -> str:
    """
    Return the canonical path of a build, relative to the server root.

    Each name is escaped as a single path segment.

    >>> build_path("core", "release/1.0", 12)
    '/job/core/job/release%2F1.0/12/'
    """

    pipeline_segment = urllib.parse.quote(pipeline_name, safe="")
    job_segment = urllib.parse.quote(job_name, safe="")
    return f"/job/{pipeline_segment}/job/{job_segment}/{number}/"


class JenkinsApiHandler:
    """
    Make requests to the Jenkins API and decode responses.

    Responses are never cached, every call results in a new request.

    Parameters
    ----------
    context : JenkinsApiContext
        Server location and credentials used for every request.
    """

    def __init__(self, context: JenkinsApiContext):
        """Create the JenkinsApiHandler"""

        self.context = context

    def _headers(self) -> t.Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.context.user and self.context.token:
            credentials = f"{self.context.user}:{self.context.token}"
            auth = base64.b64encode(credentials.encode("utf-8")).decode("utf-8")
            headers["Authorization"] = f"Basic {auth}"
        return headers

    @staticmethod
    def _parse_response(res: http.client.HTTPResponse) -> _JSON_TYPE:
        """
        Parse the response given in the HTTPResponse object as JSON.

        Raises
        ------
        FetchError
            If the body cannot be read or is not UTF-8 encoded JSON.
        """

        try:
            content_bytes = res.read()
        except (OSError, http.client.HTTPException) as err:
            raise FetchError(f"Unable to read response: {err}") from err

        try:
            content = content_bytes.decode("utf-8")
        except UnicodeDecodeError as err:
            raise FetchError(f"Response is not valid UTF-8: {err}") from err

        try:
            return json.loads(content)
        except json.decoder.JSONDecodeError as err:
            raise FetchError(f"Response is not valid JSON: {err}") from err

    def open(self, url: str) -> http.client.HTTPResponse:
        """
        Open the given url for reading, using the context's credentials.

        Raises
        ------
        FetchError
            If the request could not be made or the server answered
            with an error status.
        """

        request = urllib.request.Request(url, headers=self._headers(), method="GET")
        logger.debug("GET %s", url)
        try:
            return urllib.request.urlopen(request, timeout=self.context.timeout)
        except urllib.error.HTTPError as err:
            raise FetchError(f"GET {url} returned HTTP {err.code} {err.reason}") from err
        except urllib.error.URLError as err:
            raise FetchError(f"GET {url} failed: {err.reason}") from err
        except (OSError, http.client.HTTPException) as err:
            raise FetchError(f"GET {url} failed: {err}") from err

    def _do_request(
        self, endpoint: str, params: t.Optional[t.Dict[str, str]] = None
    ) -> _JSON_TYPE:
        """
        Perform a GET request against the Jenkins server.

        Parameters
        ----------
        endpoint : str
            Path to hit, relative to the server root.
        params : dict, optional
            Query parameters to append to the url.

        Return
        ------
        JSON decoded response.
        """

        url = self.context.base_url + endpoint
        if params:
            url += "?" + urllib.parse.urlencode(params)

        res = self.open(url)
        try:
            return self._parse_response(res)
        finally:
            res.close()

    @staticmethod
    def _validate_resp_keys(resp: t.Any, dataclass: _DataclassProtocol):
        """
        Validate that the resp dict has the keys required by the dataclass.

        Fields with defaults may be missing, unknown keys such as
        Jenkins' `_class` are allowed.

        Raises
        ------
        FetchError
            If the validation was not successful.
        """

        if not isinstance(resp, dict):
            raise FetchError(
                f"Response does not match expected object {dataclass.__name__}, "
                f"response: {resp}"
            )

        missing = [
            _json_name(f)
            for f in dataclasses.fields(dataclass)
            if f.default is dataclasses.MISSING
            and f.default_factory is dataclasses.MISSING
            and _json_name(f) not in resp
        ]
        if missing:
            missing_str = ", ".join([f'"{key}"' for key in missing])
            raise FetchError(
                f"Response does not match expected object, missing: {missing_str}, response: {resp}"
            )

    def _construct_resp(self, resp: t.Any, dataclass: _DataclassProtocol) -> t.Any:
        """
        Construct given response into dataclasses recursively.

        Validates the response along the way.

        Parameters
        ----------
        resp : dict
            Response to validate and parse
        dataclass : dataclass
            Top-level dataclass the response is fitted into.
        """

        self._validate_resp_keys(resp, dataclass)

        args = {}
        for field in dataclasses.fields(dataclass):
            key = _json_name(field)
            value = resp.get(key)
            # missing keys and null lists fall back to the field default
            if value is None and (
                key not in resp or field.default_factory is not dataclasses.MISSING
            ):
                continue
            item_type = _list_item_type(field.type)
            if isinstance(field.type, _DataclassProtocol):
                value = self._construct_resp(value, field.type)
            elif isinstance(item_type, _DataclassProtocol) and value is not None:
                if not isinstance(value, list):
                    raise FetchError(f'Expected a list under "{key}", got: {value}')
                value = [self._construct_resp(item, item_type) for item in value]
            args[field.name] = value
        return dataclass(**args)

    def home(self) -> t.List[Pipeline]:
        """
        Fetch the shallow tree of pipelines, jobs and builds.

        Raises
        ------
        FetchError
            If the request fails or the response cannot be turned into
            a list of `Pipeline` dataclasses.

        Returns
        -------
        list of Pipeline
        """

        result = self._do_request("/" + API_SUFFIX, {"tree": tree_query(Home)})
        home = self._construct_resp(result, Home)
        logger.info("Fetched %d pipelines", len(home.pipelines))
        return home.pipelines

    def build(self, pipeline_name: str, job_name: str, number: int) -> Build:
        """
        Fetch the full representation of a single build, artifacts included.

        Raises
        ------
        FetchError
            If the request fails or the response cannot be turned into
            a `Build` dataclass.

        Returns
        -------
        Build
        """

        result = self._do_request(build_path(pipeline_name, job_name, number) + API_SUFFIX)
        build = self._construct_resp(result, Build)
        logger.info(
            "Fetched build %s/%s #%d with %d artifacts",
            pipeline_name,
            job_name,
            number,
            len(build.artifacts or []),
        )
        return build

    def artifact_url(self, path: str, artifact: Artifact) -> str:
        """
        Return the download url of an artifact of the build at `path`.

        `path` is a build path as returned by `build_path`. The relative
        path is escaped, keeping its `/` separators.

        >>> api = JenkinsApiHandler(JenkinsApiContext("http://ci"))
        >>> api.artifact_url("/job/a/job/b/1/", Artifact("r.txt", "out/my r.txt"))
        'http://ci/job/a/job/b/1/artifact/out/my%20r.txt'
        """

        relative_path = urllib.parse.quote(artifact.relative_path)
        return self.context.base_url + path + ARTIFACT_SEGMENT + relative_path
