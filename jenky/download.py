"""
Download artifacts of a Jenkins build into a local directory.
"""
import http.client
import logging
import typing as t
from pathlib import Path

import rich.markup
import rich.progress

from jenky.api import Artifact, FetchError, JenkinsApiHandler

logger = logging.getLogger(__name__)

# Small enough for the progress bar to update frequently
CHUNK_SIZE = 8192


class ArtifactError(Exception):
    """Base class for errors raised while downloading a single artifact."""

    def __init__(self, artifact: Artifact, reason: str):
        super().__init__(f"{artifact.relative_path}: {reason}")
        self.artifact = artifact
        self.reason = reason


class DownloadError(ArtifactError):
    """The artifact could not be retrieved from the server."""


class WriteError(ArtifactError):
    """The artifact could not be written to the destination directory."""

    def __init__(self, artifact: Artifact, path: Path, reason: str):
        super().__init__(artifact, f"unable to write {path}: {reason}")
        self.path = path


def make_progress() -> rich.progress.Progress:
    return rich.progress.Progress(
        rich.progress.TextColumn("{task.description}"),
        rich.progress.TextColumn("[bold blue]{task.fields[filename]}", justify="left"),
        rich.progress.BarColumn(bar_width=None),
        "[progress.percentage]{task.percentage:>3.1f}%",
        "*",
        rich.progress.DownloadColumn(),
        "*",
        rich.progress.TransferSpeedColumn(),
        "*",
        rich.progress.TimeRemainingColumn(),
        transient=True,
    )


def save_artifact_urls(
    api: JenkinsApiHandler, path: str, artifacts: t.Iterable[Artifact], url_file: Path
) -> int:
    """
    Write newline-separated download urls of the artifacts into given file.

    Returns the number of urls written.
    """

    count = 0
    with open(url_file, "w", encoding="utf-8") as url_file_handler:
        for artifact in artifacts:
            url_file_handler.write(f"{api.artifact_url(path, artifact)}\n")
            count += 1
    logger.info("Wrote %d artifact urls to %s", count, url_file)
    return count


class Downloader:
    """
    Download artifacts one at a time, showing progress along the way.

    Parameters
    ----------
    api : JenkinsApiHandler
        Handler used to build urls and open connections.
    progress : rich.progress.Progress, optional
        Progress display to report to. One is created if not given.
    """

    def __init__(
        self,
        api: JenkinsApiHandler,
        progress: t.Optional[rich.progress.Progress] = None,
    ):
        self.api = api
        self.progress = progress if progress is not None else make_progress()

    def download(self, artifact: Artifact, path: str, dest_dir: Path) -> Path:
        """
        Download a single artifact of the build at `path` into `dest_dir`.

        The file is named after the artifact's file name, replacing any
        existing file. A partially written file is removed on failure.

        Raises
        ------
        DownloadError
            If the artifact could not be fetched or read from the server.
        WriteError
            If the destination file could not be written.

        Returns
        -------
        Path of the written file.
        """

        url = self.api.artifact_url(path, artifact)
        dest_path = Path(dest_dir) / artifact.file_name
        task_id = self.progress.add_task(
            "[bold yellow] ...",
            filename=rich.markup.escape(artifact.file_name),
            start=False,
        )

        try:
            response = self.api.open(url)
        except FetchError as err:
            self._fail(task_id, artifact, err)
            raise DownloadError(artifact, str(err)) from err

        try:
            content_length = response.info().get("Content-Length", None)
            if content_length is not None and content_length.isdigit():
                self.progress.update(task_id, total=int(content_length))

            try:
                dest_file = open(dest_path, "wb")
            except OSError as err:
                self._fail(task_id, artifact, err)
                raise WriteError(artifact, dest_path, str(err)) from err

            with dest_file:
                self.progress.start_task(task_id)
                while True:
                    try:
                        data = response.read(CHUNK_SIZE)
                    except (OSError, http.client.HTTPException) as err:
                        self._fail(task_id, artifact, err)
                        dest_path.unlink(missing_ok=True)
                        raise DownloadError(artifact, str(err)) from err
                    if not data:
                        break
                    try:
                        dest_file.write(data)
                    except OSError as err:
                        self._fail(task_id, artifact, err)
                        dest_path.unlink(missing_ok=True)
                        raise WriteError(artifact, dest_path, str(err)) from err
                    self.progress.update(task_id, advance=len(data))
        finally:
            response.close()

        self.progress.print(
            f"[bold green] {rich.markup.escape(artifact.relative_path)}"
        )
        self.progress.stop_task(task_id)
        self.progress.remove_task(task_id)
        logger.info("Downloaded %s to %s", url, dest_path)
        return dest_path

    def _fail(self, task_id: rich.progress.TaskID, artifact: Artifact, err: Exception):
        self.progress.update(task_id=task_id, description="[bold red] FAIL", refresh=True)
        self.progress.console.print(
            f"🚨 Unable to download {rich.markup.escape(artifact.relative_path)}:"
            f"[bold red] {rich.markup.escape(str(err))}"
        )
        self.progress.stop_task(task_id)
        logger.debug("Download of %s failed", artifact.relative_path, exc_info=err)

    def download_all(
        self, artifacts: t.Sequence[Artifact], path: str, dest_dir: Path
    ) -> t.List[ArtifactError]:
        """
        Download every artifact in turn, each fully written before the next.

        A failed artifact does not stop the remaining ones.

        Returns
        -------
        List of collected errors, empty if every download succeeded.
        """

        errors: t.List[ArtifactError] = []
        with self.progress:
            for artifact in artifacts:
                try:
                    self.download(artifact, path, dest_dir)
                except ArtifactError as err:
                    errors.append(err)
        return errors
