#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Command line browser and artifact downloader for Jenkins.

Lists the builds of every job within every pipeline (top-level folder)
of a Jenkins server, narrowed down by regular expressions on pipeline
name, job name and build number. When exactly one build matches,
its artifacts can be listed, filtered by file name and downloaded.

References:
* https://www.jenkins.io/doc/book/using/remote-access-api/
"""
import logging
import sys
import typing as t
from pathlib import Path

import click
import questionary
import rich.console
from dotenv import find_dotenv, load_dotenv

from jenky import __version__
from jenky.api import (
    DEFAULT_TIMEOUT,
    DEFAULT_URL,
    FetchError,
    JenkinsApiContext,
    JenkinsApiHandler,
)
from jenky.download import Downloader, save_artifact_urls
from jenky.search import (
    InvalidPatternError,
    SkipKind,
    SkipReason,
    compile_patterns,
    filter_builds,
    resolve_artifacts,
)
from jenky.table import build_table


def print_error(header: str, msg: t.Optional[str] = None):
    """
    Print the given error header and message.
    """

    questionary.print("🚨 " + header + (":" if msg is not None else ""), style="bold")
    if msg:
        questionary.print(msg)


def print_error_and_exit(header: str, msg: t.Optional[str] = None):
    """
    Print the given error header and message and then exit with rc 1.
    """

    print_error(header, msg)
    sys.exit(1)


def confirm_download(count: int, dest_dir: Path) -> bool:
    """
    Ask the user whether to download the artifacts.

    An interrupted prompt counts as a no.
    """

    answer = questionary.confirm(
        f"💾 Download {count} artifacts into {str(dest_dir)}?", default=False
    ).ask()
    return bool(answer)


class DotenvCommand(click.Command):
    """
    Command which loads a `.env` file before reading its options.

    The file is looked up from the working directory upwards. Variables
    already set in the environment are left untouched.
    """

    def make_context(self, info_name, args, parent=None, **extra):
        load_dotenv(find_dotenv(usecwd=True))
        return super().make_context(info_name, args, parent=parent, **extra)


@click.command(cls=DotenvCommand)
@click.version_option(__version__, prog_name="jenky")
@click.argument("job_arg", metavar="[JOB]", required=False)
@click.option(
    "--url",
    envvar="JENKINS_URL",
    default=DEFAULT_URL,
    show_default=True,
    help="Base url of the Jenkins server. Read from JENKINS_URL if set.",
)
@click.option(
    "--user", envvar="JENKINS_USER", default=None, help="User to authenticate as."
)
@click.option(
    "--token",
    envvar="JENKINS_TOKEN",
    default=None,
    help="API token of the user. Only used together with --user.",
)
@click.option(
    "--timeout",
    envvar="JENKINS_TIMEOUT",
    type=float,
    default=DEFAULT_TIMEOUT,
    show_default=True,
    help="Timeout in seconds for each request.",
)
@click.option("-p", "--pipeline", default=None, help="A regex pattern to filter pipelines.")
@click.option(
    "-j",
    "--job",
    default=None,
    help="A regex pattern to filter jobs. Takes precedence over JOB.",
)
@click.option("-b", "--build", default=None, help="A regex pattern to filter builds.")
@click.option(
    "-a",
    "--artifact",
    "--artifacts",
    "artifact",
    default=None,
    help="A regex pattern to filter build artifacts. "
    "For performance, artifacts can only be retrieved for one build at a time.",
)
@click.option(
    "-o",
    "--output-dir",
    envvar="JENKINS_DOWNLOAD_DIR",
    type=click.Path(path_type=Path),
    default=None,
    help="Destination directory for storing downloaded artifacts. Defaults to current directory.",
)
@click.option(
    "--url-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Place URLs of the matched artifacts into given file.",
)
@click.option(
    "-y",
    "--yes",
    is_flag=True,
    default=False,
    help="Download matched artifacts without asking for confirmation.",
)
@click.option("-v", "--verbose", is_flag=True, default=False, help="Enable debug logging.")
def main(
    job_arg,
    url,
    user,
    token,
    timeout,
    pipeline,
    job,
    build,
    artifact,
    output_dir,
    url_file,
    yes,
    verbose,
):
    """Command line browser and artifact downloader for Jenkins!"""

    logging.basicConfig(
        format="%(levelname)s:%(lineno)s:%(message)s",
        level=logging.DEBUG if verbose else logging.WARNING,
    )
    if job is None:
        job = job_arg
    if output_dir is None:
        output_dir = Path(".")

    try:
        patterns = compile_patterns(pipeline, job, build, artifact)
    except InvalidPatternError as err:
        print_error_and_exit(f"Invalid {err.filter_name} filter", str(err))

    api = JenkinsApiHandler(
        JenkinsApiContext(url=url, user=user, token=token, timeout=timeout)
    )

    try:
        pipelines = api.home()
    except FetchError as err:
        print_error_and_exit(f"Unable to fetch pipelines from {url}", str(err))

    matches = filter_builds(pipelines, patterns.pipeline, patterns.job, patterns.build)

    artifacts = None
    try:
        resolved = resolve_artifacts(api, matches, patterns.artifact)
    except FetchError as err:
        print_error(f"Unable to fetch artifacts of {matches[0]}", str(err))
    else:
        if isinstance(resolved, SkipReason):
            if resolved.kind is not SkipKind.NOT_REQUESTED:
                questionary.print(resolved.message, style="italic")
        else:
            artifacts = resolved
            if not artifacts:
                questionary.print(
                    f"No artifacts of {matches[0]} matched '{artifact}'", style="italic"
                )

    if artifacts:
        path = matches[0].path
        if url_file is not None:
            try:
                count = save_artifact_urls(api, path, artifacts, url_file)
            except OSError as err:
                print_error(f"Unable to write urls to {str(url_file)}", str(err))
            else:
                questionary.print(
                    f"Wrote {count} urls to {str(url_file.absolute())}", style="bold"
                )

        if yes or confirm_download(len(artifacts), output_dir.absolute()):
            questionary.print(
                f"💾 Downloading {len(artifacts)} artifacts...", style="italic"
            )
            errors = Downloader(api).download_all(artifacts, path, output_dir)
            if errors:
                print_error(
                    f"{len(errors)} of {len(artifacts)} artifacts failed to download",
                    "\n".join(str(err) for err in errors),
                )
        else:
            questionary.print("Skipping download", style="italic")

    rich.console.Console().print(build_table(matches, artifacts))


if __name__ == "__main__":
    main()
