"""Read recently changed files and their authors from git history."""

from __future__ import annotations

import logging
import subprocess

from pytest_gamify import constants
from pytest_gamify.models import BuildParameters, SourceFileDetails

logger = logging.getLogger(__name__)

COMMIT_MARKER = "@@commit"
_SEPARATOR = "\x1f"


def _git(workspace: str, *args: str) -> str | None:
    try:
        result = subprocess.run(
            ["git", *args],
            cwd=workspace or None,
            capture_output=True,
            text=True,
            check=True,
        )
    except (subprocess.CalledProcessError, FileNotFoundError, NotADirectoryError) as e:
        logger.warning("git %s failed in %s: %s", " ".join(args), workspace, e)
        return None
    return result.stdout


def _is_candidate(path: str) -> bool:
    """Only non-test source files of the configured languages are candidates."""
    segments = path.replace("\\", "/").split("/")
    if "test" in segments[:-1] or "tests" in segments[:-1]:
        return False
    extension = segments[-1].rsplit(".", 1)[-1] if "." in segments[-1] else ""
    return extension in constants.SOURCE_EXTENSIONS


def _parse_log(log_output: str) -> list[tuple[str, set[str]]]:
    """Parse ``git log --name-only`` output into (path, authors) in recency order."""
    order: list[str] = []
    authors: dict[str, set[str]] = {}
    current: set[str] = set()

    for raw in log_output.splitlines():
        line = raw.strip()
        if not line:
            continue
        if line.startswith(COMMIT_MARKER):
            fields = line[len(COMMIT_MARKER):].split(_SEPARATOR)
            current = {f.strip() for f in fields if f.strip()}
            continue
        if not _is_candidate(line):
            continue
        if line not in authors:
            order.append(line)
            authors[line] = set()
        authors[line].update(current)

    return [(path, authors[path]) for path in order]


def last_changed_files(parameters: BuildParameters) -> list[SourceFileDetails]:
    """Source files changed within the last ``search_commit_count`` commits."""
    output = _git(
        parameters.workspace,
        "log",
        "-n",
        str(parameters.search_commit_count),
        "--name-only",
        f"--format={COMMIT_MARKER}%x1f%an%x1f%ae",
    )
    if output is None:
        return []

    files = []
    for path, changed_by in _parse_log(output):
        details = SourceFileDetails(path, parameters)
        for identity in changed_by:
            details.add_user(identity)
        files.append(details)
    logger.debug("Found %d recently changed source files", len(files))
    return files


def head_identity(workspace: str) -> tuple[str, str] | None:
    """Name and e-mail of the author of ``HEAD``."""
    output = _git(workspace, "log", "-1", "--format=%an%x1f%ae")
    if not output or _SEPARATOR not in output:
        return None
    name, email = output.strip().split(_SEPARATOR, 1)
    return name.strip(), email.strip()


def head_authors(workspace: str) -> set[str]:
    identity = head_identity(workspace)
    if identity is None:
        return set()
    return {part for part in identity if part}


def current_branch(workspace: str) -> str:
    output = _git(workspace, "rev-parse", "--abbrev-ref", "HEAD")
    if not output:
        return ""
    return output.strip()
