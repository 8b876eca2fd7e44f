"""Git subprocess integration.

Every git process runs with ``GIT_TERMINAL_PROMPT=0`` so that a missing
credential fails fast instead of hanging on a prompt, and with a timeout
after which the process is killed.

Failures are reported as :class:`CloneError`, classified from git's output
into a closed set of kinds, each carrying remediation hints.
"""

import logging
import os
import shutil
import subprocess
import tempfile
from enum import Enum
from pathlib import Path
from typing import Protocol, runtime_checkable

from duckrow.constants import CLONE_TIMEOUT, LOG_TIMEOUT, PULL_TIMEOUT
from duckrow.exceptions import DuckrowError

logger = logging.getLogger(__name__)


class CloneErrorKind(Enum):
    """Why a git operation failed."""

    UNKNOWN = "Unknown Error"
    AUTH = "Authentication Required"
    REPO_NOT_FOUND = "Repository Not Found"
    NETWORK = "Network Error"
    SSH_KEY = "SSH Key Error"
    HOST_KEY = "SSH Host Key Error"
    TIMEOUT = "Timeout"


# Checked in order; the first kind with a matching substring wins.
_CLASSIFIERS: tuple[tuple[CloneErrorKind, tuple[str, ...]], ...] = (
    (CloneErrorKind.TIMEOUT, ("timed out",)),
    (
        CloneErrorKind.SSH_KEY,
        ("permission denied (publickey)", "no such identity", "load key", "identity file"),
    ),
    (CloneErrorKind.HOST_KEY, ("host key verification failed", "known_hosts")),
    (
        CloneErrorKind.AUTH,
        (
            "could not read username",
            "could not read password",
            "invalid credentials",
            "authentication failed",
            "401",
            "403",
            "logon failed",
        ),
    ),
    (
        CloneErrorKind.REPO_NOT_FOUND,
        ("repository not found", "does not appear to be a git repository", "not found"),
    ),
    (
        CloneErrorKind.NETWORK,
        (
            "could not resolve host",
            "connection refused",
            "network is unreachable",
            "no route to host",
            "name or service not known",
        ),
    ),
)

_CONVERTIBLE_HOSTS = ("github.com", "gitlab.com")


class CloneError(DuckrowError):
    """A classified git failure.

    Attributes:
        kind: Classified failure kind
        protocol: "ssh" or "https"
        url: URL that was being cloned or pulled
        command: The git command that was run, for display
        raw_output: Combined git output
        hints: Actionable suggestions for the user
    """

    def __init__(
        self,
        kind: CloneErrorKind,
        url: str,
        command: str,
        raw_output: str,
        hints: list[str] | None = None,
    ) -> None:
        self.kind = kind
        self.url = url
        self.protocol = detect_protocol(url)
        self.command = command
        self.raw_output = raw_output.strip()
        self.hints = hints if hints is not None else hints_for(kind, self.protocol, url)
        super().__init__(f"git clone failed ({kind.value}): {self._first_line()}")

    def _first_line(self) -> str:
        for line in self.raw_output.splitlines():
            line = line.strip()
            if line and not line.startswith("Cloning into"):
                return line
        return self.raw_output or "clone failed"


def detect_protocol(url: str) -> str:
    """Return "ssh" or "https" for a clone URL."""
    if url.startswith(("git@", "ssh://")):
        return "ssh"
    return "https"


def classify_output(output: str) -> CloneErrorKind:
    """Pattern-match git output to a CloneErrorKind.

    Unmatched output is UNKNOWN; classification never raises.
    """
    lower = output.lower()
    for kind, needles in _CLASSIFIERS:
        if any(needle in lower for needle in needles):
            return kind
    return CloneErrorKind.UNKNOWN


def https_to_ssh(url: str) -> str:
    """Convert a GitHub/GitLab HTTPS URL to SSH form, or "" if not possible.

    Examples:
        >>> https_to_ssh("https://github.com/acme/widgets")
        'git@github.com:acme/widgets.git'
    """
    for host in _CONVERTIBLE_HOSTS:
        prefix = f"https://{host}/"
        if url.startswith(prefix):
            path = url[len(prefix):]
            if not path.endswith(".git"):
                path += ".git"
            return f"git@{host}:{path}"
    return ""


def ssh_to_https(url: str) -> str:
    """Convert a GitHub/GitLab SSH URL to HTTPS form, or "" if not possible.

    Examples:
        >>> ssh_to_https("git@gitlab.com:acme/widgets.git")
        'https://gitlab.com/acme/widgets.git'
    """
    if not url.startswith("git@"):
        return ""
    host, sep, path = url.removeprefix("git@").partition(":")
    if not sep or host not in _CONVERTIBLE_HOSTS:
        return ""
    return f"https://{host}/{path}"


def hints_for(kind: CloneErrorKind, protocol: str, url: str) -> list[str]:
    """Remediation hints for a failure kind."""
    if kind == CloneErrorKind.AUTH:
        hints = [
            "Run `gh auth login` in your terminal to authenticate with GitHub",
            "Or configure a git credential helper: `git config --global credential.helper store`",
        ]
        ssh_url = https_to_ssh(url) if protocol == "https" else ""
        if ssh_url:
            hints.append(f"Try SSH instead: {ssh_url}")
        return hints

    if kind == CloneErrorKind.SSH_KEY:
        hints = [
            "Ensure your SSH key is loaded: `ssh-add -l`",
            "If no keys are listed, add one: `ssh-add ~/.ssh/id_ed25519`",
            "Check `~/.ssh/config` for the correct Host alias if using multiple accounts",
        ]
        https_url = ssh_to_https(url) if protocol == "ssh" else ""
        if https_url:
            hints.append(f"Try HTTPS instead: {https_url}")
        return hints

    if kind == CloneErrorKind.HOST_KEY:
        return [
            "The SSH host key is not trusted. Run: `ssh-keyscan github.com >> ~/.ssh/known_hosts`",
            "Or connect once manually: `ssh -T git@github.com` and accept the host key",
        ]

    if kind == CloneErrorKind.REPO_NOT_FOUND:
        return [
            "Verify the repository URL is correct",
            "Ensure you have access to this repository (it may be private)",
            "If using SSH, check that your key has access to this organization",
        ]

    if kind == CloneErrorKind.NETWORK:
        return [
            "Check your internet connection",
            "Verify the hostname in the URL is correct",
            "If behind a proxy, ensure git is configured to use it",
        ]

    if kind == CloneErrorKind.TIMEOUT:
        return [
            f"The operation timed out after {CLONE_TIMEOUT} seconds",
            "This may indicate a network issue or a very large repository",
            "Try again; the server may have been temporarily unavailable",
        ]

    return [
        "Check the error message above for details",
        "Verify the repository URL is correct and accessible",
        "Try cloning manually: `git clone <url>` to diagnose the issue",
    ]


def format_clone_command(url: str, ref: str = "", *, shallow: bool = True) -> str:
    """Build the display string for a clone command."""
    args = ["git", "clone"]
    if shallow:
        args += ["--depth", "1"]
    if ref:
        args += ["--branch", ref]
    args.append(url)
    return " ".join(args)


def remove_clone(path: Path) -> None:
    """Delete a temporary clone; failures are logged, never raised."""
    try:
        shutil.rmtree(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.debug("Could not remove clone %s: %s", path, e)


class _GitFailed(Exception):
    """Internal: a git invocation exited non-zero, timed out or could not start."""

    def __init__(self, output: str) -> None:
        super().__init__(output)
        self.output = output


@runtime_checkable
class GitBackend(Protocol):
    """The git operations the install and update pipelines depend on."""

    def clone(self, url: str, ref: str = "", *, shallow: bool = True) -> Path:
        """Clone into a fresh temporary directory and return it."""
        ...

    def clone_pinned(self, url: str, commit: str) -> Path:
        """Fetch exactly one commit into a fresh temporary directory."""
        ...

    def pull(self, repo_dir: Path) -> None:
        """Fast-forward an existing clone."""
        ...

    def last_commit(self, repo_dir: Path, sub_path: str = "") -> str:
        """Return the newest commit touching ``sub_path``."""
        ...


class GitClient:
    """Runs git as a subprocess."""

    def __init__(self, executable: str = "git") -> None:
        self.executable = executable

    def _run(self, args: list[str], *, timeout: int, cwd: Path | None = None) -> str:
        env = {**os.environ, "GIT_TERMINAL_PROMPT": "0"}
        logger.debug("Running %s %s", self.executable, " ".join(args))
        try:
            result = subprocess.run(
                [self.executable, *args],
                cwd=cwd,
                env=env,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired:
            raise _GitFailed(f"command timed out after {timeout}s")
        except FileNotFoundError:
            raise _GitFailed(f"{self.executable} executable not found")

        output = (result.stdout or "") + (result.stderr or "")
        if result.returncode != 0:
            raise _GitFailed(output)
        return result.stdout

    def clone_into(self, url: str, dest: Path, ref: str = "", *, shallow: bool = True) -> None:
        """Clone ``url`` into ``dest``.

        Raises:
            CloneError: If git fails
        """
        args = ["clone"]
        if shallow:
            args += ["--depth", "1"]
        if ref:
            args += ["--branch", ref]
        args += [url, str(dest)]

        try:
            self._run(args, timeout=CLONE_TIMEOUT)
        except _GitFailed as e:
            kind = classify_output(e.output)
            raise CloneError(kind, url, format_clone_command(url, ref, shallow=shallow), e.output) from None

    def clone(self, url: str, ref: str = "", *, shallow: bool = True) -> Path:
        """Clone into a fresh temporary directory.

        Args:
            url: Clone URL
            ref: Branch or tag; default branch when empty
            shallow: Fetch only the tip commit. Per-path commit resolution
                needs full history, so callers that resolve commits pass False.

        Returns:
            Path to the clone; the caller owns and removes it

        Raises:
            CloneError: If git fails
        """
        tmp_dir = Path(tempfile.mkdtemp(prefix="duckrow-clone-"))
        try:
            self.clone_into(url, tmp_dir, ref, shallow=shallow)
        except CloneError:
            remove_clone(tmp_dir)
            raise
        return tmp_dir

    def clone_pinned(self, url: str, commit: str) -> Path:
        """Fetch a single commit without cloning full history.

        Runs init, remote add, ``fetch --depth 1 origin <commit>`` and
        ``checkout FETCH_HEAD``.

        Raises:
            CloneError: If any step fails
        """
        tmp_dir = Path(tempfile.mkdtemp(prefix="duckrow-clone-"))
        steps = [
            ["init", str(tmp_dir)],
            ["-C", str(tmp_dir), "remote", "add", "origin", url],
            ["-C", str(tmp_dir), "fetch", "--depth", "1", "origin", commit],
            ["-C", str(tmp_dir), "checkout", "FETCH_HEAD"],
        ]
        for args in steps:
            try:
                self._run(args, timeout=CLONE_TIMEOUT)
            except _GitFailed as e:
                remove_clone(tmp_dir)
                kind = classify_output(e.output)
                hints = hints_for(kind, detect_protocol(url), url)
                if "fetch" in args:
                    hints.insert(0, f"Commit {commit} may no longer exist in the remote (force-pushed away?)")
                raise CloneError(kind, url, "git " + " ".join(args), e.output, hints) from None
        return tmp_dir

    def pull(self, repo_dir: Path) -> None:
        """Fast-forward a clone.

        Raises:
            CloneError: If the pull fails
        """
        try:
            self._run(["pull", "--ff-only"], cwd=repo_dir, timeout=PULL_TIMEOUT)
        except _GitFailed as e:
            url = self.remote_url(repo_dir)
            raise CloneError(classify_output(e.output), url, "git pull --ff-only", e.output) from None

    def remote_url(self, repo_dir: Path) -> str:
        """Return the origin URL of a clone, or "" if it cannot be read."""
        try:
            return self._run(["remote", "get-url", "origin"], cwd=repo_dir, timeout=LOG_TIMEOUT).strip()
        except _GitFailed:
            return ""

    def last_commit(self, repo_dir: Path, sub_path: str = "") -> str:
        """Return the most recent commit touching ``sub_path``.

        Runs ``git log -1 --format=%H -- <sub_path>``; the whole repository
        is considered when ``sub_path`` is empty.

        Raises:
            DuckrowError: If git fails or no commit touches the path
        """
        args = ["-C", str(repo_dir), "log", "-1", "--format=%H"]
        if sub_path and sub_path != ".":
            args += ["--", sub_path]
        try:
            commit = self._run(args, timeout=LOG_TIMEOUT).strip()
        except _GitFailed as e:
            raise DuckrowError(f"Could not read commit history: {e.output.strip()}") from None
        if not commit:
            raise DuckrowError(f"No commits found for path '{sub_path}' in {repo_dir}")
        return commit
