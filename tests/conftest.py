"""Test configuration and fixtures."""

import shutil
import tempfile
from pathlib import Path

import pytest

from duckrow.assets import AssetKind, default_handler_registry
from duckrow.exceptions import SystemInstallError
from duckrow.git import CloneError, CloneErrorKind
from duckrow.orchestrator import Orchestrator
from duckrow.registry import RegistryManager
from duckrow.systems import default_catalog

SKILLS_URL = "https://github.com/acme/skills.git"
DEFAULT_COMMIT = "a" * 40


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "network: tests that make real network requests")
    config.addinivalue_line("markers", "slow: tests taking > 5 seconds")


@pytest.fixture(autouse=True)
def isolated_home(tmp_path_factory, monkeypatch):
    """Keep tests away from the real home directory and ~/.duckrow."""
    home = tmp_path_factory.mktemp("home")
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("DUCKROW_HOME", str(home / ".duckrow"))
    monkeypatch.delenv("XDG_CONFIG_HOME", raising=False)
    monkeypatch.delenv("CODEX_HOME", raising=False)
    return home


class FakeGit:
    """Git double that copies fixture directories instead of cloning.

    Args:
        repos: Fixture directory per clone URL
        commits: Commit per sub-path returned by ``last_commit``
    """

    def __init__(self, repos: dict[str, Path] | None = None, commits: dict[str, str] | None = None):
        self.repos = dict(repos or {})
        self.commits = dict(commits or {})
        self.clones: list[tuple[str, str, bool]] = []
        self.pinned: list[tuple[str, str]] = []
        self.pulls: list[Path] = []
        self.log_calls: list[str] = []

    def _copy(self, url: str) -> Path:
        if url not in self.repos:
            raise CloneError(
                CloneErrorKind.REPO_NOT_FOUND,
                url,
                f"git clone {url}",
                "remote: Repository not found.",
            )
        dest = Path(tempfile.mkdtemp(prefix="duckrow-test-clone-"))
        shutil.copytree(self.repos[url], dest, dirs_exist_ok=True)
        return dest

    def clone(self, url: str, ref: str = "", *, shallow: bool = True) -> Path:
        self.clones.append((url, ref, shallow))
        return self._copy(url)

    def clone_pinned(self, url: str, commit: str) -> Path:
        self.pinned.append((url, commit))
        return self._copy(url)

    def pull(self, repo_dir: Path) -> None:
        self.pulls.append(repo_dir)

    def last_commit(self, repo_dir: Path, sub_path: str = "") -> str:
        self.log_calls.append(sub_path)
        return self.commits.get(sub_path, DEFAULT_COMMIT)

    @property
    def network_calls(self) -> int:
        return len(self.clones) + len(self.pinned)


class RecordingSystem:
    """Minimal system that records installs and can be told to fail."""

    def __init__(
        self,
        name: str,
        kinds: tuple[AssetKind, ...] = (AssetKind.SKILL,),
        *,
        fail: bool = False,
        universal: bool = True,
    ):
        self.name = name
        self.display_name = name.title()
        self.kinds = kinds
        self.fail = fail
        self.universal = universal
        self.installed: dict[tuple[AssetKind, str], bool] = {}

    def is_universal(self) -> bool:
        return self.universal

    def supports(self, kind: AssetKind) -> bool:
        return kind in self.kinds

    def supported_kinds(self) -> list[AssetKind]:
        return list(self.kinds)

    def is_installed(self) -> bool:
        return False

    def is_active_in_folder(self, folder: Path) -> bool:
        return False

    def install(self, asset, project_dir: Path, *, force: bool = False) -> None:
        if self.fail:
            raise SystemInstallError(f"{self.name} refused {asset.name}")
        self.installed[(asset.kind, asset.name)] = True

    def remove(self, kind: AssetKind, name: str, project_dir: Path) -> None:
        self.installed.pop((kind, name), None)

    def scan(self, kind: AssetKind, project_dir: Path) -> list:
        return []

    def asset_dir(self, kind: AssetKind, project_dir: Path) -> Path | None:
        return None

    def artifact_path(self, kind: AssetKind, name: str, project_dir: Path) -> Path | None:
        return None


def write_skill(
    root: Path,
    rel: str,
    name: str,
    description: str = "A test skill",
    internal: bool = False,
) -> Path:
    """Create ``<root>/<rel>/SKILL.md`` with frontmatter."""
    skill_dir = root / rel
    skill_dir.mkdir(parents=True, exist_ok=True)
    metadata = "metadata:\n  author: acme\n  internal: true\n" if internal else "metadata:\n  author: acme\n"
    (skill_dir / "SKILL.md").write_text(
        f"---\nname: {name}\ndescription: {description}\n{metadata}---\n\n# {name}\n"
    )
    return skill_dir


def write_agent(root: Path, rel: str, name: str, description: str = "Reviews code") -> Path:
    """Create an agent Markdown file with a claude-code override block."""
    path = root / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        f"---\nname: {name}\ndescription: {description}\n"
        "claude-code:\n  model: opus\n---\n\nYou review code.\n"
    )
    return path


@pytest.fixture
def skill_repo(tmp_path):
    """A repository with two public skills, one internal skill and an agent."""
    repo = tmp_path / "fixtures" / "acme-skills"
    write_skill(repo, "skills/lint", "lint", "Lints code")
    write_skill(repo, "skills/review", "review", "Reviews changes")
    write_skill(repo, "skills/secret", "secret", "Internal only", internal=True)
    (repo / "skills" / "lint" / "README.md").write_text("# not copied\n")
    (repo / "skills" / "lint" / "rules.txt").write_text("no tabs\n")
    write_agent(repo, "agents/reviewer.md", "reviewer")
    return repo


@pytest.fixture
def fake_git(skill_repo):
    return FakeGit(
        repos={SKILLS_URL: skill_repo},
        commits={"skills/lint": "1" * 40, "skills/review": "2" * 40},
    )


@pytest.fixture
def project_dir(tmp_path):
    project = tmp_path / "project"
    project.mkdir()
    return project


@pytest.fixture
def handlers():
    return default_handler_registry()


@pytest.fixture
def catalog():
    return default_catalog()


@pytest.fixture
def registry_manager(tmp_path, handlers, fake_git):
    return RegistryManager(tmp_path / "registries", handlers, fake_git)


@pytest.fixture
def orchestrator(handlers, catalog, fake_git, registry_manager):
    return Orchestrator(handlers, catalog, fake_git, registry_manager)


@pytest.fixture
def make_skill():
    """Factory for SKILL.md directories."""
    return write_skill


@pytest.fixture
def make_agent():
    """Factory for agent Markdown files."""
    return write_agent


@pytest.fixture
def git_factory():
    """Build a FakeGit with custom repositories."""
    return FakeGit


@pytest.fixture
def system_factory():
    """Build RecordingSystem doubles."""
    return RecordingSystem
