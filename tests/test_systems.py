"""Tests for duckrow.systems (catalog, skill links, MCP configs, agents)."""

import json
import os

import json5
import pytest

from duckrow.assets import AgentData, Asset, AssetKind, McpMeta, SkillMeta
from duckrow.constants import CANONICAL_SKILLS_DIR
from duckrow.exceptions import AlreadyInstalledError, McpConfigError, SystemInstallError, UnknownSystemError
from duckrow.systems import System
from duckrow.systems import mcp_config


def _skill(name="lint"):
    return Asset(kind=AssetKind.SKILL, name=name, meta=SkillMeta())


def _mcp(name="github", **meta):
    return Asset(kind=AssetKind.MCP, name=name, meta=McpMeta(**meta))


def _agent(name="reviewer"):
    data = AgentData(
        frontmatter={"name": name, "description": "Reviews", "claude-code": {"model": "opus"}},
        body="Review.\n",
    )
    return Asset(kind=AssetKind.AGENT, name=name, meta=data)


def _write_canonical(project_dir, make_skill, name="lint"):
    return make_skill(project_dir, f"{CANONICAL_SKILLS_DIR}/{name}", name)


class TestCatalog:
    """Tests for SystemCatalog."""

    def test_default_order_universal_first(self, catalog):
        """Universal systems are listed before the others."""
        assert catalog.names() == [
            "opencode",
            "codex",
            "github-copilot",
            "gemini-cli",
            "claude-code",
            "cursor",
            "goose",
        ]
        assert [s.name for s in catalog.universal()] == catalog.names()[:4]

    def test_by_names_unknown(self, catalog):
        """Unknown names list the available systems."""
        with pytest.raises(UnknownSystemError, match="available"):
            catalog.by_names(["cursor", "vim"])

    def test_by_names_keeps_order(self, catalog):
        """Requested order is preserved."""
        assert [s.name for s in catalog.by_names(["cursor", "opencode"])] == ["cursor", "opencode"]

    def test_supporting(self, catalog):
        """Only agent-capable systems support agents."""
        assert [s.name for s in catalog.supporting(AssetKind.AGENT)] == [
            "opencode",
            "gemini-cli",
            "claude-code",
        ]

    def test_systems_satisfy_protocol(self, catalog):
        """Every built-in system implements the System protocol."""
        assert all(isinstance(s, System) for s in catalog.all())

    def test_detect_in_folder(self, catalog, project_dir):
        """Config signals mark a system active in a folder."""
        (project_dir / "CLAUDE.md").write_text("# project\n")
        (project_dir / ".cursor").mkdir()
        active = [s.name for s in catalog.all() if s.is_active_in_folder(project_dir)]
        assert active == ["claude-code", "cursor"]
        assert {"claude-code", "cursor"} <= {s.name for s in catalog.detect_in_folder(project_dir)}

    def test_installed_globally(self, catalog, isolated_home, project_dir):
        """A tool's home directory marks it as installed."""
        (isolated_home / ".gemini").mkdir()
        assert "gemini-cli" in [s.name for s in catalog.detect_in_folder(project_dir)]


class TestSkillInstall:
    """Tests for skill links in non-universal systems."""

    def test_universal_is_noop(self, catalog, project_dir, make_skill):
        """Universal systems read the canonical directory directly."""
        _write_canonical(project_dir, make_skill)
        catalog.by_name("opencode").install(_skill(), project_dir)
        assert not (project_dir / ".opencode").exists()

    def test_relative_symlink(self, catalog, project_dir, make_skill):
        """Claude Code gets a relative link to the canonical copy."""
        _write_canonical(project_dir, make_skill)
        catalog.by_name("claude-code").install(_skill(), project_dir)
        link = project_dir / ".claude" / "skills" / "lint"
        assert link.is_symlink()
        assert os.readlink(link) == os.path.join("..", "..", ".agents", "skills", "lint")
        assert (link / "SKILL.md").exists()

    def test_copy_fallback(self, catalog, project_dir, make_skill, monkeypatch):
        """When symlinks fail the canonical copy is duplicated."""
        _write_canonical(project_dir, make_skill)

        def refuse(*args, **kwargs):
            raise OSError("symlinks not permitted")

        monkeypatch.setattr("pathlib.Path.symlink_to", refuse)
        catalog.by_name("cursor").install(_skill(), project_dir)
        target = project_dir / ".cursor" / "skills" / "lint"
        assert target.is_dir() and not target.is_symlink()
        assert (target / "SKILL.md").exists()

    def test_remove_cleans_empty_dirs(self, catalog, project_dir, make_skill):
        """Removing the last skill removes the empty skills directories."""
        _write_canonical(project_dir, make_skill)
        system = catalog.by_name("goose")
        system.install(_skill(), project_dir)
        system.remove(AssetKind.SKILL, "lint", project_dir)
        assert not (project_dir / ".goose").exists()
        assert (project_dir / CANONICAL_SKILLS_DIR / "lint").is_dir()

    def test_remove_missing_is_ok(self, catalog, project_dir):
        """Removing something that is not there is not an error."""
        catalog.by_name("claude-code").remove(AssetKind.SKILL, "nothing", project_dir)

    def test_unsupported_kind(self, catalog, project_dir):
        """Installing an unsupported kind is a system error."""
        with pytest.raises(SystemInstallError, match="does not support"):
            catalog.by_name("codex").install(_mcp(command="npx"), project_dir)

    def test_scan_dedupes_and_sorts(self, catalog, project_dir, make_skill):
        """Skills found in native and alt dirs are reported once, sorted."""
        make_skill(project_dir, f"{CANONICAL_SKILLS_DIR}/zeta", "zeta")
        make_skill(project_dir, ".opencode/skills/alpha", "alpha")
        make_skill(project_dir, ".opencode/skills/zeta-copy", "zeta")
        found = catalog.by_name("opencode").scan(AssetKind.SKILL, project_dir)
        assert [a.name for a in found] == ["alpha", "zeta"]
        assert found[0].author == "acme"


class TestMcpInstall:
    """Tests for MCP config editing."""

    def test_claude_writes_mcp_servers(self, catalog, project_dir):
        """Claude Code writes stdio servers under mcpServers, wrapped in duckrow env."""
        catalog.by_name("claude-code").install(_mcp(command="npx", args=("-y", "gh")), project_dir)
        data = json.loads((project_dir / ".mcp.json").read_text())
        assert data == {
            "mcpServers": {
                "github": {"command": "duckrow", "args": ["env", "--mcp", "github", "--", "npx", "-y", "gh"]}
            }
        }

    def test_existing_keys_preserved(self, catalog, project_dir):
        """Unrelated config keys survive an install."""
        (project_dir / ".cursor").mkdir()
        (project_dir / ".cursor" / "mcp.json").write_text(
            json.dumps({"other": 1, "mcpServers": {"keep": {"command": "x"}}})
        )
        catalog.by_name("cursor").install(_mcp(url="https://mcp.example.com", transport="sse"), project_dir)
        data = json.loads((project_dir / ".cursor" / "mcp.json").read_text())
        assert data["other"] == 1
        assert data["mcpServers"]["keep"] == {"command": "x"}
        assert data["mcpServers"]["github"] == {"type": "sse", "url": "https://mcp.example.com"}

    def test_opencode_entry_shape(self, catalog, project_dir):
        """OpenCode stores the command line as one array."""
        catalog.by_name("opencode").install(_mcp(command="npx", args=("gh",)), project_dir)
        data = json.loads((project_dir / "opencode.json").read_text())
        assert data["mcp"]["github"] == {
            "type": "local",
            "command": ["duckrow", "env", "--mcp", "github", "--", "npx", "gh"],
        }

    def test_opencode_prefers_jsonc_when_present(self, catalog, project_dir):
        """An existing opencode.jsonc is edited instead of opencode.json."""
        (project_dir / "opencode.jsonc").write_text("{}")
        catalog.by_name("opencode").install(_mcp(url="https://x", transport="http"), project_dir)
        assert not (project_dir / "opencode.json").exists()
        data = json.loads((project_dir / "opencode.jsonc").read_text())
        assert data["mcp"]["github"] == {"type": "remote", "url": "https://x"}

    def test_copilot_entry_shape(self, catalog, project_dir):
        """Copilot stdio entries carry an explicit type."""
        catalog.by_name("github-copilot").install(_mcp(command="npx"), project_dir)
        data = json.loads((project_dir / ".vscode" / "mcp.json").read_text())
        assert data["servers"]["github"] == {
            "type": "stdio",
            "command": "duckrow",
            "args": ["env", "--mcp", "github", "--", "npx"],
        }

    def test_existing_entry_requires_force(self, catalog, project_dir):
        """An existing entry is not overwritten without force."""
        system = catalog.by_name("claude-code")
        system.install(_mcp(command="old"), project_dir)
        with pytest.raises(AlreadyInstalledError):
            system.install(_mcp(command="new"), project_dir)
        system.install(_mcp(command="new"), project_dir, force=True)
        data = json.loads((project_dir / ".mcp.json").read_text())
        assert data["mcpServers"]["github"]["args"][-1] == "new"

    def test_remove_and_scan(self, catalog, project_dir):
        """Removed entries disappear from scans."""
        system = catalog.by_name("claude-code")
        system.install(_mcp("a", command="x"), project_dir)
        system.install(_mcp("b", command="y"), project_dir)
        system.remove(AssetKind.MCP, "a", project_dir)
        assert [a.name for a in system.scan(AssetKind.MCP, project_dir)] == ["b"]

    def test_invalid_config_file(self, catalog, project_dir):
        """A broken config file is reported, not overwritten."""
        (project_dir / ".mcp.json").write_text("{not json")
        with pytest.raises(McpConfigError):
            catalog.by_name("claude-code").install(_mcp(command="x"), project_dir)
        assert (project_dir / ".mcp.json").read_text() == "{not json"


class TestMcpConfigFile:
    """Tests for the mcp_config helpers."""

    def test_missing_and_empty_files(self, tmp_path):
        """Missing and blank files read as empty objects."""
        assert mcp_config.read_config(tmp_path / "missing.json") == {}
        (tmp_path / "blank.json").write_text("  \n")
        assert mcp_config.read_config(tmp_path / "blank.json") == {}

    def test_non_object_rejected(self, tmp_path):
        """A JSON array is not a config."""
        path = tmp_path / "list.json"
        path.write_text("[]")
        with pytest.raises(McpConfigError):
            mcp_config.read_config(path)

    def test_section_must_be_object(self, tmp_path):
        """A non-object server section is an error."""
        path = tmp_path / "c.json"
        path.write_text(json.dumps({"mcpServers": []}))
        with pytest.raises(McpConfigError):
            mcp_config.has_entry(path, "mcpServers", "x")

    def test_remove_absent_entry(self, tmp_path):
        """Removing an absent entry reports False and writes nothing."""
        assert mcp_config.remove_entry(tmp_path / "none.json", "mcpServers", "x") is False
        assert not (tmp_path / "none.json").exists()

    def test_jsonc_keeps_comments(self, tmp_path):
        """Editing a .jsonc file keeps its comments and other keys."""
        path = tmp_path / "opencode.jsonc"
        path.write_text(
            "{\n"
            "  // project settings\n"
            '  "theme": "dark",\n'
            '  "mcp": {\n'
            '    "old": {"type": "remote", "url": "https://old"},\n'
            "  },\n"
            "}\n"
        )

        mcp_config.set_entry(path, "mcp", "github", {"type": "remote", "url": "https://x"})
        content = path.read_text()
        assert "// project settings" in content
        data = json5.loads(content)
        assert data["theme"] == "dark"
        assert data["mcp"] == {
            "old": {"type": "remote", "url": "https://old"},
            "github": {"type": "remote", "url": "https://x"},
        }

        assert mcp_config.remove_entry(path, "mcp", "old") is True
        content = path.read_text()
        assert "// project settings" in content
        assert json5.loads(content)["mcp"] == {"github": {"type": "remote", "url": "https://x"}}

    def test_jsonc_replaces_entry_and_adds_section(self, tmp_path):
        """A missing section is created and an existing entry is replaced."""
        path = tmp_path / "opencode.jsonc"
        path.write_text('{\n  // nothing yet\n  "theme": "dark"\n}\n')

        mcp_config.set_entry(path, "mcp", "a", {"url": "https://1"})
        mcp_config.set_entry(path, "mcp", "a", {"url": "https://2"})

        content = path.read_text()
        assert "// nothing yet" in content
        assert json5.loads(content)["mcp"] == {"a": {"url": "https://2"}}
        assert mcp_config.list_entries(path, "mcp") == ["a"]

    def test_json_with_comments_is_rewritten_as_plain_json(self, tmp_path):
        """A .json file with comments is still readable and is written back as JSON."""
        path = tmp_path / ".mcp.json"
        path.write_text('{\n  // hand edited\n  "mcpServers": {"keep": {"command": "x"},},\n}\n')

        assert mcp_config.has_entry(path, "mcpServers", "keep")
        mcp_config.set_entry(path, "mcpServers", "new", {"command": "y"})

        data = json.loads(path.read_text())
        assert data == {"mcpServers": {"keep": {"command": "x"}, "new": {"command": "y"}}}

    def test_broken_jsonc_rejected(self, tmp_path):
        """A .jsonc file that does not parse is reported and left alone."""
        path = tmp_path / "opencode.jsonc"
        path.write_text("{ // unterminated\n")
        with pytest.raises(McpConfigError):
            mcp_config.set_entry(path, "mcp", "a", {"url": "https://1"})
        assert path.read_text() == "{ // unterminated\n"

    def test_opencode_jsonc_install_keeps_comments(self, catalog, project_dir):
        """Installing into an existing opencode.jsonc keeps the user's comments."""
        path = project_dir / "opencode.jsonc"
        path.write_text('{\n  // my model\n  "model": "x"\n}\n')
        catalog.by_name("opencode").install(_mcp(command="npx"), project_dir)
        content = path.read_text()
        assert "// my model" in content
        assert json5.loads(content)["mcp"]["github"]["command"][0] == "duckrow"


class TestArtifactPath:
    """Tests for the per-system artifact an install writes."""

    def test_paths_by_kind(self, catalog, project_dir):
        """Links, config files and agent files are reported; universal skills have none."""
        claude = catalog.by_name("claude-code")
        assert claude.artifact_path(AssetKind.SKILL, "My Skill", project_dir) == (
            project_dir / ".claude" / "skills" / "my-skill"
        )
        assert claude.artifact_path(AssetKind.MCP, "github", project_dir) == project_dir / ".mcp.json"
        assert claude.artifact_path(AssetKind.AGENT, "reviewer", project_dir) == (
            project_dir / ".claude" / "agents" / "reviewer.md"
        )
        assert catalog.by_name("opencode").artifact_path(AssetKind.SKILL, "lint", project_dir) is None
        assert catalog.by_name("codex").artifact_path(AssetKind.MCP, "github", project_dir) is None


class TestAgentInstall:
    """Tests for rendered agent files."""

    def test_claude_agent_file(self, catalog, project_dir):
        """Claude Code receives a rendered agent with its override applied."""
        catalog.by_name("claude-code").install(_agent(), project_dir)
        content = (project_dir / ".claude" / "agents" / "reviewer.md").read_text()
        assert "model: opus" in content
        assert "name:" not in content

    def test_agent_overwrites(self, catalog, project_dir):
        """Agent installs always overwrite the rendered file."""
        system = catalog.by_name("gemini-cli")
        path = project_dir / ".gemini" / "agents" / "reviewer.md"
        path.parent.mkdir(parents=True)
        path.write_text("stale")
        system.install(_agent(), project_dir)
        assert "name: reviewer" in path.read_text()

    def test_scan_and_remove(self, catalog, project_dir):
        """Agents are scanned by file and removed with their empty dir."""
        system = catalog.by_name("opencode")
        system.install(_agent(), project_dir)
        found = system.scan(AssetKind.AGENT, project_dir)
        assert [a.name for a in found] == ["reviewer"]
        assert found[0].description == "Reviews"
        system.remove(AssetKind.AGENT, "reviewer", project_dir)
        assert not (project_dir / ".opencode" / "agents").exists()

    def test_agent_dir(self, catalog, project_dir):
        """Systems without agents report no agent directory."""
        assert catalog.by_name("cursor").asset_dir(AssetKind.AGENT, project_dir) is None
        assert catalog.by_name("claude-code").agent_file("My Agent", project_dir) == (
            project_dir / ".claude" / "agents" / "my-agent.md"
        )
