"""Tests for duckrow.assets handlers and registry."""

import pytest
import yaml

from duckrow.assets import (
    AgentData,
    AgentHandler,
    Asset,
    AssetKind,
    DiscoverOptions,
    HandlerRegistry,
    InstallInfo,
    LockedAsset,
    McpHandler,
    McpMeta,
    SkillHandler,
    SkillMeta,
    coerce_kind,
    default_handler_registry,
    render_for_system,
)
from duckrow.assets.agent import parse_agent_content
from duckrow.assets.mcp import compute_config_hash, required_env
from duckrow.assets.skill import read_skill_md
from duckrow.exceptions import AssetValidationError, ManifestError, UnknownAssetKindError


class TestHandlerRegistry:
    """Tests for HandlerRegistry."""

    def test_default_kinds_order(self):
        """Skill and MCP come first, then the rest."""
        registry = default_handler_registry()
        assert registry.kinds() == [AssetKind.SKILL, AssetKind.MCP, AssetKind.AGENT]

    def test_kinds_order_independent_of_registration(self):
        """Primary kinds sort first even when registered last."""
        registry = HandlerRegistry([AgentHandler(), McpHandler(), SkillHandler()])
        assert registry.kinds() == [AssetKind.SKILL, AssetKind.MCP, AssetKind.AGENT]
        assert [h.kind for h in registry.all()] == registry.kinds()

    def test_lookup_by_string_tag(self):
        """Handlers can be looked up by their string tag."""
        registry = default_handler_registry()
        assert registry.get("skill").kind == AssetKind.SKILL
        assert registry.get("bogus") is None

    def test_require_unknown_kind(self):
        """require raises for kinds with no handler."""
        registry = HandlerRegistry([SkillHandler()])
        with pytest.raises(UnknownAssetKindError, match="mcp"):
            registry.require(AssetKind.MCP)
        with pytest.raises(UnknownAssetKindError, match="plugin"):
            registry.require("plugin")

    def test_register_replaces(self):
        """Registering a kind twice keeps the last handler."""
        first, second = SkillHandler(), SkillHandler()
        registry = HandlerRegistry([first])
        registry.register(second)
        assert registry.get(AssetKind.SKILL) is second

    def test_coerce_kind(self):
        """String tags convert to AssetKind; unknown tags give None."""
        assert coerce_kind("agent") == AssetKind.AGENT
        assert coerce_kind(AssetKind.MCP) == AssetKind.MCP
        assert coerce_kind("nope") is None


class TestSkillDiscovery:
    """Tests for SkillHandler.discover."""

    def test_discovers_public_skills(self, skill_repo):
        """Internal skills are hidden by default."""
        assets = SkillHandler().discover(skill_repo, DiscoverOptions())
        assert [a.name for a in assets] == ["lint", "review"]
        assert assets[0].prepared_path == skill_repo / "skills" / "lint"
        assert assets[0].description == "Lints code"
        assert assets[0].meta.author == "acme"

    def test_include_internal(self, skill_repo):
        """include_internal surfaces internal skills."""
        assets = SkillHandler().discover(skill_repo, DiscoverOptions(include_internal=True))
        assert "secret" in [a.name for a in assets]
        secret = next(a for a in assets if a.name == "secret")
        assert secret.meta.internal is True

    def test_name_filter(self, skill_repo):
        """A name filter keeps only the matching skill."""
        assets = SkillHandler().discover(skill_repo, DiscoverOptions(name_filter="review"))
        assert [a.name for a in assets] == ["review"]

    def test_sub_path_scopes_search(self, skill_repo):
        """A sub-path limits the walk."""
        assets = SkillHandler().discover(skill_repo, DiscoverOptions(sub_path="skills/lint"))
        assert [a.name for a in assets] == ["lint"]

    def test_skips_hidden_and_dependency_dirs(self, tmp_path, make_skill):
        """Hidden dirs other than .agents and dependency dirs are not walked."""
        make_skill(tmp_path, ".git/hooks/skill", "hidden")
        make_skill(tmp_path, "node_modules/pkg", "vendored")
        make_skill(tmp_path, ".agents/skills/kept", "kept")
        assets = SkillHandler().discover(tmp_path, DiscoverOptions())
        assert [a.name for a in assets] == ["kept"]

    def test_first_name_wins(self, tmp_path, make_skill):
        """Duplicate names keep the first skill in walk order."""
        make_skill(tmp_path, "a/dup", "dup", "first")
        make_skill(tmp_path, "b/dup", "dup", "second")
        assets = SkillHandler().discover(tmp_path, DiscoverOptions())
        assert len(assets) == 1
        assert assets[0].description == "first"

    def test_unparseable_frontmatter_is_skipped(self, tmp_path):
        """A SKILL.md without valid YAML frontmatter is ignored."""
        bad = tmp_path / "bad"
        bad.mkdir()
        (bad / "SKILL.md").write_text("---\nname: [unclosed\n---\n")
        (tmp_path / "plain").mkdir()
        (tmp_path / "plain" / "SKILL.md").write_text("# No frontmatter\n")
        assert SkillHandler().discover(tmp_path, DiscoverOptions()) == []

    def test_read_skill_md_metadata(self, tmp_path):
        """Metadata fields are read from the frontmatter."""
        path = tmp_path / "SKILL.md"
        path.write_text(
            "---\nname: x\ndescription: d\nlicense: MIT\n"
            "metadata:\n  version: 1.2\n  argument-hint: <file>\n---\nbody\n"
        )
        doc = read_skill_md(path)
        assert doc.meta.version == "1.2"
        assert doc.meta.argument_hint == "<file>"
        assert doc.meta.license == "MIT"
        assert doc.meta.internal is False


class TestSkillValidation:
    """Tests for SkillHandler.validate and lock data."""

    def test_requires_name(self):
        """A nameless skill is invalid."""
        with pytest.raises(AssetValidationError, match="name"):
            SkillHandler().validate(Asset(kind=AssetKind.SKILL, name="", meta=SkillMeta()))

    def test_requires_skill_meta(self):
        """Metadata must be SkillMeta."""
        with pytest.raises(AssetValidationError, match="SkillMeta"):
            SkillHandler().validate(Asset(kind=AssetKind.SKILL, name="x", meta=McpMeta()))

    def test_lock_data(self):
        """Lock data carries source, commit and ref."""
        asset = Asset(kind=AssetKind.SKILL, name="lint", source="github.com/acme/skills/lint")
        entry = SkillHandler().lock_data(asset, InstallInfo(commit="abc", ref="main"))
        assert entry == LockedAsset(
            kind="skill", name="lint", source="github.com/acme/skills/lint", commit="abc", ref="main"
        )

    def test_manifest_entries(self):
        """Manifest entries keep source and pinned commit."""
        entries = SkillHandler().parse_manifest_entries(
            [{"name": "lint", "source": "github.com/acme/skills/lint", "commit": "abc"}]
        )
        assert entries[0].name == "lint"
        assert entries[0].commit == "abc"

    def test_manifest_entries_must_be_list(self):
        """A non-list section is a manifest error."""
        with pytest.raises(ManifestError):
            SkillHandler().parse_manifest_entries({"name": "lint"})


class TestMcpHandler:
    """Tests for McpHandler."""

    def _asset(self, **meta):
        return Asset(kind=AssetKind.MCP, name="github", meta=McpMeta(**meta))

    def test_never_discovers(self, skill_repo):
        """MCP servers come only from registries."""
        assert McpHandler().discover(skill_repo, DiscoverOptions()) == []

    def test_valid_stdio(self):
        """A command alone is valid."""
        McpHandler().validate(self._asset(command="npx", args=("-y", "server")))

    def test_valid_remote(self):
        """A url with a transport is valid."""
        McpHandler().validate(self._asset(url="https://mcp.example.com", transport="http"))

    @pytest.mark.parametrize(
        "meta,message",
        [
            ({}, "either command"),
            ({"command": "npx", "url": "https://x"}, "both"),
            ({"url": "https://x"}, "transport"),
        ],
    )
    def test_invalid_configs(self, meta, message):
        """Exactly one of command/url, and url needs a transport."""
        with pytest.raises(AssetValidationError, match=message):
            McpHandler().validate(self._asset(**meta))

    def test_config_hash_ignores_description(self):
        """Only functional fields feed the hash."""
        meta = McpMeta(command="npx", args=("server",))
        assert compute_config_hash(meta) == compute_config_hash(McpMeta(command="npx", args=("server",)))
        assert compute_config_hash(meta).startswith("sha256:")
        assert compute_config_hash(meta) != compute_config_hash(McpMeta(command="npx"))

    def test_required_env_sorted_and_unique(self):
        """Env names are deduplicated and sorted."""
        assert required_env(("B", "A", "B")) == ["A", "B"]

    def test_lock_data(self):
        """Lock data records registry, config hash and required env."""
        asset = self._asset(command="npx", env=("TOKEN", "HOST", "TOKEN"))
        entry = McpHandler().lock_data(asset, InstallInfo(registry="acme"))
        assert entry.kind == "mcp"
        assert entry.source == ""
        assert entry.data["registry"] == "acme"
        assert entry.data["configHash"] == compute_config_hash(asset.meta)
        assert entry.data["requiredEnv"] == ["HOST", "TOKEN"]

    def test_lock_data_omits_empty_env(self):
        """requiredEnv is left out when there are no env vars."""
        entry = McpHandler().lock_data(self._asset(command="npx"), InstallInfo())
        assert "requiredEnv" not in entry.data

    def test_manifest_entries(self):
        """Manifest fields map onto McpMeta."""
        entries = McpHandler().parse_manifest_entries(
            [{"name": "remote", "url": "https://x", "type": "sse", "env": ["K"]}]
        )
        meta = entries[0].meta
        assert meta.url == "https://x"
        assert meta.transport == "sse"
        assert meta.env == ("K",)

    def test_manifest_args_must_be_list(self):
        """args given as a string is rejected."""
        with pytest.raises(ManifestError, match="args"):
            McpHandler().parse_manifest_entries([{"name": "x", "command": "y", "args": "-v"}])


class TestAgentHandler:
    """Tests for AgentHandler discovery and validation."""

    def test_discovers_agents(self, skill_repo):
        """Markdown files with name and description are agents."""
        assets = AgentHandler().discover(skill_repo, DiscoverOptions())
        assert [a.name for a in assets] == ["reviewer"]
        assert assets[0].prepared_path == skill_repo / "agents" / "reviewer.md"
        assert isinstance(assets[0].meta, AgentData)

    def test_skips_excluded_files(self, tmp_path, make_agent):
        """SKILL.md, README.md and friends are never agents."""
        make_agent(tmp_path, "README.md", "readme")
        make_agent(tmp_path, "CLAUDE.md", "claude")
        make_agent(tmp_path, ".claude/agents/kept.md", "kept")
        make_agent(tmp_path, ".cache/hidden.md", "hidden")
        assets = AgentHandler().discover(tmp_path, DiscoverOptions())
        assert [a.name for a in assets] == ["kept"]

    def test_requires_description_to_discover(self, tmp_path):
        """Files without a description are not agents."""
        (tmp_path / "notes.md").write_text("---\nname: notes\n---\nbody\n")
        assert AgentHandler().discover(tmp_path, DiscoverOptions()) == []

    def test_name_filter(self, tmp_path, make_agent):
        """A name filter selects one agent."""
        make_agent(tmp_path, "a.md", "alpha")
        make_agent(tmp_path, "b.md", "beta")
        assets = AgentHandler().discover(tmp_path, DiscoverOptions(name_filter="beta"))
        assert [a.name for a in assets] == ["beta"]

    def test_sub_path_may_name_a_file(self, skill_repo):
        """A sub-path pointing at one agent file discovers just that file."""
        assets = AgentHandler().discover(skill_repo, DiscoverOptions(sub_path="agents/reviewer.md"))
        assert [a.name for a in assets] == ["reviewer"]

    def test_validate_requires_body(self):
        """An agent with an empty body has no system prompt."""
        data = AgentData(frontmatter={"name": "x", "description": "d"}, body="  \n")
        with pytest.raises(AssetValidationError, match="empty body"):
            AgentHandler().validate(Asset(kind=AssetKind.AGENT, name="x", meta=data))

    def test_validate_ok(self):
        """Name, description and body make a valid agent."""
        data = AgentData(frontmatter={"name": "x", "description": "d"}, body="Do things.\n")
        AgentHandler().validate(Asset(kind=AssetKind.AGENT, name="x", meta=data))


class TestRenderForSystem:
    """Tests for per-system agent rendering."""

    @pytest.fixture
    def agent(self):
        return parse_agent_content(
            "---\n"
            "name: reviewer\n"
            "description: Reviews code\n"
            "tools: [read]\n"
            "color: blue\n"
            "claude-code:\n  model: opus\n"
            "gemini-cli:\n  model: gemini-2.5-pro\n"
            "---\n\nYou review code.\n"
        )

    def _frontmatter(self, rendered: str) -> dict:
        return yaml.safe_load(rendered.split("---\n")[1])

    def test_override_applied_and_name_dropped(self, agent):
        """Claude gets its override merged and no name field."""
        rendered = render_for_system(agent, "claude-code")
        fm = self._frontmatter(rendered)
        assert fm["model"] == "opus"
        assert "name" not in fm
        assert "claude-code" not in fm
        assert "gemini-cli" not in fm

    def test_gemini_keeps_name(self, agent):
        """Gemini CLI keeps the name field."""
        fm = self._frontmatter(render_for_system(agent, "gemini-cli"))
        assert fm["name"] == "reviewer"
        assert fm["model"] == "gemini-2.5-pro"

    def test_key_order(self, agent):
        """Priority keys come first, the rest alphabetically."""
        rendered = render_for_system(agent, "gemini-cli")
        keys = [line.split(":")[0] for line in rendered.splitlines()[1:] if line and not line.startswith((" ", "-"))]
        assert keys[:5] == ["name", "description", "model", "tools", "color"]

    def test_body_follows_blank_line(self, agent):
        """The body is separated from the frontmatter by one blank line."""
        rendered = render_for_system(agent, "opencode")
        assert rendered.endswith("---\n\nYou review code.\n")

    def test_source_data_not_mutated(self, agent):
        """Rendering works on a copy of the frontmatter."""
        render_for_system(agent, "claude-code")
        assert agent.frontmatter["name"] == "reviewer"
        assert "claude-code" in agent.frontmatter
