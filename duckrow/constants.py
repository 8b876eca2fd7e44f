"""Centralized constants for the duckrow package."""

# Project-relative directory holding the canonical copy of every skill
CANONICAL_SKILLS_DIR = ".agents/skills"

SKILL_MARKER = "SKILL.md"

# Lock file
LOCK_FILE_NAME = "duckrow.lock.json"
LOCK_VERSION = 3

# Registry repositories
REGISTRY_MANIFEST_FILE = "duckrow.json"
CACHED_COMMITS_FILE = "duckrow.commits.json"
REGISTRIES_SUBDIR = "registries"

# User configuration
CONFIG_DIR_NAME = ".duckrow"
CONFIG_FILE_NAME = "config.json"
CONFIG_HOME_ENV = "DUCKROW_HOME"

DEFAULT_HOST = "github.com"

# Git subprocess timeouts, in seconds
CLONE_TIMEOUT = 60
PULL_TIMEOUT = 30
LOG_TIMEOUT = 30

# Directories never descended into while discovering assets
DEPENDENCY_DIRS = frozenset({"node_modules", "vendor", "__pycache__"})

# Entries left out when copying an asset into the canonical location
COPY_EXCLUDED = frozenset({"README.md", "metadata.json", ".git"})

# MCP environment injection
ENV_FILE_NAME = ".env.duckrow"
ENV_WRAPPER_COMMAND = "duckrow"
