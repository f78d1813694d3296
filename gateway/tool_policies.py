"""Static allow-lists for the proxied CLI tools and the help text derived from them.

Every entry here must be read-only or otherwise non-destructive. The help
endpoint renders straight from these tables so the two cannot drift apart.
"""

from __future__ import annotations

from typing import Dict, List, Optional

from gateway.policy import CommandPolicy, literal, matching, with_args

GEMINI_CLI_VERSION = "Gemini CLI v1.0.0"

_REPO = r"[A-Za-z0-9_.-]+(?:/[A-Za-z0-9_.-]+)?"

GCLOUD_POLICY = CommandPolicy(
    tool_binary="gcloud",
    title="Google Cloud CLI",
    timeout_ms=45_000,
    operations=(
        literal("auth list", "List authenticated accounts", "Authentication"),
        literal("config list", "Show current configuration", "Authentication"),
        matching(
            r"config get-value [A-Za-z0-9_/.-]+",
            "config get-value <property>",
            "Get a configuration value",
            "Authentication",
            "config get-value project",
        ),
        with_args("projects list", "List accessible projects", "Projects", usage_args="[flags]"),
        with_args(
            "projects describe",
            "Describe a project",
            "Projects",
            usage_args="<project-id>",
            example_args="my-project",
            required=True,
        ),
        with_args("compute instances list", "List VM instances", "Compute", usage_args="[flags]"),
        with_args(
            "compute instances describe",
            "Describe a VM instance",
            "Compute",
            usage_args="<name> [flags]",
            example_args="web-1 --zone=us-central1-a",
            required=True,
        ),
        with_args("compute zones list", "List available zones", "Compute", usage_args="[flags]"),
        with_args("compute regions list", "List available regions", "Compute", usage_args="[flags]"),
        with_args("storage buckets list", "List storage buckets", "Storage", usage_args="[flags]"),
        with_args("functions list", "List cloud functions", "Functions", usage_args="[flags]"),
        with_args("app services list", "List App Engine services", "App Engine", usage_args="[flags]"),
        with_args("sql instances list", "List SQL instances", "Cloud SQL", usage_args="[flags]"),
        with_args("container clusters list", "List GKE clusters", "Container", usage_args="[flags]"),
        with_args("iam service-accounts list", "List service accounts", "IAM", usage_args="[flags]"),
        with_args("logging logs list", "List available logs", "Logging", usage_args="[flags]"),
        literal("info", "Show installation and environment details", "General"),
        literal("version", "Show gcloud version", "General"),
        with_args("help", "Show detailed help", "General", usage_args="[command]"),
    ),
)

GH_POLICY = CommandPolicy(
    tool_binary="gh",
    title="GitHub CLI",
    timeout_ms=30_000,
    operations=(
        literal("auth status", "Show authentication status", "Authentication"),
        literal("auth list", "List authenticated accounts", "Authentication"),
        with_args("repo list", "List repositories", "Repositories", usage_args="[owner] [flags]"),
        with_args(
            "repo view",
            "View repository details",
            "Repositories",
            usage_args="[repo]",
            example_args="cli/cli",
        ),
        matching(
            rf"repo clone {_REPO}",
            "repo clone <repo>",
            "Clone repository",
            "Repositories",
            "repo clone cli/cli",
        ),
        with_args("issue list", "List issues", "Issues", usage_args="[flags]"),
        with_args(
            "issue view",
            "View issue details",
            "Issues",
            usage_args="<number>",
            example_args="42",
            required=True,
        ),
        with_args("pr list", "List pull requests", "Pull Requests", usage_args="[flags]"),
        with_args(
            "pr view",
            "View pull request details",
            "Pull Requests",
            usage_args="<number>",
            example_args="7",
        ),
        literal("pr status", "Show status of relevant PRs", "Pull Requests"),
        with_args("pr diff", "Show PR diff", "Pull Requests", usage_args="<number>", example_args="7"),
        with_args("pr checks", "Show PR checks", "Pull Requests", usage_args="<number>", example_args="7"),
        with_args("release list", "List releases", "Releases", usage_args="[flags]"),
        with_args(
            "release view",
            "View release details",
            "Releases",
            usage_args="<tag>",
            example_args="v1.0.0",
            required=True,
        ),
        with_args("workflow list", "List workflows", "Workflows", usage_args="[flags]"),
        with_args(
            "workflow view",
            "View workflow details",
            "Workflows",
            usage_args="<workflow>",
            example_args="ci.yml",
            required=True,
        ),
        with_args("run list", "List workflow runs", "Workflows", usage_args="[flags]"),
        with_args(
            "run view",
            "View workflow run details",
            "Workflows",
            usage_args="<id>",
            example_args="123456",
            required=True,
        ),
        literal("api user", "Get authenticated user", "API"),
        literal("api repos", "List repositories via API", "API"),
        literal("config list", "List configuration", "Configuration"),
        matching(
            r"config get [A-Za-z0-9_.-]+",
            "config get <key>",
            "Get configuration value",
            "Configuration",
            "config get editor",
        ),
        literal("status", "Show status across repos", "General"),
        literal("version", "Show GitHub CLI version", "General"),
        with_args("help", "Show detailed help", "General", usage_args="[command]"),
    ),
)

GEMINI_POLICY = CommandPolicy(
    tool_binary="gemini",
    title="Gemini AI CLI",
    spawns_process=False,
    note="Commands operate on the current file context in the editor.",
    operations=(
        literal("explain", "Explain the current code", "Code Analysis"),
        literal("analyze", "Analyze code quality and issues", "Code Analysis"),
        matching(r"complete|completion", "complete", "Get code completion suggestions", "Code Analysis", "complete"),
        matching(r"tests?", "test", "Generate unit tests for code", "Code Generation", "test"),
        matching(r"docs|documentation", "docs", "Generate documentation", "Code Generation", "docs"),
        with_args(
            "refactor",
            "Refactor code with instructions",
            "Code Generation",
            usage_args="[instructions]",
            example_args="optimize performance",
        ),
        literal("version", "Show Gemini CLI version", "General"),
        literal("help", "Show this help message", "General"),
    ),
)

POLICIES: Dict[str, CommandPolicy] = {
    "gcloud": GCLOUD_POLICY,
    "gh": GH_POLICY,
    "gemini": GEMINI_POLICY,
}

_ALIASES = {
    "github": "gh",
}


def get_policy(tool: Optional[str]) -> Optional[CommandPolicy]:
    name = str(tool or "").strip().lower()
    return POLICIES.get(_ALIASES.get(name, name))


def render_help(policy: CommandPolicy) -> str:
    """Help text enumerating exactly the operations *policy* allows."""
    sections: Dict[str, List[str]] = {}
    for op in policy.operations:
        usage = f"{policy.tool_binary} {op.usage}"
        sections.setdefault(op.section, []).append(f"  {usage:<36} - {op.description}")

    lines = [f"{policy.title} Commands (Safe Mode):", ""]
    for section, entries in sections.items():
        lines.append(f"{section}:")
        lines.extend(entries)
        lines.append("")
    lines.append(f"Note: {policy.note}")
    return "\n".join(lines)


def render_overview() -> str:
    lines = ["CLI Integration", "", "Available CLI Tools:"]
    for name, policy in POLICIES.items():
        lines.append(f"  {name:<28} - {policy.title}")
    lines.extend(["", "Get specific help:"])
    for name in POLICIES:
        lines.append(f"  GET /api/cli/help/{name:<10} - {POLICIES[name].title} help")
    lines.extend(
        [
            "",
            "Execute commands:",
            "  POST /api/cli/execute        - Execute CLI commands",
            "",
            "Security: Only safe, read-only commands are allowed.",
        ]
    )
    return "\n".join(lines)


def help_for(tool: Optional[str]) -> str:
    policy = get_policy(tool)
    if policy is None:
        return render_overview()
    return render_help(policy)
