"""Tests for gateway/policy.py and the static tool allow-lists."""

import pytest

from gateway.policy import (
    DISALLOWED_SUBCOMMAND,
    DISALLOWED_TOOL,
    PROCESS_FAILED,
    AllowedOperation,
    CommandPolicy,
    ExecutionResult,
    literal,
    matching,
    parse_command,
    with_args,
)
from gateway.tool_policies import GCLOUD_POLICY, GEMINI_POLICY, GH_POLICY, POLICIES

ALL_POLICIES = [GCLOUD_POLICY, GH_POLICY, GEMINI_POLICY]

DESTRUCTIVE_WORDS = {
    "delete", "create", "set", "unset", "login", "logout", "merge", "close",
    "deploy", "update", "edit", "remove", "rm", "revoke", "activate", "archive",
}


def _examples():
    for policy in ALL_POLICIES:
        for op in policy.operations:
            yield pytest.param(policy, op, id=f"{policy.tool_binary}:{op.example}")


def _cross_tool():
    for policy in ALL_POLICIES:
        for other in ALL_POLICIES:
            if other is policy:
                continue
            for op in other.operations:
                yield pytest.param(
                    policy, other, op, id=f"{other.tool_binary}:{op.example}@{policy.tool_binary}"
                )


def _literals():
    for policy, op in ((p, op) for p in ALL_POLICIES for op in p.operations):
        if not op.takes_args:
            yield pytest.param(policy, op, id=f"{policy.tool_binary}:{op.example}")


class TestParseCommand:
    def test_splits_on_any_whitespace(self):
        request = parse_command("gcloud   projects\tlist  ", "gcloud")
        assert request.program == "gcloud"
        assert request.args == ("projects", "list")
        assert request.subcommand == "projects list"
        assert request.argv == ("gcloud", "projects", "list")

    def test_quotes_are_not_interpreted(self):
        request = parse_command('gh repo view "cli/cli"', "gh")
        assert request.args == ("repo", "view", '"cli/cli"')

    def test_empty_command(self):
        request = parse_command("", "gh")
        assert request.program == ""
        assert request.args == ()


class TestExecutionResult:
    def test_failure_carries_no_output(self):
        result = ExecutionResult.failure(PROCESS_FAILED, "boom", exit_code=3)
        assert result.success is False
        assert result.output == ""
        assert result.to_dict() == {"success": False, "output": "", "error": "boom", "exitCode": 3}

    def test_failure_with_output_is_rejected(self):
        with pytest.raises(ValueError):
            ExecutionResult(success=False, output="partial", error="boom")

    def test_failure_without_error_is_rejected(self):
        with pytest.raises(ValueError):
            ExecutionResult(success=False)

    def test_policy_violation_kinds(self):
        assert ExecutionResult.failure(DISALLOWED_TOOL, "x").is_policy_violation
        assert ExecutionResult.failure(DISALLOWED_SUBCOMMAND, "x").is_policy_violation
        assert not ExecutionResult.failure(PROCESS_FAILED, "x").is_policy_violation
        assert not ExecutionResult.ok("fine").is_policy_violation


class TestBuilders:
    def test_literal_refuses_trailing_arguments(self):
        op = literal("auth list", "List accounts", "Auth")
        assert op.matches("auth list")
        assert not op.matches("auth list --format=json")
        assert not op.matches("auth listing")

    def test_with_args_accepts_flags(self):
        op = with_args("projects list", "List projects", "Projects")
        assert op.matches("projects list")
        assert op.matches("projects list --format=json --limit=5")
        assert not op.matches("projects listx")

    def test_required_argument(self):
        op = with_args("issue view", "View issue", "Issues", required=True)
        assert not op.matches("issue view")
        assert op.matches("issue view 42")

    @pytest.mark.parametrize(
        "tail",
        ["a;b", "a&&b", "a|b", "`id`", "$(id)", "a>b", "a<b", "a\\b", "{a}"],
    )
    def test_argument_tokens_refuse_metacharacters(self, tail):
        op = with_args("projects list", "List projects", "Projects")
        assert not op.matches(f"projects list {tail}")

    def test_literal_words_are_escaped(self):
        op = literal("a.b", "dotted", "Misc")
        assert op.matches("a.b")
        assert not op.matches("axb")

    def test_matching_rejects_bad_regex(self):
        import re

        with pytest.raises(re.error):
            matching("(", "x", "x", "x", "x")


class TestCommandPolicy:
    def test_invalid_binary(self):
        with pytest.raises(ValueError):
            CommandPolicy(tool_binary="g cloud", title="x", operations=())

    def test_non_positive_limits(self):
        with pytest.raises(ValueError):
            CommandPolicy(tool_binary="x", title="x", operations=(), timeout_ms=0)
        with pytest.raises(ValueError):
            CommandPolicy(tool_binary="x", title="x", operations=(), max_output_bytes=0)

    def test_wrong_program_is_disallowed_tool(self):
        rejection = GCLOUD_POLICY.check(parse_command("gh repo list", "gcloud"))
        assert rejection.kind == DISALLOWED_TOOL
        assert rejection.error == "must start with gcloud"

    def test_empty_command_is_disallowed_tool(self):
        rejection = GH_POLICY.check(parse_command("   ", "gh"))
        assert rejection.kind == DISALLOWED_TOOL

    def test_unlisted_subcommand_message(self):
        rejection = GCLOUD_POLICY.check(parse_command("gcloud compute instances delete x", "gcloud"))
        assert rejection.kind == DISALLOWED_SUBCOMMAND
        assert rejection.error == "Subcommand 'compute instances delete x' is not allowed"
        assert rejection.exit_code == 1

    def test_rejection_is_stable_across_calls(self):
        request = parse_command("gh repo delete me/x", "gh")
        assert GH_POLICY.check(request) == GH_POLICY.check(request)

    def test_exact_and_pattern_views(self):
        assert "version" in GCLOUD_POLICY.exact_subcommands
        assert "projects list" not in GCLOUD_POLICY.exact_subcommands
        assert len(GCLOUD_POLICY.pattern_subcommands) == len(GCLOUD_POLICY.operations)


class TestAllowLists:
    @pytest.mark.parametrize("policy, op", list(_examples()))
    def test_every_example_is_allowed(self, policy, op):
        assert policy.is_allowed(op.example), op.pattern
        assert policy.check(parse_command(f"{policy.tool_binary} {op.example}", policy.tool_binary)) is None

    @pytest.mark.parametrize("policy, other, op", list(_cross_tool()))
    def test_other_tools_commands_refused(self, policy, other, op):
        rejection = policy.check(parse_command(f"{other.tool_binary} {op.example}", policy.tool_binary))
        assert rejection is not None
        assert rejection.kind == DISALLOWED_TOOL

    @pytest.mark.parametrize("policy, op", list(_literals()))
    def test_literal_refuses_extra_flag(self, policy, op):
        rejection = policy.check(parse_command(f"{policy.tool_binary} {op.example} --x", policy.tool_binary))
        assert rejection is not None
        assert rejection.kind == DISALLOWED_SUBCOMMAND

    @pytest.mark.parametrize("policy, op", list(_examples()))
    @pytest.mark.parametrize("tail", ["$(id)", ";id", "|sh", "&&", "`id`"])
    def test_metacharacter_tail_refused(self, policy, op, tail):
        command = f"{policy.tool_binary} {op.example} {tail}"
        assert policy.check(parse_command(command, policy.tool_binary)) is not None

    @pytest.mark.parametrize("policy, op", list(_literals()))
    @pytest.mark.parametrize("verb", ["delete", "create", "set", "login", "merge"])
    def test_destructive_substitution_refused(self, policy, op, verb):
        mutated = " ".join([*op.example.split()[:-1], verb])
        assert not policy.is_allowed(mutated), mutated

    @pytest.mark.parametrize("policy", ALL_POLICIES, ids=lambda p: p.tool_binary)
    def test_no_destructive_verbs(self, policy):
        for op in policy.operations:
            words = set(op.usage.replace("|", " ").split())
            assert not words & DESTRUCTIVE_WORDS, op.usage

    @pytest.mark.parametrize(
        "command",
        [
            "gcloud compute instances delete web-1",
            "gcloud projects delete my-project",
            "gcloud projects create new-project",
            "gcloud auth login",
            "gcloud auth revoke",
            "gcloud config set project other",
            "gcloud config get-value project;rm",
            "gcloud sql instances delete db",
            "gcloud projects list && rm -rf /",
            "gcloud projects list | sh",
            "gcloud projects list --filter=$(id)",
            "gcloud info --run-diagnostics",
        ],
    )
    def test_gcloud_rejections(self, command):
        assert GCLOUD_POLICY.check(parse_command(command, "gcloud")) is not None

    @pytest.mark.parametrize(
        "command",
        [
            "gh repo delete me/project",
            "gh repo create me/new",
            "gh pr merge 7",
            "gh issue close 42",
            "gh auth logout",
            "gh auth login",
            "gh api -X DELETE repos/me/project",
            "gh api user -X DELETE",
            "gh config set editor vim",
            "gh release delete v1.0.0",
            "gh repo clone me/x;id",
            "gh repo clone me/x extra",
        ],
    )
    def test_gh_rejections(self, command):
        assert GH_POLICY.check(parse_command(command, "gh")) is not None

    def test_every_policy_registered(self):
        assert set(POLICIES) == {"gcloud", "gh", "gemini"}
        assert not GEMINI_POLICY.spawns_process

    def test_operation_is_frozen(self):
        op = AllowedOperation("x", "x", "x", "x", "x")
        with pytest.raises(Exception):
            op.pattern = "y"
