"""Tests for gateway/cli_router.py."""

import pytest

from gateway.assistant_cli import AssistantCLI
from gateway.cli_router import CliRouter, detect_tool
from gateway.policy import DISALLOWED_TOOL
from tests.conftest import FakeProcess


@pytest.mark.parametrize(
    "command, tool",
    [
        ("gcloud projects list", "gcloud"),
        ("  GCLOUD version", "gcloud"),
        ("gh repo list", "gh"),
        ("ghost run", None),
        ("gemini explain", "gemini"),
        ("kubectl get pods", None),
        ("", None),
    ],
)
def test_detect_tool(command, tool):
    assert detect_tool(command) == tool


@pytest.mark.asyncio
async def test_unknown_tool(cli_router, spawn_spy):
    result = await cli_router.dispatch("bash -c id")
    assert result.kind == DISALLOWED_TOOL
    assert result.error == "Unknown CLI tool. Supported: gcloud, gh, gemini"
    assert spawn_spy.count == 0


@pytest.mark.asyncio
async def test_routes_to_executor(cli_router, spawn_spy):
    result = await cli_router.dispatch("gh pr list --state=open")
    assert result.success is True
    assert spawn_spy.last_argv == ("gh", "pr", "list", "--state=open")


@pytest.mark.asyncio
async def test_routes_to_assistant(cli_router, spawn_spy):
    result = await cli_router.dispatch("gemini version")
    assert result.success is True
    assert spawn_spy.count == 0


@pytest.mark.asyncio
async def test_uppercase_program_is_not_executed(cli_router, spawn_spy):
    result = await cli_router.dispatch("GCLOUD projects list")
    assert result.kind == DISALLOWED_TOOL
    assert spawn_spy.count == 0


@pytest.mark.asyncio
async def test_status_reports_each_tool(executor, spawn_spy):
    spawn_spy.queue = [
        FakeProcess(stdout=b"Google Cloud SDK 470.0.0\n"),
        FakeProcess(stdout=b"gh version 2.40.0\n"),
    ]
    router = CliRouter(executor, AssistantCLI())
    status = await router.status()
    assert status["gcloud"] == {"available": True, "version": "Google Cloud SDK 470.0.0"}
    assert status["github"] == {"available": True, "version": "gh version 2.40.0"}
    assert status["gemini"]["available"] is False
    assert [argv for argv, _ in spawn_spy.calls] == [("gcloud", "version"), ("gh", "version")]


@pytest.mark.asyncio
async def test_status_when_binary_missing(executor, spawn_spy):
    spawn_spy.error = FileNotFoundError(2, "No such file or directory")
    status = await CliRouter(executor).status()
    assert status["gcloud"] == {"available": False, "version": None}
    assert status["github"] == {"available": False, "version": None}
