"""Unit tests for GuardedAgentCLI pause handling and commands."""

import pytest
from unittest.mock import AsyncMock

from langchain_core.messages import AIMessage

from guardedAgent.cli import GuardedAgentCLI
from guardedAgent.models.provider import ModelProvider
from guardedAgent.runtime import AgenticLoop
from guardedAgent.session.coordinator import SessionCoordinator
from tests.fakes import ScriptedChatModel, tool_call_message

SHOP = "ServerScriptService.ShopHandler"


@pytest.fixture
def make_cli(backend, settings, clock):
    def _make(*responses):
        coordinator = SessionCoordinator(backend, settings, clock=clock, wall_clock=clock)
        coordinator.on_conversation_start()
        provider = ModelProvider(ScriptedChatModel(list(responses)), settings.provider, sleep=AsyncMock())
        return GuardedAgentCLI(AgenticLoop(coordinator, provider))

    return _make


@pytest.mark.asyncio
async def test_approval_prompt_reasks_until_answered(make_cli, backend, capsys):
    cli = make_cli(
        tool_call_message(
            {"name": "edit_script", "args": {"path": SHOP, "new_source": "return { open = true }"}}
        ),
        AIMessage(content="Shop rewritten."),
    )
    cli.prompt = AsyncMock(side_effect=["maybe", "y"])

    await cli.handle_user_message("rewrite the shop script")

    output = capsys.readouterr().out
    assert "Approval required: edit_script #1" in output
    assert "Please answer y or n" in output
    assert "Agent> Shop rewritten." in output
    assert backend.read_source(SHOP) == "return { open = true }"


@pytest.mark.asyncio
async def test_feedback_free_text(make_cli, capsys):
    cli = make_cli(
        tool_call_message({"name": "request_user_feedback", "args": {"question": "Is the button visible?"}}),
        AIMessage(content="I'll move it."),
    )
    cli.prompt = AsyncMock(side_effect=["", "It is behind the frame"])

    await cli.handle_user_message("check the shop gui")

    output = capsys.readouterr().out
    assert "Is the button visible?" in output
    assert "Agent> I'll move it." in output
    assert "User feedback: It is behind the frame" in cli.coordinator.working_memory.format_for_prompt()


@pytest.mark.asyncio
async def test_status_then_quit(make_cli, capsys):
    cli = make_cli()
    cli.get_input = AsyncMock(side_effect=["/status", "/quit"])

    await cli.run()

    output = capsys.readouterr().out
    assert "Session status:" in output
    assert "closed (failures=0/5)" in output
    assert "Session ended." in output


@pytest.mark.asyncio
async def test_reset_starts_new_session(make_cli):
    cli = make_cli()
    before = cli.coordinator.state.session_id

    assert await cli.handle_command("/reset") is True
    assert cli.coordinator.state.session_id != before


@pytest.mark.asyncio
async def test_unknown_command(make_cli, capsys):
    cli = make_cli()

    assert await cli.handle_command("/dance") is True
    assert "Unknown command: /dance" in capsys.readouterr().out
