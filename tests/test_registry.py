"""Tests for ClientRegistry."""
import asyncio
import json
import signal

import pytest

from clients import ClientRegistry
from clients.errors import (
    AlreadyConnected,
    ConnectionClosed,
    HandshakeError,
    NotConnected,
    RegistryClosed,
    SpawnError,
    UnsupportedMethod,
)
from config import ServerConfig

pytestmark = pytest.mark.asyncio


async def test_echo_end_to_end(registry, python, echo_args) -> None:
    assert await registry.connect("echo", python, echo_args()) == "Connected to MCP server: echo"

    tools = await registry.list_tools("echo")
    assert tools["tools"][0]["name"] == "echo"

    result = await registry.call_tool("echo", "echo", {"text": "hi"})
    assert result == {"content": [{"type": "text", "text": "hi"}]}

    assert await registry.disconnect("echo") == "Disconnected from MCP server: echo"
    assert await registry.list_connected() == []


async def test_spawn_failure_registers_nothing(registry) -> None:
    with pytest.raises(SpawnError):
        await registry.connect("x", "/nonexistent-binary", [])
    assert await registry.list_connected() == []


async def test_nul_byte_in_command_is_spawn_error(registry) -> None:
    with pytest.raises(SpawnError):
        await registry.connect("x", "/bin/ec\x00ho", [])
    assert await registry.list_connected() == []


async def test_illegal_env_name_is_spawn_error(registry, python, echo_args) -> None:
    with pytest.raises(SpawnError):
        await registry.connect("x", python, echo_args(), env={"A=B": "1"})
    assert await registry.list_connected() == []

    # The name is free again
    await registry.connect("x", python, echo_args())
    assert await registry.list_connected() == ["x"]


async def test_handshake_failure_registers_nothing(registry, python, echo_args) -> None:
    with pytest.raises(HandshakeError):
        await registry.connect("x", python, echo_args("--error-init"))
    assert await registry.list_connected() == []

    # The name is free again
    await registry.connect("x", python, echo_args())
    assert await registry.list_connected() == ["x"]


async def test_duplicate_connect_spawns_nothing(registry, python, echo_args, server_log) -> None:
    await registry.connect("echo", python, echo_args())
    client = await registry.get_client("echo")

    with pytest.raises(AlreadyConnected):
        await registry.connect("echo", python, echo_args())

    assert await registry.get_client("echo") is client
    assert client.process.returncode is None
    methods = [json.loads(line)["method"] for line in server_log.read_text().splitlines()]
    assert methods.count("initialize") == 1


async def test_concurrent_connects_of_one_name(registry, python, echo_args) -> None:
    results = await asyncio.gather(
        registry.connect("echo", python, echo_args()),
        registry.connect("echo", python, echo_args()),
        return_exceptions=True
    )

    assert sorted(type(result).__name__ for result in results) == ["AlreadyConnected", "str"]
    assert await registry.list_connected() == ["echo"]


async def test_unknown_name_is_not_connected(registry) -> None:
    with pytest.raises(NotConnected):
        await registry.disconnect("ghost")
    with pytest.raises(NotConnected):
        await registry.list_tools("ghost")
    with pytest.raises(NotConnected):
        await registry.call_tool("ghost", "echo", {})
    with pytest.raises(NotConnected):
        await registry.list_resources("ghost")
    with pytest.raises(NotConnected):
        await registry.read_resource("ghost", "echo://greeting")


async def test_resources(registry, python, echo_args) -> None:
    await registry.connect("echo", python, echo_args())

    resources = await registry.list_resources("echo")
    assert resources["resources"][0]["name"] == "greeting"
    contents = await registry.read_resource("echo", "echo://greeting")
    assert contents["contents"][0]["text"] == "hello"


async def test_list_connected_holds_every_name(registry, python, echo_args) -> None:
    await registry.connect("a", python, echo_args())
    await registry.connect("b", python, echo_args())
    assert sorted(await registry.list_connected()) == ["a", "b"]


async def test_disconnect_kills_unresponsive_server(python, echo_args, settings) -> None:
    settings = settings.model_copy(update={"shutdown_timeout": 0.3, "terminate_grace_period": 0.3})
    registry = ClientRegistry(settings=settings)
    await registry.connect("stubborn", python, echo_args("--hang-shutdown", "--ignore-sigterm"))
    client = await registry.get_client("stubborn")

    await asyncio.wait_for(registry.disconnect("stubborn"), 5)

    assert client.process.returncode == -signal.SIGKILL
    assert await registry.list_connected() == []


async def test_hung_server_does_not_block_others(python, echo_args, settings) -> None:
    settings = settings.model_copy(update={"request_timeout": None, "shutdown_timeout": 0.3})
    registry = ClientRegistry(settings=settings)
    await registry.connect("slow", python, echo_args())
    await registry.connect("fast", python, echo_args())

    pending = asyncio.create_task(registry.call_tool("slow", "hang", {}))
    await asyncio.sleep(0.2)

    assert sorted(await asyncio.wait_for(registry.list_connected(), 1)) == ["fast", "slow"]
    result = await asyncio.wait_for(registry.call_tool("fast", "echo", {"text": "still here"}), 2)
    assert result["content"][0]["text"] == "still here"

    await asyncio.wait_for(registry.disconnect("slow"), 5)
    with pytest.raises(ConnectionClosed):
        await asyncio.wait_for(pending, 5)

    await registry.close()


async def test_connect_with_env(registry, python, echo_args) -> None:
    await registry.connect_with_env("echo", python, echo_args(), {"ECHO_TEST_VALUE": "from-host"})
    result = await registry.call_tool("echo", "env", {"key": "ECHO_TEST_VALUE"})
    assert result["content"][0]["text"] == "from-host"


async def test_send_message_dispatch(registry, python, echo_args) -> None:
    await registry.connect("echo", python, echo_args())

    tools = await registry.send_message("echo", {"method": "tools/list"})
    assert len(tools["tools"]) == 3
    result = await registry.send_message(
        "echo", {"method": "tools/call", "params": {"name": "echo", "arguments": {"text": "yo"}}}
    )
    assert result["content"][0]["text"] == "yo"
    contents = await registry.send_message("echo", {"method": "resources/read", "params": {"uri": "echo://greeting"}})
    assert contents["contents"][0]["text"] == "hello"

    with pytest.raises(UnsupportedMethod):
        await registry.send_message("echo", {"method": "prompts/list"})


async def test_legacy_aliases(registry, python, echo_args) -> None:
    await registry.start_server("echo", python, echo_args())
    assert await registry.list_servers() == ["echo"]
    await registry.stop_server("echo")
    assert await registry.list_servers() == []


async def test_connect_configured_reports_each_server(registry, python, echo_args) -> None:
    results = await registry.connect_configured({
        "good": ServerConfig(command=python, args=echo_args()),
        "bad": ServerConfig(command="/nonexistent-binary"),
        "manual": ServerConfig(command=python, args=echo_args(), autoconnect=False),
    })

    assert results["good"] == "Connected to MCP server: good"
    assert "Failed to start" in results["bad"]
    assert "manual" not in results
    assert await registry.list_connected() == ["good"]


async def test_close_disconnects_everything(registry, python, echo_args) -> None:
    await registry.connect("a", python, echo_args())
    await registry.connect("b", python, echo_args())
    clients = [await registry.get_client("a"), await registry.get_client("b")]

    await registry.close()

    assert await registry.list_connected() == []
    assert all(client.process.returncode is not None for client in clients)


async def test_connect_configured_survives_invalid_entry(registry, python, echo_args) -> None:
    results = await registry.connect_configured({
        "broken": ServerConfig(command=python, args=echo_args(), env={"A=B": "1"}),
        "good": ServerConfig(command=python, args=echo_args()),
    })

    assert "Failed to start" in results["broken"]
    assert results["good"] == "Connected to MCP server: good"
    assert await registry.list_connected() == ["good"]


async def test_connect_in_flight_during_close_is_shut_down(registry, python, echo_args, server_log) -> None:
    pending = asyncio.create_task(registry.connect("late", python, echo_args()))
    await asyncio.sleep(0)
    assert "late" in registry._connecting

    await registry.close()

    with pytest.raises(RegistryClosed):
        await pending
    assert await registry.list_connected() == []
    methods = [json.loads(line)["method"] for line in server_log.read_text().splitlines()]
    assert methods[-1] == "shutdown"


async def test_connect_after_close_spawns_nothing(registry, python, echo_args, server_log) -> None:
    await registry.close()

    with pytest.raises(RegistryClosed):
        await registry.connect("echo", python, echo_args())
    assert not server_log.exists()
