"""Tests for the lavs CLI."""

import json
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from lavs import __version__
from lavs.cli.app import app, main

runner = CliRunner()


@pytest.fixture
def todo_agent(make_agent):
    return make_agent(
        "todo",
        {
            "name": "Todo",
            "version": "1.0.0",
            "endpoints": [
                {
                    "id": "listTodos",
                    "method": "query",
                    "description": "List todos",
                    "handler": {"type": "function", "module": "./todo.py", "function": "list_todos"},
                },
                {
                    "id": "addTodo",
                    "method": "mutation",
                    "handler": {"type": "function", "module": "./todo.py", "function": "add_todo"},
                    "schema": {
                        "input": {
                            "type": "object",
                            "properties": {"title": {"type": "string"}},
                            "required": ["title"],
                        }
                    },
                },
                {
                    "id": "changes",
                    "method": "subscription",
                    "handler": {"type": "function", "module": "./todo.py", "function": "list_todos"},
                },
            ],
        },
        {
            "todo.py": (
                "def list_todos(input, context):\n"
                "    return {'todos': []}\n"
                "\n"
                "def add_todo(input, context):\n"
                "    return {'title': input['title']}\n"
            )
        },
    )


def test_version_command():
    result = runner.invoke(app, ["version"])

    assert result.exit_code == 0
    assert f"lavs version {__version__}" in result.output


def test_no_args_shows_help():
    result = runner.invoke(app, [])

    assert result.exit_code in (0, 2)
    assert "Usage" in result.output


def test_manifest_show(todo_agent, agents_root):
    result = runner.invoke(app, ["manifest", "show", "todo", "-a", str(agents_root)])

    assert result.exit_code == 0
    assert "Todo" in result.output
    assert "listTodos" in result.output
    assert "subscription" in result.output


def test_manifest_show_unknown_agent(agents_root):
    result = runner.invoke(app, ["manifest", "show", "ghost", "-a", str(agents_root)])

    assert result.exit_code == 1
    assert "not found" in result.output


def test_manifest_validate_directory(todo_agent):
    result = runner.invoke(app, ["manifest", "validate", str(todo_agent)])

    assert result.exit_code == 0
    assert "3 endpoints" in result.output


def test_manifest_validate_reports_errors(tmp_path):
    path = tmp_path / "lavs.json"
    path.write_text(json.dumps({"name": "Broken", "endpoints": [{"id": "x", "method": "get"}]}))

    result = runner.invoke(app, ["manifest", "validate", str(path)])

    assert result.exit_code == 1
    assert "invalid method" in result.output


def test_call_prints_result(todo_agent, agents_root):
    result = runner.invoke(
        app,
        ["call", "todo", "addTodo", "--input", '{"title": "milk"}', "-a", str(agents_root)],
    )

    assert result.exit_code == 0
    assert json.loads(result.output) == {"jsonrpc": "2.0", "result": {"title": "milk"}}


def test_call_error_exits_non_zero(todo_agent, agents_root):
    result = runner.invoke(app, ["call", "todo", "addTodo", "-a", str(agents_root)])

    assert result.exit_code == 1
    assert "-32602" in result.output


def test_call_rejects_bad_input_json(todo_agent, agents_root):
    result = runner.invoke(app, ["call", "todo", "addTodo", "-i", "{oops", "-a", str(agents_root)])

    assert result.exit_code == 1
    assert "Invalid --input JSON" in result.output


def test_tools_table(todo_agent, agents_root):
    result = runner.invoke(app, ["tools", "todo", "-a", str(agents_root)])

    assert result.exit_code == 0
    assert "lavs_listTodos" in result.output
    assert "lavs_changes" not in result.output


def test_tools_anthropic_format(todo_agent, agents_root):
    result = runner.invoke(app, ["tools", "todo", "-f", "anthropic", "-a", str(agents_root)])

    assert result.exit_code == 0
    tools = json.loads(result.output)
    assert [t["name"] for t in tools] == ["lavs_listTodos", "lavs_addTodo"]
    assert tools[1]["input_schema"]["required"] == ["title"]


def test_tools_unknown_format(todo_agent, agents_root):
    result = runner.invoke(app, ["tools", "todo", "-f", "xml", "-a", str(agents_root)])

    assert result.exit_code == 1


def test_config_file_is_used(todo_agent, agents_root, tmp_path):
    config_path = tmp_path / "lavs.yaml"
    config_path.write_text(f"agents:\n  search_paths:\n    - {agents_root}\n")

    result = runner.invoke(app, ["tools", "todo", "-f", "openai", "-c", str(config_path)])

    assert result.exit_code == 0
    assert json.loads(result.output)[0]["function"]["name"] == "lavs_listTodos"


def test_main_keyboard_interrupt():
    with (
        patch("lavs.cli.app.app", side_effect=KeyboardInterrupt),
        patch("lavs.cli.app.sys") as mock_sys,
    ):
        main()
        mock_sys.exit.assert_called_with(130)


def test_main_exception():
    with (
        patch("lavs.cli.app.app", side_effect=RuntimeError("test error")),
        patch("lavs.cli.app.sys") as mock_sys,
    ):
        main()
        mock_sys.exit.assert_called_with(1)
