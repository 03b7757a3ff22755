from __future__ import annotations

import json

import pytest

from config.settings import Settings
from prompts.loader import load_call_script, load_prompt, load_tool_catalog, render_instructions
from relay.tools import OUTCOME_TOOL_NAME


def test_render_fills_known_placeholders_only():
    text = render_instructions("Falo com $customer_name? CPF $cpf_prefix. $other", customer_name="Ana", cpf_prefix=None)
    assert text == "Falo com Ana? CPF $cpf_prefix. $other"


def test_bundled_catalog_declares_outcome_tool():
    catalog = load_tool_catalog("tool_catalog.json")

    tool = next(tool for tool in catalog if tool["name"] == OUTCOME_TOOL_NAME)
    params = tool["parameters"]
    assert tool["type"] == "function"
    assert params["required"] == ["resultado"]
    assert set(params["properties"]["resultado"]["enum"]) == {
        "transferido_sucesso",
        "recado_deixado",
        "numero_errado",
        "cpf_nao_confirmado",
    }


def test_catalog_must_be_a_list_of_named_tools(tmp_path):
    path = tmp_path / "tools.json"
    path.write_text(json.dumps({"name": "x"}), encoding="utf-8")
    with pytest.raises(RuntimeError):
        load_tool_catalog(path)

    path.write_text(json.dumps([{"description": "no name"}]), encoding="utf-8")
    with pytest.raises(RuntimeError):
        load_tool_catalog(path)


def test_missing_prompt_file_raises():
    with pytest.raises(RuntimeError):
        load_prompt("does-not-exist.md")


def test_call_script_uses_deployment_files(tmp_path):
    instructions = tmp_path / "script.md"
    instructions.write_text("Cliente: $customer_name ($cpf_prefix)\n", encoding="utf-8")
    tools = tmp_path / "tools.json"
    tools.write_text(json.dumps([{"name": "registrar_resultado_chamada"}]), encoding="utf-8")
    settings = Settings(
        _env_file=None,
        openai_api_key="sk-test",
        data_dir=tmp_path,
        instructions_file=instructions,
        tool_catalog_file=tools,
        customer_name="Paulo Godoy",
        customer_cpf_prefix="425",
    )

    script = load_call_script(settings)

    assert script.instructions == "Cliente: Paulo Godoy (4, 2, 5)\n"
    assert script.tools == [{"name": "registrar_resultado_chamada", "type": "function"}]
