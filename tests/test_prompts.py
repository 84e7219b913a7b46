import json

from sonar_bot.ai.prompts import CONFIG_FILENAME, PromptPreset, PromptRegistry
from sonar_bot.config import AIConfig


def test_builtin_defaults_without_file(registry, tmp_path):
    assert not (tmp_path / CONFIG_FILENAME).exists()
    assert registry.get_default_model() == "sonar-pro"
    assert registry.get_global_system_prompt() == "You are a test assistant."
    assert set(registry.get_presets()) == {"default", "researcher", "creative", "coder", "concise"}
    coder = registry.get_preset("coder")
    assert coder.model == "sonar-pro"
    assert coder.temperature == 0.2


def test_mutations_are_persisted(registry, tmp_path):
    registry.set_default_model("sonar")
    registry.set_global_system_prompt("Answer in French.")

    saved = json.loads((tmp_path / CONFIG_FILENAME).read_text(encoding="utf-8"))
    assert saved["defaultModel"] == "sonar"
    assert saved["globalSystemPrompt"] == "Answer in French."

    reopened = PromptRegistry(tmp_path / CONFIG_FILENAME, AIConfig())
    assert reopened.get_default_model() == "sonar"
    assert reopened.get_global_system_prompt() == "Answer in French."


def test_clamps_temperature_and_max_tokens(registry):
    registry.set_default_temperature(5)
    assert registry.get_default_temperature() == 2.0
    registry.set_default_temperature(-1)
    assert registry.get_default_temperature() == 0.0
    registry.set_default_max_tokens(100_000)
    assert registry.get_default_max_tokens() == 8192
    registry.set_default_max_tokens(0)
    assert registry.get_default_max_tokens() == 1


def test_default_preset_cannot_be_deleted(registry):
    before = registry.snapshot()
    assert registry.delete_preset("default") is False
    assert registry.snapshot() == before
    assert registry.delete_preset("missing") is False


def test_set_and_delete_preset(registry, tmp_path):
    registry.set_preset("pirate", PromptPreset(name="Pirate", description="Arr", prompt="Talk like a pirate"))
    assert registry.get_preset("pirate").name == "Pirate"

    assert registry.delete_preset("pirate") is True
    assert registry.get_preset("pirate") is None
    saved = json.loads((tmp_path / CONFIG_FILENAME).read_text(encoding="utf-8"))
    assert "pirate" not in saved["presets"]


def test_partial_file_is_merged_with_defaults(tmp_path):
    path = tmp_path / CONFIG_FILENAME
    path.write_text(
        json.dumps(
            {
                "defaultTemperature": 0.1,
                "presets": {"custom": {"name": "C", "description": "d", "prompt": "p"}},
            }
        ),
        encoding="utf-8",
    )

    registry = PromptRegistry(path, AIConfig())

    assert registry.get_default_temperature() == 0.1
    assert registry.get_default_model() == "sonar-pro"
    assert registry.get_default_max_tokens() == 4096
    assert "custom" in registry.get_presets()
    assert "default" in registry.get_presets()


def test_corrupt_file_falls_back_to_defaults(tmp_path):
    path = tmp_path / CONFIG_FILENAME
    path.write_text("{not json", encoding="utf-8")

    registry = PromptRegistry(path, AIConfig())

    assert registry.get_default_model() == "sonar-pro"
    assert "default" in registry.get_presets()


def test_reload_picks_up_external_edits(registry, tmp_path):
    registry.set_default_model("sonar")
    path = tmp_path / CONFIG_FILENAME
    data = json.loads(path.read_text(encoding="utf-8"))
    data["defaultModel"] = "sonar-reasoning"
    path.write_text(json.dumps(data), encoding="utf-8")

    registry.reload()

    assert registry.get_default_model() == "sonar-reasoning"


def test_chat_views(registry):
    listing = registry.preset_list_text()
    assert "• **coder**: Coding Assistant - Programming and technical help" in listing

    summary = registry.config_summary()
    assert summary.startswith("**AI Configuration:**")
    assert "• Model: `sonar-pro`" in summary
