"""Runtime-editable prompt and model registry, persisted to a JSON file."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from sonar_bot.config import AIConfig
from sonar_bot.log import get_logger

logger = get_logger(__name__)

PROTECTED_PRESET = "default"
CONFIG_FILENAME = "ai-config.json"

MIN_TEMPERATURE, MAX_TEMPERATURE = 0.0, 2.0
MIN_MAX_TOKENS, MAX_MAX_TOKENS = 1, 8192


class PromptPreset(BaseModel):
    name: str
    description: str
    prompt: str
    model: Optional[str] = None
    temperature: Optional[float] = None


class AIConfiguration(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    global_system_prompt: str = Field(alias="globalSystemPrompt")
    default_model: str = Field(alias="defaultModel")
    default_temperature: float = Field(alias="defaultTemperature")
    default_max_tokens: int = Field(alias="defaultMaxTokens")
    presets: dict[str, PromptPreset] = Field(default_factory=dict)


def builtin_configuration(ai: AIConfig) -> AIConfiguration:
    """The configuration used when nothing has been persisted yet."""
    return AIConfiguration(
        global_system_prompt=ai.system_prompt,
        default_model=ai.model,
        default_temperature=ai.temperature,
        default_max_tokens=ai.max_tokens,
        presets={
            "default": PromptPreset(
                name="Default Assistant",
                description="General-purpose helpful assistant",
                prompt=ai.system_prompt,
            ),
            "researcher": PromptPreset(
                name="Research Assistant",
                description="Focused on detailed research with citations",
                prompt=(
                    "You are a meticulous research assistant powered by Perplexity. Your role is to:\n"
                    "1. Provide thoroughly researched, accurate answers\n"
                    "2. Always cite your sources with links when available\n"
                    "3. Present information in a well-structured format\n"
                    "4. Distinguish between verified facts and opinions/speculation\n"
                    "5. Acknowledge when information is uncertain or when you need more context\n"
                    "6. Use markdown formatting for clarity"
                ),
                model="sonar-reasoning",
                temperature=0.3,
            ),
            "creative": PromptPreset(
                name="Creative Writer",
                description="Creative writing and brainstorming",
                prompt=(
                    "You are a creative writing assistant. Your role is to:\n"
                    "1. Help with creative writing, storytelling, and brainstorming\n"
                    "2. Offer imaginative suggestions and ideas\n"
                    "3. Adapt your writing style to match the user's needs\n"
                    "4. Provide constructive feedback on creative work\n"
                    "5. Be encouraging and supportive of creative exploration"
                ),
                model="sonar-pro",
                temperature=0.9,
            ),
            "coder": PromptPreset(
                name="Coding Assistant",
                description="Programming and technical help",
                prompt=(
                    "You are an expert programming assistant. Your role is to:\n"
                    "1. Write clean, efficient, and well-documented code\n"
                    "2. Explain technical concepts clearly\n"
                    "3. Debug issues methodically\n"
                    "4. Suggest best practices and modern approaches\n"
                    "5. Provide code examples with explanations\n"
                    "6. Use appropriate markdown code blocks with language syntax highlighting"
                ),
                model="sonar-pro",
                temperature=0.2,
            ),
            "concise": PromptPreset(
                name="Concise Responder",
                description="Brief, to-the-point answers",
                prompt=(
                    "You are a concise assistant. Your role is to:\n"
                    "1. Provide brief, direct answers\n"
                    "2. Avoid unnecessary elaboration\n"
                    "3. Use bullet points when listing items\n"
                    "4. Only expand on topics when explicitly asked\n"
                    "5. Get straight to the point"
                ),
                model="sonar",
                temperature=0.5,
            ),
        },
    )


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


class PromptRegistry:
    """Owns the AIConfiguration; every mutation is written to disk before returning."""

    def __init__(self, config_path: str | Path, ai_defaults: AIConfig):
        self._path = Path(config_path)
        self._ai_defaults = ai_defaults
        self._config = self._load()
        logger.info(
            "prompt_registry_initialized",
            model=self._config.default_model,
            presets=len(self._config.presets),
        )

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> AIConfiguration:
        defaults = builtin_configuration(self._ai_defaults)
        if not self._path.exists():
            return defaults
        try:
            loaded = json.loads(self._path.read_text(encoding="utf-8"))
            merged = self._merge_with_defaults(loaded, defaults)
            logger.info("ai_configuration_loaded", path=str(self._path))
            return merged
        except (OSError, ValueError, ValidationError) as e:
            logger.error("ai_configuration_load_error", path=str(self._path), error=str(e))
            return defaults

    @staticmethod
    def _merge_with_defaults(loaded: dict[str, Any], defaults: AIConfiguration) -> AIConfiguration:
        if not isinstance(loaded, dict):
            raise ValueError("AI configuration file must contain a JSON object")

        presets = dict(defaults.presets)
        for key, raw in (loaded.get("presets") or {}).items():
            presets[key] = PromptPreset.model_validate(raw)

        temperature = loaded.get("defaultTemperature")
        max_tokens = loaded.get("defaultMaxTokens")
        return AIConfiguration(
            global_system_prompt=loaded.get("globalSystemPrompt") or defaults.global_system_prompt,
            default_model=loaded.get("defaultModel") or defaults.default_model,
            default_temperature=(
                temperature if temperature is not None else defaults.default_temperature
            ),
            default_max_tokens=max_tokens if max_tokens is not None else defaults.default_max_tokens,
            presets=presets,
        )

    def _save(self) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            payload = self._config.model_dump(by_alias=True)
            tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
            tmp_path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
            tmp_path.replace(self._path)
            logger.info("ai_configuration_saved", path=str(self._path))
        except OSError as e:
            logger.error("ai_configuration_save_error", path=str(self._path), error=str(e))

    # Global prompt / defaults

    def get_global_system_prompt(self) -> str:
        return self._config.global_system_prompt

    def set_global_system_prompt(self, prompt: str) -> None:
        self._config.global_system_prompt = prompt
        self._save()
        logger.info("global_system_prompt_updated")

    def get_default_model(self) -> str:
        return self._config.default_model

    def set_default_model(self, model: str) -> None:
        self._config.default_model = model
        self._save()
        logger.info("default_model_updated", model=model)

    def get_default_temperature(self) -> float:
        return self._config.default_temperature

    def set_default_temperature(self, temperature: float) -> None:
        self._config.default_temperature = _clamp(temperature, MIN_TEMPERATURE, MAX_TEMPERATURE)
        self._save()
        logger.info("default_temperature_updated", temperature=self._config.default_temperature)

    def get_default_max_tokens(self) -> int:
        return self._config.default_max_tokens

    def set_default_max_tokens(self, max_tokens: int) -> None:
        self._config.default_max_tokens = int(_clamp(max_tokens, MIN_MAX_TOKENS, MAX_MAX_TOKENS))
        self._save()
        logger.info("default_max_tokens_updated", max_tokens=self._config.default_max_tokens)

    # Presets

    def get_presets(self) -> dict[str, PromptPreset]:
        return dict(self._config.presets)

    def get_preset(self, key: str) -> Optional[PromptPreset]:
        return self._config.presets.get(key)

    def set_preset(self, key: str, preset: PromptPreset) -> None:
        self._config.presets[key] = preset
        self._save()
        logger.info("preset_updated", key=key, name=preset.name)

    def delete_preset(self, key: str) -> bool:
        """Remove a preset. The protected default and unknown keys return False."""
        if key == PROTECTED_PRESET or key not in self._config.presets:
            return False
        del self._config.presets[key]
        self._save()
        logger.info("preset_deleted", key=key)
        return True

    def reload(self) -> None:
        self._config = self._load()
        logger.info("ai_configuration_reloaded")

    # Views

    def snapshot(self) -> dict[str, Any]:
        return self._config.model_dump(by_alias=True)

    def preset_list_text(self) -> str:
        return "\n".join(
            f"• **{key}**: {preset.name} - {preset.description}"
            for key, preset in self._config.presets.items()
        )

    def config_summary(self) -> str:
        prompt = self._config.global_system_prompt
        preview = prompt[:200] + ("..." if len(prompt) > 200 else "")
        return (
            "**AI Configuration:**\n"
            f"• Model: `{self._config.default_model}`\n"
            f"• Temperature: {self._config.default_temperature}\n"
            f"• Max Tokens: {self._config.default_max_tokens}\n"
            f"• Presets: {len(self._config.presets)}\n\n"
            "**System Prompt Preview:**\n"
            f"{preview}"
        )
