"""Prompt assembly utilities for polish."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

from .config import PROMPTS_PATH
from .models import CustomMode, Mode

logger = logging.getLogger(__name__)

DIALECT_PLACEHOLDER = "{{DIALECT}}"


@dataclass
class PromptConfig:
    base_protocol: str
    modes: Dict[str, Mode]
    latex_protection: Optional[str] = None
    term_protection: Optional[str] = None
    cost_estimates: Dict[str, Dict[str, float]] = field(default_factory=dict)


def load_prompt_config(path: Path = PROMPTS_PATH) -> PromptConfig:
    with open(path, "r", encoding="utf-8") as handle:
        raw = json.load(handle)

    modes = {
        mode_id: Mode(
            id=mode_id,
            label=item.get("label", mode_id),
            description=item.get("description", ""),
            system_instruction=item["system_instruction"],
            temperature=float(item.get("temperature", 0.3)),
        )
        for mode_id, item in raw.get("modes", {}).items()
    }
    return PromptConfig(
        base_protocol=raw["base_protocol"],
        modes=modes,
        latex_protection=(raw.get("latex_protection") or {}).get("system_instruction"),
        term_protection=(raw.get("term_protection") or {}).get("system_instruction"),
        cost_estimates=raw.get("cost_estimates", {}),
    )


class ModeRegistry:
    """Built-in modes followed by the user's custom modes."""

    def __init__(self, builtin: Dict[str, Mode], custom: Sequence[Dict[str, Any]] = ()):
        self._builtin = dict(builtin)
        self._custom: Dict[str, CustomMode] = {}
        self.set_custom(custom)

    def set_custom(self, custom: Sequence[Dict[str, Any]]) -> None:
        self._custom = {}
        for item in custom:
            mode = CustomMode.from_dict(item)
            if mode.id in self._builtin:
                logger.warning("Custom mode %s shadows a built-in mode; ignored", mode.id)
                continue
            self._custom[mode.id] = mode

    def get(self, mode_id: str) -> Optional[Mode]:
        return self._builtin.get(mode_id) or self._custom.get(mode_id)

    def all(self) -> List[Mode]:
        return list(self._builtin.values()) + list(self._custom.values())

    def is_builtin(self, mode_id: str) -> bool:
        return mode_id in self._builtin


@dataclass(frozen=True)
class PromptContext:
    dialect: str
    mode: Mode
    latex_protect: bool = False
    has_protected_terms: bool = False


PromptFragment = Callable[[PromptConfig, PromptContext], Optional[str]]


def base_protocol_fragment(config: PromptConfig, context: PromptContext) -> Optional[str]:
    return config.base_protocol.replace(DIALECT_PLACEHOLDER, context.dialect)


def mode_fragment(config: PromptConfig, context: PromptContext) -> Optional[str]:
    return context.mode.instruction_block()


def latex_fragment(config: PromptConfig, context: PromptContext) -> Optional[str]:
    if context.latex_protect and config.latex_protection:
        return config.latex_protection
    return None


def term_fragment(config: PromptConfig, context: PromptContext) -> Optional[str]:
    if context.has_protected_terms and config.term_protection:
        return config.term_protection
    return None


SYSTEM_PROMPT_PIPELINE: Sequence[PromptFragment] = (
    base_protocol_fragment,
    mode_fragment,
    latex_fragment,
    term_fragment,
)


def build_system_prompt(
    config: PromptConfig,
    context: PromptContext,
    pipeline: Sequence[PromptFragment] = SYSTEM_PROMPT_PIPELINE,
) -> str:
    fragments = [fragment(config, context) for fragment in pipeline]
    return "\n\n".join(fragment for fragment in fragments if fragment)
