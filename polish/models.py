"""Typed models used by the text polishing (polish) module."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from typing import Any, Dict, List, Optional

from .config import DEFAULT_DIALECT, DEFAULT_MODE, DEFAULT_MODEL


@dataclass(frozen=True)
class RevisionRequest:
    source_text: str
    mode_id: str
    dialect: str
    model: str
    latex_protect: bool = False
    stream: bool = True


@dataclass
class Mode:
    id: str
    label: str
    description: str
    system_instruction: str
    temperature: float = 0.3

    custom = False

    def describe(self) -> str:
        return self.description or self.label

    def instruction_block(self) -> str:
        return f"SPECIFIC FIELD INSTRUCTIONS:\n{self.system_instruction}"

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["custom"] = self.custom
        return data


@dataclass
class CustomMode(Mode):
    """User-authored mode persisted in settings."""

    custom = True

    def describe(self) -> str:
        description = self.description or "Custom instructions"
        return f"{description} (custom)"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CustomMode":
        return cls(
            id=str(data["id"]),
            label=data.get("label") or str(data["id"]),
            description=data.get("description", ""),
            system_instruction=data.get("system_instruction", ""),
            temperature=float(data.get("temperature", 0.3)),
        )


@dataclass
class DictionaryEntry:
    term: str
    replacement: Optional[str] = None


@dataclass
class TokenMapping:
    token: str
    entry: DictionaryEntry
    matches: List[str] = field(default_factory=list)


@dataclass
class RevisionResult:
    polished_text: str
    cost: float
    timestamp: str


@dataclass
class VersionEntry:
    polished: str
    original: str
    timestamp: str
    index: int


class DiffTag(str, Enum):
    EQUAL = "equal"
    INSERT = "insert"
    DELETE = "delete"


@dataclass(frozen=True)
class DiffOp:
    tag: DiffTag
    text: str


@dataclass
class PdfFormatting:
    double_spaced: bool = False
    line_numbers: bool = False
    font: str = "times"


@dataclass
class ExportMetadata:
    title: str = ""
    author: str = ""
    subject: str = ""
    formatting: PdfFormatting = field(default_factory=PdfFormatting)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ExportMetadata":
        data = data or {}
        formatting = data.get("formatting") or {}
        return cls(
            title=(data.get("title") or "").strip(),
            author=(data.get("author") or "").strip(),
            subject=(data.get("subject") or "").strip(),
            formatting=PdfFormatting(
                double_spaced=bool(formatting.get("double_spaced", False)),
                line_numbers=bool(formatting.get("line_numbers", False)),
                font=formatting.get("font") or "times",
            ),
        )


@dataclass
class ExportResult:
    success: bool
    path: Optional[str] = None
    error: Optional[str] = None


@dataclass
class Settings:
    dark_mode: bool = False
    diff_highlight: bool = True
    latex_protect: bool = False
    stream: bool = True
    total_polishes: int = 0
    total_spent: float = 0.0
    selected_model: str = DEFAULT_MODEL
    selected_mode: str = DEFAULT_MODE
    selected_dialect: str = DEFAULT_DIALECT
    custom_prompts: List[Dict[str, Any]] = field(default_factory=list)
    dictionary: List[Dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Settings":
        known = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in data.items() if key in known})

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def dictionary_entries(self) -> List[DictionaryEntry]:
        return [
            DictionaryEntry(term=item["term"], replacement=item.get("replacement"))
            for item in self.dictionary
        ]
