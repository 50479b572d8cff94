from __future__ import annotations

"""Message catalog loader
-------------------------
Loads the support desk's message templates from a local JSON or YAML file
(YAML being a superset of JSON, one parser covers both) and orders them the
way the operator panel lists them.
"""

import re
from pathlib import Path
from typing import Any, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator


class CatalogEntry(BaseModel):
    """One message template. Field names follow the upstream document."""

    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    titulo: str = Field(..., description="Title shown to the operator")
    mensagem: str = Field(default="", description="Protocol message body")
    etiqueta: str = Field(default="", description="Internal tag")
    externo: bool = Field(default=False, description="Forward to external support")
    aguardar: bool = Field(default=False, description="Wait for the external team to hand back")
    servico: Optional[str] = Field(default=None, description="Service option to select")
    etiqueta_externo: Optional[str] = Field(default=None, description="Problem option to select")

    @field_validator("id", mode="before")
    @classmethod
    def _id_to_str(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        v = str(v).strip()
        return v or None

    @field_validator("titulo")
    @classmethod
    def _title_non_empty(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("titulo cannot be empty")
        return v

    def compose_message(
        self,
        *,
        contact: Optional[str] = None,
        holder: bool = False,
        note: Optional[str] = None,
        holder_label: str = "Titular",
    ) -> str:
        return compose_message(self.mensagem, contact=contact, holder=holder, note=note, holder_label=holder_label)


def compose_message(
    body: str,
    *,
    contact: Optional[str] = None,
    holder: bool = False,
    note: Optional[str] = None,
    holder_label: str = "Titular",
) -> str:
    """
    Protocol message as posted on the ticket:

        "<contact> entrou em contato e <body>\\n\\nObservação:\\n<note>"

    `holder` names the account holder instead of `contact`; the opening and
    the note are left out when blank.
    """
    who = holder_label if holder else (contact or "").strip()
    text = f"{who} entrou em contato e {body}" if who else body
    note = (note or "").strip()
    if note:
        text += f"\n\nObservação:\n{note}"
    return text


def _natural_key(value: str) -> list:
    # "2" < "10"; digit runs compare numerically
    return [(0, int(tok), "") if tok.isdigit() else (1, 0, tok.casefold()) for tok in re.findall(r"\d+|\D+", value)]


def sort_catalog(entries: list[CatalogEntry]) -> list[CatalogEntry]:
    """Entries with an id first in natural order, then id-less ones as given."""
    with_id = sorted((e for e in entries if e.id), key=lambda e: _natural_key(e.id or ""))
    without_id = [e for e in entries if not e.id]
    return with_id + without_id


def load_catalog(path: Union[Path, str]) -> list[CatalogEntry]:
    cat_path = Path(path)
    if not cat_path.exists():
        raise FileNotFoundError(f"Catalog file not found: {cat_path}")
    try:
        data = yaml.safe_load(cat_path.read_text(encoding="utf-8"))
    except yaml.YAMLError as ye:
        raise ValueError(f"Parse error in {cat_path}: {ye}") from ye

    if data is None:
        return []
    if not isinstance(data, list):
        raise ValueError(f"Catalog {cat_path} must be a list of records at the top level.")

    entries: list[CatalogEntry] = []
    for idx, record in enumerate(data, start=1):
        if not isinstance(record, dict):
            raise ValueError(f"Record {idx} in {cat_path} must be a mapping/object.")
        try:
            entries.append(CatalogEntry.model_validate(record))
        except ValidationError as ve:
            lines = [f"Invalid record {idx} in '{cat_path}':"]
            for e in ve.errors():
                loc = ".".join(str(p) for p in e.get("loc", []))
                lines.append(f"  - {loc}: {e.get('msg', 'invalid value')}")
            raise ValueError("\n".join(lines)) from ve
    return sort_catalog(entries)


def find_entry(entries: list[CatalogEntry], title: str) -> Optional[CatalogEntry]:
    want = title.strip().casefold()
    for e in entries:
        if e.titulo.casefold() == want:
            return e
    return None


__all__ = ["CatalogEntry", "compose_message", "load_catalog", "sort_catalog", "find_entry"]
