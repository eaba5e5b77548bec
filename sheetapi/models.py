from __future__ import annotations

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field


class Tab(BaseModel):
    key: str
    name: str
    gid: str


class TabsResponse(BaseModel):
    ok: bool = True
    tabs: List[Tab] = Field(default_factory=list)


class SheetMeta(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    sheet_id: str = Field(alias="sheetId")
    gid: str
    tab: Optional[Tab] = None
    csv_url: str = Field(alias="csvUrl")
    fetched_at: str = Field(alias="fetchedAt")
    header_row: int = Field(alias="headerRow")
    cache_ttl_seconds: int = Field(alias="cacheTtlSeconds")


class SheetResponse(BaseModel):
    ok: bool = True
    meta: SheetMeta
    preamble: List[List[str]] = Field(default_factory=list)
    headers: List[str] = Field(default_factory=list)
    items: List[Dict[str, str]] = Field(default_factory=list)


class MergedTabMeta(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    key: str
    name: str
    gid: str
    csv_url: str = Field(alias="csvUrl")
    header_row: int = Field(alias="headerRow")
    item_count: int = Field(alias="itemCount")


class MergedMeta(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    sheet_id: str = Field(alias="sheetId")
    tabs: List[MergedTabMeta] = Field(default_factory=list)
    fetched_at: str = Field(alias="fetchedAt")
    cache_ttl_seconds: int = Field(alias="cacheTtlSeconds")
    merged: bool = True


class MergedResponse(BaseModel):
    ok: bool = True
    meta: MergedMeta
    headers: List[str] = Field(default_factory=list)
    items: List[Dict[str, str]] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    ok: bool = False
    error: Dict[str, Any] = Field(default_factory=dict)


class HealthResponse(BaseModel):
    ok: bool = True
