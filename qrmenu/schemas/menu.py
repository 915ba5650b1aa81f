from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from typing import Any, List, Optional
from datetime import datetime

class MenuRecord(BaseModel):
    """The current menu: one image location per page, in page order.

    Field aliases are the camelCase keys the record store has always used,
    so records written by the earlier browser client still load.
    """
    model_config = ConfigDict(populate_by_name=True)

    image_urls: List[str] = Field(default_factory=list, alias="imageUrls")
    version: Optional[str] = None
    last_updated: Optional[datetime] = Field(None, alias="lastUpdated")
    page_count: int = Field(0, alias="pageCount")
    pdf_url: Optional[str] = Field(None, alias="pdfUrl")
    restored_from: Optional[str] = Field(None, alias="restoredFrom")

    @field_validator("version", "restored_from", mode="before")
    @classmethod
    def coerce_legacy_version(cls, v: Any) -> Any:
        # very old records used a bare integer counter
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @model_validator(mode="before")
    @classmethod
    def derive_page_count(cls, data: Any) -> Any:
        if isinstance(data, dict) and "pageCount" not in data and "page_count" not in data:
            urls = data.get("imageUrls", data.get("image_urls")) or []
            data = {**data, "pageCount": len(urls)}
        return data

    @model_validator(mode="after")
    def check_page_count(self) -> "MenuRecord":
        if self.page_count != len(self.image_urls):
            raise ValueError(
                f"pageCount {self.page_count} does not match {len(self.image_urls)} image URLs"
            )
        return self

    @property
    def has_pages(self) -> bool:
        return len(self.image_urls) > 0

    def to_store(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class HistoryEntry(MenuRecord):
    """A replaced MenuRecord plus the moment it was rolled into history."""
    timestamp: datetime

    def to_record(self) -> MenuRecord:
        return MenuRecord.model_validate(self.model_dump(exclude={"timestamp"}))


class MenuResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    data: Optional[MenuRecord] = None
    error: Optional[str] = None
    from_fallback: bool = Field(False, alias="fromFallback")


class RestoreRequest(BaseModel):
    version: str = Field(..., min_length=1, max_length=32)


class UploadProgress(BaseModel):
    step: str
    progress: int = Field(0, ge=0, le=100)
    current: Optional[int] = None
    total: Optional[int] = None
