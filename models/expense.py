"""Pydantic models for Expense data"""
from typing import Annotated, Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

Title = Annotated[str, Field(min_length=3, max_length=100)]
Amount = Annotated[int, Field(gt=0, strict=True, description="Amount in the smallest currency unit.")]


class CamelModel(BaseModel):
    """Base model that speaks camelCase on the wire and snake_case in Python."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Expense(CamelModel):
    """
    Represents a single expense as returned by the API.

    `file_url` is the stored object key, an absolute URL, or a signed
    download URL minted for this response.
    """
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    amount: int
    file_url: Optional[str] = None


class ExpenseCreate(CamelModel):
    id: Optional[Annotated[int, Field(gt=0, strict=True)]] = None
    title: Title
    amount: Amount


class ExpenseReplace(CamelModel):
    title: Title
    amount: Amount


class ExpensePatch(CamelModel):
    """
    Partial update body. Only fields present in the request are applied;
    unknown keys are dropped before the emptiness check.
    """
    title: Optional[Title] = None
    amount: Optional[Amount] = None
    file_key: Optional[Annotated[str, Field(min_length=1)]] = None
    file_url: Optional[Annotated[str, Field(min_length=1)]] = None

    @model_validator(mode="after")
    def reject_null_scalars(self) -> "ExpensePatch":
        for name in ("title", "amount"):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self

    def is_empty(self) -> bool:
        return not self.model_fields_set

    def to_update_values(self) -> Dict[str, Any]:
        """
        Maps the patch onto table columns.

        `fileKey` and `fileUrl` both target the stored reference; when both
        are sent, `fileUrl` wins.
        """
        values: Dict[str, Any] = {}
        if "title" in self.model_fields_set:
            values["title"] = self.title
        if "amount" in self.model_fields_set:
            values["amount"] = self.amount
        if "file_url" in self.model_fields_set:
            values["file_url"] = self.file_url
        elif "file_key" in self.model_fields_set:
            values["file_url"] = self.file_key
        return values


class UploadSignRequest(CamelModel):
    filename: Annotated[str, Field(min_length=1, max_length=255)]
    content_type: Annotated[str, Field(min_length=1, max_length=255, alias="type")]


class UploadSignResponse(CamelModel):
    """Pending upload descriptor. Never persisted."""
    upload_url: str
    key: str


class ErrorDetail(BaseModel):
    message: str


class ErrorEnvelope(BaseModel):
    error: ErrorDetail
