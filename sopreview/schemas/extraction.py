"""
Pydantic schemas for the extraction payload and the exported summary.

The extraction service sends camelCase JSON; these models validate and
normalise it before the review workspace loads it.
"""
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from sopreview.exceptions import PayloadValidationError

# Fields of an extracted row that identify or describe it rather than hold a value
IDENTITY_FIELDS = ("rowId", "statement", "lineItem", "Line Item", "classification", "aiConfidence")

# Review flags from earlier sessions are never carried into a new review
DISCARDED_FIELDS = ("verified", "Verified")


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _only_objects(value: Any) -> Any:
    if isinstance(value, list):
        return [item for item in value if isinstance(item, dict)]
    return value


class CalculationStepPayload(BaseModel):
    """A calculation step seeded by extraction."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    operator: str = Field("+", description="One of + - * /")
    statement: str = Field("", description="Operand statement")
    line_item: str = Field("", alias="lineItem", description="Operand line item")
    column: str = Field("", description="Operand column hint")
    constant: str = Field("", description="Literal operand")

    @field_validator("operator", "statement", "line_item", "column", "constant", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        return _as_text(value)


class SummaryEntryPayload(BaseModel):
    """An SOP summary row as produced by extraction."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    metric: str = Field("", validation_alias=AliasChoices("metric", "name"))
    value: Optional[str] = Field(None, description="Display value")
    statement: str = Field("", description="Source statement")
    column: str = Field("", validation_alias=AliasChoices("column", "sourceColumn"))
    source_line: str = Field("", validation_alias=AliasChoices("sourceLine", "lineItem"))
    manual: bool = False
    calculation: List[CalculationStepPayload] = Field(default_factory=list)

    @field_validator("metric", "statement", "column", "source_line", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        return _as_text(value)

    @field_validator("value", mode="before")
    @classmethod
    def _coerce_value(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        return str(value)

    @field_validator("calculation", mode="before")
    @classmethod
    def _coerce_calculation(cls, value: Any) -> Any:
        if value is None:
            return []
        return _only_objects(value)


class LineItemPayload(BaseModel):
    """
    An extracted line item.

    Any key that is not an identity field is a value column.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    row_id: Optional[str] = Field(None, alias="rowId")
    statement: str = ""
    line_item: str = Field("", validation_alias=AliasChoices("lineItem", "Line Item"))
    classification: Optional[str] = None
    ai_confidence: Optional[float] = Field(None, alias="aiConfidence")

    @field_validator("row_id", "classification", mode="before")
    @classmethod
    def _coerce_optional_text(cls, value: Any) -> Optional[str]:
        text = _as_text(value)
        return text or None

    @field_validator("statement", "line_item", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        return _as_text(value)

    @field_validator("ai_confidence", mode="before")
    @classmethod
    def _coerce_confidence(cls, value: Any) -> Optional[float]:
        try:
            return float(value) if value is not None else None
        except (TypeError, ValueError):
            return None

    def cell_values(self) -> Dict[str, str]:
        values: Dict[str, str] = {}
        for key, value in (self.model_extra or {}).items():
            if key in IDENTITY_FIELDS or key in DISCARDED_FIELDS:
                continue
            values[key] = "" if value is None else str(value)
        return values


class SopMetadataPayload(BaseModel):
    """Extraction metadata for the SOP summary."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    latest_columns: Dict[str, Optional[str]] = Field(default_factory=dict, alias="latestColumns")

    @field_validator("latest_columns", mode="before")
    @classmethod
    def _coerce_columns(cls, value: Any) -> Any:
        if not isinstance(value, dict):
            return {}
        return {str(key): _as_text(column) for key, column in value.items()}


class ExtractionPayload(BaseModel):
    """Complete response of the extraction service."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    pdf_name: Optional[str] = Field(None, alias="pdfName")
    line_items: List[LineItemPayload] = Field(default_factory=list, alias="lineItems")
    value_columns: List[str] = Field(default_factory=list, alias="valueColumns")
    sop_summary: List[SummaryEntryPayload] = Field(default_factory=list, alias="sopSummary")
    sop_metadata: SopMetadataPayload = Field(default_factory=SopMetadataPayload, alias="sopMetadata")
    candidate_metrics: List[str] = Field(default_factory=list, alias="candidateMetrics")

    @field_validator("line_items", "sop_summary", mode="before")
    @classmethod
    def _drop_non_objects(cls, value: Any) -> Any:
        if value is None:
            return []
        return _only_objects(value)

    @field_validator("value_columns", "candidate_metrics", mode="before")
    @classmethod
    def _text_list(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return []
        return [str(item) for item in value if isinstance(item, str) and item.strip()]

    @field_validator("sop_metadata", mode="before")
    @classmethod
    def _metadata_object(cls, value: Any) -> Any:
        return value if isinstance(value, dict) else {}

    @classmethod
    def parse(cls, data: Dict[str, Any]) -> "ExtractionPayload":
        """
        Validate a raw payload.

        Raises:
            PayloadValidationError: If the payload does not validate.
        """
        if not isinstance(data, dict):
            raise PayloadValidationError("Extraction payload must be an object")
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise PayloadValidationError(
                errors=[
                    {"loc": list(error["loc"]), "message": error["msg"]}
                    for error in exc.errors()
                ],
            ) from exc


class SummaryRowResponse(BaseModel):
    """A row of the displayed/exported SOP summary."""

    model_config = ConfigDict(populate_by_name=True)

    metric: str = Field(..., description="Metric name")
    value: str = Field("-", description="Display value")
    statement: str = Field("", description="Source statement, or Derived")
    column: str = Field("", description="Source column, or Multiple")
    source_line: str = Field("", alias="sourceLine", description="Source line item or formula trail")
    manual: bool = Field(False, description="Whether manual entries drive the value")

    @classmethod
    def from_summary(cls, row: Any) -> "SummaryRowResponse":
        return cls(
            metric=row.metric,
            value=row.value,
            statement=row.statement,
            column=row.column,
            source_line=row.source_line,
            manual=row.manual,
        )
