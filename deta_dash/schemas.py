"""
Pydantic models for the dashboard configuration and API contracts.

Rationale:
- The AI collaborator speaks camelCase JSON; fields keep snake_case names in
  Python and carry the wire names as aliases.
- Everything the AI returns goes through these models before the validator
  sees it, so downstream code never handles a raw dict.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ChartType(str, Enum):
    LINE = "LineChart"
    BAR = "BarChart"
    AREA = "AreaChart"


class SeriesRole(str, Enum):
    LINE = "line"
    BAR = "bar"
    AREA = "area"


class TableKind(str, Enum):
    SUMMARY_STATISTICS = "summary_statistics"
    FREQUENCY_DISTRIBUTION = "frequency_distribution"
    TOP_N_VALUES = "top_n_values"


class AxisBinding(_WireModel):
    data_key: Optional[str] = Field(None, alias="dataKey")
    label: Optional[str] = None


class SeriesBinding(_WireModel):
    data_key: str = Field(alias="dataKey")
    type: Optional[SeriesRole] = None
    stroke: Optional[str] = None
    fill: Optional[str] = None
    active_dot: Optional[bool] = Field(None, alias="activeDot")

    @field_validator("type", mode="before")
    @classmethod
    def _unknown_role_is_unset(cls, v: Any) -> Any:
        # The model sometimes sends the curve type ("monotone") here
        if isinstance(v, SeriesRole):
            return v
        valid = {r.value for r in SeriesRole}
        return v if isinstance(v, str) and v in valid else None


class ChartSpec(_WireModel):
    chart_type: ChartType = Field(alias="chartType")
    x_axis: Optional[AxisBinding] = Field(None, alias="xAxis")
    y_axis: Optional[AxisBinding] = Field(None, alias="yAxis")
    series: List[SeriesBinding] = Field(alias="dataLinesOrBarsOrAreas")
    colors: List[str] = Field(default_factory=list)
    grid: bool = True
    tooltip: bool = True
    legend: bool = True
    title: str = ""

    def referenced_columns(self) -> List[str]:
        cols = [s.data_key for s in self.series]
        for axis in (self.x_axis, self.y_axis):
            if axis is not None and axis.data_key:
                cols.append(axis.data_key)
        return cols


class TableSpec(_WireModel):
    title: str = ""
    type: str
    columns: Optional[List[str]] = None
    column: Optional[str] = None
    group_by_column: Optional[str] = Field(None, alias="groupByColumn")
    n_value: Optional[Union[int, float]] = Field(None, alias="nValue")
    data: Optional[Any] = None

    @property
    def kind(self) -> Optional[TableKind]:
        try:
            return TableKind(self.type)
        except ValueError:
            return None


class MetricSpec(_WireModel):
    label: str
    value: Union[str, int, float]
    unit: Optional[str] = None


class DashboardConfig(_WireModel):
    charts: List[ChartSpec] = Field(default_factory=list)
    table_descriptions: List[TableSpec] = Field(default_factory=list, alias="tableDescriptions")
    tables: List[TableSpec] = Field(default_factory=list)
    metrics: List[MetricSpec] = Field(default_factory=list)

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class DatasetMetadata(_WireModel):
    name: str
    keys: List[str] = Field(default_factory=list)


class SavedDashboard(_WireModel):
    id: str
    user_id: str = Field(alias="userId")
    dashboard_config: DashboardConfig = Field(alias="dashboardConfig")
    dataset_metadata: DatasetMetadata = Field(alias="datasetMetadata")
    timestamp: Optional[datetime] = None


class SessionResponse(BaseModel):
    session_id: str
    user_id: str
    anonymous: bool


class AnalysisResponse(BaseModel):
    dashboard_id: Optional[str] = None
    dataset_name: str
    columns: List[str]
    row_count: int
    dashboard: DashboardConfig
    superseded: bool = False
