"""
Core orchestration / pipeline.

Flow:
1. Receive a parsed Dataset
2. Single LLM call with the dataset's column names; the model answers with a
   dashboard configuration (charts, table descriptions, metrics)
3. Extract and strictly decode the JSON payload into typed models
4. Repair chart specs that reference columns the dataset does not have
5. DETERMINISTICALLY compute the data for each described table (no LLM needed)
6. Return the DashboardConfig
"""

import json
import logging
import os
import re
from typing import Any, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from .errors import UpstreamParseError, UpstreamResponseError
from .ingest import Dataset
from .llm_client import call_llm
from .schemas import ChartSpec, DashboardConfig, MetricSpec, TableSpec
from .tables import materialize_tables
from .validator import validate_charts

# Configure module logger
logger = logging.getLogger(__name__)

# Configuration from environment
MAX_LLM_TOKENS = int(os.getenv("MAX_LLM_TOKENS", "8192"))
LLM_TEMPERATURE = float(os.getenv("LLM_TEMPERATURE", "0.2"))

# What we ask the model for; fewer is tolerated but logged
MIN_CHARTS = 4
MIN_TABLES = 2
MIN_METRICS = 2

PROMPT_PATH = os.path.join(os.path.dirname(os.path.abspath(__file__)), "prompts", "dashboard_system.txt")

RESPONSE_SCHEMA: Dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "charts": {
            "type": "ARRAY",
            "min_items": MIN_CHARTS,
            "items": {
                "type": "OBJECT",
                "properties": {
                    "chartType": {"type": "STRING", "enum": ["LineChart", "BarChart", "AreaChart"]},
                    "xAxis": {
                        "type": "OBJECT",
                        "properties": {"dataKey": {"type": "STRING"}, "label": {"type": "STRING"}},
                    },
                    "yAxis": {
                        "type": "OBJECT",
                        "properties": {"dataKey": {"type": "STRING"}, "label": {"type": "STRING"}},
                    },
                    "dataLinesOrBarsOrAreas": {
                        "type": "ARRAY",
                        "items": {
                            "type": "OBJECT",
                            "properties": {
                                "type": {"type": "STRING", "enum": ["line", "bar", "area"]},
                                "dataKey": {"type": "STRING"},
                                "stroke": {"type": "STRING"},
                                "fill": {"type": "STRING"},
                                "activeDot": {"type": "BOOLEAN"},
                            },
                            "required": ["dataKey"],
                        },
                    },
                    "colors": {"type": "ARRAY", "items": {"type": "STRING"}},
                    "grid": {"type": "BOOLEAN"},
                    "tooltip": {"type": "BOOLEAN"},
                    "legend": {"type": "BOOLEAN"},
                    "title": {"type": "STRING"},
                },
                "required": [
                    "chartType", "xAxis", "yAxis", "dataLinesOrBarsOrAreas",
                    "colors", "grid", "tooltip", "legend", "title",
                ],
            },
        },
        "tableDescriptions": {
            "type": "ARRAY",
            "min_items": MIN_TABLES,
            "items": {
                "type": "OBJECT",
                "properties": {
                    "title": {"type": "STRING"},
                    "type": {
                        "type": "STRING",
                        "enum": ["summary_statistics", "frequency_distribution", "top_n_values"],
                    },
                    "columns": {"type": "ARRAY", "items": {"type": "STRING"}},
                    "column": {"type": "STRING"},
                    "groupByColumn": {"type": "STRING"},
                    "nValue": {"type": "NUMBER"},
                },
                "required": ["title", "type"],
            },
        },
        "metrics": {
            "type": "ARRAY",
            "min_items": MIN_METRICS,
            "items": {
                "type": "OBJECT",
                "properties": {
                    "label": {"type": "STRING"},
                    "value": {"type": "STRING"},
                    "unit": {"type": "STRING"},
                },
                "required": ["label", "value"],
            },
        },
    },
    "required": ["charts", "tableDescriptions", "metrics"],
}

M = TypeVar("M", bound=BaseModel)


def _read_prompt(path: str) -> str:
    """Read a prompt text file."""
    with open(path, "r", encoding="utf-8") as f:
        return f.read()


def build_user_prompt(columns: List[str]) -> str:
    return (
        "Analyze the following dataset and design the dashboard.\n"
        f"Dataset columns: {json.dumps(columns, ensure_ascii=False)}.\n"
        "Focus on insightful and aesthetically pleasing visualizations and summaries.\n"
        "Provide only the minified JSON."
    )


def extract_json_object(text: str) -> Dict[str, Any]:
    """
    Extract the JSON object from an LLM response.
    Handles markdown code blocks and raw JSON with nested braces.
    """
    text = (text or "").strip()

    # Remove markdown code blocks if present
    if "```" in text:
        match = re.search(r"```json\s*([\s\S]*?)\s*```", text, re.IGNORECASE)
        if match:
            text = match.group(1).strip()
        else:
            text = re.sub(r"```\w*\s*", "", text)
            text = text.replace("```", "")

    start = text.find("{")
    if start == -1:
        raise UpstreamParseError("AI response contains no JSON object")

    # Count braces to find the matching closing brace, skipping string contents
    depth = 0
    in_string = False
    i = start
    end = -1

    while i < len(text):
        char = text[i]

        if in_string:
            if char == "\\" and i + 1 < len(text):
                i += 2
                continue
            elif char == '"':
                in_string = False
        else:
            if char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    end = i
                    break
        i += 1

    if end == -1:
        raise UpstreamParseError("AI response JSON has unmatched braces (truncated output?)")

    try:
        return json.loads(text[start:end + 1])
    except json.JSONDecodeError as e:
        raise UpstreamParseError(f"Invalid JSON in AI response: {e}")


def _decode_entries(model: Type[M], entries: List[Any], what: str) -> List[M]:
    decoded = []
    for idx, entry in enumerate(entries):
        try:
            decoded.append(model.model_validate(entry))
        except ValidationError as e:
            logger.warning("decode.%s_dropped index=%d errors=%d", what, idx, e.error_count())
    return decoded


def _normalize_series(entry: Any) -> Any:
    # A series without a usable dataKey is kept with an empty key so the
    # validator treats it as an unknown column reference.
    if not isinstance(entry, dict) or not isinstance(entry.get("dataLinesOrBarsOrAreas"), list):
        return entry
    series = []
    for s in entry["dataLinesOrBarsOrAreas"]:
        if not isinstance(s, dict):
            continue
        if not isinstance(s.get("dataKey"), str):
            s = {**s, "dataKey": ""}
        series.append(s)
    return {**entry, "dataLinesOrBarsOrAreas": series}


def decode_dashboard(payload: Any) -> DashboardConfig:
    """Turn the AI's JSON payload into a DashboardConfig.

    The three top-level lists are mandatory. Individual entries that do not
    fit their schema are dropped with a warning.
    """
    if not isinstance(payload, dict):
        raise UpstreamResponseError("AI response was not a JSON object")

    for key in ("charts", "tableDescriptions", "metrics"):
        if not isinstance(payload.get(key), list):
            raise UpstreamResponseError(f"AI response is missing the '{key}' list")

    charts = _decode_entries(ChartSpec, [_normalize_series(c) for c in payload["charts"]], "chart")
    tables = _decode_entries(TableSpec, payload["tableDescriptions"], "table")
    metrics = _decode_entries(MetricSpec, payload["metrics"], "metric")

    if len(charts) < MIN_CHARTS or len(tables) < MIN_TABLES or len(metrics) < MIN_METRICS:
        logger.warning(
            "decode.below_minimum charts=%d tables=%d metrics=%d",
            len(charts),
            len(tables),
            len(metrics),
        )

    return DashboardConfig(charts=charts, table_descriptions=tables, metrics=metrics)


def analyze(
    dataset: Dataset,
    *,
    model_name: Optional[str] = None,
    temperature: Optional[float] = None,
) -> DashboardConfig:
    """
    Main analysis pipeline with a single LLM call.

    Raises UpstreamResponseError / UpstreamParseError when the model's answer
    is unusable. Bad column references are repaired, not raised.
    """
    system_prompt = _read_prompt(PROMPT_PATH)
    user_prompt = build_user_prompt(dataset.columns)

    logger.info(
        "analyze.start dataset=%s rows=%d columns=%d",
        dataset.name,
        dataset.row_count,
        len(dataset.columns),
    )

    response = call_llm(
        system_prompt,
        user_prompt,
        max_tokens=MAX_LLM_TOKENS,
        model_name=model_name,
        temperature=LLM_TEMPERATURE if temperature is None else temperature,
        response_schema=RESPONSE_SCHEMA,
    )
    logger.debug("LLM raw response: %s", response[:1000])

    dashboard = decode_dashboard(extract_json_object(response))

    charts = validate_charts(dashboard.charts, dataset.columns, dataset.first_record)
    tables = materialize_tables(dashboard.table_descriptions, dataset.records)

    logger.info(
        "analyze.done dataset=%s charts=%d/%d tables=%d metrics=%d",
        dataset.name,
        len(charts),
        len(dashboard.charts),
        len(tables),
        len(dashboard.metrics),
    )
    return dashboard.model_copy(update={"charts": charts, "tables": tables})
