"""
PDF financial statement ingestion using pdfplumber.
Extracts page text from a statement PDF for the LLM step, converts the LLM's
JSON answer into ExtractedPeriodCandidate objects, and converts reviewed
candidates into PeriodRecords.
"""

import base64
import json
import re
import logging
from dataclasses import dataclass, field, replace
from io import BytesIO
from typing import Optional

import pdfplumber

from marginsight.config import MAX_PDF_PAGES
from marginsight.metrics.calculator import PeriodRecord, employee_divisor
from marginsight.metrics.reconciliation import CONFIDENCE_LEVELS, ExtractedPeriodCandidate

logger = logging.getLogger(__name__)

# ── Field definitions for the review form ─────────────────────────────────────
# (key, label, unit, group)
FIELDS = [
    ("sales", "売上高", "千円", "other"),
    ("material_cost", "材料費", "千円", "variable"),
    ("outsourcing_cost", "外注費", "千円", "variable"),
    ("merchandise_purchase", "商品仕入", "千円", "variable"),
    ("other_variable_cost", "その他変動費", "千円", "variable"),
    ("labor_cost", "人件費", "千円", "fixed"),
    ("depreciation", "減価償却費", "千円", "fixed"),
    ("other_expenses", "その他経費", "千円", "fixed"),
    ("non_operating_income", "営業外損益", "千円", "other"),
    ("employee_count", "従業員数", "人", "other"),
]

NUMERIC_FIELDS = [key for key, _, _, _ in FIELDS]

# snake_case attribute → camelCase JSON key used by the LLM schema and saved files
JSON_KEYS = {
    "sales": "sales",
    "material_cost": "materialCost",
    "outsourcing_cost": "outsourcingCost",
    "merchandise_purchase": "merchandisePurchase",
    "other_variable_cost": "otherVariableCost",
    "labor_cost": "laborCost",
    "depreciation": "depreciation",
    "other_expenses": "otherExpenses",
    "non_operating_income": "nonOperatingIncome",
    "employee_count": "employeeCount",
    "ordinary_profit_from_pdf": "ordinaryProfitFromPdf",
}
ATTR_KEYS = {v: k for k, v in JSON_KEYS.items()}

_JSON_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)```")


@dataclass
class PdfExtractResult:
    text: str
    pdf_base64: str
    has_text: bool
    page_count: int = 0
    pages: list[str] = field(default_factory=list)


# ── PDF extraction ────────────────────────────────────────────────────────────

def _read_bytes(uploaded_file) -> bytes:
    if isinstance(uploaded_file, (bytes, bytearray)):
        return bytes(uploaded_file)
    content = uploaded_file.read()
    uploaded_file.seek(0)
    return content


def extract_from_pdf(uploaded_file, max_pages: int = MAX_PDF_PAGES) -> PdfExtractResult:
    """
    Extract text from the first `max_pages` pages.
    Each page is prefixed with a '--- Page n ---' marker.
    """
    content = _read_bytes(uploaded_file)
    if not content:
        raise ValueError("The uploaded PDF is empty.")

    pages = []
    has_text = False
    with pdfplumber.open(BytesIO(content)) as pdf:
        page_count = len(pdf.pages)
        for i, page in enumerate(pdf.pages[:max_pages], start=1):
            text = page.extract_text() or ""
            has_text = has_text or bool(text.strip())
            pages.append(f"--- Page {i} ---\n{text}")

    if not has_text:
        logger.info("PDF has no text layer; treating it as a scanned document")

    return PdfExtractResult(
        text="\n".join(pages),
        pdf_base64=base64.standard_b64encode(content).decode("utf-8"),
        has_text=has_text,
        page_count=page_count,
        pages=pages,
    )


def render_page_images(uploaded_file, max_pages: int = MAX_PDF_PAGES, resolution: int = 200) -> list[str]:
    """Render pages to base64 PNG for vision models (scanned statements)."""
    content = _read_bytes(uploaded_file)
    images = []
    with pdfplumber.open(BytesIO(content)) as pdf:
        for page in pdf.pages[:max_pages]:
            buffer = BytesIO()
            page.to_image(resolution=resolution).original.save(buffer, format="PNG")
            images.append(base64.standard_b64encode(buffer.getvalue()).decode("utf-8"))
    return images


# ── LLM response handling ─────────────────────────────────────────────────────

def _clean_amount(val) -> Optional[float]:
    """Convert an LLM/user value to float. Handles '1,234', '(1,234)', '△1,234' and '▲1,234'."""
    if val is None or isinstance(val, bool):
        return None
    if isinstance(val, (int, float)):
        return float(val)
    s = str(val).strip().replace(",", "").replace("，", "").replace(" ", "")
    if not s or s.lower() in ("null", "none", "n/a", "-", "—"):
        return None
    negative = False
    if s.startswith("(") and s.endswith(")"):
        negative, s = True, s[1:-1]
    elif s[0] in "△▲-−":
        negative, s = True, s[1:]
    try:
        value = float(s)
    except ValueError:
        return None
    return -value if negative else value


def extract_json(response_text: str):
    """Parse JSON from a ```json fenced block, or from the whole text when there is none."""
    match = _JSON_BLOCK.search(response_text)
    json_str = match.group(1).strip() if match else response_text.strip()
    try:
        return json.loads(json_str)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Could not parse JSON from the model response: {exc}")


def candidate_from_dict(data: dict) -> ExtractedPeriodCandidate:
    """Build a candidate from one entry of the LLM 'periods' array (camelCase keys)."""
    values = {}
    for attr, key in JSON_KEYS.items():
        raw = data.get(key, data.get(attr))
        values[attr] = _clean_amount(raw)

    if values["employee_count"] is not None:
        values["employee_count"] = int(round(values["employee_count"]))

    confidence = {}
    for key, level in (data.get("confidence") or {}).items():
        level = str(level).lower()
        if level in CONFIDENCE_LEVELS:
            confidence[ATTR_KEYS.get(key, key)] = level
        else:
            logger.debug(f"Ignoring confidence '{level}' for {key}")

    breakdown = {ATTR_KEYS.get(k, k): str(v) for k, v in (data.get("breakdown") or {}).items()}
    notes = data.get("notes") or []
    if isinstance(notes, str):
        notes = [notes]

    return ExtractedPeriodCandidate(
        label=str(data.get("label") or ""),
        confidence=confidence,
        breakdown=breakdown,
        notes=[str(n) for n in notes],
        **values,
    )


def candidate_to_dict(candidate: ExtractedPeriodCandidate) -> dict:
    """Inverse of candidate_from_dict; used to send the current data back for correction."""
    result = {"label": candidate.label}
    for attr, key in JSON_KEYS.items():
        result[key] = getattr(candidate, attr)
    result["confidence"] = {JSON_KEYS.get(k, k): v for k, v in candidate.confidence.items()}
    result["breakdown"] = {JSON_KEYS.get(k, k): v for k, v in candidate.breakdown.items()}
    result["notes"] = list(candidate.notes)
    return result


def parse_extraction_response(response_text: str) -> list[ExtractedPeriodCandidate]:
    """Candidates from an LLM answer shaped like {"periods": [...]}, oldest period first."""
    parsed = extract_json(response_text)
    if isinstance(parsed, dict):
        periods = parsed.get("periods")
        if periods is None and "sales" in parsed:
            periods = [parsed]
    elif isinstance(parsed, list):
        periods = parsed
    else:
        periods = None

    candidates = [candidate_from_dict(p) for p in periods or [] if isinstance(p, dict)]
    if not candidates:
        raise ValueError("No financial periods could be extracted. Please check the PDF contents.")
    return candidates


# ── Review form and conversion ────────────────────────────────────────────────

def get_confirmation_template(candidate: ExtractedPeriodCandidate) -> dict:
    """
    Build the review template with all expected fields,
    pre-populated with extracted values, confidence and breakdown.
    """
    template = {}
    for key, label, unit, group in FIELDS:
        template[key] = {
            "label": label,
            "unit": unit,
            "group": group,
            "value": getattr(candidate, key),
            "field_key": key,
            "confidence": candidate.confidence.get(key, "high"),
            "source_note": candidate.breakdown.get(key, ""),
        }
    return template


def apply_confirmed_values(candidate: ExtractedPeriodCandidate, confirmed_values: dict) -> ExtractedPeriodCandidate:
    """Apply user edits (numbers or strings from form fields) to a candidate."""
    updates = {}
    for key, value in confirmed_values.items():
        if key not in NUMERIC_FIELDS:
            continue
        cleaned = _clean_amount(value)
        if key == "employee_count" and cleaned is not None:
            cleaned = int(round(cleaned))
        updates[key] = cleaned

    return replace(candidate, notes=list(candidate.notes), **updates)


def build_period_record(
    candidate: ExtractedPeriodCandidate,
    fallback_label: str = "",
    period_id: Optional[str] = None,
    company_id: str = "",
) -> PeriodRecord:
    """
    Convert a reviewed candidate into a PeriodRecord.
    Unknown values become 0 and the employee count is at least 1.
    """
    values = {key: getattr(candidate, key) for key in NUMERIC_FIELDS}
    values = {k: (v if v is not None else 0) for k, v in values.items()}
    values["employee_count"] = employee_divisor(values["employee_count"])
    for key in NUMERIC_FIELDS:
        if key != "employee_count":
            values[key] = float(values[key])

    record = PeriodRecord(label=candidate.label or fallback_label, company_id=company_id, **values)
    if period_id:
        record.id = period_id
    return record


def candidate_from_period_record(period: PeriodRecord) -> ExtractedPeriodCandidate:
    """Turn saved data back into a candidate so it can be reviewed and edited."""
    return ExtractedPeriodCandidate(
        label=period.label,
        ordinary_profit_from_pdf=None,
        **{key: getattr(period, key) for key in NUMERIC_FIELDS},
    )
