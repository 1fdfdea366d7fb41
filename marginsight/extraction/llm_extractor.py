"""
Ledger figure extraction using an Ollama-hosted LLM.
Statement text (or page images for scanned PDFs) is sent to the model, which
classifies every account into the nine ledger lines and answers with JSON.
Each extracted period is reconciled against the statement's ordinary profit
before it is returned.

Usage:
  1. Install Ollama: https://ollama.com
  2. Pull a model: ollama pull llama3.2-vision
  3. Ensure Ollama is running: ollama serve
"""

import json
import logging
from typing import Optional

import requests

from marginsight.config import LLM_BASE_URL, LLM_MODEL, LLM_TIMEOUT
from marginsight.metrics.reconciliation import ExtractedPeriodCandidate, validate_and_fix
from marginsight.parser.pdf_parser import candidate_to_dict, parse_extraction_response

logger = logging.getLogger(__name__)

USER_MESSAGE_TEXT = (
    "Analyse the following text extracted from a financial statement PDF and extract "
    "the profit and loss figures.\n\n{text}"
)
USER_MESSAGE_IMAGE = (
    "Analyse the attached financial statement page images and extract the profit and "
    "loss figures. Read every figure carefully."
)

SYSTEM_PROMPT_TEMPLATE = """You are an expert in Japanese manufacturers' financial statements \
(損益計算書 and 製造原価報告書). Analyse the statement step by step and extract the figures accurately.

## Procedure (follow this order)

### STEP 1: Understand the structure
- Is there a profit and loss statement? A manufacturing cost report? A breakdown of selling, \
general and administrative expenses (販売費及び一般管理費)?
- How many periods are shown (current, previous, ...)?
- What is the monetary unit (円, 千円, 百万円)?

### STEP 2: List every account
List every account and amount, grouped as:
A. Sales (製品売上高, 商品売上高, 完成工事高, ...)
B. Manufacturing cost report: materials, labour (製造労務費, 賞与, ...), expenses \
(外注費, 減価償却費, 水道光熱費, 修繕費, 保険料, 賃借料, 租税公課, 消耗品費, ...). Do not skip any expense account.
C. SG&A: personnel (役員報酬, 給料手当, 雑給, 法定福利費, 福利厚生費, 賞与), 減価償却費, others. Do not skip any account.
D. Non-operating income and expenses (受取利息, 受取配当金, 支払利息, ...)
E. Ordinary profit (経常利益) as printed on the statement

### STEP 3: Classify each account
- otherVariableCost: accounts named by the user as variable costs: {items}. They belong here \
wherever they appear and must never be put in otherExpenses.
- materialCost: 原材料費, 材料仕入高, 原材料仕入高
- outsourcingCost: 外注費, 外注加工費, 外注工賃
- merchandisePurchase: 商品仕入高
- laborCost: only all labour accounts of the manufacturing cost report plus 役員報酬, 給料手当, \
雑給, 法定福利費, 福利厚生費, 賞与 and 賞与引当金繰入額 from SG&A
- depreciation: manufacturing depreciation plus SG&A depreciation (always check both)
- otherExpenses: the total of every account not classified above
- nonOperatingIncome: non-operating income minus non-operating expenses

### STEP 4: Verify
sales − (materialCost + outsourcingCost + merchandisePurchase + otherVariableCost) \
− (laborCost + depreciation + otherExpenses) + nonOperatingIncome must equal the printed \
ordinary profit (ordinaryProfitFromPdf). If it does not, adjust otherExpenses and say so in notes.

### STEP 5: Self-check
Check sales totals, variable cost classification, labour accounts, both depreciation lines, \
manufacturing expenses in otherExpenses, ordinary profit agreement and units.

## Multiple periods
Extract every period shown, ordered from oldest to newest in the periods array.

## Units
Report every amount in thousand yen (千円): divide 円 amounts by 1,000, multiply 百万円 \
amounts by 1,000. If the unit is unclear, say so in notes.

## Breakdown
For each field describe which accounts were summed, e.g. \
"製造労務費 25,000 + 役員報酬 10,000 = 35,000". Write "該当なし" when there is no account.

## Response format
Describe your reasoning for STEP 1 to 5 first, then output the result in a ```json code block:

```json
{{
  "periods": [
    {{
      "label": "period label",
      "sales": number or null,
      "materialCost": number or null,
      "outsourcingCost": number or null,
      "merchandisePurchase": number or null,
      "otherVariableCost": number or null,
      "laborCost": number or null,
      "depreciation": number or null,
      "otherExpenses": number or null,
      "nonOperatingIncome": number or null,
      "employeeCount": number or null,
      "ordinaryProfitFromPdf": number or null,
      "confidence": {{"sales": "high/medium/low", "...": "..."}},
      "breakdown": {{"sales": "accounts summed", "...": "..."}},
      "notes": ["note"]
    }}
  ]
}}
```"""

CORRECTION_TEMPLATE = """You previously extracted the following data from this financial statement. \
The user has asked for corrections.

## Current extraction:
{current_data}

## User's correction instruction:
{instruction}

Correct the data as instructed. Update the breakdown of every field you change and record each \
change in notes (e.g. "Corrected: added manufacturing depreciation"). Verify ordinary profit again.

Answer in the same JSON format (a periods array)."""


# ── Prompt builders ────────────────────────────────────────────────────────

def build_system_prompt(variable_cost_items: list[str]) -> str:
    items = "、".join(f"「{item}」" for item in variable_cost_items) if variable_cost_items else "(none)"
    return SYSTEM_PROMPT_TEMPLATE.format(items=items)


def build_correction_message(current_data: ExtractedPeriodCandidate, instruction: str) -> str:
    return CORRECTION_TEMPLATE.format(
        current_data=json.dumps(candidate_to_dict(current_data), ensure_ascii=False, indent=2),
        instruction=instruction,
    )


# ── Ollama connectivity ────────────────────────────────────────────────────

def check_llm_status(base_url: str = LLM_BASE_URL) -> tuple:
    """
    Check whether Ollama is running and reachable.
    Returns (is_running: bool, status_message: str).
    """
    try:
        resp = requests.get(f"{base_url}/api/tags", timeout=3)
        if resp.status_code == 200:
            models = resp.json().get("models", [])
            model_names = [m.get("name", "").split(":")[0] for m in models]
            if model_names:
                return True, f"Running — models: {', '.join(model_names[:4])}"
            return True, f"Running — no models pulled yet (run: ollama pull {LLM_MODEL})"
        return False, f"Unexpected HTTP status {resp.status_code}"
    except requests.exceptions.ConnectionError:
        return False, "Not running — start with: ollama serve"
    except requests.exceptions.Timeout:
        return False, "Connection timed out"
    except requests.exceptions.RequestException as exc:
        return False, str(exc)


# ── Generation ─────────────────────────────────────────────────────────────

def _raise_for_status(resp: requests.Response) -> None:
    try:
        resp.raise_for_status()
    except requests.exceptions.HTTPError as exc:
        status = resp.status_code
        if status in (401, 403):
            raise PermissionError(f"The LLM server rejected the request (HTTP {status}): {exc}")
        if status == 429:
            raise RuntimeError(f"The LLM server is rate limiting requests; try again later: {exc}")
        if status == 413:
            raise ValueError(f"The document is too large; try a PDF with fewer pages: {exc}")
        raise


def chat(
    system_prompt: str,
    user_message: str,
    images: Optional[list[str]] = None,
    model: str = LLM_MODEL,
    base_url: str = LLM_BASE_URL,
    timeout: int = LLM_TIMEOUT,
) -> str:
    """
    Send one system + user exchange to Ollama (blocking, non-streaming).
    Returns the assistant's reply text.

    Raises ConnectionError if Ollama is not reachable.
    Raises TimeoutError if the request exceeds `timeout` seconds.
    """
    user = {"role": "user", "content": user_message}
    if images:
        user["images"] = images
    payload = {
        "model": model,
        "messages": [{"role": "system", "content": system_prompt}, user],
        "stream": False,
    }
    try:
        resp = requests.post(f"{base_url}/api/chat", json=payload, timeout=timeout)
    except requests.exceptions.ConnectionError:
        raise ConnectionError(
            "Cannot connect to Ollama. Ensure it is running: ollama serve"
        )
    except requests.exceptions.Timeout:
        raise TimeoutError(
            f"Ollama request timed out after {timeout} s. Try a smaller model or fewer pages."
        )

    _raise_for_status(resp)
    try:
        return resp.json()["message"]["content"]
    except (KeyError, TypeError, ValueError) as exc:
        raise ValueError(f"Unexpected response format from Ollama: {exc}")


def extract_periods(
    text: Optional[str] = None,
    images: Optional[list[str]] = None,
    variable_cost_items: Optional[list[str]] = None,
    model: str = LLM_MODEL,
    base_url: str = LLM_BASE_URL,
) -> list[ExtractedPeriodCandidate]:
    """
    Extract ledger figures from statement text, or from page images when the PDF
    has no text layer. Every returned candidate is already reconciled.
    """
    if not text and not images:
        raise ValueError("No PDF text or page images were provided.")

    system_prompt = build_system_prompt(variable_cost_items or [])
    if text:
        reply = chat(system_prompt, USER_MESSAGE_TEXT.format(text=text), model=model, base_url=base_url)
    else:
        reply = chat(system_prompt, USER_MESSAGE_IMAGE, images=images, model=model, base_url=base_url)

    candidates = parse_extraction_response(reply)
    logger.info(f"Extracted {len(candidates)} period(s) using {model}")
    return [validate_and_fix(c) for c in candidates]


def request_correction(
    candidate: ExtractedPeriodCandidate,
    instruction: str,
    images: Optional[list[str]] = None,
    variable_cost_items: Optional[list[str]] = None,
    model: str = LLM_MODEL,
    base_url: str = LLM_BASE_URL,
) -> list[ExtractedPeriodCandidate]:
    """
    Ask the model to revise a candidate following a user instruction.
    The full current candidate is sent, so calls are independent of each other.
    """
    if not instruction.strip():
        raise ValueError("The correction instruction is empty.")

    reply = chat(
        build_system_prompt(variable_cost_items or []),
        build_correction_message(candidate, instruction),
        images=images,
        model=model,
        base_url=base_url,
    )
    candidates = parse_extraction_response(reply)
    return [validate_and_fix(c) for c in candidates]
