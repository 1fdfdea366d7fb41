"""
Application settings.
Values come from environment variables (optionally via a .env file) with
defaults suitable for a local Ollama server.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# ── LLM extraction ─────────────────────────────────────────────────────────
LLM_BASE_URL = os.getenv("MARGINSIGHT_LLM_URL", "http://localhost:11434")
LLM_MODEL = os.getenv("MARGINSIGHT_LLM_MODEL", "llama3.2-vision")
LLM_TIMEOUT = int(os.getenv("MARGINSIGHT_LLM_TIMEOUT", "120"))  # seconds

# ── PDF ingestion ──────────────────────────────────────────────────────────
MAX_PDF_PAGES = 10   # statements rarely exceed a few pages

# ── Storage ────────────────────────────────────────────────────────────────
DATA_DIR = Path(os.getenv("MARGINSIGHT_DATA_DIR", Path.home() / ".marginsight")).expanduser()
APP_DATA_FILE = "pl_analyzer_data.json"
VARIABLE_COST_ITEMS_FILE = "variable_cost_items.json"

# ── Engine policy ──────────────────────────────────────────────────────────
RECONCILIATION_TOLERANCE = 1.0   # thousand yen
MAX_PERIODS = 5
MIN_PERIODS = 2
MAX_SCENARIOS = 5
