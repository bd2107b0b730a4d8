import os
from dataclasses import dataclass
from dotenv import load_dotenv

load_dotenv(".env", override=True)


@dataclass(frozen=True)
class Settings:
    # Traversal bounds
    MAX_DEPTH: int                        = int(os.getenv("TRACE_MAX_DEPTH", "5"))
    DEFAULT_DEPTH: int                    = int(os.getenv("TRACE_DEFAULT_DEPTH", "2"))
    MAX_CHILDREN_PER_NODE: int            = int(os.getenv("TRACE_MAX_CHILDREN_PER_NODE", "80"))
    MAX_PRECEDENT_FALLBACK_REFS: int      = int(os.getenv("TRACE_MAX_PRECEDENT_FALLBACK_REFS", "20"))
    MAX_DEPENDENT_SCAN_FORMULA_CELLS: int = int(os.getenv("TRACE_MAX_DEPENDENT_SCAN_FORMULA_CELLS", "50000"))

    # Logging
    LOG_LEVEL: str                        = os.getenv("LOG_LEVEL", "INFO")

    # API
    API_HOST: str                         = os.getenv("API_HOST", "0.0.0.0")
    API_PORT: int                         = int(os.getenv("API_PORT", "8000"))
