"""Export run summaries as JSON lines."""
import time
from pathlib import Path
from typing import Any, Dict, Optional

import aiofiles
import orjson

from brickcache.config import DATA_DIR

RUNS_FILE = DATA_DIR / "enrichment_runs.jsonl"


class MetricsExporter:
    """Appends one line per finished run to a JSONL file."""

    def __init__(self, batch_id: str, runs_file: Optional[Path] = None):
        self.batch_id = batch_id
        self.runs_file = runs_file or RUNS_FILE

    async def export_summary(self, kind: str, status: str, summary: Dict[str, Any]) -> None:
        """Append a run summary."""
        line = {
            "ts": time.time(),
            "batch_id": self.batch_id,
            "kind": kind,
            "status": status,
            **summary,
        }
        async with aiofiles.open(self.runs_file, "a") as f:
            await f.write(orjson.dumps(line).decode() + "\n")
