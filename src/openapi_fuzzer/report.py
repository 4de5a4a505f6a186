"""Writes findings and timing statistics to disk."""

import json
import logging
import threading
from pathlib import Path

from pydantic import BaseModel, ValidationError

from openapi_fuzzer.errors import ReportError
from openapi_fuzzer.generator.payload import Payload
from openapi_fuzzer.stats import Stats

logger = logging.getLogger(__name__)


class Finding(BaseModel):
    """A minimized request that made the service break its contract."""

    path: str
    method: str
    status_code: int | None = None
    reason: str
    seed: int | None = None
    payload: Payload


class ResultWriter:
    """Persists one finding per (path, method, status) under ``results_dir``.

    A later finding for the same key replaces the earlier file. Writes are
    serialized, so workers may share one writer.
    """

    def __init__(self, results_dir: Path, base_url: str):
        self.results_dir = results_dir
        self.base_url = base_url
        self._lock = threading.Lock()

    def finding_path(self, finding: Finding) -> Path:
        name = finding.path.strip("/").replace("/", "-") or "root"
        status = str(finding.status_code) if finding.status_code is not None else "aborted"
        return self.results_dir / name / finding.method / f"{status}.json"

    def write_finding(self, finding: Finding) -> Path:
        target = self.finding_path(finding)
        try:
            document = finding.model_dump(mode="json")
            document["url"] = finding.payload.url(self.base_url)
            document["curl"] = finding.payload.to_curl(self.base_url)
            text = json.dumps(document, indent=2, ensure_ascii=False)
            with self._lock:
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_text(text, encoding="utf-8")
        except (OSError, TypeError, ValueError) as e:
            raise ReportError(f"unable to write finding {target}: {e}") from e
        logger.info("finding written to %s", target)
        return target

    def write_stats(self, snapshot: dict[tuple[str, str], Stats], file_path: Path) -> Path:
        document = {f"{method} {path}": stats.model_dump() for (path, method), stats in sorted(snapshot.items())}
        try:
            text = json.dumps(document, indent=2)
            with self._lock:
                file_path.parent.mkdir(parents=True, exist_ok=True)
                file_path.write_text(text, encoding="utf-8")
        except (OSError, TypeError, ValueError) as e:
            raise ReportError(f"unable to write stats {file_path}: {e}") from e
        return file_path


def load_finding(file_path: Path) -> Finding:
    try:
        return Finding.model_validate(json.loads(file_path.read_text(encoding="utf-8")))
    except (OSError, ValueError, ValidationError) as e:
        raise ReportError(f"unable to read finding {file_path}: {e}") from e
