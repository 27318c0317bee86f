# clickwise/writer.py
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional

import orjson
from pydantic import BaseModel

log = logging.getLogger(__name__)


def _default(obj: Any) -> Any:
    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json")
    raise TypeError


class JsonlWriter:
    def __init__(self, out_dir: Optional[str] = None, prefix: str = "session", path: Optional[str] = None):
        if path is None:
            if out_dir is None:
                raise ValueError("JsonlWriter needs out_dir or path")
            stamp = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
            path = os.path.join(out_dir, f"{prefix}-{stamp}.jsonl")
        os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
        self.path = path
        self._f = open(self.path, "ab")
        self.count = 0
        # appending after a torn line would glue the next record onto it
        if self._f.tell() and not _ends_with_newline(path):
            self._f.write(b"\n")

    def write(self, record: Any):
        if isinstance(record, BaseModel):
            record = record.model_dump(mode="json")
        self._f.write(orjson.dumps(record, default=_default))
        self._f.write(b"\n")
        self._f.flush()
        self.count += 1
        log.debug("%s: %d records", self.path, self.count)

    def close(self):
        if self._f.closed:
            return
        try:
            self._f.flush()
        finally:
            self._f.close()

    def __enter__(self) -> "JsonlWriter":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


def _ends_with_newline(path: str) -> bool:
    with open(path, "rb") as f:
        f.seek(-1, os.SEEK_END)
        return f.read(1) == b"\n"


def read_jsonl(path: str) -> Iterator[Dict[str, Any]]:
    with open(path, "rb") as f:
        for lineno, line in enumerate(f, 1):
            if not line.strip():
                continue
            try:
                yield orjson.loads(line)
            except orjson.JSONDecodeError:
                # a crash mid-write leaves a torn last line
                log.warning("%s:%d: skipping unreadable line", path, lineno)
