"""Render job record exchanged over the wait and done queues.

Wait-queue items are JSON objects with at least ``id`` and ``url``; any
other caller fields are carried through untouched and echoed back on the
done queue together with ``html`` and ``success``::

    {"id": "1", "url": "http://example.com", "lang": "fr", "ref": 7}
    ->
    {"id": "1", "url": "http://example.com", "lang": "fr", "html": "<html>…",
     "success": true, "ref": 7}
"""

from __future__ import annotations

import json
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, StrictInt, StrictStr, ValidationError

from render_worker.core.exceptions import JobParseError, JobSchemaError

REQUIRED_FIELDS: tuple[str, ...] = ("id", "url")

# Set by the worker only; values sent by the producer are discarded.
OUTPUT_FIELDS: tuple[str, ...] = ("html", "success")


class Job(BaseModel):
    """A validated render job.

    Attributes:
        id: Opaque job identifier supplied by the producer (string or integer).
        url: Page to render.
        lang: Requested locale.  Not validated; anything other than a
            non-blank string falls back to the worker default.
        html: Rendered document, set on success.
        success: Whether rendering succeeded, set on completion.
    """

    model_config = ConfigDict(extra="allow")

    id: Union[StrictStr, StrictInt]
    url: StrictStr
    lang: Any = None
    html: Optional[str] = None
    success: Optional[bool] = None

    def language(self, default: str) -> str:
        """Return the job's locale, or ``default`` when none usable was given."""
        if isinstance(self.lang, str) and self.lang.strip():
            return self.lang.strip()
        return default

    def mark_rendered(self, html: str) -> None:
        self.html = html
        self.success = True

    def mark_failed(self) -> None:
        self.success = False

    def to_payload(self) -> str:
        """Serialise the job for the done queue.

        Fields the producer did not send and the worker did not set are
        omitted, so a failed job carries no ``html`` key.
        """
        return json.dumps(self.model_dump(mode="json", exclude_unset=True))


def parse_job(raw: str | bytes) -> Job:
    """Turn a raw wait-queue payload into a :class:`Job`.

    Args:
        raw: The payload exactly as popped from Redis.

    Returns:
        The validated job.

    Raises:
        JobParseError: If ``raw`` is not JSON or not a JSON object.
        JobSchemaError: If ``id`` or ``url`` is missing or ill-typed.

    ``html`` and ``success`` sent by the producer are ignored; the done
    queue only ever carries the values this worker produced.
    """
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise JobParseError(f"payload is not valid JSON: {exc}", raw=raw) from exc

    if not isinstance(data, dict):
        raise JobParseError(
            f"payload is a JSON {type(data).__name__}, expected an object", raw=raw
        )

    missing = tuple(name for name in REQUIRED_FIELDS if name not in data)
    if missing:
        raise JobSchemaError(
            f"payload is missing required field(s): {', '.join(missing)}",
            raw=raw,
            missing=missing,
        )

    data = {key: value for key, value in data.items() if key not in OUTPUT_FIELDS}
    try:
        return Job.model_validate(data)
    except ValidationError as exc:
        invalid = tuple(
            sorted({str(err["loc"][0]) for err in exc.errors() if err["loc"]})
        )
        raise JobSchemaError(
            f"payload has invalid field(s): {', '.join(invalid)}",
            raw=raw,
            missing=invalid,
        ) from exc
