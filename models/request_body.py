"""Tagged request bodies that can be stored in the offline queue.

A body is inferred once, where a request enters the interceptor, and from
then on travels as one of three variants. The stored form is plain JSON so
it survives a restart; file bytes are kept base64 encoded.
"""

from __future__ import annotations

import base64
import json
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple, Union


BODY_JSON = "json"
BODY_TEXT = "text"
BODY_FORMDATA = "formdata-encoded"

BODY_TYPES = (BODY_JSON, BODY_TEXT, BODY_FORMDATA)

DEFAULT_MIME = "application/octet-stream"


@dataclass(frozen=True)
class JsonBody:
    value: Any = None
    body_type: str = field(default=BODY_JSON, init=False)


@dataclass(frozen=True)
class TextBody:
    text: str = ""
    body_type: str = field(default=BODY_TEXT, init=False)


@dataclass(frozen=True)
class FileEntry:
    field: str
    name: str
    data: bytes
    mime_type: str = DEFAULT_MIME

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class FormDataBody:
    fields: Dict[str, str] = field(default_factory=dict)
    files: Tuple[FileEntry, ...] = ()
    body_type: str = field(default=BODY_FORMDATA, init=False)

    @classmethod
    def from_parts(
        cls,
        fields: Optional[Mapping[str, Any]] = None,
        files: Optional[Mapping[str, Any] | Iterable[Tuple[str, Any]]] = None,
    ) -> "FormDataBody":
        """Build a multipart body from httpx-style ``data``/``files`` arguments.

        ``files`` accepts ``{"field": (filename, bytes[, mime])}`` or a list
        of ``(field, (filename, bytes[, mime]))`` pairs.
        """

        items = files.items() if isinstance(files, Mapping) else (files or [])
        entries = []
        for key, part in items:
            if isinstance(part, FileEntry):
                entries.append(part)
                continue
            if isinstance(part, (bytes, bytearray)):
                entries.append(FileEntry(field=key, name=key, data=bytes(part)))
                continue
            name, content = part[0], part[1]
            mime = part[2] if len(part) > 2 and part[2] else DEFAULT_MIME
            if hasattr(content, "read"):
                content = content.read()
            entries.append(FileEntry(field=key, name=name or "file", data=bytes(content), mime_type=mime))
        return cls(
            fields={str(k): str(v) for k, v in (fields or {}).items()},
            files=tuple(entries),
        )


RequestBody = Union[JsonBody, TextBody, FormDataBody]


def coerce_body(raw: Any) -> RequestBody:
    """Map a caller supplied body onto one of the stored variants."""

    if isinstance(raw, (JsonBody, TextBody, FormDataBody)):
        return raw
    if isinstance(raw, str):
        return TextBody(raw)
    if isinstance(raw, (bytes, bytearray)):
        try:
            return TextBody(bytes(raw).decode("utf-8"))
        except UnicodeDecodeError as exc:
            raise ValueError("Binary bodies must be sent as FormDataBody") from exc
    return JsonBody(raw)


def encode_body(body: RequestBody) -> str:
    """Serialize a body for the ``pending.body`` column."""

    if isinstance(body, JsonBody):
        return json.dumps(body.value, ensure_ascii=False)
    if isinstance(body, TextBody):
        return json.dumps(body.text, ensure_ascii=False)
    if isinstance(body, FormDataBody):
        return json.dumps(
            {
                "fields": dict(body.fields),
                "files": [
                    {
                        "field": f.field,
                        "name": f.name,
                        "mimeType": f.mime_type,
                        "encodedBytes": base64.b64encode(f.data).decode("ascii"),
                        "size": f.size,
                    }
                    for f in body.files
                ],
            },
            ensure_ascii=False,
        )
    raise TypeError(f"Unsupported body: {type(body).__name__}")


def decode_body(body_type: str, raw: str) -> RequestBody:
    payload = json.loads(raw) if raw else None
    if body_type == BODY_JSON:
        return JsonBody(payload)
    if body_type == BODY_TEXT:
        return TextBody("" if payload is None else str(payload))
    if body_type == BODY_FORMDATA:
        payload = payload or {}
        files = tuple(
            FileEntry(
                field=f.get("field") or "file",
                name=f.get("name") or "file",
                data=base64.b64decode(f.get("encodedBytes") or ""),
                mime_type=f.get("mimeType") or DEFAULT_MIME,
            )
            for f in payload.get("files") or []
        )
        fields = {str(k): str(v) for k, v in (payload.get("fields") or {}).items()}
        return FormDataBody(fields=fields, files=files)
    raise ValueError(f"Unknown body type: {body_type}")


def _without_content_type(headers: Mapping[str, str]) -> Dict[str, str]:
    return {k: v for k, v in headers.items() if k.lower() != "content-type"}


def _has_header(headers: Mapping[str, str], name: str) -> bool:
    return any(k.lower() == name.lower() for k in headers)


def request_kwargs(body: RequestBody, headers: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """Keyword arguments for ``httpx.AsyncClient.request`` carrying ``body``.

    Multipart bodies never get an explicit Content-Type so httpx writes the
    boundary itself.
    """

    merged = dict(headers or {})
    if isinstance(body, JsonBody):
        if body.value is None:
            # e.g. a DELETE without payload
            return {"headers": merged}
        if not _has_header(merged, "content-type"):
            merged["Content-Type"] = "application/json"
        return {"headers": merged, "content": json.dumps(body.value).encode("utf-8")}
    if isinstance(body, TextBody):
        if not _has_header(merged, "content-type"):
            merged["Content-Type"] = "text/plain"
        return {"headers": merged, "content": body.text.encode("utf-8")}
    if isinstance(body, FormDataBody):
        kwargs: Dict[str, Any] = {"headers": _without_content_type(merged), "data": dict(body.fields)}
        if body.files:
            kwargs["files"] = [(f.field, (f.name, f.data, f.mime_type)) for f in body.files]
        return kwargs
    raise TypeError(f"Unsupported body: {type(body).__name__}")


__all__ = [
    "BODY_FORMDATA",
    "BODY_JSON",
    "BODY_TEXT",
    "BODY_TYPES",
    "FileEntry",
    "FormDataBody",
    "JsonBody",
    "RequestBody",
    "TextBody",
    "coerce_body",
    "decode_body",
    "encode_body",
    "request_kwargs",
]
