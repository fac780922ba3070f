"""
Control-plane wire format.

Frames are JSON text messages. Requests carry a client-chosen id that every
response frame for that request echoes back; push events carry no id.
"""

import base64
import binascii
import json
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple, Union

from devenv.core.exceptions import DevEnvError, ValidationError
from devenv.core.models import EnvironmentRecord, OutputChunk, StatusChange


RequestId = Union[str, int]

OPERATIONS = (
    "listEnvironments",
    "getEnvironment",
    "createEnvironment",
    "startEnvironment",
    "stopEnvironment",
    "destroyEnvironment",
    "executeCommand",
    "readFile",
    "writeFile",
    "subscribe",
    "unsubscribe",
    "cancel",
    "ping",
)


@dataclass
class Request:
    """One parsed request frame."""

    id: RequestId
    op: str
    params: Dict[str, Any] = field(default_factory=dict)

    def require(self, key: str) -> Any:
        """Return a required string parameter or raise ValidationError."""
        value = self.params.get(key)
        if value is None or (isinstance(value, str) and not value.strip()):
            raise ValidationError(f"{self.op}: missing required parameter '{key}'")
        if not isinstance(value, str):
            raise ValidationError(f"{self.op}: parameter '{key}' must be a string")
        return value


class FrameError(ValidationError):
    """A malformed frame; id is whatever could be recovered from it."""

    def __init__(self, message: str, request_id: Optional[RequestId] = None):
        self.request_id = request_id
        super().__init__(message)


def parse_request(text: str) -> Request:
    """
    Parse and validate a request frame.

    Raises:
        FrameError: If the frame is not a JSON object with a valid id, a
            known op and an object for params.
    """
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, TypeError) as e:
        raise FrameError(f"frame is not valid JSON: {e}")
    if not isinstance(data, dict):
        raise FrameError("frame must be a JSON object")

    request_id = data.get("id")
    if isinstance(request_id, bool) or not isinstance(request_id, (str, int)):
        raise FrameError("frame requires a string or integer 'id'")

    op = data.get("op")
    if op not in OPERATIONS:
        raise FrameError(f"unknown operation: {op!r}", request_id)

    params = data.get("params") or {}
    if not isinstance(params, dict):
        raise FrameError("'params' must be an object", request_id)

    return Request(id=request_id, op=op, params=params)


def result_frame(request_id: RequestId, result: Any) -> Dict[str, Any]:
    return {"id": request_id, "type": "result", "result": result}


def error_frame(request_id: Optional[RequestId], error: DevEnvError) -> Dict[str, Any]:
    return {"id": request_id, "type": "error", "error": error.to_dict()}


def output_frame(request_id: RequestId, chunk: OutputChunk) -> Dict[str, Any]:
    return {
        "id": request_id,
        "type": "output",
        "stream": chunk.stream,
        "data": chunk.data,
    }


def event_frame(change: StatusChange) -> Dict[str, Any]:
    return {"type": "event", "event": "statusChanged", **change.to_dict()}


def environment_view(record: EnvironmentRecord) -> Dict[str, Any]:
    """Client-facing projection of a record."""
    return {
        "id": record.id,
        "name": record.name,
        "status": record.status,
        "branch": record.branch,
        "baseBranch": record.base_branch,
        "worktreePath": record.worktree_path,
        "containerName": record.container_name,
        "containerId": record.container_id,
        "imageRef": record.image_ref,
        "createdAt": record.created_at,
        "updatedAt": record.updated_at,
        "error": record.error.to_dict() if record.error else None,
    }


def encode_content(content: bytes) -> Tuple[str, str]:
    """Encode file bytes for a JSON frame as (text, encoding)."""
    try:
        return content.decode("utf-8"), "utf-8"
    except UnicodeDecodeError:
        return base64.b64encode(content).decode("ascii"), "base64"


def decode_content(content: Any, encoding: Optional[str]) -> bytes:
    """
    Decode file content received in a frame.

    Raises:
        ValidationError: On an unknown encoding or undecodable base64.
    """
    if not isinstance(content, str):
        raise ValidationError("'content' must be a string")
    encoding = encoding or "utf-8"
    if encoding == "utf-8":
        return content.encode("utf-8")
    if encoding == "base64":
        try:
            return base64.b64decode(content, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValidationError(f"invalid base64 content: {e}")
    raise ValidationError(f"unsupported encoding: {encoding}")
