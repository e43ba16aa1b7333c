"""Binary Envelope y serialización de valores estructurados.

Layout en el cable (enteros multibyte en little-endian):

    0..3   magic b"ZISK"
    4..5   major version (u16)
    6..7   minor version (u16)
    8..15  payload length (u64)
    16..   payload

Codificaciones del payload para valores estructurados:
- `default` / `compact`: texto JSON sin espacios no significativos.
- `typed`: un byte de tag por valor (ver `Tag`), recursivo.

Por qué aquí:
- Módulo puro (sin filesystem ni logging): lo comparten el conversor y `inspect`.
"""

from __future__ import annotations

import json
import math
import struct
from datetime import date, datetime, time
from enum import IntEnum
from typing import Any

from core.domain.formats import SerializationMode
from core.domain.models import EnvelopeHeader, StructuredValue
from core.errors import MalformedInputError

MAGIC = b"ZISK"
VERSION_MAJOR = 1
VERSION_MINOR = 0
HEADER_SIZE = 16

MAX_NESTING_DEPTH = 128

_HEADER = struct.Struct("<4sHHQ")
_I64 = struct.Struct("<q")
_F64 = struct.Struct("<d")
_U32 = struct.Struct("<I")

_I64_MIN = -(2**63)
_I64_MAX = 2**63 - 1
_U32_MAX = 2**32 - 1


class Tag(IntEnum):
    NULL = 0x00
    INT = 0x01
    FLOAT = 0x02
    STRING = 0x03
    ARRAY = 0x04
    OBJECT = 0x05


# --- envelope --------------------------------------------------------------


def pack_header(payload_length: int) -> bytes:
    return _HEADER.pack(MAGIC, VERSION_MAJOR, VERSION_MINOR, payload_length)


def pack_envelope(payload: bytes) -> bytes:
    """Antepone a `payload` la cabecera de 16 bytes."""

    return pack_header(len(payload)) + payload


def unpack_envelope(data: bytes) -> tuple[EnvelopeHeader, bytes]:
    """Separa un envelope en cabecera y payload, validando ambos.

    Rechaza cabecera corta, magic incorrecto y un campo de longitud que no
    coincide con los bytes del payload.
    """

    if len(data) < HEADER_SIZE:
        raise MalformedInputError(
            f"Envelope too short: {len(data)} bytes, header needs {HEADER_SIZE}",
            size=len(data),
        )
    magic, major, minor, length = _HEADER.unpack_from(data, 0)
    if magic != MAGIC:
        raise MalformedInputError(f"Bad envelope magic: {magic!r}", magic=magic.hex())
    payload = data[HEADER_SIZE:]
    if length != len(payload):
        raise MalformedInputError(
            f"Envelope length field says {length} bytes but {len(payload)} follow",
            declared=length,
            actual=len(payload),
        )
    header = EnvelopeHeader(magic=magic, major=major, minor=minor, payload_length=length)
    return header, bytes(payload)


# --- structured values -----------------------------------------------------


def normalize_value(value: Any, *, _depth: int = 0) -> StructuredValue:
    """Lleva la salida del parser al modelo de datos JSON.

    YAML puede devolver fechas, timestamps y claves no string; se renderizan
    como lo haría un encoder JSON. Cualquier otra cosa se rechaza.
    """

    if _depth > MAX_NESTING_DEPTH:
        raise MalformedInputError(
            f"Input nesting exceeds {MAX_NESTING_DEPTH} levels",
            max_depth=MAX_NESTING_DEPTH,
        )
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise MalformedInputError(f"Non-finite number {value!r} is not representable")
        return value
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return [normalize_value(v, _depth=_depth + 1) for v in value]
    if isinstance(value, dict):
        return {_key_text(k): normalize_value(v, _depth=_depth + 1) for k, v in value.items()}
    raise MalformedInputError(
        f"Unsupported value of type {type(value).__name__}",
        value_type=type(value).__name__,
    )


def _key_text(key: Any) -> str:
    if isinstance(key, str):
        return key
    if key is None or isinstance(key, bool):
        return json.dumps(key)
    if isinstance(key, (datetime, date, time)):
        return key.isoformat()
    return str(key)


def serialize(value: StructuredValue, mode: SerializationMode = SerializationMode.DEFAULT) -> bytes:
    """Codifica un valor estructurado como payload del envelope."""

    if mode is SerializationMode.TYPED:
        return encode_typed(value)
    # `default` y `compact` comparten el JSON mínimo.
    try:
        text = json.dumps(value, ensure_ascii=False, separators=(",", ":"), allow_nan=False)
    except (TypeError, ValueError) as exc:
        raise MalformedInputError(f"Value cannot be rendered as JSON: {exc}") from exc
    return text.encode("utf-8")


def encode_typed(value: StructuredValue) -> bytes:
    """Codifica con el esquema de tags autodescriptivo."""

    out = bytearray()
    _encode(value, out, 0)
    return bytes(out)


def _encode(value: Any, out: bytearray, depth: int) -> None:
    if depth > MAX_NESTING_DEPTH:
        raise MalformedInputError(
            f"Input nesting exceeds {MAX_NESTING_DEPTH} levels",
            max_depth=MAX_NESTING_DEPTH,
        )

    if value is None:
        out.append(Tag.NULL)
    elif isinstance(value, bool):
        out.append(Tag.INT)
        out += _I64.pack(int(value))
    elif isinstance(value, int):
        if not _I64_MIN <= value <= _I64_MAX:
            raise MalformedInputError(f"Integer {value} does not fit in 64 bits", value=str(value))
        out.append(Tag.INT)
        out += _I64.pack(value)
    elif isinstance(value, float):
        out.append(Tag.FLOAT)
        out += _F64.pack(value)
    elif isinstance(value, str):
        raw = value.encode("utf-8")
        out.append(Tag.STRING)
        out += _U32.pack(_checked_len(len(raw)))
        out += raw
    elif isinstance(value, (list, tuple)):
        out.append(Tag.ARRAY)
        out += _U32.pack(_checked_len(len(value)))
        for item in value:
            _encode(item, out, depth + 1)
    elif isinstance(value, dict):
        out.append(Tag.OBJECT)
        out += _U32.pack(_checked_len(len(value)))
        for key, item in value.items():
            raw_key = _key_text(key).encode("utf-8")
            out += _U32.pack(_checked_len(len(raw_key)))
            out += raw_key
            _encode(item, out, depth + 1)
    else:
        raise MalformedInputError(
            f"Unsupported value of type {type(value).__name__}",
            value_type=type(value).__name__,
        )


def _checked_len(n: int) -> int:
    if n > _U32_MAX:
        raise MalformedInputError(f"Length {n} exceeds the 32-bit length field")
    return n


def decode_typed(data: bytes) -> StructuredValue:
    """Inverso de `encode_typed`; hay que consumir el buffer entero."""

    view = memoryview(data)
    value, offset = _decode(view, 0, 0)
    if offset != len(view):
        raise MalformedInputError(
            f"{len(view) - offset} trailing bytes after typed value",
            offset=offset,
        )
    return value


def _take(view: memoryview, offset: int, size: int) -> memoryview:
    end = offset + size
    if end > len(view):
        raise MalformedInputError(
            f"Truncated typed payload: need {size} bytes at offset {offset}",
            offset=offset,
        )
    return view[offset:end]


def _decode(view: memoryview, offset: int, depth: int) -> tuple[Any, int]:
    if depth > MAX_NESTING_DEPTH:
        raise MalformedInputError(
            f"Input nesting exceeds {MAX_NESTING_DEPTH} levels",
            max_depth=MAX_NESTING_DEPTH,
        )

    tag = _take(view, offset, 1)[0]
    offset += 1

    if tag == Tag.NULL:
        return None, offset
    if tag == Tag.INT:
        return _I64.unpack(_take(view, offset, 8))[0], offset + 8
    if tag == Tag.FLOAT:
        return _F64.unpack(_take(view, offset, 8))[0], offset + 8
    if tag == Tag.STRING:
        text, offset = _decode_text(view, offset)
        return text, offset
    if tag == Tag.ARRAY:
        (count,) = _U32.unpack(_take(view, offset, 4))
        offset += 4
        items = []
        for _ in range(count):
            item, offset = _decode(view, offset, depth + 1)
            items.append(item)
        return items, offset
    if tag == Tag.OBJECT:
        (count,) = _U32.unpack(_take(view, offset, 4))
        offset += 4
        obj: dict[str, Any] = {}
        for _ in range(count):
            key, offset = _decode_text(view, offset)
            obj[key], offset = _decode(view, offset, depth + 1)
        return obj, offset

    raise MalformedInputError(f"Unknown type tag 0x{tag:02x} at offset {offset - 1}", offset=offset - 1)


def _decode_text(view: memoryview, offset: int) -> tuple[str, int]:
    (length,) = _U32.unpack(_take(view, offset, 4))
    offset += 4
    raw = _take(view, offset, length)
    try:
        return bytes(raw).decode("utf-8"), offset + length
    except UnicodeDecodeError as exc:
        raise MalformedInputError(f"Invalid UTF-8 at offset {offset}", offset=offset) from exc
