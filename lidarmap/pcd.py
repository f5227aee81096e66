"""Reading and writing point clouds in the PCD file format."""

from __future__ import annotations

import os
from typing import Sequence, Union

import numpy as np

FieldSpec = Union[str, tuple]

XYZI_FIELDS: tuple[FieldSpec, ...] = ("x", "y", "z", "intensity")
POSE_FIELDS: tuple[FieldSpec, ...] = ("x", "y", "z", "intensity", "roll", "pitch", "yaw", ("time", "f8"))

_TYPE_LETTERS = {"f": "F", "i": "I", "u": "U"}
_KINDS = {"F": "f", "I": "i", "U": "u"}
_SIZES = (1, 2, 4, 8)


def _field_spec(item: FieldSpec) -> tuple[str, np.dtype]:
    if isinstance(item, str):
        name, dtype = item, np.dtype("f4")
    else:
        name, raw = item
        dtype = np.dtype(raw)
    if not name or any(c.isspace() for c in name):
        raise ValueError(f"invalid field name: {name!r}")
    if dtype.kind not in _TYPE_LETTERS or dtype.itemsize not in _SIZES:
        raise ValueError(f"unsupported field type for {name!r}: {dtype}")
    if dtype.kind == "f" and dtype.itemsize not in (4, 8):
        raise ValueError(f"unsupported float size for {name!r}: {dtype.itemsize}")
    return name, dtype.newbyteorder("<")


def write_pcd(path: str | os.PathLike, points, fields: Sequence[FieldSpec] = XYZI_FIELDS) -> None:
    """Write a cloud as a binary PCD file.

    Each field is a name (stored as 4-byte float) or a (name, dtype) pair;
    ``points`` holds one column per field.
    """
    specs = [_field_spec(f) for f in fields]
    if not specs:
        raise ValueError("at least one field is required")
    pts = np.asarray(points, dtype=float)
    if pts.size == 0:
        pts = pts.reshape(0, len(specs))
    if pts.ndim != 2 or pts.shape[1] != len(specs):
        raise ValueError(f"points must be an (N, {len(specs)}) array")

    record = np.dtype([(f"f{i}", dtype) for i, (_, dtype) in enumerate(specs)])
    data = np.empty(len(pts), dtype=record)
    for i, (_, dtype) in enumerate(specs):
        column = pts[:, i]
        data[f"f{i}"] = column if dtype.kind == "f" else np.rint(column)

    count = len(pts)
    header = "\n".join(
        [
            "# .PCD v0.7 - Point Cloud Data file format",
            "VERSION 0.7",
            "FIELDS " + " ".join(name for name, _ in specs),
            "SIZE " + " ".join(str(dtype.itemsize) for _, dtype in specs),
            "TYPE " + " ".join(_TYPE_LETTERS[dtype.kind] for _, dtype in specs),
            "COUNT " + " ".join("1" for _ in specs),
            f"WIDTH {count}",
            "HEIGHT 1",
            "VIEWPOINT 0 0 0 1 0 0 0",
            f"POINTS {count}",
            "DATA binary",
            "",
        ]
    )
    with open(path, "wb") as fh:
        fh.write(header.encode("ascii"))
        fh.write(data.tobytes())


def _parse_header(raw: bytes) -> tuple[dict[str, list[str]], int]:
    header: dict[str, list[str]] = {}
    offset = 0
    while True:
        end = raw.find(b"\n", offset)
        if end < 0:
            raise ValueError("PCD header is incomplete")
        line = raw[offset:end].decode("ascii", errors="replace").strip()
        offset = end + 1
        if not line or line.startswith("#"):
            continue
        key, _, value = line.partition(" ")
        key = key.upper()
        header[key] = value.split()
        if key == "DATA":
            return header, offset


def read_pcd(path: str | os.PathLike) -> tuple[np.ndarray, list[str]]:
    """Read an ASCII or binary PCD file; returns (points as float64, column names)."""
    with open(path, "rb") as fh:
        raw = fh.read()
    header, offset = _parse_header(raw)

    names = header.get("FIELDS")
    if not names:
        raise ValueError("PCD header has no FIELDS")
    sizes = [int(v) for v in header.get("SIZE", [])]
    types = [t.upper() for t in header.get("TYPE", [])]
    counts = [int(v) for v in header.get("COUNT", ["1"] * len(names))]
    if not len(names) == len(sizes) == len(types) == len(counts):
        raise ValueError("PCD header field descriptions disagree in length")
    if "POINTS" in header:
        total = int(header["POINTS"][0])
    else:
        total = int(header.get("WIDTH", ["0"])[0]) * int(header.get("HEIGHT", ["1"])[0])

    columns: list[str] = []
    for name, count in zip(names, counts):
        columns.extend([name] if count == 1 else [f"{name}_{k}" for k in range(count)])
    width = len(columns)

    mode = header["DATA"][0].lower() if header["DATA"] else ""
    if mode == "ascii":
        rows = [line.split() for line in raw[offset:].decode("ascii").splitlines() if line.strip()]
        if len(rows) != total or any(len(row) != width for row in rows):
            raise ValueError("PCD ascii data does not match the header")
        points = np.array(rows, dtype=float).reshape(total, width)
        return points, columns
    if mode != "binary":
        raise ValueError(f"unsupported PCD data encoding: {mode!r}")

    descriptors = []
    for i, (size, kind, count) in enumerate(zip(sizes, types, counts)):
        if kind not in _KINDS or size not in _SIZES:
            raise ValueError(f"unsupported PCD field type {kind}{size}")
        base = np.dtype(f"<{_KINDS[kind]}{size}")
        descriptors.append((f"f{i}", base) if count == 1 else (f"f{i}", base, (count,)))
    record = np.dtype(descriptors)
    if len(raw) - offset < record.itemsize * total:
        raise ValueError("PCD binary data is truncated")
    if total == 0:
        return np.empty((0, width)), columns
    data = np.frombuffer(raw, dtype=record, count=total, offset=offset)
    parts = [data[f"f{i}"].reshape(total, -1).astype(float) for i in range(len(names))]
    return np.hstack(parts), columns