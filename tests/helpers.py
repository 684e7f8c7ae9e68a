from __future__ import annotations

import io
import tarfile
import zipfile
from pathlib import Path

from sitedrop_backend.identifiers import IdentifierGenerator


def fixed_entropy(*chunks: bytes):
    """Entropy source returning the given byte strings in order, then repeating the last."""
    items = list(chunks)

    def _entropy(n: int) -> bytes:
        value = items.pop(0) if len(items) > 1 else items[0]
        return value[:n]

    return _entropy


def pinned_generator(*chunks: bytes) -> IdentifierGenerator:
    return IdentifierGenerator(entropy=fixed_entropy(*chunks))


def zip_bytes(members: dict[str, bytes]) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, mode="w", compression=zipfile.ZIP_DEFLATED) as zf:
        for name, data in members.items():
            zf.writestr(name, data)
    return buf.getvalue()


def tar_bytes(members: dict[str, bytes], mode: str = "w:gz") -> bytes:
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode=mode) as tf:
        for name, data in members.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            tf.addfile(info, io.BytesIO(data))
    return buf.getvalue()


def files_under(root: Path) -> set[str]:
    return {p.relative_to(root).as_posix() for p in root.rglob("*") if p.is_file()}


def patched_zip_bytes(members: dict[str, bytes], *, flag_bits: int = 0, method: int | None = None) -> bytes:
    """A stored zip whose local and central headers are rewritten in place.

    zipfile cannot write encrypted or AES entries, so tests flip the header
    fields that make zipfile refuse to open them.
    """
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, mode="w", compression=zipfile.ZIP_STORED) as zf:
        for name, data in members.items():
            zf.writestr(name, data)
    data = bytearray(buf.getvalue())
    # (signature, offset of flag bits, offset of compression method)
    for signature, flag_at, method_at in ((b"PK\x03\x04", 6, 8), (b"PK\x01\x02", 8, 10)):
        pos = data.find(signature)
        while pos != -1:
            flags = int.from_bytes(data[pos + flag_at : pos + flag_at + 2], "little") | flag_bits
            data[pos + flag_at : pos + flag_at + 2] = flags.to_bytes(2, "little")
            if method is not None:
                data[pos + method_at : pos + method_at + 2] = method.to_bytes(2, "little")
            pos = data.find(signature, pos + 4)
    return bytes(data)
