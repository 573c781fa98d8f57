"""Binary-format sniffing from leading file bytes.

Header inspection is informational: a recognised executable format is
reported in the scan log but never produces a finding on its own.
"""

from __future__ import annotations

# (magic prefix, human-readable format name), checked in order.
_SIGNATURES: tuple[tuple[bytes, str], ...] = (
    (b"MZ", "PE executable"),
    (b"\x7fELF", "ELF executable"),
    (b"\xcf\xfa\xed\xfe", "Mach-O executable"),
    (b"\xce\xfa\xed\xfe", "Mach-O executable"),
)


def sniff_executable_format(head: bytes) -> str | None:
    """Return the executable format name for *head*, or ``None``."""
    for magic, name in _SIGNATURES:
        if head.startswith(magic):
            return name
    return None
