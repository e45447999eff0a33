"""Pairing artifact held by the connection manager and its QR rendering."""

from __future__ import annotations

import sys
from dataclasses import dataclass
from typing import TextIO

import segno

from .errors import PairingRenderError

# How long a pairing artifact stays retrievable after the session closed.
PAIRING_GRACE_SECONDS = 120.0


@dataclass(slots=True)
class PairingArtifact:
    """Pairing code issued by the network.

    Attributes:
        code: Opaque code to be encoded as a QR image.
        issued_at: Wall-clock seconds when the code arrived.
        expires_at: Set once the session closes; the artifact is dropped at
            that time unless a reconnect opens the session first.
    """

    code: str
    issued_at: float
    expires_at: float | None = None

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at


@dataclass(frozen=True)
class RenderedPairing:
    """Image-safe renderings of a pairing code."""

    code: str
    issued_at: float
    data_uri: str
    svg: str


def render_pairing(artifact: PairingArtifact, *, scale: int = 6) -> RenderedPairing:
    """Render the artifact as a PNG data URI and inline SVG.

    Raises:
        PairingRenderError: If the code cannot be encoded.
    """
    try:
        qr = segno.make_qr(artifact.code, error="m")
        data_uri = qr.png_data_uri(scale=scale, border=2)
        svg = qr.svg_inline(scale=scale, border=2)
    except ValueError as err:
        raise PairingRenderError(f"Failed to render pairing code: {err}") from err
    return RenderedPairing(
        code=artifact.code,
        issued_at=artifact.issued_at,
        data_uri=data_uri,
        svg=svg,
    )


def print_terminal(code: str, out: TextIO | None = None) -> None:
    """Write a compact terminal QR code for operators watching the console."""
    out = out or sys.stdout
    try:
        qr = segno.make_qr(code, error="m")
    except ValueError as err:
        raise PairingRenderError(f"Failed to render pairing code: {err}") from err
    out.write("\n=== Scan this QR code with the messaging app ===\n\n")
    qr.terminal(out=out, compact=True)
    out.write("\n=== Or open /api/qr in a browser ===\n\n")
