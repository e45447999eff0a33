"""Tests for pairing artifacts and QR rendering."""

from __future__ import annotations

import base64
import io

import pytest

from notibridge_core.errors import PairingRenderError
from notibridge_core.pairing import PairingArtifact, print_terminal, render_pairing


class TestPairingArtifact:
    """Tests for PairingArtifact expiry."""

    def test_never_expires_while_open(self):
        artifact = PairingArtifact(code="2@abc", issued_at=100.0)
        assert artifact.is_expired(10_000.0) is False

    def test_expires_at_deadline(self):
        artifact = PairingArtifact(code="2@abc", issued_at=100.0, expires_at=220.0)
        assert artifact.is_expired(219.0) is False
        assert artifact.is_expired(220.0) is True


class TestRendering:
    """Tests for render_pairing() and print_terminal()."""

    def test_render_png_and_svg(self):
        artifact = PairingArtifact(code="2@abc,def,ghi", issued_at=100.0)

        rendered = render_pairing(artifact)

        assert rendered.code == "2@abc,def,ghi"
        assert rendered.issued_at == 100.0
        prefix = "data:image/png;base64,"
        assert rendered.data_uri.startswith(prefix)
        png = base64.b64decode(rendered.data_uri[len(prefix) :])
        assert png.startswith(b"\x89PNG")
        assert rendered.svg.startswith("<svg")

    def test_render_too_large(self):
        artifact = PairingArtifact(code="x" * 5000, issued_at=0.0)

        with pytest.raises(PairingRenderError):
            render_pairing(artifact)

    def test_print_terminal(self):
        out = io.StringIO()

        print_terminal("2@abc", out=out)

        text = out.getvalue()
        assert "Scan this QR code" in text
        assert "/api/qr" in text
        assert len(text.splitlines()) > 10
