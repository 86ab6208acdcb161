"""Tests for the PyMuPDF document renderer."""

import base64
import fitz
import pytest

from src.models.agreement import AgreementType, SignatureSlot
from src.services.pdf_renderer import PdfDocumentRenderer, decode_data_url
from src.utils.errors import ExternalServiceError, ValidationError


@pytest.fixture
def signature() -> str:
    """A real PNG signature as a data URL."""
    pix = fitz.Pixmap(fitz.csRGB, fitz.IRect(0, 0, 40, 12), False)
    pix.set_rect(pix.irect, (20, 20, 120))
    return "data:image/png;base64," + base64.b64encode(pix.tobytes("png")).decode()


def _text(document: bytes) -> str:
    with fitz.open(stream=document, filetype="pdf") as doc:
        return "".join(page.get_text() for page in doc)


@pytest.mark.unit
def test_fill_writes_summary_page():
    """Test a fresh document carries the title and field values."""
    document = PdfDocumentRenderer().fill(
        AgreementType.GLOBAL_BRBC, {"buyer_id": "buyer_1", "agent_id": "agent_1", "document_ref": None}
    )

    text = _text(document)
    assert "Buyer Representation and Brokerage Confirmation" in text
    assert "Buyer id: buyer_1" in text
    assert "Document ref" not in text


@pytest.mark.unit
def test_fill_uses_prior_bytes():
    """Test an edited document is reused rather than replaced."""
    with fitz.open() as doc:
        doc.new_page().insert_text((54, 72), "Edited by agent")
        prior = doc.tobytes()

    document = PdfDocumentRenderer().fill(AgreementType.AGENCY_DISCLOSURE, {"id": "a"}, prior)

    assert "Edited by agent" in _text(document)


@pytest.mark.unit
def test_fill_rejects_corrupt_prior_bytes():
    """Test unreadable prior bytes are a rendering failure."""
    with pytest.raises(ExternalServiceError):
        PdfDocumentRenderer().fill(AgreementType.AGENCY_DISCLOSURE, {"id": "a"}, b"not a pdf")


@pytest.mark.unit
def test_overlay_signature_adds_image(signature):
    """Test the signature image lands on the last page."""
    renderer = PdfDocumentRenderer()
    document = renderer.fill(AgreementType.STANDARD, {"id": "a"})

    signed = renderer.overlay_signature(document, signature, SignatureSlot.BUYER)

    with fitz.open(stream=signed, filetype="pdf") as doc:
        assert len(doc[-1].get_images()) == 1
    assert "Buyer signature" in _text(signed)


@pytest.mark.unit
def test_decode_data_url():
    """Test data URLs decode and malformed ones are validation errors."""
    assert decode_data_url("data:image/png;base64,aGk=") == b"hi"
    with pytest.raises(ValidationError):
        decode_data_url("data:image/png;base64,***")
    with pytest.raises(ValidationError):
        decode_data_url("https://example.com/sig.png")
