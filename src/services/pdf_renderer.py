"""PyMuPDF document renderer for agreements."""

from typing import Optional

import fitz  # PyMuPDF

from src.models.agreement import AgreementType, SignatureSlot
from src.services.agreements import decode_data_url
from src.utils.errors import ExternalServiceError
from src.utils.logging import get_structured_logger

logger = get_structured_logger(__name__)

TITLES: dict[AgreementType, str] = {
    AgreementType.AGENCY_DISCLOSURE: "Agency Disclosure",
    AgreementType.STANDARD: "Buyer Representation Agreement",
    AgreementType.GLOBAL_BRBC: "Buyer Representation and Brokerage Confirmation",
    AgreementType.AGENT_REFERRAL: "Agent Referral Agreement",
}

# Signature boxes along the bottom of the last page (points)
SIGNATURE_RECTS: dict[SignatureSlot, fitz.Rect] = {
    SignatureSlot.BUYER: fitz.Rect(54, 680, 214, 740),
    SignatureSlot.AGENT: fitz.Rect(226, 680, 386, 740),
    SignatureSlot.SELLER: fitz.Rect(398, 680, 558, 740),
}

FIELD_AREA_BOTTOM = 650


class PdfDocumentRenderer:
    """Fills agreement PDFs and stamps signature images onto them."""

    def fill(self, kind: AgreementType, field_values: dict, prior_bytes: Optional[bytes] = None) -> bytes:
        try:
            if prior_bytes:
                with fitz.open(stream=prior_bytes, filetype="pdf") as doc:
                    filled = self._fill_widgets(doc, field_values)
                    logger.debug("Filled form widgets", kind=kind.value, widgets_filled=filled)
                    return doc.tobytes()
            with fitz.open() as doc:
                self._write_summary(doc, kind, field_values)
                return doc.tobytes()
        except (RuntimeError, ValueError) as e:
            raise ExternalServiceError(f"Failed to render {kind.value}: {e}")

    def overlay_signature(self, document: bytes, signature: str, slot: SignatureSlot) -> bytes:
        image = decode_data_url(signature)
        try:
            with fitz.open(stream=document, filetype="pdf") as doc:
                page = doc[-1]
                rect = SIGNATURE_RECTS[slot]
                page.insert_image(rect, stream=image, keep_proportion=True)
                page.insert_text((rect.x0, rect.y1 + 12), f"{slot.value.title()} signature", fontsize=8)
                return doc.tobytes()
        except (RuntimeError, ValueError) as e:
            raise ExternalServiceError(f"Failed to overlay {slot.value} signature: {e}")

    def _fill_widgets(self, doc, field_values: dict) -> int:
        filled = 0
        for page in doc:
            for widget in page.widgets():
                value = field_values.get(widget.field_name)
                if value is None:
                    continue
                widget.field_value = str(value)
                widget.update()
                filled += 1
        return filled

    def _write_summary(self, doc, kind: AgreementType, field_values: dict) -> None:
        page = doc.new_page()
        page.insert_text((54, 72), TITLES[kind], fontsize=16)
        y = 110
        for key in sorted(field_values):
            value = field_values[key]
            if value is None or value == "":
                continue
            if y > FIELD_AREA_BOTTOM:
                break
            label = key.replace("_", " ").capitalize()
            page.insert_text((54, y), f"{label}: {value}", fontsize=10)
            y += 16
