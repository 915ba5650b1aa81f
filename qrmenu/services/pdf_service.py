import fitz  # PyMuPDF
from PIL import Image
from io import BytesIO
from qrmenu.core.exceptions import DocumentRenderError

class PDFService:
    def __init__(self, scale: float = 2.0, jpeg_quality: int = 95):
        self.scale = scale
        self.jpeg_quality = jpeg_quality

    @staticmethod
    def open_document(data: bytes) -> "fitz.Document":
        if not data:
            raise DocumentRenderError("Empty document")
        try:
            doc = fitz.open(stream=data, filetype="pdf")
        except (RuntimeError, ValueError) as exc:
            raise DocumentRenderError(f"Not a readable PDF: {exc}") from exc
        if doc.page_count < 1:
            doc.close()
            raise DocumentRenderError("The PDF has no pages")
        return doc

    def page_count(self, data: bytes) -> int:
        with self.open_document(data) as doc:
            return doc.page_count

    def render_page_to_image(self, data: bytes, page_number: int, scale: float = None) -> bytes:
        """Render one page (1-based) to JPEG bytes."""
        with self.open_document(data) as doc:
            if not 1 <= page_number <= doc.page_count:
                raise DocumentRenderError(
                    f"Page {page_number} out of range (document has {doc.page_count})"
                )
            return self._render(doc[page_number - 1], scale or self.scale)

    def _render(self, page: "fitz.Page", scale: float) -> bytes:
        pix = page.get_pixmap(matrix=fitz.Matrix(scale, scale), alpha=False)
        img = Image.open(BytesIO(pix.tobytes("png"))).convert("RGB")
        output = BytesIO()
        img.save(output, format="JPEG", quality=self.jpeg_quality)
        return output.getvalue()
