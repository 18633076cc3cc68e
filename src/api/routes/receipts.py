"""Receipt document routes."""

from fastapi import APIRouter, Response

from src.api.deps import CurrentUser
from src.services.receipt_service import ReceiptService

router = APIRouter(prefix="/receipts", tags=["receipts"])


@router.get(
    "/{receipt_id}/pdf",
    response_class=Response,
    summary="Download a receipt",
    description="Accepts a receipt id, a folio, or a RCPT-cs_/RCPT-pi_ placeholder.",
    responses={200: {"content": {"application/pdf": {}}}},
)
async def download_receipt(receipt_id: str, user: CurrentUser) -> Response:
    filename, pdf = await ReceiptService().render_pdf(receipt_id, user.id)
    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={"Content-Disposition": f'inline; filename="{filename}"'},
    )
