from po_portal.schemas.invoice import UploadedInvoiceResponse
from po_portal.schemas.po import POCreate, POLineCreate, POResponse, POListResponse, POLineResponse, SendPOResponse
from po_portal.schemas.supplier_portal import SupplierPOView, SupplierResponseRequest

__all__ = [
    "UploadedInvoiceResponse",
    "POCreate",
    "POLineCreate",
    "POResponse",
    "POListResponse",
    "POLineResponse",
    "SendPOResponse",
    "SupplierPOView",
    "SupplierResponseRequest",
]
