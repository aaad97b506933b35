from po_portal.models.company import Company, CompanyUser
from po_portal.models.company_details import CompanyDetails
from po_portal.models.purchase_order import PurchaseOrder, POStatus
from po_portal.models.po_line import POLine
from po_portal.models.uploaded_invoice import UploadedInvoice, InvoiceUploadStatus
from po_portal.models.freeagent_credential import FreeAgentCredential
from po_portal.models.cached_contact import CachedContact
from po_portal.models.cached_project import CachedProject
from po_portal.models.cached_category import CachedCategory
from po_portal.models.email_log import EmailLog

__all__ = ["Company", "CompanyUser", "CompanyDetails", "PurchaseOrder", "POStatus", "POLine", "UploadedInvoice", "InvoiceUploadStatus", "FreeAgentCredential", "CachedContact", "CachedProject", "CachedCategory", "EmailLog"]
