from app.models.approval_request import ApprovalRequest, MoneyRequest, WithdrawalRequest
from app.models.ledger import BalanceAccount, LedgerEvent
from app.models.inventory import InventoryBatch, BatchSource, BatchSale
from app.models.employee import Employee
from app.models.audit import AuditLog, DocumentOutbox

__all__ = [
    "ApprovalRequest", "MoneyRequest", "WithdrawalRequest",
    "BalanceAccount", "LedgerEvent",
    "InventoryBatch", "BatchSource", "BatchSale",
    "Employee",
    "AuditLog", "DocumentOutbox",
]
