"""Workflow error taxonomy.

Every business-rule failure raised by the service layer is a WorkflowError.
They subclass ValueError so callers that only know the service-layer
convention ("raise ValueError on a bad state") keep working. The API layer
maps each subclass to an HTTP status via ``status_code`` and ``code``.
"""
from decimal import Decimal


class WorkflowError(ValueError):
    status_code = 400
    code = "workflow_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"detail": self.message, "error": self.code}


class WorkflowValidationError(WorkflowError):
    status_code = 400
    code = "validation_error"


class RecordNotFoundError(WorkflowError):
    status_code = 404
    code = "not_found"

    def __init__(self, entity: str, record_id):
        super().__init__(f"{entity} {record_id} not found.")
        self.entity = entity
        self.record_id = record_id


class ApprovalOrderError(WorkflowError):
    status_code = 409
    code = "approval_order_violation"

    def __init__(self, stage: str, missing_stage: str):
        super().__init__(
            f"Cannot approve '{stage}' before '{missing_stage}' has approved."
        )
        self.stage = stage
        self.missing_stage = missing_stage

    def to_dict(self) -> dict:
        return {**super().to_dict(), "missing_stage": self.missing_stage}


class TerminalStateError(WorkflowError):
    status_code = 409
    code = "terminal_state"

    def __init__(self, record_id, status: str):
        super().__init__(
            f"Request {record_id} is already {status}; no further decisions are allowed."
        )
        self.status = status


class StageAlreadyApprovedError(WorkflowError):
    status_code = 409
    code = "stage_already_approved"

    def __init__(self, stage: str, approved_by: str | None):
        super().__init__(f"Stage '{stage}' was already approved by {approved_by}.")
        self.stage = stage


class SelfApprovalError(WorkflowError):
    status_code = 403
    code = "self_approval"

    def __init__(self, actor: str):
        super().__init__(f"{actor} cannot approve their own request.")


class InsufficientBalanceError(WorkflowError):
    status_code = 422
    code = "insufficient_balance"

    def __init__(self, requested: Decimal, available: Decimal):
        super().__init__(
            f"Amount {requested} exceeds outstanding balance of {available}."
        )
        self.requested = requested
        self.available = available

    def to_dict(self) -> dict:
        return {**super().to_dict(), "available": str(self.available)}


class InsufficientStockError(WorkflowError):
    status_code = 422
    code = "insufficient_stock"

    def __init__(self, requested: Decimal, available: Decimal):
        super().__init__(
            f"Only {available}kg available, need {requested}kg."
        )
        self.requested = requested
        self.available = available

    def to_dict(self) -> dict:
        return {**super().to_dict(), "available": str(self.available)}


class ConcurrentModificationError(WorkflowError):
    status_code = 409
    code = "concurrent_modification"

    def __init__(self, entity: str = "record"):
        super().__init__(
            f"The {entity} was modified concurrently, please retry."
        )


class StoreUnavailableError(WorkflowError):
    status_code = 503
    code = "store_unavailable"
