"""Error taxonomy for the content-improvement workflow.

Hard errors (raised):
- NotAvailableError: content root / assistant configuration missing ("not installed")
- TransportError: an Assistants API call failed to connect or returned non-2xx
- AssistantError: the assistant run itself ended failed/expired/cancelled
- AssistantTimeoutError: polling hit the attempt ceiling

Soft errors (recorded in results, not raised by bulk operations):
- StaleImprovementError: live value no longer matches the improvement's original
"""

from typing import Any, Dict, Optional


class ContentWorkflowError(Exception):
    """Base class for all content workflow errors."""


class NotAvailableError(ContentWorkflowError):
    """Content subsystem or its configuration is missing."""


class TransportError(ContentWorkflowError):
    def __init__(self, operation: str, detail: str, status_code: Optional[int] = None):
        self.operation = operation
        self.detail = detail
        self.status_code = status_code
        status = f" (HTTP {status_code})" if status_code is not None else ""
        super().__init__(f"{operation} failed{status}: {detail}")


class AssistantError(ContentWorkflowError):
    def __init__(self, status: str, detail: str = ""):
        self.status = status
        self.detail = detail
        super().__init__(f"Assistant run {status}: {detail or 'Unknown error'}")


class AssistantTimeoutError(ContentWorkflowError, TimeoutError):
    def __init__(self, attempts: int, run_id: Optional[str] = None):
        self.attempts = attempts
        self.run_id = run_id
        run = f" {run_id}" if run_id else ""
        super().__init__(f"Assistant run{run} did not finish after {attempts} status checks")


class InvalidTransitionError(ContentWorkflowError):
    """Raised when a batch status would move backwards or be re-opened."""


class StaleImprovementError(ContentWorkflowError):
    def __init__(self, improvement_id: str, file: str, field: str, expected: Any, actual: Any, missing: bool = False):
        self.improvement_id = improvement_id
        self.file = file
        self.field = field
        self.expected = expected
        self.actual = actual
        self.missing = missing
        reason = "field not found" if missing else "live value differs from recorded original"
        super().__init__(f"{file}:{field} is stale ({reason})")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.improvement_id,
            "file": self.file,
            "field": self.field,
            "expected": self.expected,
            "actual": self.actual,
            "missing": self.missing,
            "error": str(self),
        }
