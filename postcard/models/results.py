"""
Per-step results for the enrichment pipeline.

A step either produces a value, skips the remainder of the pipeline without
error, or fails fatally. Only Fatal aborts with an error response.
"""

from dataclasses import dataclass
from typing import Any, Dict, Generic, Optional, TypeVar, Union

T = TypeVar('T')


@dataclass
class Ok(Generic[T]):
    value: T


@dataclass
class Skipped:
    reason: str


@dataclass
class Fatal:
    error: str


StepResult = Union[Ok, Skipped, Fatal]


@dataclass
class EnrichmentResult:
    """Outcome of one enrichment invocation."""
    success: bool
    entry_id: Optional[str] = None
    message: Optional[str] = None
    error: Optional[str] = None

    @property
    def status_code(self) -> int:
        return 200 if self.success else 500

    def to_response(self) -> Dict[str, Any]:
        if not self.success:
            return {'error': self.error or 'Internal Server Error'}
        body: Dict[str, Any] = {'success': True, 'entryId': self.entry_id}
        if self.message:
            body['message'] = self.message
        return body

    @classmethod
    def from_step(cls, entry_id: Optional[str], step: Union[Skipped, Fatal]) -> 'EnrichmentResult':
        if isinstance(step, Fatal):
            return cls(success=False, entry_id=entry_id, error=step.error)
        return cls(success=True, entry_id=entry_id, message=step.reason)
