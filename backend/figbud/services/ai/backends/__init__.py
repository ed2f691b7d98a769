"""
Generative backends.

Every backend implements `Backend.process_query(message, context,
system_prompt)` and returns a CandidateResponse or a BackendCallError.
"""
from figbud.services.ai.backends.base import (
    Backend,
    BackendCallError,
    BackendErrorKind,
    BackendResult,
)

__all__ = ["Backend", "BackendCallError", "BackendErrorKind", "BackendResult"]
