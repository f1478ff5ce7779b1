"""Error taxonomy for the transition pipeline.

Every error the pipeline reasons about carries an explicit ``kind`` tag:

- RECOVERABLE: ordinary failures. The pipeline rejects the call and leaves
  persisted state untouched.
- NON_RECOVERABLE: the entity cannot proceed. The pipeline parks it in the
  failed state and resolves the call.
- RESOLUTION_FAILURE: a strict handler resolver found no registration for a
  state. Escalated exactly like NON_RECOVERABLE.

Exceptions raised by domain code that carry no tag are RECOVERABLE. The
pipeline dispatches on the tag returned by ``classify_error`` rather than on
the exception class.
"""

from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorKind(str, Enum):
    """Closed set of error classifications understood by the pipeline.

    Attributes:
        RECOVERABLE: Propagated to the caller; repository not touched.
        NON_RECOVERABLE: Absorbed; entity persisted as failed.
        RESOLUTION_FAILURE: Missing handler registration in strict mode;
            absorbed like NON_RECOVERABLE.
    """

    RECOVERABLE = "recoverable"
    NON_RECOVERABLE = "non_recoverable"
    RESOLUTION_FAILURE = "resolution_failure"

    @property
    def parks_entity(self) -> bool:
        """Whether the default policy persists the entity as failed."""
        return self in (ErrorKind.NON_RECOVERABLE, ErrorKind.RESOLUTION_FAILURE)


class PipelineError(Exception):
    """Base class for errors raised by the pipeline and its resolvers.

    Attributes:
        message: Human-readable error message.
        details: Optional structured context about the failure.
    """

    kind: ErrorKind = ErrorKind.RECOVERABLE

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class NonRecoverablePipelineError(PipelineError):
    """Raised when an entity's workflow cannot proceed.

    Handlers, hooks and resolvers raise this to ask the pipeline to park the
    entity in its failed state instead of rejecting the call.

    Example:
        >>> raise NonRecoverablePipelineError(
        ...     "Payment declined permanently",
        ...     details={"order_id": "ord-42"},
        ... )
    """

    kind = ErrorKind.NON_RECOVERABLE

    def __init__(
        self,
        message: str = "Non-recoverable pipeline error",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)


class HandlerResolutionError(NonRecoverablePipelineError):
    """Raised by a strict handler resolver for an unregistered state.

    Attributes:
        state: The state that had no registered handler.
    """

    kind = ErrorKind.RESOLUTION_FAILURE

    def __init__(self, state: Any):
        self.state = state
        super().__init__(
            f"No handler registered for state: {state!r}",
            details={"state": state},
        )


class TransitionNotFoundError(PipelineError, LookupError):
    """Raised when a transition resolver has no record for a state.

    The transition resolver has no lenient mode; a non-terminal state without
    a registration is a usage error on the caller's side.

    Attributes:
        state: The state that had no registered transition.
    """

    def __init__(self, state: Any):
        self.state = state
        super().__init__(
            f"No transition registered from state: {state!r}",
            details={"state": state},
        )


class PipelineConfigurationError(Exception):
    """Raised by builders when required collaborators are missing.

    Attributes:
        missing: Names of the missing collaborators.
    """

    def __init__(self, missing: List[str]):
        self.missing = list(missing)
        super().__init__(
            "Pipeline is missing required configuration: " + ", ".join(self.missing)
        )


def classify_error(error: BaseException) -> ErrorKind:
    """Return the error kind tag carried by an exception.

    Exceptions that do not carry an ``ErrorKind`` tag are recoverable.

    Example:
        >>> classify_error(ValueError("boom"))
        <ErrorKind.RECOVERABLE: 'recoverable'>
        >>> classify_error(NonRecoverablePipelineError())
        <ErrorKind.NON_RECOVERABLE: 'non_recoverable'>
    """
    kind = getattr(error, "kind", None)
    if isinstance(kind, ErrorKind):
        return kind
    return ErrorKind.RECOVERABLE
