from __future__ import annotations


class ResearchFlowError(Exception):
    """Base error; ``status_code`` is used when the error reaches the HTTP layer."""

    status_code: int = 500


class ValidationError(ResearchFlowError):
    status_code = 400


class ForbiddenError(ResearchFlowError):
    status_code = 403


class NotFoundError(ResearchFlowError):
    status_code = 404


class AllSourcesExhaustedError(ResearchFlowError):
    """Every configured data source failed or returned nothing."""

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__(f"All data sources failed: {'; '.join(self.errors)}")


class GenerationError(ResearchFlowError):
    """The AI provider returned no usable output for the requested schema."""

    status_code = 502


class InvalidStatusTransitionError(ResearchFlowError):
    status_code = 409

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move research request from '{current}' to '{target}'")


class QueueUnavailableError(ResearchFlowError):
    """The job queue refused a research job, so the request can never run."""

    status_code = 503
