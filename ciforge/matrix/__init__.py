from .expander import JobMatrix
from .types import EmptyMatrixError, JobSpec, MatrixError

__all__ = ["JobMatrix", "JobSpec", "MatrixError", "EmptyMatrixError"]
