from .base import MatrixRepository
from .json_store import JsonFileMatrixRepository
from .matrix_store import MatrixStore
from .memory import InMemoryMatrixRepository
from .s3_mirror import S3Mirror

__all__ = [
    "MatrixRepository",
    "InMemoryMatrixRepository",
    "JsonFileMatrixRepository",
    "MatrixStore",
    "S3Mirror",
]
