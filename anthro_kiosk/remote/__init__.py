from .analysis_client import AnalysisClient
from .records import (
    RestRecordStore,
    ResultStore,
    SavedRecord,
    SubjectDirectory,
    SubjectInfo,
)

__all__ = [
    "AnalysisClient",
    "RestRecordStore",
    "ResultStore",
    "SavedRecord",
    "SubjectDirectory",
    "SubjectInfo",
]
