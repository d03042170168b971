from .service import BatchOrchestrator, ConversionWorker
from .models import ConversionRequest, ConversionResult, FormatTag, NoFilesProvided, Outcome

__all__ = [
    "BatchOrchestrator",
    "ConversionWorker",
    "ConversionRequest",
    "ConversionResult",
    "FormatTag",
    "NoFilesProvided",
    "Outcome",
]
