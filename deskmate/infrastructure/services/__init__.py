from .completion import CompletionService, GeminiCompletionService, extract_json_object
from .speech import ElevenLabsSpeechService, SpeechService, estimate_duration, to_data_url

__all__ = [
    "CompletionService",
    "ElevenLabsSpeechService",
    "GeminiCompletionService",
    "SpeechService",
    "estimate_duration",
    "extract_json_object",
    "to_data_url",
]
