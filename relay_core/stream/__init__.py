from relay_core.stream.signals import SEARCH_STATUS_MARKER, FallbackDetector, SearchStatusChannel
from relay_core.stream.typewriter import Typewriter

__all__ = ["SEARCH_STATUS_MARKER", "FallbackDetector", "SearchStatusChannel", "Typewriter"]
