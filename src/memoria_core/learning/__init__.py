"""Pattern mining, organization and suggestion ranking."""

from .organization import OrganizationEngine
from .patterns import PatternDetector
from .suggestions import SuggestionRanker

__all__ = ["OrganizationEngine", "PatternDetector", "SuggestionRanker"]
