"""
SearchScout - Keyword Gap Engine

Merges the ranked keywords of a subject domain and its competitors,
classifies every keyword and scores the gaps worth targeting.
"""

__version__ = "1.0.0"
