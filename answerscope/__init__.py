"""answerscope: brand answer collection and enrichment scoring.

Collects answers about a brand from several answer-generation providers
through per-collector-type fallback chains, then scores every collected
answer for position, sentiment and citation signals.
"""

__version__ = "0.1.0"
