"""
TrustScore Engine - Alternative-Data Credit Scoring
===================================================

Version: 1.0.0
"""

__version__ = "1.0.0"

# Imports are done directly in each module to avoid circular dependencies
# Use: from trustscore.schemas import FeatureVector
# Use: from trustscore.orchestrator import ScoreOrchestrator
