"""
Chat-Session-Agent: bounded conversational sessions with LLM replies.
"""

__version__ = "0.1.0"
