"""
IELTS speaking practice backend: timed examiner sessions backed by
transcription, dialogue, scoring and speech services.
"""

__version__ = "0.1.0"
