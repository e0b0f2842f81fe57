"""
Insurance fact-find questionnaire service.
"""

__version__ = "0.1.0"
