"""
ABG Interpreter Service - blood gas interpretation proxy for Gemini.
"""
__version__ = "0.3.0"
