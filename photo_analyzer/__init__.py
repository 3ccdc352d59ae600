"""
Photo Analyzer - staged AI analysis pipeline for photo collections.
"""
__version__ = "1.0.0"
