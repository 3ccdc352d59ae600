"""
Services consumed by the analysis pipeline.
"""
from photo_analyzer.services.models_service import ModelsService, ChatResult, CallCost

__all__ = ["ModelsService", "ChatResult", "CallCost"]
