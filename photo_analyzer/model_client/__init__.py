"""
Model Client - HTTP client for the local Model Service.
"""
from photo_analyzer.model_client.client import ModelClient, get_model_client

__all__ = ["ModelClient", "get_model_client"]
