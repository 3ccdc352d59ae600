"""
HTTP Client for the Model Service.

The model service hosts the local models: text and image embeddings, object
detection, color embeddings, description cleaning and the Molmo vision model.
Images travel as base64 JPEG strings keyed by photo id.
"""
import httpx
from typing import Any, Dict, List, Optional

from photo_analyzer.core.config import settings
from photo_analyzer.core.logging import get_logger

logger = get_logger("model_client")

# Singleton instance
_client: Optional["ModelClient"] = None


class ModelClient:
    """
    Async HTTP client for the Model Service.
    
    Usage:
        client = ModelClient("http://127.0.0.1:5000")
        vectors = await client.get_embeddings(["beach", "sunset"])
    """
    
    def __init__(self, base_url: str = None, timeout: float = None):
        """
        Initialize the model client.
        
        Args:
            base_url: Model service URL (default from settings)
            timeout: Request timeout in seconds (default from settings)
        """
        self.base_url = base_url or settings.model_service_url
        self.timeout = timeout or settings.model_service_timeout
        self._client: Optional[httpx.AsyncClient] = None
        logger.info(f"ModelClient initialized with base_url={self.base_url}")
    
    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create async HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout),
            )
        return self._client
    
    async def close(self):
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
    
    async def _post(self, path: str, payload: Any) -> Any:
        client = await self._get_client()
        response = await client.post(path, json=payload)
        response.raise_for_status()
        return response.json()
    
    # =========================================================================
    # Embeddings
    # =========================================================================
    
    async def get_embeddings(self, texts: List[str]) -> List[List[float]]:
        """Text embeddings, one vector per input in request order."""
        result = await self._post("/get_embeddings", {"tags": texts})
        return result.get("embeddings", [])
    
    async def get_image_embeddings(self, images: List[Dict[str, str]]) -> List[Dict[str, Any]]:
        """
        Visual embeddings.
        
        Args:
            images: [{"id": photo_id, "base64": jpeg_b64}]
            
        Returns:
            [{"id": photo_id, "embedding": [...]}], order not guaranteed
        """
        result = await self._post("/get_embeddings_image", images)
        return result.get("embeddings", [])
    
    async def get_color_embeddings(self, images: List[Dict[str, str]]) -> List[Dict[str, Any]]:
        """Color palette embeddings keyed by photo id."""
        result = await self._post("/get_color_embeddings_image", images)
        return result.get("embeddings", [])
    
    # =========================================================================
    # Detection
    # =========================================================================
    
    async def detect_objects(self, images: List[Dict[str, str]], categories: List[str]) -> List[Dict[str, Any]]:
        """
        Open-vocabulary object detection.
        
        Returns:
            [{"id": photo_id, "detections": {...}}]
        """
        result = await self._post("/detect_objects", {"images": images, "categories": categories})
        detections = result.get("detections", [])
        logger.debug(f"Detection: {len(detections)} images processed")
        return detections
    
    # =========================================================================
    # Text utilities
    # =========================================================================
    
    async def clean_descriptions(self, texts: List[str], threshold: float) -> List[str]:
        """Strip boilerplate / low-information sentences from descriptions."""
        result = await self._post("/clean_descriptions", {"texts": texts, "threshold": threshold})
        if isinstance(result, dict):
            return result.get("result", [])
        return result
    
    # =========================================================================
    # Molmo
    # =========================================================================
    
    async def molmo_describe(self, images: List[Dict[str, str]], prompts: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """
        Per-image multi-prompt descriptions.
        
        Args:
            images: [{"id": photo_id, "base64": jpeg_b64}]
            prompts: [{"id": photo_id, "prompts": [{"id": prompt_name, "text": ...}]}]
            
        Returns:
            [{"id": photo_id, "descriptions": [{"id_prompt": ..., "description": ...}]}]
        """
        result = await self._post("/molmo", {"images": images, "prompts": prompts})
        return result.get("result", [])


def get_model_client() -> ModelClient:
    """Get singleton model client instance."""
    global _client
    if _client is None:
        _client = ModelClient()
    return _client
