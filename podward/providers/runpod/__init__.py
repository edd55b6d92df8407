"""RunPod transport.

Environment Variables:
    RUNPOD_API_KEY: API key (required if not passed directly)
"""

from .client import RUNPOD_API_BASE, RUNPOD_GRAPHQL_URL, RunPodClient, get_api_key

__all__ = [
    "RUNPOD_API_BASE",
    "RUNPOD_GRAPHQL_URL",
    "RunPodClient",
    "get_api_key",
]
