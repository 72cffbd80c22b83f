from .router import SUPPORTED_PROVIDER_TYPES, call_model

__all__ = ["SUPPORTED_PROVIDER_TYPES", "call_model"]
