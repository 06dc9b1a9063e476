from .finding import Finding

__all__ = ["Finding"]
