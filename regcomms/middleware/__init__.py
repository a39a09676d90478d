# Middleware
from regcomms.middleware.correlation import CorrelationIdMiddleware

__all__ = ["CorrelationIdMiddleware"]
