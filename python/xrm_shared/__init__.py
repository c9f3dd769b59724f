"""xrm_shared: shared utilities for Dataverse plugin handlers.

Provides:
    - Target / pre-image / post-image / complete record resolution
    - Declarative execution gating ("needs")
    - Plugin base class with host and remote (Lambda) entrypoints
    - Remote execution context (de)serialization
    - Token-cached Web API service client
"""

__version__ = "1.0.0"
