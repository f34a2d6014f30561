from contextvars import ContextVar

# Whether the current task is inside keel.transaction()
_CURRENT_TRANSACTION: ContextVar[bool] = ContextVar(
    "current_transaction", default=False
)

# Global registry for models, keyed by class name (Python side)
_MODEL_REGISTRY_PY = {}

# The connected driver, set by keel.connect()
_ENGINE = {"driver": None}
