from .registry import DuplicateTxError, HandlerSpec, RegistryNotReadyError, SecurityRegistry, TxTarget

__all__ = ["DuplicateTxError", "HandlerSpec", "RegistryNotReadyError", "SecurityRegistry", "TxTarget"]
