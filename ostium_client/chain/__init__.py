from .gateway import ChainGateway, classify_rpc_error
from .reader import ProtocolReader

__all__ = ["ChainGateway", "classify_rpc_error", "ProtocolReader"]
