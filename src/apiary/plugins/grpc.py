"""
gRPC plugin.

Only the payload shapes are built in. A client capability is supplied by
the application through build_default_registry(perform_overrides=...).
"""

from typing import Annotated, ClassVar

from apiary.plugins.base import Plugin
from apiary.schema import KV, EntryData, Kind, NullAsEmpty


class GRPCRequest(EntryData):
    """A unary call: target address, full method name, JSON payload and metadata."""

    KIND: ClassVar[str] = Kind.GRPC.value

    target: str = ""
    method: str = ""
    payload: str = ""
    metadata: Annotated[tuple[KV, ...], NullAsEmpty] = ()


class GRPCResponse(EntryData):
    KIND: ClassVar[str] = Kind.GRPC.value

    response: str = ""
    code: int = 0
    metadata: Annotated[tuple[KV, ...], NullAsEmpty] = ()


plugin_grpc = Plugin(
    kind=Kind.GRPC.value,
    title="GRPC",
    request_type=GRPCRequest,
    response_type=GRPCResponse,
)
