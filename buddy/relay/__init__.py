"""Chat relay: FastAPI app that proxies the model gateway as an event stream."""

from buddy.relay.app import DONE_FRAME, create_app, encode_delta_frame
from buddy.relay.gateway import ChatGateway, GatewayError

__all__ = [
    "DONE_FRAME",
    "ChatGateway",
    "GatewayError",
    "create_app",
    "encode_delta_frame",
]
