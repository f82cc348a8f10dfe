"""API routes for the model bridge service."""

import math
from typing import Any, Dict, List, Optional
from fastapi import APIRouter, Request, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
import structlog

from .channel import ChannelResult, MethodChannel

logger = structlog.get_logger("model_bridge.api")

router = APIRouter()

_ERROR_STATUS = {
    "INVALID_ARGUMENT": 400,
    "NOT_IMPLEMENTED": 501,
    "MODEL_LOAD_ERROR": 503,
    "INVOKER_CLOSED": 503,
}


class ChannelRequest(BaseModel):
    """Request model for a method channel call."""
    arguments: Optional[Dict[str, Any]] = Field(default_factory=dict, description="Named method arguments")


class ChannelResponse(BaseModel):
    """Response envelope for a method channel call."""
    status: str = Field(..., description="success, error or not_implemented")
    result: Optional[List[Optional[float]]] = Field(
        None,
        description="Flattened model output on success; NaN and infinities are sent as null"
    )
    code: Optional[str] = Field(None, description="Error kind tag")
    message: Optional[str] = Field(None, description="Human-readable error message")


def get_channel(request: Request) -> MethodChannel:
    """Get method channel from application state."""
    return request.app.state.channel


def status_code_for(result: ChannelResult) -> int:
    if result.is_success:
        return 200
    return _ERROR_STATUS.get(result.code or "", 500)


def encode_result(result: ChannelResult) -> Dict[str, Any]:
    """Envelope as strict JSON; non-finite output values become ``null``."""
    payload = result.to_dict()
    values = payload.get("result")
    if values is not None:
        non_finite = sum(1 for v in values if not math.isfinite(v))
        if non_finite:
            logger.warning("Output contains non-finite values", count=non_finite)
            payload["result"] = [v if math.isfinite(v) else None for v in values]
    return payload


@router.post("/channel/{method}", response_model=ChannelResponse)
def invoke_method(
    method: str,
    request: Optional[ChannelRequest] = None,
    channel: MethodChannel = Depends(get_channel)
):
    """Invoke a method on the bridge channel.

    Declared sync so the forward pass runs in the threadpool instead of
    blocking the event loop. A missing body is passed on as no arguments.
    """
    arguments = request.arguments if request is not None else None
    result = channel.handle(method, arguments)

    if result.is_success:
        logger.info("Channel call completed", method=method, output_size=len(result.result or []))
    else:
        logger.warning("Channel call failed", method=method, code=result.code)

    return JSONResponse(status_code=status_code_for(result), content=encode_result(result))


@router.get("/channel")
def describe_channel(channel: MethodChannel = Depends(get_channel)):
    """List the methods this channel implements and the expected input contract."""
    invoker = channel.invoker
    return {
        "methods": channel.methods,
        "input_name": invoker.input_name,
        "input_shape": list(invoker.input_shape),
        "input_size": invoker.expected_input_size,
        "output_names": invoker.output_names,
    }
