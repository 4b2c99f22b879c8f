from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional, Union


class VerifyRequest(BaseModel):
    content_hash: str
    category: str


class SignatureModel(BaseModel):
    public_key: str
    sig: str


class RelayRequest(BaseModel):
    identity: str
    nonce: int
    encoded_call: str
    signature: SignatureModel


class RelayResponse(BaseModel):
    identity: str
    function: str
    nonce: int
    result: Any = None


class RecordView(BaseModel):
    slot_id: int
    content_hash: str
    owner_identity: str
    category: str
    payload: Union[Dict[str, Any], str]
    created_at: int
    status: str
    external_ref: str = ""
    deadline: Optional[int] = None
    redeemed_by: Optional[str] = None
    redeemed_at: Optional[int] = None


class EventView(BaseModel):
    seq: int
    name: str
    fields: Dict[str, Any] = Field(default_factory=dict)


class EventList(BaseModel):
    events: List[EventView] = Field(default_factory=list)
