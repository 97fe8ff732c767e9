from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..utilities.constants import CONNECTION_ID_ATTRIBUTE, MAX_CONNECTION_DURATION, SORT_KEY_DATE_LAYOUT
from ..utilities.utility_functions import topic_partition_key


class SubscriptionRecord(BaseModel):
    """One row per (topic, connection) pair.

    pk          | sk                        | ttl        | t          | id
    ------------|---------------------------|------------|------------|---------
    topic/ab12  | 20240101120000/<conn id>  | 1704112500 | ab12       | <conn id>
    topic/ab12  | 20240101120502/<conn id>  | 1704112802 | ab12       | <conn id>
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    partition_key: str = Field(alias="pk")
    sort_key: str = Field(alias="sk")
    expiry_epoch_seconds: int = Field(alias="ttl")
    # Topic namespace that can be subscribed to, e.g. users, users/123, messages
    topic: str = Field(alias="t")
    connection_id: str = Field(alias="id")

    @classmethod
    def create(cls, topic: str, connection_id: str, now: datetime) -> "SubscriptionRecord":
        return cls(
            pk=topic_partition_key(topic),
            sk=f"{now.strftime(SORT_KEY_DATE_LAYOUT)}/{connection_id}",
            ttl=int((now + MAX_CONNECTION_DURATION).timestamp()),
            t=topic,
            id=connection_id,
        )


# ------------ Queue batch event ------------
class MessageAttribute(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    string_value: Optional[str] = Field(default=None, alias="stringValue")
    data_type: str = Field(default="String", alias="dataType")


class QueueRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message_id: str = Field(alias="messageId")
    body: str = ""
    message_attributes: Dict[str, MessageAttribute] = Field(default_factory=dict, alias="messageAttributes")

    def destination(self) -> Optional[str]:
        attr = self.message_attributes.get(CONNECTION_ID_ATTRIBUTE)
        if attr is None:
            return None
        return attr.string_value


class QueueEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    records: List[QueueRecord] = Field(default_factory=list, alias="Records")


class BatchItemFailure(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    item_identifier: str = Field(alias="itemIdentifier")


class BatchResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    batch_item_failures: List[BatchItemFailure] = Field(default_factory=list, alias="batchItemFailures")


# ------------ Gateway ------------
class SubscribeFrame(BaseModel):
    type: str
    topics: List[str] = Field(default_factory=list)
    request_id: Optional[str] = None
