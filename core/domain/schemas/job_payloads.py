from __future__ import annotations

from typing import Annotated, Dict, Literal, Tuple, Type, Union

from pydantic import BaseModel, Field, TypeAdapter

from core.domain.enums.job_enums import QueueName
from core.domain.enums.swap_enums import MonitorType
from core.domain.enums.trigger_enums import TriggerKind


class BulkCheckJob(BaseModel):
    job: Literal["bulk-check"] = "bulk-check"
    kind: TriggerKind


class AlertCheckJob(BaseModel):
    job: Literal["alert-check"] = "alert-check"
    alert_id: str


class TransactionMonitorJob(BaseModel):
    job: Literal["transaction-monitor"] = "transaction-monitor"
    swap_id: str
    step_index: int
    chain_id: str
    tx_hash: str
    type: MonitorType


JobPayload = Annotated[
    Union[BulkCheckJob, AlertCheckJob, TransactionMonitorJob],
    Field(discriminator="job"),
]

JOB_PAYLOAD_ADAPTER: TypeAdapter = TypeAdapter(JobPayload)

# queue -> payload variants it accepts
QUEUE_PAYLOADS: Dict[QueueName, Tuple[Type[BaseModel], ...]] = {
    QueueName.ALERT_CHECK: (BulkCheckJob, AlertCheckJob),
    QueueName.LIMIT_ORDER_CHECK: (BulkCheckJob,),
    QueueName.DCA_CHECK: (BulkCheckJob,),
    QueueName.TRANSACTION_MONITOR: (TransactionMonitorJob,),
}

BULK_CHECK_QUEUES: Dict[TriggerKind, QueueName] = {
    TriggerKind.ALERT: QueueName.ALERT_CHECK,
    TriggerKind.LIMIT_ORDER: QueueName.LIMIT_ORDER_CHECK,
    TriggerKind.DCA: QueueName.DCA_CHECK,
}


def parse_job_payload(raw: dict) -> BaseModel:
    return JOB_PAYLOAD_ADAPTER.validate_python(raw)
