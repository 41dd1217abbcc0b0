from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Sequence

import boto3

MAX_BATCH_ENTRIES = 10


@dataclass
class SqsMessage:
    message_id: str
    receipt_handle: str
    body: str
    receive_count: int = 1

    def to_record(self) -> Dict[str, Any]:
        return {"messageId": self.message_id, "receiptHandle": self.receipt_handle, "body": self.body}


class SqsAdapter:
    def __init__(self, queue_url: str, *, client: Any = None) -> None:
        self.queue_url = queue_url
        self.client = client or boto3.client("sqs")

    def send(self, payload: Dict[str, Any]) -> None:
        self.client.send_message(QueueUrl=self.queue_url, MessageBody=json.dumps(payload))

    def send_batch(self, payloads: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Send up to ten payloads in one call and return the entries SQS rejected."""
        if len(payloads) > MAX_BATCH_ENTRIES:
            raise ValueError(f"at most {MAX_BATCH_ENTRIES} entries per batch")
        if not payloads:
            return []
        response = self.client.send_message_batch(
            QueueUrl=self.queue_url,
            Entries=[
                {"Id": str(index), "MessageBody": json.dumps(payload)}
                for index, payload in enumerate(payloads)
            ],
        )
        return response.get("Failed", [])

    def receive(self, *, max_messages: int = MAX_BATCH_ENTRIES, wait_seconds: int = 20) -> List[SqsMessage]:
        response = self.client.receive_message(
            QueueUrl=self.queue_url,
            AttributeNames=["ApproximateReceiveCount"],
            MaxNumberOfMessages=max_messages,
            WaitTimeSeconds=wait_seconds,
        )
        messages: List[SqsMessage] = []
        for message in response.get("Messages", []):
            attributes = message.get("Attributes", {})
            messages.append(
                SqsMessage(
                    message_id=message["MessageId"],
                    receipt_handle=message["ReceiptHandle"],
                    body=message.get("Body", ""),
                    receive_count=int(attributes.get("ApproximateReceiveCount", "1")),
                )
            )
        return messages

    def delete(self, receipt_handle: str) -> None:
        self.client.delete_message(QueueUrl=self.queue_url, ReceiptHandle=receipt_handle)
