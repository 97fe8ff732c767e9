import json
import sys
import uuid
from datetime import datetime, timedelta, timezone

from wsrelay.sender import Dispatcher, HttpPushChannel, handle

def main(connection_id: str):
    # a queue batch as the dispatcher receives it; the second message has no destination
    event = {
        "Records": [
            {
                "messageId": str(uuid.uuid4()),
                "body": json.dumps({"order_id": "ORD-1", "amount": 9.99, "currency": "USD"}),
                "messageAttributes": {"connectionId": {"stringValue": connection_id, "dataType": "String"}},
            },
            {"messageId": str(uuid.uuid4()), "body": "unaddressed"},
        ]
    }
    with HttpPushChannel("http://localhost:8000") as channel:
        deadline = datetime.now(timezone.utc) + timedelta(seconds=30)
        response = handle(event, Dispatcher(channel), deadline=deadline)
    print("Redeliver:", response["batchItemFailures"])

if __name__ == "__main__":
    main(sys.argv[1])
