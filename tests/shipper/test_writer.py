import threading

import pytest

from log_shipper.errors import DeliveryFailedError, FatalDeliveryError
from log_shipper.shipper.types import LogEvent, LogEventBatch
from log_shipper.shipper.writer import StreamWriter

LOG_GROUP = "/ci/builds"
LOG_STREAM = "build-42"


@pytest.fixture
def writer(logs_client, retry_controller):
    return StreamWriter(logs_client, LOG_STREAM, retry_controller)


def put_kwargs(batch, **extra):
    kwargs = {
        "logGroupName": LOG_GROUP,
        "logStreamName": LOG_STREAM,
        "logEvents": batch.to_cloudwatch(),
    }
    kwargs.update(extra)
    return kwargs


def test_first_append_is_sent_without_a_token(writer, boto_logs, make_batch):
    batch = make_batch("building", "done")

    assert writer.flush(batch) == 2

    boto_logs.put_log_events.assert_called_once_with(**put_kwargs(batch))
    assert writer.sequence_token == "token-1"


def test_token_from_each_append_is_used_by_the_next(writer, boto_logs, make_batch):
    boto_logs.put_log_events.side_effect = [
        {"nextSequenceToken": "token-1"},
        {"nextSequenceToken": "token-2"},
    ]
    first, second = make_batch("one"), make_batch("two")

    writer.flush(first)
    writer.flush(second)

    assert boto_logs.put_log_events.call_args_list[1].kwargs == put_kwargs(
        second, sequenceToken="token-1"
    )
    assert writer.sequence_token == "token-2"


def test_deliver_pending_removes_each_batch_once(writer, boto_logs, make_batch):
    first, second = make_batch("one"), make_batch("two", "three")
    writer.submit(first)
    writer.submit(second)

    assert writer.deliver_pending() == 3
    assert writer.pending == []
    assert boto_logs.put_log_events.call_count == 2
    assert writer.deliver_pending() == 0
    assert boto_logs.put_log_events.call_count == 2


def test_sequence_conflict_refreshes_token_once(
    writer, boto_logs, make_batch, make_client_error
):
    boto_logs.put_log_events.side_effect = [
        make_client_error("InvalidSequenceTokenException", expectedSequenceToken="x"),
        {"nextSequenceToken": "token-3"},
    ]
    batch = make_batch("a")

    assert writer.flush(batch) == 1

    boto_logs.describe_log_streams.assert_called_once_with(
        logGroupName=LOG_GROUP, logStreamNamePrefix=LOG_STREAM, limit=1
    )
    assert boto_logs.put_log_events.call_args_list[1].kwargs == put_kwargs(
        batch, sequenceToken="fresh"
    )
    assert writer.sequence_token == "token-3"


def test_second_sequence_conflict_is_fatal_and_batch_stays_queued(
    writer, boto_logs, make_batch, make_client_error
):
    conflict = make_client_error("InvalidSequenceTokenException")
    boto_logs.put_log_events.side_effect = [conflict, conflict]
    batch = make_batch("a")
    writer.submit(batch)

    with pytest.raises(FatalDeliveryError) as exc_info:
        writer.deliver_pending()

    assert exc_info.value.batch is batch
    assert boto_logs.put_log_events.call_count == 2
    boto_logs.describe_log_streams.assert_called_once()
    assert writer.pending == [batch]


def test_missing_stream_is_created(writer, boto_logs, make_batch, make_client_error):
    boto_logs.put_log_events.side_effect = [
        make_client_error("ResourceNotFoundException"),
        {"nextSequenceToken": "token-2"},
    ]

    assert writer.flush(make_batch("a")) == 1

    boto_logs.create_log_stream.assert_called_once_with(
        logGroupName=LOG_GROUP, logStreamName=LOG_STREAM
    )
    assert boto_logs.put_log_events.call_count == 2
    assert writer.sequence_token == "token-2"


def test_create_tolerates_a_concurrently_created_stream(
    writer, boto_logs, make_batch, make_client_error
):
    boto_logs.put_log_events.side_effect = [
        make_client_error("ResourceNotFoundException"),
        {"nextSequenceToken": "token-2"},
    ]
    boto_logs.create_log_stream.side_effect = make_client_error(
        "ResourceAlreadyExistsException", operation="CreateLogStream"
    )

    assert writer.flush(make_batch("a")) == 1


def test_missing_log_group_is_fatal(writer, boto_logs, make_batch, make_client_error):
    boto_logs.put_log_events.side_effect = make_client_error("ResourceNotFoundException")
    boto_logs.create_log_stream.side_effect = make_client_error(
        "ResourceNotFoundException", operation="CreateLogStream"
    )

    with pytest.raises(FatalDeliveryError):
        writer.flush(make_batch("a"))


def test_already_accepted_batch_counts_as_delivered(
    writer, boto_logs, make_batch, make_client_error
):
    boto_logs.put_log_events.side_effect = make_client_error(
        "DataAlreadyAcceptedException", expectedSequenceToken="token-9"
    )
    writer.submit(make_batch("a"))

    assert writer.deliver_pending() == 1
    assert writer.pending == []
    assert writer.sequence_token == "token-9"
    boto_logs.describe_log_streams.assert_not_called()


def test_exhausted_retries_keep_the_batch_at_the_head(
    writer, boto_logs, make_batch, make_client_error, retry_waits
):
    boto_logs.put_log_events.side_effect = make_client_error("ThrottlingException")
    first, second = make_batch("a"), make_batch("b")
    writer.submit(first)
    writer.submit(second)

    with pytest.raises(DeliveryFailedError) as exc_info:
        writer.deliver_pending()

    assert exc_info.value.batch is first
    assert writer.pending == [first, second]
    assert len(retry_waits) == 3


def test_batch_outside_time_window_is_fatal(writer, boto_logs):
    ancient = LogEventBatch([LogEvent(1, "from 1970")])

    with pytest.raises(FatalDeliveryError, match="14 days"):
        writer.flush(ancient)

    boto_logs.put_log_events.assert_not_called()


def test_stop_leaves_remaining_batches_queued(writer, boto_logs, make_batch):
    stop = threading.Event()
    stop.set()
    writer.submit(make_batch("a"))

    assert writer.deliver_pending(stop) == 0
    assert len(writer.pending) == 1
    boto_logs.put_log_events.assert_not_called()


def test_take_pending_empties_the_queue(writer, make_batch):
    batch = make_batch("a")
    writer.submit(batch)

    assert writer.take_pending() == [batch]
    assert writer.pending == []


def test_take_pending_without_waiting_for_the_append_in_flight(
    writer, boto_logs, make_batch
):
    batch = make_batch("a")
    writer.submit(batch)
    in_flight = threading.Event()
    release = threading.Event()

    def put_log_events(**kwargs):
        in_flight.set()
        release.wait(timeout=5)
        return {"nextSequenceToken": "token-1"}

    boto_logs.put_log_events.side_effect = put_log_events
    delivery = threading.Thread(target=writer.deliver_pending)
    delivery.start()
    assert in_flight.wait(timeout=5)

    assert writer.take_pending(wait=False) == [batch]

    release.set()
    delivery.join(timeout=5)
    assert not delivery.is_alive()
    assert writer.pending == []
    assert writer.sequence_token == "token-1"


def test_pending_bytes_counts_queued_batches(writer, make_batch):
    first = make_batch("a")
    second = make_batch("bb", "ccc")
    writer.submit(first)
    writer.submit(second)

    assert writer.pending_bytes == first.size_bytes + second.size_bytes
