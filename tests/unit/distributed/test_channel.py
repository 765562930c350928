import pytest

from varflow.distributed.channel import (END, Channel, ChannelClosedError, ChannelError,
                                         SampleTuple, tee)


def test_every_subscriber_sees_every_tuple():
    channel = Channel("reads")
    first, second = tee(channel, 2)
    channel.send(("A", {"fastq1": "a1"}))
    channel.send(SampleTuple("B", {"fastq1": "b1"}))
    channel.close()
    assert [x.key for x in first] == ["A", "B"]
    assert [x.key for x in second] == ["A", "B"]


def test_end_of_stream_is_distinct_from_tuples():
    channel = Channel("reads")
    sub = channel.subscribe()
    channel.send(("A", {}))
    channel.close()
    assert sub.get() == SampleTuple("A", {})
    assert sub.get() is END


def test_empty_channel_closes():
    channel = Channel("reads")
    sub = channel.subscribe()
    channel.close()
    assert list(sub) == []
    assert channel.closed


def test_send_after_close_fails_fast():
    channel = Channel("reads")
    channel.close()
    with pytest.raises(ChannelClosedError):
        channel.send(("A", {}))


def test_close_is_idempotent():
    channel = Channel("reads")
    sub = channel.subscribe()
    channel.close()
    channel.close()
    assert sub.get() is END


def test_subscribe_after_send_is_rejected():
    channel = Channel("reads")
    channel.subscribe()
    channel.send(("A", {}))
    with pytest.raises(ChannelError):
        channel.subscribe()


def test_tee_copies_payloads():
    channel = Channel("align")
    first, second = tee(channel, 2)
    artifacts = {"bam": "a.bam"}
    channel.send(("A", artifacts))
    channel.close()
    a = first.get()
    a.artifacts["bam"] = "changed.bam"
    artifacts["bam"] = "sender.bam"
    assert second.get().artifacts == {"bam": "a.bam"}
    assert channel.sent == 1
