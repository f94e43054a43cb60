"""CandidateBuffer 테스트."""

from modules.webrtc import CandidateBuffer


async def test_drain_applies_in_arrival_order_once():
    buffer = CandidateBuffer()
    for i in range(3):
        buffer.append({"candidate": f"c{i}"})

    applied = []

    async def apply(candidate):
        applied.append(candidate["candidate"])

    assert await buffer.drain(apply) == 3
    assert applied == ["c0", "c1", "c2"]
    assert len(buffer) == 0
    assert not buffer

    # 두 번째 drain은 아무것도 재생하지 않음
    assert await buffer.drain(apply) == 0
    assert applied == ["c0", "c1", "c2"]


async def test_failed_candidate_does_not_block_the_rest():
    buffer = CandidateBuffer()
    buffer.append({"candidate": "good-1"})
    buffer.append({"candidate": "bad"})
    buffer.append({"candidate": "good-2"})

    applied = []

    async def apply(candidate):
        if candidate["candidate"] == "bad":
            raise ValueError("unparseable candidate")
        applied.append(candidate["candidate"])

    assert await buffer.drain(apply) == 3
    assert applied == ["good-1", "good-2"]
    assert len(buffer) == 0
