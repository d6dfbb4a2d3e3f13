import httpx
import pytest

from acceptance.core.errors import PollTimeout, TransportError
from acceptance.jobs import Build
from acceptance.poller import NO_VALID_ONLINE_NODE_TEXT, classify_pending_text
from acceptance.runtime.models import BuildState, PendingReason

OFFLINE_WHY = "slave42 is offline"
NO_VALID_WHY = NO_VALID_ONLINE_NODE_TEXT.format(node="slave42")


class TestPollLoop:
    @pytest.mark.asyncio
    async def test_returns_first_satisfying_sample_without_sleeping(self, poller, clock):
        result = await poller.poll(self._const(7), lambda v: v == 7, timeout=5)
        assert result.satisfied and result.value == 7 and result.samples == 1
        assert clock.sleeps == []

    @pytest.mark.asyncio
    async def test_exhausted_budget_returns_last_sample(self, poller, clock):
        result = await poller.poll(self._const(0), lambda v: v > 0, timeout=3)
        assert not result.satisfied
        assert result.value == 0
        assert result.samples == 4
        assert clock.sleeps == [1, 1, 1]

    @pytest.mark.asyncio
    async def test_last_sleep_is_capped_by_deadline(self, poller, clock):
        await poller.poll(self._const(0), lambda v: False, timeout=2.5)
        assert clock.sleeps == [1, 1, 0.5]

    @pytest.mark.asyncio
    async def test_every_sample_is_fresh(self, poller, clock):
        values = iter([1, 2, 3, 4])

        async def sample():
            return next(values)

        result = await poller.poll(sample, lambda v: v == 3, timeout=10)
        assert result.value == 3 and result.samples == 3

    @pytest.mark.asyncio
    async def test_transport_errors_propagate(self, poller, clock):
        async def sample():
            raise TransportError("down")

        with pytest.raises(TransportError):
            await poller.poll(sample, lambda v: True, timeout=10)
        assert clock.sleeps == []

    @staticmethod
    def _const(value):
        async def sample():
            return value
        return sample


class TestObserve:
    @pytest.mark.asyncio
    async def test_queue_reason_maps_to_pending(self, poller, job, fake):
        item = fake.enqueue("demo", why=OFFLINE_WHY)
        build = Build(job, 1, queue_id=item)
        assert await poller.observe(build) is BuildState.PENDING
        fake.queue[item]["why"] = "Waiting for next available executor"
        assert await poller.observe(build) is BuildState.QUEUED

    @pytest.mark.asyncio
    async def test_terminal_state_is_not_resampled(self, poller, job, fake):
        build = Build(job, 1, state=BuildState.FAILURE)
        count = len(fake.requests)
        assert await poller.observe(build) is BuildState.FAILURE
        assert len(fake.requests) == count

    @pytest.mark.asyncio
    async def test_builds_pending_together_get_their_real_numbers(self, poller, job, fake):
        first = await job.schedule_build({"slavename": "slave42"})
        second = await job.schedule_build({"slavename": "slave42"})
        assert first.number == second.number == 1
        fake.start("demo", 1, node="slave42", item_id=second.queue_id)
        fake.start("demo", 2, node="slave42", item_id=first.queue_id)
        await poller.observe(first)
        await poller.observe(second)
        assert (first.number, second.number) == (2, 1)
        assert first.number_confirmed and second.number_confirmed

    @pytest.mark.asyncio
    async def test_purged_queue_item_falls_back_to_build_json(self, poller, job, fake):
        build = Build(job, 1, queue_id=999)
        fake.start("demo", 1, node="built-in")
        assert await poller.observe(build) is BuildState.STARTED
        assert build.node == "built-in"

    @pytest.mark.asyncio
    async def test_queue_item_without_id_is_a_transport_error(self, poller, job, fake):
        fake.answer("/queue/item/5/api/json", {"why": "x"})
        with pytest.raises(TransportError):
            await poller.observe(Build(job, 1, queue_id=5))

    @pytest.mark.asyncio
    async def test_build_json_without_number_is_a_transport_error(self, poller, job, fake):
        fake.answer("/job/demo/1/api/json", {"building": False, "result": "SUCCESS"})
        build = Build(job, 1)
        with pytest.raises(TransportError):
            await poller.observe(build)
        assert build.state is BuildState.QUEUED


class TestWaitUntilFinished:
    @pytest.mark.asyncio
    async def test_returns_terminal_state(self, poller, job, fake, clock):
        fake.start("demo", 1, node="slave42")
        clock.at(4, lambda: fake.finish("demo", 1, "UNSTABLE"))
        state = await poller.wait_until_finished(job.build(1))
        assert state is BuildState.UNSTABLE
        assert clock.now == 4

    @pytest.mark.asyncio
    async def test_raises_poll_timeout(self, poller, job, fake):
        fake.start("demo", 1, node="slave42")
        with pytest.raises(PollTimeout) as exc_info:
            await poller.wait_until_finished(job.build(1), timeout=2)
        assert exc_info.value.last_value is BuildState.STARTED

    @pytest.mark.asyncio
    async def test_wait_until_queued(self, poller, job, fake):
        build = await job.schedule_build({"slavename": "slave42"})
        snapshot = await poller.wait_until_queued(build)
        assert snapshot.id == build.queue_id and not snapshot.left_queue


class TestPendingText:
    def test_offline_node(self):
        text = "#2 (pending) slave42 is offline"
        assert classify_pending_text(text, "slave42") is PendingReason.NO_ONLINE_NODE

    def test_no_valid_online_node_needs_pending_marker_on_page(self):
        text = f"#2 (pending) {NO_VALID_WHY}"
        assert classify_pending_text(text, "slave42") is PendingReason.NO_VALID_ONLINE_NODE
        assert classify_pending_text(NO_VALID_WHY, "slave42") is PendingReason.UNKNOWN
        assert classify_pending_text(NO_VALID_WHY, "slave42", require_marker=False) \
            is PendingReason.NO_VALID_ONLINE_NODE

    def test_no_valid_online_node_wins_over_offline(self):
        text = f"pending: {NO_VALID_WHY}; slave42 is offline"
        assert classify_pending_text(text, "slave42") is PendingReason.NO_VALID_ONLINE_NODE

    def test_other_node_is_unknown(self):
        assert classify_pending_text("pending slave7 is offline", "slave42") is PendingReason.UNKNOWN


class TestClassifyPending:
    @pytest.mark.asyncio
    async def test_offline_reason_from_queue(self, poller, job, fake):
        build = await job.schedule_build({"slavename": "slave42"})
        fake.queue[build.queue_id]["why"] = OFFLINE_WHY
        verdict = await poller.classify_pending(build, "slave42")
        assert verdict.reason is PendingReason.NO_ONLINE_NODE
        assert verdict.is_pending and verdict.text == OFFLINE_WHY

    @pytest.mark.asyncio
    async def test_no_valid_reason_from_queue(self, poller, job, fake):
        build = await job.schedule_build({"slavename": "slave42"})
        fake.queue[build.queue_id]["why"] = NO_VALID_WHY
        verdict = await poller.classify_pending(build, "slave42")
        assert verdict.reason is PendingReason.NO_VALID_ONLINE_NODE

    @pytest.mark.asyncio
    async def test_reason_settles_after_queue_maintenance(self, poller, job, fake, clock):
        build = await job.schedule_build({"slavename": "slave42"})
        clock.at(3, lambda: fake.queue[build.queue_id].update(why=OFFLINE_WHY))
        verdict = await poller.classify_pending(build, "slave42")
        assert verdict.reason is PendingReason.NO_ONLINE_NODE
        assert clock.now == 3

    @pytest.mark.asyncio
    async def test_page_text_source(self, poller, job, fake):
        build = await job.schedule_build({"slavename": "slave42"})
        texts = iter(["", "#1 (pending) slave42 is offline"])

        async def page_text():
            return next(texts)

        verdict = await poller.classify_pending(build, "slave42", text_source=page_text)
        assert verdict.reason is PendingReason.NO_ONLINE_NODE

    @pytest.mark.asyncio
    async def test_started_build_is_not_pending(self, poller, job, fake):
        fake.auto_start = "slave42"
        build = await job.schedule_build({"slavename": "slave42"})
        verdict = await poller.classify_pending(build, "slave42")
        assert verdict.started and not verdict.is_pending

    @pytest.mark.asyncio
    async def test_unknown_after_budget(self, poller, job, fake, clock):
        build = await job.schedule_build({"slavename": "slave42"})
        verdict = await poller.classify_pending(build, "slave42", timeout=2)
        assert verdict.reason is PendingReason.UNKNOWN and not verdict.started
        assert clock.now == 2

    @pytest.mark.asyncio
    async def test_queue_reason_without_queue_id_scans_queue(self, poller, job, fake):
        fake.enqueue("other", why="elsewhere")
        fake.enqueue("demo", why=OFFLINE_WHY)
        assert await poller.queue_reason(Build(job, 1)) == OFFLINE_WHY


class TestHasBuiltOn:
    @pytest.mark.asyncio
    async def test_completed_builds_only(self, poller, job, fake):
        fake.start("demo", 1, node="slave1")
        fake.finish("demo", 1)
        fake.start("demo", 2, node="slave2")
        assert await poller.completed_nodes(job) == {"slave1"}
        assert await poller.has_built_on(job, "slave1")
        assert not await poller.has_built_on(job, "slave2", budget=1)

    @pytest.mark.asyncio
    async def test_built_in_node_name(self, poller, job, fake):
        fake.start("demo", 1, node="built-in")
        fake.finish("demo", 1, "FAILURE")
        assert await poller.has_built_on(job, "built-in")

    @pytest.mark.asyncio
    async def test_rereads_history_within_budget(self, poller, job, fake, clock):
        fake.start("demo", 1, node="slave1")
        clock.at(2, lambda: fake.finish("demo", 1))
        assert await poller.has_built_on(job, "slave1")
        assert clock.now == 2

    @pytest.mark.asyncio
    async def test_false_after_budget(self, poller, job, fake, clock, settings):
        assert not await poller.has_built_on(job, "slave1")
        assert clock.now == settings.history_retry_budget_seconds

    @pytest.mark.asyncio
    async def test_one_of(self, poller, job, fake):
        fake.start("demo", 1, node="slave2")
        fake.finish("demo", 1)
        assert await poller.has_built_on_one_of(job, ["slave1", "slave2"]) == "slave2"
        assert await poller.has_built_on_one_of(job, ["slave3"], budget=1) is None

    @pytest.mark.asyncio
    async def test_history_transport_error_propagates(self, poller, job, fake):
        fake.fail("/job/demo/api/json", httpx.ReadTimeout("slow"))
        with pytest.raises(TransportError):
            await poller.has_built_on(job, "slave1")
