import asyncio
import logging
import time
from typing import Optional

from errors import BotError
from evaluator import ArbitragePolicy, decide
from models import CycleOutcome, NoAction, Receipt, SubmissionContext, SubmissionFailure

logger = logging.getLogger("Scheduler")

LOOP_DELAY = 5.0
LOOPS_UNTIL_UPDATE_ASSETS = 1000


class ScanAndAct:
    """One pass for one block: read the pinned snapshot, decide, submit.

    Returns a CycleOutcome instead of raising for the failures the lower
    layers know how to classify.
    """

    def __init__(self, rpc, reader, registry, submitter, context: SubmissionContext,
                 policy: Optional[ArbitragePolicy] = None, ledger=None, alerter=None):
        self.rpc = rpc
        self.reader = reader
        self.registry = registry
        self.submitter = submitter
        self.context = context
        self.policy = policy or ArbitragePolicy()
        self.ledger = ledger
        self.alerter = alerter

    async def __call__(self, block_number) -> CycleOutcome:
        return await self.scan_and_act(block_number)

    async def scan_and_act(self, block_number) -> CycleOutcome:
        start_time = time.time()
        outcome = CycleOutcome(block_number=block_number)
        try:
            scan = await self.reader.scan(block_number)
            outcome.scan = scan
            await self._record_metric(scan, (time.time() - start_time) * 1000)

            action = decide(scan, self.registry.assets, self.policy)
            outcome.action = action
            if isinstance(action, NoAction):
                return outcome

            logger.info(f"🎯 Block {block_number}: {action}")

            # A newer block makes this snapshot stale; the next cycle will rescan
            current = await self.rpc.block_number()
            if current > block_number:
                logger.info(f"⌛ Block {current} arrived before submitting for {block_number}; dropping decision")
                outcome.stale = True
                return outcome

            try:
                outcome.result = await self.submitter.submit(action, self.context, block_number)
            except BotError as e:
                outcome.error = e
            await self._report(outcome)
        except BotError as e:
            outcome.error = e
        return outcome

    async def _record_metric(self, scan, elapsed_ms):
        if self.ledger is None:
            return
        accounts = len(getattr(self.reader.borrowers, "borrowers", ()))
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(
            None, self.ledger.log_system_metric,
            scan.block_number, accounts, len(scan.liquidatable), len(scan.purchasable), elapsed_ms
        )

    async def _report(self, outcome: CycleOutcome):
        action, result = outcome.action, outcome.result
        account = getattr(action, "account", None)
        asset = getattr(action, "asset", None) or ",".join(getattr(action, "seized_assets", ()))

        if outcome.error is not None:
            # The scheduler alerts on cycle errors itself
            status, detail = "error", str(outcome.error)
            msg, is_error = None, True
        elif isinstance(result, Receipt):
            status, detail = "confirmed", f"gas {result.gas_used}"
            msg = (f"🟢 <b>{action.kind.title()} SUCCESS</b>\n"
                   f"🧱 Block {result.block_number}\n🔗 <code>{result.tx_hash}</code>")
            is_error = False
        elif isinstance(result, SubmissionFailure) and result.opportunity_lost:
            status, detail = "not_included", result.reason
            logger.info(f"🕳️ Opportunity lost at block {outcome.block_number}: {result.reason}")
            msg, is_error = None, False
        else:
            status, detail = "failed", getattr(result, "reason", "")
            msg = f"⚠️ <b>{action.kind.title()} failed</b> at block {outcome.block_number}:\n<code>{detail}</code>"
            is_error = True

        if self.ledger is not None:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(
                None, self.ledger.record_execution,
                outcome.block_number, action.kind, account, asset,
                getattr(result, "tx_hash", None), status, detail,
            )
        if self.alerter is not None and msg:
            await self.alerter.send_async(msg, is_error=is_error)


class PollScheduler:
    """
    Top-level control loop.
    - Refreshes the asset registry when empty or every `loops_until_update_assets` cycles.
    - Runs the scan-and-act pipeline once per new block height, never twice for the same one.
    - Sleeps `loop_delay` when the block has not moved or a cycle failed.
    """

    def __init__(self, rpc, registry, pipeline, loop_delay=LOOP_DELAY,
                 loops_until_update_assets=LOOPS_UNTIL_UPDATE_ASSETS,
                 last_block: Optional[int] = None, loops: int = 0, alerter=None):
        self.rpc = rpc
        self.registry = registry
        self.pipeline = pipeline
        self.loop_delay = loop_delay
        self.loops_until_update_assets = loops_until_update_assets
        self.last_block = last_block
        self.loops = loops
        self.alerter = alerter

    async def maybe_refresh_assets(self):
        if self.registry.populated and self.loops < self.loops_until_update_assets:
            return False
        logger.info("📚 Updating assets")
        await self.registry.refresh()
        if self.registry.last_error is None:
            self.loops = 0
        return True

    async def run_cycle(self) -> Optional[CycleOutcome]:
        """One iteration. Returns the pipeline outcome, or None when nothing new was processed."""
        await self.maybe_refresh_assets()
        self.loops += 1

        try:
            current_block = await self.rpc.block_number()
        except Exception as e:
            logger.error(f"⚠️ Failed to read block number: {e}")
            await self._after_error(e)
            return None

        logger.info(f"🧱 currentBlockNumber: {current_block} [checked={self.last_block}]")

        if self.last_block is not None and current_block <= self.last_block:
            if current_block < self.last_block:
                logger.warning(f"⏪ Node reports block {current_block}, behind checked block {self.last_block}")
            logger.info(f"💤 block already checked; waiting {self.loop_delay * 1000:.0f}ms")
            await asyncio.sleep(self.loop_delay)
            return None

        logger.info(f"🚀 New block detected: {current_block}")
        # Recorded before acting so a failing height is never re-run
        self.last_block = current_block
        try:
            outcome = await self.pipeline(current_block)
        except Exception as e:
            logger.exception(f"💥 Unexpected error in scan-and-act at block {current_block}")
            outcome = CycleOutcome(block_number=current_block, error=e)

        if outcome.error is not None:
            logger.error(f"⚠️ Cycle failed at block {current_block}: {outcome.error}")
            await self._after_error(outcome.error)
        return outcome

    async def _after_error(self, error):
        cause = error.__cause__ or error
        try:
            await self.rpc.handle_error(cause)
        except Exception as e:
            logger.error(f"⚠️ RPC recovery failed: {e}")
        if self.alerter is not None:
            await self.alerter.send_async(f"⚠️ <b>Cycle error:</b> <code>{error}</code>", is_error=True)
        await asyncio.sleep(self.loop_delay)

    async def run_forever(self, max_cycles: Optional[int] = None):
        cycles = 0
        while max_cycles is None or cycles < max_cycles:
            await self.run_cycle()
            cycles += 1
