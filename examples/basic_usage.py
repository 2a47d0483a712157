"""Basic usage example for Ledger Context.

Builds a small context graph on the in-memory ledger, prints it, and drains
a work queue with chained execution.
"""

import asyncio
import logging
import os
import struct

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from ledger_context import (
    AccountContext,
    AccountKind,
    EventDecoder,
    InMemoryBackend,
    Instruction,
    LocalSigner,
    ProcessorResult,
    ProgramContext,
    RuntimeOptions,
    TransactionTemplate,
    TransactionTemplateContext,
    discriminated,
    require,
)

# Load environment variables from .env file
load_dotenv()

PROGRAM = "Queue111111111111111111111111111111111111"
QUEUE = "QueueState1111111111111111111111111111111"
PAYER = "Payer11111111111111111111111111111111111"

QUEUE_DISCRIMINATOR = b"queue\x00\x00\x00"
DRAINED_DISCRIMINATOR = b"drained\x00"


def decode_queue(body: bytes) -> dict:
    (pending,) = struct.unpack_from("<I", body)
    return {"pending": pending}


QUEUE_KIND = AccountKind(name="queue", decode=discriminated(QUEUE_DISCRIMINATOR, decode_queue))


class DrainArgs(BaseModel):
    batch_size: int = Field(gt=0)


def process(ledger: InMemoryBackend, transaction) -> ProcessorResult:
    """Ledger-side program: pop up to ``batch_size`` items from the queue."""
    (batch_size,) = struct.unpack("<I", transaction.bundle.instructions[0].data)
    account = ledger.accounts[QUEUE]
    pending = decode_queue(account.data[8:])["pending"]
    drained = min(batch_size, pending)
    ledger.update_account(QUEUE, data=QUEUE_DISCRIMINATOR + struct.pack("<I", pending - drained))
    return ProcessorResult(
        logs=(f"Program {PROGRAM} invoke [1]", f"Program {PROGRAM} success"),
        raw_events=(DRAINED_DISCRIMINATOR + struct.pack("<II", drained, pending - drained),),
    )


async def build_drain(node: TransactionTemplateContext, args: DrainArgs, overrides) -> Instruction:
    queue = require(await node.parent.queue.resolve_account(), "Queue account does not exist")
    return Instruction(
        program_address=PROGRAM,
        data=struct.pack("<I", min(args.batch_size, queue.data["pending"])),
    )


async def decide_next(node: TransactionTemplateContext, args: DrainArgs, events):
    # the queue account is re-read rather than trusting the event alone
    queue = await node.parent.queue.resolve_account()
    if queue is not None and queue.data["pending"] > 0:
        return {"args": args}
    return None


async def example_drain_queue():
    """Drain a queue one batch per transaction."""

    ledger = InMemoryBackend(processor=process)
    ledger.set_account(QUEUE, QUEUE_DISCRIMINATOR + struct.pack("<I", 7), owner=PROGRAM)

    signer = LocalSigner(PAYER)
    program = ProgramContext.connect(
        ledger,
        cluster=os.getenv("LEDGER_CLUSTER", "local"),
        program_address=PROGRAM,
        options=RuntimeOptions(signer=signer, fee_payer=PAYER),
    )
    program.add_child("queue", AccountContext(program, QUEUE, QUEUE_KIND))
    drain = program.add_child(
        "drain",
        TransactionTemplateContext(
            program,
            TransactionTemplate(
                description="Drain queued work",
                args_schema=DrainArgs,
                instructions=[build_drain],
                event_decoders={
                    "drained": EventDecoder(
                        DRAINED_DISCRIMINATOR,
                        lambda body: dict(zip(("drained", "remaining"), struct.unpack("<II", body))),
                    )
                },
                chain_decider=decide_next,
            ),
        ),
    )

    await program.resolve_account_tree()
    print(program.to_tree_string())

    result = await drain.execute_chained({"batch_size": 3})
    print(f"Finished after {result.iteration} transactions")
    print(f"Last event: {result.events.first('drained')}")
    print(f"Submissions: {len(ledger.submit_calls)}")

    queue = await program.queue.resolve_account()
    print(f"Pending items: {queue.data['pending']}")


async def main():
    """Run the example."""
    logging.basicConfig(level=logging.INFO)
    await example_drain_queue()


if __name__ == "__main__":
    asyncio.run(main())
