"""Tests for transaction template contexts."""

from __future__ import annotations

import asyncio
import struct
from typing import Any

import pytest
from pydantic import BaseModel, Field

from ledger_context.context.account import AccountContext, AccountKind
from ledger_context.exceptions import (
    ChainMisconfigurationError,
    InvalidContextError,
    SubmissionError,
    ValidationError,
    require,
)
from ledger_context.runtime.memory import LocalSigner, ProcessorResult
from ledger_context.transaction.events import EventDecoder
from ledger_context.transaction.template import (
    ExecutionHooks,
    TemplateOverrides,
    TransactionTemplate,
    TransactionTemplateContext,
)
from ledger_context.types import Blockhash, Instruction, SendOptions, TemplateState

COUNTER = AccountKind(name="counter", decode=lambda account: struct.unpack("<I", account.data)[0])
STEP_EVENT = b"stepped\x00"


class TransferArgs(BaseModel):
    amount: int = Field(gt=0)
    memo: str = ""


def _instruction(tag: str) -> Instruction:
    return Instruction(program_address="Prog", data=tag.encode())


def _tags(bundle) -> list[str]:
    return [instruction.data.decode() for instruction in bundle.instructions]


def _decrementing_processor(address: str):
    def process(ledger, transaction) -> ProcessorResult:
        remaining = struct.unpack("<I", ledger.accounts[address].data)[0] - 1
        ledger.update_account(address, data=struct.pack("<I", remaining))
        return ProcessorResult(raw_events=(STEP_EVENT + struct.pack("<I", remaining),))

    return process


@pytest.mark.asyncio
async def test_builders_keep_declaration_order(program) -> None:
    async def slow(node, args, overrides):
        await asyncio.sleep(0.03)
        return [_instruction("b2-first"), None, _instruction("b2-second")]

    async def fast(node, args, overrides):
        await asyncio.sleep(0.001)
        return _instruction("b1")

    template = TransactionTemplate(
        instructions=[fast, slow, None, lambda node, args, overrides: _instruction("b3")]
    )
    node = TransactionTemplateContext(program, template)

    bundle = await node.assemble()

    assert _tags(bundle) == ["b1", "b2-first", "b2-second", "b3"]
    assert node.state is TemplateState.BUILT


@pytest.mark.asyncio
async def test_overrides_prepend_and_append(program) -> None:
    node = TransactionTemplateContext(
        program, TransactionTemplate(instructions=[_instruction("main")])
    )

    bundle = await node.assemble(
        overrides=TemplateOverrides(
            prepend_instructions=[_instruction("budget")],
            append_instructions=[lambda node, args, overrides: _instruction("memo")],
            recent_blockhash=Blockhash("fixed", 10),
        )
    )

    assert _tags(bundle) == ["budget", "main", "memo"]
    assert bundle.recent_blockhash == Blockhash("fixed", 10)


@pytest.mark.asyncio
async def test_invalid_args_fail_before_any_remote_call(program, ledger) -> None:
    builder_calls = 0

    def builder(node, args, overrides):
        nonlocal builder_calls
        builder_calls += 1
        return _instruction("x")

    node = TransactionTemplateContext(
        program, TransactionTemplate(args_schema=TransferArgs, instructions=[builder])
    )

    with pytest.raises(ValidationError) as exc_info:
        await node.execute({"amount": 0})

    assert exc_info.value.field == "amount"
    assert builder_calls == 0
    assert ledger.blockhash_calls == 0
    assert ledger.submit_calls == []


@pytest.mark.asyncio
async def test_builder_failure_prevents_submission(program, ledger) -> None:
    gated = program.add_child("gated", AccountContext(program, lambda parent: None))

    async def builder(node, args, overrides):
        require(await gated.resolve_account(), "Gated account is not initialised")
        return _instruction("x")

    node = TransactionTemplateContext(program, TransactionTemplate(instructions=[builder]))

    with pytest.raises(InvalidContextError):
        await node.execute()

    assert ledger.submit_calls == []
    assert node.state is TemplateState.UNBUILT


@pytest.mark.asyncio
async def test_execute_returns_result_with_events(program, ledger) -> None:
    ledger.set_account("COUNT", struct.pack("<I", 3))
    ledger.processor = _decrementing_processor("COUNT")
    template = TransactionTemplate(
        args_schema=TransferArgs,
        instructions=[_instruction("step")],
        event_decoders={
            "stepped": EventDecoder(STEP_EVENT, lambda body: struct.unpack("<I", body)[0])
        },
    )
    node = TransactionTemplateContext(program, template)

    result = await node.execute({"amount": 5})

    assert result.succeeded is True
    assert result.args == TransferArgs(amount=5)
    assert result.events["stepped"] == [2]
    assert result.slot == 1
    assert result.signature == ledger.submit_calls[0].signature
    assert node.state is TemplateState.CONFIRMED_SUCCESS
    assert result.to_json()["events"] == {"stepped": [2]}


@pytest.mark.asyncio
async def test_successful_execute_invalidates_builder_reads(program, ledger) -> None:
    ledger.set_account("COUNT", struct.pack("<I", 3))
    ledger.processor = _decrementing_processor("COUNT")
    counter = program.add_child("counter", AccountContext(program, "COUNT", COUNTER))

    async def builder(node, args, overrides):
        await counter.resolve_account()
        return _instruction("step")

    node = TransactionTemplateContext(program, TransactionTemplate(instructions=[builder]))

    await node.execute()

    assert (await counter.resolve_account()).data == 2
    assert ledger.fetch_calls == ["COUNT", "COUNT"]


@pytest.mark.asyncio
async def test_chained_execution_stops_when_decider_returns_none(program, ledger) -> None:
    ledger.set_account("COUNT", struct.pack("<I", 4))
    ledger.processor = _decrementing_processor("COUNT")
    counter = program.add_child("counter", AccountContext(program, "COUNT", COUNTER))
    decisions: list[Any] = []

    async def decide(node, args, events):
        remaining = (await counter.resolve_account()).data
        decisions.append(remaining)
        return {"args": {"amount": args.amount + 1}} if remaining > 0 else None

    node = TransactionTemplateContext(
        program,
        TransactionTemplate(
            args_schema=TransferArgs,
            instructions=[_instruction("step")],
            chain_decider=decide,
        ),
    )

    result = await node.execute_chained({"amount": 1})

    assert len(ledger.submit_calls) == 4
    assert decisions == [3, 2, 1, 0]
    assert result.iteration == 4
    assert result.args == TransferArgs(amount=4)
    assert result.pending_args is None


@pytest.mark.asyncio
async def test_chained_execution_respects_iteration_limit(program, ledger, caplog) -> None:
    node = TransactionTemplateContext(
        program,
        TransactionTemplate(
            instructions=[_instruction("step")],
            chain_decider=lambda node, args, events: {"args": (args or 0) + 1},
            max_chain_iterations=2,
        ),
    )

    with caplog.at_level("WARNING"):
        result = await node.execute_chained(0)

    assert len(ledger.submit_calls) == 2
    assert result.iteration == 2
    assert result.truncated is True
    assert result.pending_args == 2
    assert "stopped after 2 iterations" in caplog.text


@pytest.mark.asyncio
async def test_single_iteration_limit_is_honoured(program, ledger) -> None:
    program.runtime.options = program.runtime.options.with_overrides(max_chain_iterations=5)
    node = TransactionTemplateContext(
        program,
        TransactionTemplate(
            instructions=[_instruction("step")],
            chain_decider=lambda node, args, events: {"args": (args or 0) + 1},
            max_chain_iterations=1,
        ),
    )

    result = await node.execute_chained(0)

    assert len(ledger.submit_calls) == 1
    assert result.pending_args == 1


def test_iteration_limit_must_be_positive() -> None:
    with pytest.raises(ValidationError) as exc_info:
        TransactionTemplate(max_chain_iterations=0)

    assert exc_info.value.field == "max_chain_iterations"


@pytest.mark.asyncio
async def test_chained_execution_requires_decider(program, ledger) -> None:
    node = TransactionTemplateContext(
        program, TransactionTemplate(instructions=[_instruction("step")])
    )

    with pytest.raises(ChainMisconfigurationError):
        await node.execute_chained()

    assert ledger.submit_calls == []


@pytest.mark.asyncio
async def test_failing_decider_is_a_misconfiguration(program, ledger) -> None:
    def decide(node, args, events):
        raise KeyError("cursor")

    node = TransactionTemplateContext(
        program,
        TransactionTemplate(instructions=[_instruction("step")], chain_decider=decide),
    )

    with pytest.raises(ChainMisconfigurationError) as exc_info:
        await node.execute_chained()

    assert isinstance(exc_info.value.__cause__, KeyError)
    assert len(ledger.submit_calls) == 1


@pytest.mark.asyncio
async def test_preflight_failure_raises_with_diagnostics(program, ledger) -> None:
    ledger.processor = lambda ledger, tx: ProcessorResult(
        logs=("Program log: insufficient funds",), error={"InstructionError": [0, 1]}
    )
    node = TransactionTemplateContext(
        program, TransactionTemplate(instructions=[_instruction("step")])
    )

    with pytest.raises(SubmissionError) as exc_info:
        await node.execute()

    assert exc_info.value.diagnostics == {"InstructionError": [0, 1]}
    assert exc_info.value.logs == ["Program log: insufficient funds"]
    assert node.state is TemplateState.CONFIRMED_FAILURE


@pytest.mark.asyncio
async def test_ledger_failure_without_raising_stops_chain(program, ledger) -> None:
    ledger.processor = lambda ledger, tx: ProcessorResult(error="custom program error: 0x1")
    decider_calls = 0

    def decide(node, args, events):
        nonlocal decider_calls
        decider_calls += 1
        return {"args": args}

    node = TransactionTemplateContext(
        program,
        TransactionTemplate(instructions=[_instruction("step")], chain_decider=decide),
    )
    options = SendOptions(skip_preflight=True, raise_on_failure=False)

    result = await node.execute_chained(send_options=options)

    assert result.succeeded is False
    assert result.error == "custom program error: 0x1"
    assert decider_calls == 0
    assert len(ledger.submit_calls) == 1
    assert node.state is TemplateState.CONFIRMED_FAILURE

    with pytest.raises(SubmissionError):
        await node.execute(send_options=SendOptions(skip_preflight=True))


@pytest.mark.asyncio
async def test_fee_payer_resolution_order(program) -> None:
    template = TransactionTemplate(instructions=[_instruction("x")], fee_payer="TemplatePayer")
    node = TransactionTemplateContext(program, template, fee_payer="NodePayer")
    bare = TransactionTemplateContext(
        program, TransactionTemplate(instructions=[_instruction("x")]), fee_payer="NodePayer"
    )

    override = TemplateOverrides(fee_payer=lambda node: "OverridePayer")
    assert (await node.assemble(overrides=override)).fee_payer == "OverridePayer"
    assert (await node.assemble()).fee_payer == "TemplatePayer"
    assert (await bare.assemble()).fee_payer == "NodePayer"
    assert (
        await TransactionTemplateContext(
            program, TransactionTemplate(instructions=[_instruction("x")])
        ).assemble()
    ).fee_payer == program.runtime.options.fee_payer


@pytest.mark.asyncio
async def test_missing_fee_payer_and_signer(ledger) -> None:
    from ledger_context.context.program import ProgramContext

    program = ProgramContext.connect(ledger, program_address="Prog")
    node = TransactionTemplateContext(
        program, TransactionTemplate(instructions=[_instruction("x")])
    )

    with pytest.raises(InvalidContextError, match="fee payer"):
        await node.assemble()
    with pytest.raises(InvalidContextError, match="signer"):
        await node.execute(overrides=TemplateOverrides(fee_payer="Payer"))
    assert ledger.submit_calls == []


@pytest.mark.asyncio
async def test_hooks_fire_in_order(program, ledger) -> None:
    events: list[str] = []

    def hooks(name: str) -> ExecutionHooks:
        return ExecutionHooks(
            on_signature=lambda node, signature, args: events.append(f"{name}:signature"),
            on_result=lambda node, result, args: events.append(f"{name}:result"),
            on_error=lambda node, error, args: events.append(f"{name}:error"),
        )

    program.runtime.options = program.runtime.options.with_overrides(hooks=hooks("runtime"))
    node = TransactionTemplateContext(
        program,
        TransactionTemplate(instructions=[_instruction("x")], hooks=hooks("template")),
    )

    await node.execute(overrides=TemplateOverrides(hooks=hooks("call")))
    assert events == [
        "template:signature",
        "call:signature",
        "runtime:signature",
        "template:result",
        "call:result",
        "runtime:result",
    ]

    events.clear()
    ledger.processor = lambda ledger, tx: ProcessorResult(error="boom")
    with pytest.raises(SubmissionError):
        await node.execute()
    assert events == ["template:signature", "runtime:signature", "template:error", "runtime:error"]


@pytest.mark.asyncio
async def test_simulate_does_not_submit(program, ledger) -> None:
    ledger.processor = lambda ledger, tx: ProcessorResult(logs=("ok",), units_consumed=1200)
    node = TransactionTemplateContext(
        program, TransactionTemplate(instructions=[_instruction("x")])
    )

    simulation = await node.simulate()

    assert simulation.succeeded is True
    assert simulation.units_consumed == 1200
    assert ledger.submit_calls == []
    assert len(ledger.simulate_calls) == 1


@pytest.mark.asyncio
async def test_lookup_tables_are_resolved(ledger) -> None:
    from ledger_context.context.program import ProgramContext

    ledger.set_account("ALT", b"A1,A2")
    program = ProgramContext.connect(
        ledger,
        program_address="Prog",
        lookup_table_decoder=lambda account: account.data.decode().split(","),
    )
    node = TransactionTemplateContext(
        program,
        TransactionTemplate(
            instructions=[_instruction("x")],
            lookup_tables=["ALT", lambda node: None],
            fee_payer="Payer",
        ),
    )

    bundle = await node.assemble()

    assert bundle.lookup_tables == {"ALT": ("A1", "A2")}
    assert ledger.fetch_calls == ["ALT"]
    assert ledger.batch_fetch_calls == []


@pytest.mark.asyncio
async def test_signer_override_is_used(program, ledger) -> None:
    other = LocalSigner("Other")
    node = TransactionTemplateContext(
        program, TransactionTemplate(instructions=[_instruction("x")])
    )

    signatures: list[str] = []
    await node.execute(
        overrides=TemplateOverrides(
            signer=other,
            hooks=ExecutionHooks(on_signature=lambda node, sig, args: signatures.append(sig)),
        )
    )

    assert ledger.submit_calls[0].signature == signatures[0]


def test_description_marks_chained_templates(program) -> None:
    node = TransactionTemplateContext(
        program,
        TransactionTemplate(
            description="Drain queue",
            args_schema=TransferArgs,
            event_decoders={"stepped": EventDecoder(STEP_EVENT, bytes)},
            chain_decider=lambda node, args, events: None,
        ),
    )

    desc = node.describe()

    assert desc.label == "TransactionTemplate (chained)"
    assert desc.mutable is True
    assert desc.properties["args"] == "amount,memo"
    assert desc.properties["events"] == "stepped"
