"""Transaction templates: assemble, simulate, execute and chain instruction bundles."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Union

import pydantic

from ..context.node import ContextNode, track_reads
from ..exceptions import (
    ChainMisconfigurationError,
    InvalidContextError,
    SubmissionError,
    ValidationError,
)
from ..types import (
    Address,
    Blockhash,
    ContextDescription,
    Instruction,
    InstructionBundle,
    SendOptions,
    Signature,
    SimulationResult,
    SubmissionReceipt,
    TemplateState,
)
from ..utils import maybe_await
from .events import EventDecoder, ExecutedEvents, decode_events, extract_raw_events
from .result import ExecutionResult

if TYPE_CHECKING:  # pragma: no cover - typing helper
    from ..runtime.base import Signer

logger = logging.getLogger(__name__)

InstructionOutput = Union[Instruction, Sequence[Union[Instruction, None]], None]
InstructionBuilder = Callable[
    ["TransactionTemplateContext", Any, "TemplateOverrides"],
    Union[InstructionOutput, Awaitable[InstructionOutput]],
]
InstructionEntry = Union[Instruction, InstructionBuilder, None]
AddressSource = Union[
    Address,
    Callable[["TransactionTemplateContext"], Union[Address, None, Awaitable[Union[Address, None]]]],
    None,
]
ChainDecider = Callable[
    ["TransactionTemplateContext", Any, ExecutedEvents],
    Union[Mapping[str, Any], None, Awaitable[Union[Mapping[str, Any], None]]],
]


class ChainState(Enum):
    """Steps of the chained execution loop."""

    READY = "ready"
    SUBMITTED = "submitted"
    DONE = "done"


@dataclass(frozen=True)
class ExecutionHooks:
    """Callbacks observing the execution pipeline.

    ``on_signature(node, signature, args)`` fires after signing and before the
    bundle is sent. ``on_result(node, result, args)`` fires for every confirmed
    execution, including ones that failed on the ledger. ``on_error(node,
    error, args)`` fires when the pipeline itself raises.
    """

    on_signature: Callable[[TransactionTemplateContext, Signature, Any], Any] | None = None
    on_error: Callable[[TransactionTemplateContext, Exception, Any], Any] | None = None
    on_result: Callable[[TransactionTemplateContext, ExecutionResult, Any], Any] | None = None


@dataclass(frozen=True)
class TransactionTemplate:
    """Reusable recipe for one parameterised transaction."""

    description: str | None = None
    args_schema: type[pydantic.BaseModel] | None = None
    instructions: Sequence[InstructionEntry] = ()
    lookup_tables: Sequence[AddressSource] = ()
    fee_payer: AddressSource = None
    signer: Signer | None = None
    event_decoders: Mapping[str, EventDecoder] = field(default_factory=dict)
    chain_decider: ChainDecider | None = None
    hooks: ExecutionHooks | None = None
    max_chain_iterations: int | None = None

    def __post_init__(self) -> None:
        if self.max_chain_iterations is not None and self.max_chain_iterations < 1:
            raise ValidationError(
                "Chained execution needs at least one iteration",
                field="max_chain_iterations",
                value=self.max_chain_iterations,
            )


@dataclass(frozen=True)
class TemplateOverrides:
    """Per-call adjustments applied on top of a template."""

    fee_payer: AddressSource = None
    signer: Signer | None = None
    lookup_tables: Sequence[AddressSource] = ()
    prepend_instructions: Sequence[InstructionEntry] = ()
    append_instructions: Sequence[InstructionEntry] = ()
    hooks: ExecutionHooks | None = None
    recent_blockhash: Blockhash | None = None
    fetch_recent_blockhash: bool = True


class TransactionTemplateContext(ContextNode):
    """Context node that builds and submits a templated transaction.

    Assembly validates the arguments, then runs every instruction builder
    concurrently while keeping their outputs in declaration order. Execution
    signs, submits and decodes events; once it succeeds the cached reads the
    builders depended on are invalidated so the next assembly sees fresh
    state. Chained execution repeats this while the template's decider keeps
    returning new arguments.
    """

    def __init__(
        self,
        parent: ContextNode | None,
        template: TransactionTemplate,
        *,
        fee_payer: AddressSource = None,
        label: str | None = None,
    ) -> None:
        super().__init__(parent, None, label=label)
        self.template = template
        self.default_fee_payer = fee_payer
        self.state = TemplateState.UNBUILT
        self.last_bundle: InstructionBundle | None = None

    # ------------------------------------------------------------------
    # Arguments
    # ------------------------------------------------------------------
    def parse_args(self, args: Any) -> Any:
        """Validate ``args`` against the template schema."""
        schema = self.template.args_schema
        if schema is None or isinstance(args, schema):
            return args
        try:
            return schema.model_validate(args if args is not None else {})
        except pydantic.ValidationError as exc:
            errors = exc.errors(include_url=False)
            first = errors[0] if errors else {}
            field_name = ".".join(str(part) for part in first.get("loc", ())) or None
            raise ValidationError(
                f"Invalid arguments for {self.label}: {first.get('msg', exc)}",
                field=field_name,
                value=args,
                details={"errors": errors},
            ) from exc

    # ------------------------------------------------------------------
    # Assembly
    # ------------------------------------------------------------------
    async def assemble(
        self, args: Any = None, overrides: TemplateOverrides | None = None
    ) -> InstructionBundle:
        parsed = self.parse_args(args)
        bundle, _ = await self._assemble(parsed, overrides or TemplateOverrides())
        return bundle

    async def _assemble(
        self, parsed: Any, overrides: TemplateOverrides
    ) -> tuple[InstructionBundle, list[ContextNode]]:
        entries = [
            *overrides.prepend_instructions,
            *self.template.instructions,
            *overrides.append_instructions,
        ]
        with track_reads() as dependencies:
            outputs, lookup_tables, fee_payer, blockhash = await asyncio.gather(
                asyncio.gather(*(self._build(entry, parsed, overrides) for entry in entries)),
                self._resolve_lookup_tables(overrides),
                self._resolve_fee_payer(overrides),
                self._resolve_blockhash(overrides),
            )

        instructions = tuple(instruction for output in outputs for instruction in output)
        if not instructions:
            raise InvalidContextError(
                "Assembled transaction has no instructions", node=self.label
            )

        bundle = InstructionBundle(
            instructions=instructions,
            fee_payer=fee_payer,
            lookup_tables=lookup_tables,
            recent_blockhash=blockhash,
            args=parsed,
            description=self.template.description,
        )
        self.last_bundle = bundle
        self.state = TemplateState.BUILT
        logger.debug(
            "Assembled %s: %d instructions, %d lookup tables, fee payer %s",
            self.label,
            len(instructions),
            len(lookup_tables),
            fee_payer,
        )
        return bundle, list(dependencies)

    async def _build(
        self, entry: InstructionEntry, parsed: Any, overrides: TemplateOverrides
    ) -> list[Instruction]:
        if entry is None:
            return []
        if isinstance(entry, Instruction):
            return [entry]
        output = await maybe_await(entry(self, parsed, overrides))
        if output is None:
            return []
        if isinstance(output, Instruction):
            return [output]
        if isinstance(output, Sequence):
            return [instruction for instruction in output if instruction is not None]
        raise TypeError(
            f"Instruction builder of {self.label} returned {type(output).__name__}"
        )

    async def _resolve_source(self, source: AddressSource) -> Address | None:
        if source is None:
            return None
        if callable(source):
            value = await maybe_await(source(self))
            return str(value) if value else None
        return source

    async def _resolve_lookup_tables(
        self, overrides: TemplateOverrides
    ) -> dict[Address, tuple[Address, ...]]:
        sources = [*self.template.lookup_tables, *overrides.lookup_tables]
        if not sources:
            return {}
        resolved = await asyncio.gather(*(self._resolve_source(source) for source in sources))
        addresses = list(dict.fromkeys(address for address in resolved if address))
        return await self.runtime.fetch_address_lookup_tables(addresses)

    async def _resolve_fee_payer(self, overrides: TemplateOverrides) -> Address:
        for source in (overrides.fee_payer, self.template.fee_payer, self.default_fee_payer):
            address = await self._resolve_source(source)
            if address:
                return address
        if self.runtime.options.fee_payer:
            return self.runtime.options.fee_payer
        raise InvalidContextError("No fee payer is configured", node=self.label)

    async def _resolve_blockhash(self, overrides: TemplateOverrides) -> Blockhash | None:
        if overrides.recent_blockhash is not None:
            return overrides.recent_blockhash
        if not overrides.fetch_recent_blockhash:
            return None
        return await self.runtime.fetch_latest_blockhash()

    def _resolve_signer(self, overrides: TemplateOverrides) -> Signer:
        signer = overrides.signer or self.template.signer or self.runtime.options.signer
        if signer is None:
            raise InvalidContextError("No signer is configured", node=self.label)
        return signer

    # ------------------------------------------------------------------
    # Simulation and execution
    # ------------------------------------------------------------------
    async def simulate(
        self, args: Any = None, overrides: TemplateOverrides | None = None
    ) -> SimulationResult:
        overrides = overrides or TemplateOverrides()
        parsed = self.parse_args(args)
        bundle, _ = await self._assemble(parsed, overrides)
        signed = await self._resolve_signer(overrides).sign(bundle)
        return await self.runtime.simulate(signed)

    async def execute(
        self,
        args: Any = None,
        overrides: TemplateOverrides | None = None,
        send_options: SendOptions | None = None,
    ) -> ExecutionResult:
        """Assemble, sign, submit and confirm one transaction."""
        return await self._execute(args, overrides or TemplateOverrides(), send_options, 1)

    async def _execute(
        self,
        args: Any,
        overrides: TemplateOverrides,
        send_options: SendOptions | None,
        iteration: int,
        decider_reads: Sequence[ContextNode] = (),
    ) -> ExecutionResult:
        send_options = send_options or SendOptions()
        hooks = self._hooks(overrides)
        parsed = None
        try:
            parsed = self.parse_args(args)
            bundle, dependencies = await self._assemble(parsed, overrides)
            signed = await self._resolve_signer(overrides).sign(bundle)
            await self._fire(hooks, "on_signature", signed.signature, parsed)

            self.state = TemplateState.EXECUTED
            receipt = await self.runtime.submit(signed, send_options)
            result = self._to_result(parsed, receipt, iteration)
            if result.succeeded:
                self.state = TemplateState.CONFIRMED_SUCCESS
                self._invalidate([*dependencies, *decider_reads])
            else:
                self.state = TemplateState.CONFIRMED_FAILURE
            await self._fire(hooks, "on_result", result, parsed)
        except Exception as exc:
            if self.state is TemplateState.EXECUTED:
                self.state = TemplateState.CONFIRMED_FAILURE
            await self._fire(hooks, "on_error", exc, parsed)
            raise

        if not result.succeeded and send_options.raise_on_failure:
            raise SubmissionError(
                f"{self.label} failed on ledger",
                signature=result.signature,
                diagnostics=result.error,
                logs=list(result.logs),
            )
        return result

    def _to_result(
        self, parsed: Any, receipt: SubmissionReceipt, iteration: int
    ) -> ExecutionResult:
        raw_events = list(receipt.raw_events) or extract_raw_events(receipt.logs)
        return ExecutionResult(
            args=parsed,
            events=decode_events(raw_events, self.template.event_decoders),
            succeeded=receipt.succeeded,
            signature=receipt.signature,
            slot=receipt.slot,
            logs=tuple(receipt.logs),
            error=receipt.error,
            iteration=iteration,
        )

    def _invalidate(self, dependencies: Sequence[ContextNode]) -> None:
        runtime = self.runtime
        dependencies = list({id(node): node for node in dependencies}.values())
        for node in dependencies:
            node.invalidate()
            if node.address is not None:
                runtime.invalidate_account(node.address)
        if dependencies:
            logger.debug("Invalidated %d cached nodes after %s", len(dependencies), self.label)

    def _hooks(self, overrides: TemplateOverrides) -> list[ExecutionHooks]:
        candidates = (self.template.hooks, overrides.hooks, self.runtime.options.hooks)
        return [hooks for hooks in candidates if hooks is not None]

    async def _fire(self, hooks: Sequence[ExecutionHooks], name: str, *payload: Any) -> None:
        for entry in hooks:
            callback = getattr(entry, name)
            if callback is not None:
                await maybe_await(callback(self, *payload))

    # ------------------------------------------------------------------
    # Chained execution
    # ------------------------------------------------------------------
    async def execute_chained(
        self,
        args: Any = None,
        overrides: TemplateOverrides | None = None,
        send_options: SendOptions | None = None,
        chain_interval_seconds: float | None = None,
    ) -> ExecutionResult:
        """Execute repeatedly while the chain decider returns further arguments.

        Submissions are strictly sequential. The loop ends when the decider
        returns None, when a step fails on the ledger without raising, or when
        the iteration limit is hit; in the last case the returned result
        carries the undelivered arguments in ``pending_args``.
        """
        decider = self.template.chain_decider
        if decider is None:
            raise ChainMisconfigurationError(
                f"{self.label} has no chain decider",
                details={"description": self.template.description},
            )

        overrides = overrides or TemplateOverrides()
        options = self.runtime.options
        limit = (
            self.template.max_chain_iterations
            if self.template.max_chain_iterations is not None
            else options.max_chain_iterations
        )
        interval = (
            chain_interval_seconds
            if chain_interval_seconds is not None
            else options.chain_interval_seconds
        )

        state = ChainState.READY
        next_args = args
        result: ExecutionResult | None = None
        decider_reads: list[ContextNode] = []
        iteration = 0
        while state is not ChainState.DONE:
            if state is ChainState.READY:
                if result is not None and iteration >= limit:
                    logger.warning(
                        "Chained execution of %s stopped after %d iterations with work pending",
                        self.label,
                        iteration,
                    )
                    return result.with_pending_args(next_args)
                if result is not None and interval > 0:
                    await asyncio.sleep(interval)
                iteration += 1
                result = await self._execute(
                    next_args, overrides, send_options, iteration, decider_reads
                )
                logger.info(
                    "Chained step %d of %s: signature=%s succeeded=%s",
                    iteration,
                    self.label,
                    result.signature,
                    result.succeeded,
                )
                state = ChainState.SUBMITTED
            elif state is ChainState.SUBMITTED:
                assert result is not None, "Chain step submitted without a result"
                if not result.succeeded:
                    state = ChainState.DONE
                    continue
                # state read by the decider is refreshed after the next step lands
                with track_reads() as decider_reads:
                    decision = await self._decide(decider, result)
                if decision is None:
                    state = ChainState.DONE
                else:
                    next_args = decision
                    state = ChainState.READY

        assert result is not None, "Chained execution finished without a result"
        return result

    async def _decide(self, decider: ChainDecider, result: ExecutionResult) -> Any | None:
        try:
            decision = await maybe_await(decider(self, result.args, result.events))
        except Exception as exc:
            raise ChainMisconfigurationError(
                f"Chain decider of {self.label} failed: {exc}",
                details={"iteration": result.iteration, "signature": result.signature},
            ) from exc

        if decision is None:
            return None
        if not isinstance(decision, Mapping) or "args" not in decision:
            raise ChainMisconfigurationError(
                f"Chain decider of {self.label} must return None or a mapping with 'args'",
                details={"decision": repr(decision)},
            )
        return decision["args"]

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------
    def describe(self) -> ContextDescription:
        desc = super().describe()
        schema = self.template.args_schema
        desc.properties["args"] = ",".join(schema.model_fields) if schema is not None else None
        desc.properties["events"] = ",".join(self.template.event_decoders) or None
        desc.properties["description"] = self.template.description
        desc.properties["state"] = self.state.value
        desc.mutable = True
        if self.template.chain_decider is not None:
            desc.label = f"{desc.label} (chained)"
        return desc
