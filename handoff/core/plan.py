from __future__ import annotations

"""Step plan
------------
Value objects for a forwarding run (parameters, steps, plan) and the builder
that turns run parameters into the ordered step list for the support desk
surface. Plans are rebuilt for every run and never mutated.
"""

from enum import Enum
from typing import Any, Mapping, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from handoff.core.errors import PreconditionError
from handoff.selectors.locator import Criterion, MatchMode
from handoff.utils.config import Settings, get_settings


# ---------- Core enums ----------


class StepKind(str, Enum):
    generic = "generic"            # poll, then click
    text_entry = "text_entry"      # poll + click, then type into a companion input
    single_scan = "single_scan"    # one scan of rendered options, generic fallback
    open_options = "open_options"  # click until the option list populates (non-fatal)
    select_exact = "select_exact"  # re-open + scan loop, generic fallback
    fill = "fill"                  # poll, click, then set the text of the same element


# ---------- Parameters ----------


class WorkflowParameters(BaseModel):
    model_config = ConfigDict(frozen=True)

    service_label: str = Field(..., description="Service option to pick, matched exactly")
    problem_label: str = Field(..., description="Problem option to pick, matched as a substring")
    wait_for_return: bool = Field(default=False, description="Toggle the blocking switch before forwarding")

    @field_validator("service_label", "problem_label")
    @classmethod
    def _non_empty(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("cannot be empty")
        return v


class ConclusionParameters(BaseModel):
    """What the conclusion run posts: the protocol message and the tag to apply."""

    model_config = ConfigDict(frozen=True)

    message: str = Field(default="", description="Protocol message; skipped when empty")
    tag: str = Field(..., description="Tag option to pick, matched exactly")

    @field_validator("tag")
    @classmethod
    def _tag_non_empty(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("cannot be empty")
        return v


_ParamsT = TypeVar("_ParamsT", bound=BaseModel)


def _validated(model: Type[_ParamsT], data: Mapping[str, Any]) -> _ParamsT:
    """model_validate, but ValidationError surfaces as PreconditionError."""
    try:
        return model.model_validate(dict(data))
    except ValidationError as ve:
        problems = []
        for e in ve.errors():
            loc = ".".join(str(p) for p in e.get("loc", []))
            problems.append(f"{loc}: {e.get('msg', 'invalid value')}")
        raise PreconditionError("Invalid run parameters: " + "; ".join(problems)) from ve


def parameters_from_mapping(data: Mapping[str, Any]) -> WorkflowParameters:
    """
    Validate loosely typed input (JSON bodies, CLI/env strings). Booleans go
    through pydantic's coercion, so "false"/"0"/"no" stay False.
    """
    data = dict(data)
    for key in ("service_label", "problem_label"):
        if data.get(key) is None:
            data[key] = ""
    if data.get("wait_for_return") is None:
        data.pop("wait_for_return", None)
    return _validated(WorkflowParameters, data)


def conclusion_from_mapping(data: Mapping[str, Any]) -> ConclusionParameters:
    data = dict(data)
    if data.get("tag") is None:
        data["tag"] = ""
    return _validated(ConclusionParameters, data)


def make_parameters(
    service_label: Optional[str],
    problem_label: Optional[str],
    wait_for_return: Any = False,
) -> WorkflowParameters:
    """Validate raw inputs, raising PreconditionError instead of ValidationError."""
    return parameters_from_mapping(
        {"service_label": service_label, "problem_label": problem_label, "wait_for_return": wait_for_return}
    )


# ---------- Steps ----------


class Step(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    kind: StepKind = StepKind.generic
    criterion: Criterion
    pre_delay_ms: int = Field(default=0, ge=0, description="Settle delay before the first lookup")
    post_click_delay_ms: int = Field(default=0, ge=0)
    max_attempts: int = Field(default=25, ge=1)
    interval_ms: int = Field(default=200, ge=0)
    optional: bool = Field(default=False, description="On failure record an anomaly and move on")
    skip_if: Optional[Criterion] = Field(default=None, description="Step is already done when this is rendered")

    # text_entry / fill
    companion: Optional[Criterion] = Field(default=None, description="Free-text input next to the option list")
    fill_text: Optional[str] = None
    # single_scan / open_options / select_exact
    options: Optional[Criterion] = Field(default=None, description="The rendered option list to inspect")
    reopen: Optional[Criterion] = Field(default=None, description="Control that re-opens a collapsed list")
    open_wait_ms: int = Field(default=0, ge=0)

    @property
    def match_text(self) -> Optional[str]:
        return self.criterion.text

    @property
    def mode(self) -> MatchMode:
        return self.criterion.mode


class Plan(BaseModel):
    model_config = ConfigDict(frozen=True)

    steps: tuple[Step, ...]

    def __len__(self) -> int:
        return len(self.steps)

    def names(self) -> list[str]:
        return [st.name for st in self.steps]


# ---------- Builder ----------


def build_plan(params: WorkflowParameters, settings: Optional[Settings] = None) -> Plan:
    """
    Assemble the forwarding plan: submit, optional blocking switch, then the
    seven fixed form steps ending in "continue".
    """
    s = settings or get_settings()
    generic = {"max_attempts": s.MAX_ATTEMPTS, "interval_ms": s.ATTEMPT_INTERVAL_MS}

    def placeholder(label: str) -> Criterion:
        return Criterion(selector=s.PLACEHOLDER_SELECTOR, text=label)

    def option(label: str, mode: MatchMode = MatchMode.EXACT) -> Criterion:
        return Criterion(selector=s.OPTION_SELECTOR, text=label, mode=mode)

    any_option = Criterion(selector=s.OPTION_SELECTOR)
    service_placeholder = placeholder(s.SERVICE_PLACEHOLDER_LABEL)

    steps: list[Step] = [
        Step(name="submit", criterion=Criterion(selector=s.SUBMIT_SELECTOR, text=s.SUBMIT_LABEL), **generic),
    ]

    if params.wait_for_return:
        steps.append(Step(name="wait for return", criterion=Criterion(selector=s.WAIT_SWITCH_SELECTOR), **generic))

    steps += [
        Step(
            name="open search",
            criterion=placeholder(s.SEARCH_LABEL),
            pre_delay_ms=s.SETTLE_DELAY_MS,
            **generic,
        ),
        Step(
            name="select category",
            criterion=option(s.CATEGORY_LABEL),
            pre_delay_ms=s.SETTLE_DELAY_MS,
            **generic,
        ),
        Step(
            name="open problems",
            kind=StepKind.text_entry,
            criterion=placeholder(s.PROBLEM_PLACEHOLDER_LABEL),
            companion=Criterion(selector=s.SEARCH_FIELD_SELECTOR),
            fill_text=params.problem_label,
            post_click_delay_ms=s.TEXT_ENTRY_SETTLE_MS,
            **generic,
        ),
        Step(
            name="select problem",
            kind=StepKind.single_scan,
            criterion=option(params.problem_label, MatchMode.SUBSTRING),
            pre_delay_ms=s.OPTION_SETTLE_MS,
            post_click_delay_ms=s.OPTION_SETTLE_MS,
            **generic,
        ),
        Step(
            name="open services",
            kind=StepKind.open_options,
            criterion=service_placeholder,
            options=any_option,
            open_wait_ms=s.OPTION_SETTLE_MS,
            max_attempts=s.OPEN_OPTIONS_ATTEMPTS,
            interval_ms=s.LOOP_INTERVAL_MS,
        ),
        Step(
            name="select service",
            kind=StepKind.select_exact,
            criterion=option(params.service_label),
            reopen=service_placeholder,
            open_wait_ms=s.OPTION_SETTLE_MS,
            post_click_delay_ms=s.OPTION_SETTLE_MS,
            max_attempts=s.SELECT_SERVICE_ATTEMPTS,
            interval_ms=s.LOOP_INTERVAL_MS,
        ),
        Step(
            name="continue",
            criterion=Criterion(selector=s.CONTINUE_SELECTOR, text=s.CONTINUE_LABEL),
            **generic,
        ),
    ]
    return Plan(steps=tuple(steps))


def build_conclusion_plan(params: ConclusionParameters, settings: Optional[Settings] = None) -> Plan:
    """
    Post the protocol message, tag the ticket and conclude it.

    Message, send, "+" and "Concluir" are looked at once and skipped when
    absent (a disabled send button is not an error). Only the tag input and
    the tag option are required; both are polled on the tag interval.
    """
    s = settings or get_settings()
    once = {"max_attempts": 1, "interval_ms": 0, "optional": True}
    tag_poll = {"max_attempts": s.MAX_ATTEMPTS, "interval_ms": s.TAG_POLL_INTERVAL_MS}
    tag = params.tag.lower()

    steps: list[Step] = []
    if params.message:
        steps += [
            Step(
                name="post message",
                kind=StepKind.fill,
                criterion=Criterion(selector=s.MESSAGE_SELECTOR),
                fill_text=params.message,
                **once,
            ),
            Step(name="send message", criterion=Criterion(selector=s.SEND_SELECTOR), **once),
        ]
    steps += [
        Step(name="open tags", criterion=Criterion(selector=s.TAG_ADD_SELECTOR), **once),
        Step(
            name="enter tag",
            kind=StepKind.fill,
            criterion=Criterion(selector=s.TAG_INPUT_SELECTOR),
            fill_text=tag,
            **tag_poll,
        ),
        Step(
            name="select tag",
            criterion=Criterion(selector=s.OPTION_SELECTOR, text=tag),
            skip_if=Criterion(selector=s.TAG_CHOICE_SELECTOR, text=tag),
            **tag_poll,
        ),
        Step(
            name="conclude",
            criterion=Criterion(selector=s.CONTINUE_SELECTOR, text=s.CONCLUDE_LABEL),
            **once,
        ),
    ]
    return Plan(steps=tuple(steps))


__all__ = [
    "StepKind",
    "WorkflowParameters",
    "ConclusionParameters",
    "parameters_from_mapping",
    "conclusion_from_mapping",
    "make_parameters",
    "Step",
    "Plan",
    "build_plan",
    "build_conclusion_plan",
]
