import pytest

from handoff.core.errors import PreconditionError
from handoff.core.plan import (
    ConclusionParameters,
    StepKind,
    WorkflowParameters,
    build_conclusion_plan,
    build_plan,
    make_parameters,
    parameters_from_mapping,
)
from handoff.selectors.locator import MatchMode


def params(wait=False):
    return WorkflowParameters(service_label="Instalação", problem_label="Sem sinal", wait_for_return=wait)


def test_plan_without_wait_has_eight_steps(settings):
    plan = build_plan(params(False), settings)
    assert len(plan) == 8
    assert plan.names() == [
        "submit",
        "open search",
        "select category",
        "open problems",
        "select problem",
        "open services",
        "select service",
        "continue",
    ]
    assert all(st.criterion.selector != settings.WAIT_SWITCH_SELECTOR for st in plan.steps)


def test_plan_with_wait_inserts_switch_after_submit(settings):
    plan = build_plan(params(True), settings)
    assert len(plan) == 9
    switch = plan.steps[1]
    assert switch.criterion.selector == settings.WAIT_SWITCH_SELECTOR
    assert switch.match_text is None
    assert plan.steps[0].name == "submit"
    assert plan.steps[2].name == "open search"


def test_matching_policy_per_step(settings):
    plan = build_plan(params(), settings)
    by_name = {st.name: st for st in plan.steps}

    problem = by_name["select problem"]
    assert problem.kind == StepKind.single_scan
    assert problem.mode == MatchMode.SUBSTRING
    assert problem.match_text == "Sem sinal"

    service = by_name["select service"]
    assert service.kind == StepKind.select_exact
    assert service.mode == MatchMode.EXACT
    assert service.match_text == "Instalação"
    assert service.max_attempts == settings.SELECT_SERVICE_ATTEMPTS
    assert service.reopen.text == settings.SERVICE_PLACEHOLDER_LABEL

    opener = by_name["open problems"]
    assert opener.kind == StepKind.text_entry
    assert opener.fill_text == "Sem sinal"
    assert opener.companion.selector == settings.SEARCH_FIELD_SELECTOR

    assert by_name["open services"].max_attempts == settings.OPEN_OPTIONS_ATTEMPTS
    assert by_name["continue"].match_text == settings.CONTINUE_LABEL


def test_settle_delays_come_from_settings():
    from handoff.utils.config import Settings

    s = Settings(SETTLE_DELAY_MS=1000, OPTION_SETTLE_MS=500, TEXT_ENTRY_SETTLE_MS=800)
    by_name = {st.name: st for st in build_plan(params(), s).steps}
    assert by_name["open search"].pre_delay_ms == 1000
    assert by_name["select category"].pre_delay_ms == 1000
    assert by_name["open problems"].post_click_delay_ms == 800
    assert by_name["select problem"].pre_delay_ms == 500
    assert by_name["submit"].pre_delay_ms == 0


def test_builds_are_equal_but_independent(settings):
    a = build_plan(params(True), settings)
    b = build_plan(params(True), settings)
    assert a == b
    assert a is not b
    assert all(x is not y for x, y in zip(a.steps, b.steps))
    assert a.model_dump() == b.model_dump()


@pytest.mark.parametrize("service,problem", [("", "Sem sinal"), ("Instalação", "   "), (None, "x"), ("x", None)])
def test_make_parameters_rejects_missing_labels(service, problem):
    with pytest.raises(PreconditionError):
        make_parameters(service, problem)


def test_make_parameters_trims():
    p = make_parameters("  Instalação ", "Sem sinal", True)
    assert p.service_label == "Instalação"
    assert p.wait_for_return is True


@pytest.mark.parametrize("raw,expected", [("false", False), ("0", False), ("no", False), ("true", True), (1, True)])
def test_mapping_booleans_are_coerced_not_truthy(raw, expected):
    p = parameters_from_mapping({"service_label": "Instalação", "problem_label": "Sem sinal", "wait_for_return": raw})
    assert p.wait_for_return is expected


def test_mapping_rejects_unparseable_boolean():
    with pytest.raises(PreconditionError) as ei:
        parameters_from_mapping({"service_label": "a", "problem_label": "b", "wait_for_return": "maybe"})
    assert "wait_for_return" in str(ei.value)


def test_mapping_without_wait_defaults_off(settings):
    p = parameters_from_mapping({"service_label": "a", "problem_label": "b", "wait_for_return": None})
    assert p.wait_for_return is False
    assert len(build_plan(p, settings)) == 8


def test_conclusion_plan_posts_message_then_tags_then_concludes(settings):
    plan = build_conclusion_plan(ConclusionParameters(message="Titular entrou em contato e ...", tag="Sem Sinal"), settings)
    assert plan.names() == ["post message", "send message", "open tags", "enter tag", "select tag", "conclude"]
    by_name = {st.name: st for st in plan.steps}

    assert by_name["post message"].kind == StepKind.fill
    assert by_name["post message"].fill_text.startswith("Titular")
    assert by_name["enter tag"].fill_text == "sem sinal"
    assert by_name["select tag"].match_text == "sem sinal"
    assert by_name["select tag"].skip_if.selector == settings.TAG_CHOICE_SELECTOR
    assert by_name["conclude"].match_text == settings.CONCLUDE_LABEL

    optional = [st.name for st in plan.steps if st.optional]
    assert optional == ["post message", "send message", "open tags", "conclude"]
    assert all(by_name[n].max_attempts == 1 for n in optional)


def test_conclusion_plan_polls_tag_widget_on_its_own_interval():
    from handoff.utils.config import Settings

    s = Settings(TAG_POLL_INTERVAL_MS=600, MAX_ATTEMPTS=25)
    plan = build_conclusion_plan(ConclusionParameters(tag="Sem sinal"), s)
    assert plan.names()[0] == "open tags"
    for st in plan.steps:
        if st.name in ("enter tag", "select tag"):
            assert (st.interval_ms, st.max_attempts, st.optional) == (600, 25, False)


def test_conclusion_requires_a_tag():
    with pytest.raises(ValueError):
        ConclusionParameters(message="x", tag="  ")
