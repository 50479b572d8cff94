import pytest

from fakes import FakeSurface, build_desk, build_ticket, fast_settings
from handoff.core.engine import Engine, ExecutionOutcome, run_forwarding
from handoff.core.plan import WorkflowParameters


def params(wait=False, **kw):
    data = {"service_label": "Instalação", "problem_label": "Sem sinal", "wait_for_return": wait}
    data.update(kw)
    return data


@pytest.mark.asyncio
async def test_completes_all_eight_steps_in_order(settings, desk):
    outcome = await Engine(desk, settings).run(params(False))

    assert outcome.ok, outcome.reason
    assert outcome.steps_total == outcome.steps_completed == 8
    assert outcome.executed[0] == "submit"
    assert "wait for return" not in outcome.executed
    assert desk.clicked_texts() == [
        "Enviar",
        "Pesquisar...",
        "Suporte Externo",
        "Selecione os problemas",
        "Cliente SEM SINAL - fibra",
        "Selecione um serviço",
        "Instalação",
        "Continuar",
    ]
    assert desk.fills == [(settings.SEARCH_FIELD_SELECTOR, "Sem sinal")]
    assert outcome.anomalies == []


@pytest.mark.asyncio
async def test_wait_for_return_toggles_switch_second(settings, desk):
    outcome = await Engine(desk, settings).run(WorkflowParameters(**params(True)))

    assert outcome.ok
    assert outcome.steps_completed == 9
    assert outcome.executed[1] == "wait for return"
    assert desk.clicks[1][0] == settings.WAIT_SWITCH_SELECTOR


@pytest.mark.asyncio
async def test_fails_at_service_step_when_list_never_populates(settings):
    desk = build_desk(settings, services=())
    outcome = await Engine(desk, settings).run(params(False))

    assert not outcome.ok
    assert outcome.error_type == "StepTimeoutError"
    assert outcome.failed_step == 6
    assert outcome.step_name == "select service"
    assert outcome.criterion.text == "Instalação"
    assert outcome.attempts == settings.SELECT_SERVICE_ATTEMPTS + settings.MAX_ATTEMPTS
    assert outcome.steps_completed == 6
    # open-services loop: 10 clicks, selection loop re-opens on attempts 2..15
    placeholder_clicks = desk.clicked_texts().count(settings.SERVICE_PLACEHOLDER_LABEL)
    assert placeholder_clicks == settings.OPEN_OPTIONS_ATTEMPTS + settings.SELECT_SERVICE_ATTEMPTS - 1
    assert [a.kind for a in outcome.anomalies] == ["options_not_populated"]
    assert "Continuar" not in desk.clicked_texts()


@pytest.mark.asyncio
async def test_empty_problem_label_fails_before_any_poll(settings, desk):
    outcome = await Engine(desk, settings).run(params(problem_label=""))

    assert not outcome.ok
    assert outcome.error_type == "PreconditionError"
    assert outcome.steps_completed == 0
    assert desk.snapshots == []
    assert desk.clicks == []


@pytest.mark.asyncio
async def test_exact_service_match_skips_longer_variant(settings):
    desk = build_desk(settings, services=("Instalação de roteador", "INSTALAÇÃO"))
    outcome = await Engine(desk, settings).run(params())
    assert outcome.ok
    assert "INSTALAÇÃO" in desk.clicked_texts()
    assert "Instalação de roteador" not in desk.clicked_texts()


@pytest.mark.asyncio
async def test_missing_search_field_is_recorded_not_fatal(settings):
    desk = build_desk(settings, search_field=False)
    outcome = await Engine(desk, settings).run(params())
    assert outcome.ok
    assert [a.kind for a in outcome.anomalies] == ["companion_input_missing"]
    assert outcome.to_dict()["anomalies"][0]["step_index"] == 3


@pytest.mark.asyncio
async def test_timeout_on_first_step_stops_the_run():
    s = fast_settings(MAX_ATTEMPTS=3)
    surface = FakeSurface({})
    outcome = await run_forwarding(surface, params(), settings=s)

    assert not outcome.ok
    assert outcome.failed_step == 0
    assert outcome.criterion.text == s.SUBMIT_LABEL
    assert len(surface.snapshots) == 3
    d = outcome.to_dict()
    assert d["failed_step"]["index"] == 0
    assert d["failed_step"]["criterion"]["text"] == s.SUBMIT_LABEL


class ExplodingSurface(FakeSurface):
    async def click(self, element):
        raise RuntimeError("element detached")


@pytest.mark.asyncio
async def test_surface_errors_become_failed_outcome(settings):
    surface = ExplodingSurface({settings.SUBMIT_SELECTOR: ["Enviar"]})
    outcome = await Engine(surface, settings).run(params())
    assert not outcome.ok
    assert outcome.error_type == "RuntimeError"
    assert outcome.failed_step == 0


@pytest.mark.asyncio
async def test_deadline_aborts_between_steps(desk):
    s = fast_settings(RUN_DEADLINE_MS=1, WARMUP_DELAY_MS=5)
    outcome = await Engine(desk, s).run(params())
    assert not outcome.ok
    assert outcome.error_type == "DeadlineExceeded"
    assert outcome.failed_step == 0
    assert desk.clicks == []


def test_outcome_dict_for_completed_run():
    d = ExecutionOutcome(ok=True, steps_total=8, steps_completed=8).to_dict()
    assert d["ok"] is True
    assert "failed_step" not in d


@pytest.mark.asyncio
async def test_string_false_from_mapping_does_not_toggle_switch(settings, desk):
    outcome = await Engine(desk, settings).run(params(wait="false"))

    assert outcome.ok
    assert outcome.steps_total == 8
    assert "wait for return" not in outcome.executed
    assert all(sel != settings.WAIT_SWITCH_SELECTOR for sel, _ in desk.clicks)


@pytest.mark.asyncio
async def test_unparseable_wait_flag_is_a_precondition_failure(settings, desk):
    outcome = await Engine(desk, settings).run(params(wait="maybe"))
    assert not outcome.ok
    assert outcome.error_type == "PreconditionError"
    assert desk.snapshots == []


@pytest.mark.asyncio
async def test_conclusion_posts_message_tags_and_concludes(settings):
    ticket = build_ticket(settings)
    outcome = await Engine(ticket, settings).conclude({"message": "Titular entrou em contato e pediu reparo", "tag": "Sem Sinal"})

    assert outcome.ok, outcome.reason
    assert outcome.executed == ["post message", "send message", "open tags", "enter tag", "select tag", "conclude"]
    assert ticket.fills == [
        (settings.MESSAGE_SELECTOR, "Titular entrou em contato e pediu reparo"),
        (settings.TAG_INPUT_SELECTOR, "sem sinal"),
    ]
    assert ticket.clicked_texts()[-2:] == ["Sem sinal", settings.CONCLUDE_LABEL]
    assert outcome.anomalies == []


@pytest.mark.asyncio
async def test_conclusion_skips_missing_optional_controls(settings):
    ticket = build_ticket(settings)
    del ticket.elements[settings.MESSAGE_SELECTOR]
    del ticket.elements[settings.SEND_SELECTOR]
    ticket.elements[settings.TAG_INPUT_SELECTOR] = [""]

    outcome = await Engine(ticket, settings).conclude({"message": "oi", "tag": "Lentidão"})

    assert outcome.ok
    assert [a.kind for a in outcome.anomalies] == ["optional_step_skipped", "optional_step_skipped"]
    assert [a.step_index for a in outcome.anomalies] == [0, 1]
    assert "post message" not in outcome.executed
    assert outcome.executed[-1] == "conclude"


@pytest.mark.asyncio
async def test_conclusion_does_not_pick_a_tag_twice(settings):
    ticket = build_ticket(settings, chosen=["Sem sinal"])
    outcome = await Engine(ticket, settings).conclude({"tag": "sem sinal"})

    assert outcome.ok
    assert "Sem sinal" not in ticket.clicked_texts()
    assert "select tag" in outcome.executed


@pytest.mark.asyncio
async def test_conclusion_fails_when_tag_option_never_renders():
    s = fast_settings(MAX_ATTEMPTS=3)
    ticket = build_ticket(s, tags=("Lentidão",))
    outcome = await Engine(ticket, s).conclude({"tag": "Sem sinal"})

    assert not outcome.ok
    assert outcome.error_type == "StepTimeoutError"
    assert outcome.step_name == "select tag"
    assert outcome.attempts == 3
    assert s.CONCLUDE_LABEL not in ticket.clicked_texts()


@pytest.mark.asyncio
async def test_optional_step_surface_error_is_tolerated(settings):
    class StuckSendButton(FakeSurface):
        async def click(self, element):
            if element.selector == settings.SEND_SELECTOR:
                raise TimeoutError("button is disabled")
            await super().click(element)

    ticket = build_ticket(settings, surface=StuckSendButton())
    outcome = await Engine(ticket, settings).conclude({"message": "oi", "tag": "Sem sinal"})

    assert outcome.ok
    assert [a.step_index for a in outcome.anomalies] == [1]
    assert "TimeoutError" in outcome.anomalies[0].detail
