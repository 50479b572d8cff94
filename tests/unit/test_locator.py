import pytest
from pydantic import ValidationError

from fakes import FakeSurface
from handoff.selectors.locator import Criterion, MatchMode, locate, normalize, pick
from handoff.surface import SurfaceElement


def els(*texts, selector=".opt"):
    return [SurfaceElement(selector=selector, index=i, text=t) for i, t in enumerate(texts)]


def test_normalize_trims_and_casefolds():
    assert normalize("  Instalação ") == "instalação"
    assert normalize(None) == ""


def test_structural_criterion_returns_first_element():
    found = pick(els("b", "a"), Criterion(selector=".opt"))
    assert found is not None and found.index == 0


def test_exact_rejects_strict_superstring():
    crit = Criterion(selector=".opt", text="Instalação")
    assert pick(els("Instalação de roteador"), crit) is None
    found = pick(els("Instalação de roteador", " INSTALAÇÃO "), crit)
    assert found is not None and found.index == 1


def test_substring_ignores_case_and_surroundings():
    crit = Criterion(selector=".opt", text="sem sinal", mode=MatchMode.SUBSTRING)
    found = pick(els("Lentidão", "[Fibra] Cliente SEM SINAL desde ontem"), crit)
    assert found is not None and found.index == 1


def test_pick_returns_none_when_nothing_matches():
    assert pick([], Criterion(selector=".opt")) is None
    assert pick(els("x"), Criterion(selector=".opt", text="y", mode=MatchMode.SUBSTRING)) is None


def test_criterion_is_immutable_and_requires_selector():
    crit = Criterion(selector=" .opt ")
    assert crit.selector == ".opt"
    with pytest.raises(ValidationError):
        crit.text = "other"
    with pytest.raises(ValidationError):
        Criterion(selector="  ")


@pytest.mark.asyncio
async def test_locate_takes_exactly_one_snapshot():
    surface = FakeSurface({".opt": ["a", "b"]})
    found = await locate(surface, Criterion(selector=".opt", text="B"))
    assert found is not None and found.text == "b"
    assert surface.snapshots == [".opt"]

    assert await locate(surface, Criterion(selector=".missing")) is None
    assert surface.snapshots == [".opt", ".missing"]
