import random

from src.progress.quiz import (
    answer_visible_questions,
    choose_option,
    score_option,
    tokenize,
)
from tests.conftest import FakeBrowser, GRID_URL


class _FixedRng:
    def __init__(self, pick: int):
        self.pick = pick
        self.calls = 0

    def randrange(self, n):
        self.calls += 1
        return self.pick % n


class TestTokenize:
    def test_drops_short_words_and_stopwords(self):
        assert tokenize("Qual é a derivada de uma função?") == {"derivada", "funcao"}

    def test_none(self):
        assert tokenize(None) == set()


class TestChooseOption:
    def test_prefers_word_overlap(self):
        question = "Qual órgão bombeia o sangue no corpo humano?"
        options = ["Pulmão", "Coração bombeia sangue", "Fígado"]
        assert choose_option(question, options, _FixedRng(0)) == 1

    def test_first_option_wins_ties(self):
        question = "energia cinetica e energia potencial"
        options = ["energia solar", "energia eolica"]
        assert score_option(question, options[0]) == score_option(question, options[1])
        assert choose_option(question, options, _FixedRng(1)) == 0

    def test_random_without_overlap(self):
        rng = _FixedRng(2)
        assert choose_option("Escolha", ["A", "B", "C"], rng) == 2
        assert rng.calls == 1


def _quiz_browser(body: str) -> FakeBrowser:
    browser = FakeBrowser({GRID_URL: f"<html><body>{body}</body></html>"})
    browser.get(GRID_URL)
    return browser


def test_answers_one_option_per_question_block():
    browser = _quiz_browser(
        """
        <div class="question"><p>Qual planeta é conhecido como planeta vermelho?</p>
          <label id="q1a">Vênus</label><label id="q1b">Marte, o planeta vermelho</label></div>
        <div class="question"><p>Quanto é dois mais dois?</p>
          <label id="q2a">Quatro</label><label id="q2b">Cinco</label></div>
        """
    )
    answered = answer_visible_questions(browser, _FixedRng(0))
    assert answered == 2
    assert browser.clicks == ["q1b", "q2a"]


def test_radio_groups_without_blocks():
    browser = _quiz_browser(
        """
        <p>Pergunta solta</p>
        <input type="radio" name="q1" id="r1"/><input type="radio" name="q1" id="r2"/>
        <input type="radio" name="q2" id="r3"/><input type="radio" name="q2" id="r4"/>
        """
    )
    answered = answer_visible_questions(browser, random.Random(3))
    assert answered == 2
    assert len(browser.clicks) == 2
    assert browser.clicks[0] in ("r1", "r2")
    assert browser.clicks[1] in ("r3", "r4")


def test_nothing_to_answer():
    browser = _quiz_browser("<p>Sem perguntas</p>")
    assert answer_visible_questions(browser, random.Random(0)) == 0
    assert browser.clicks == []
