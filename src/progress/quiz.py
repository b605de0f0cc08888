"""
Best-effort quiz answering.

For every question block one option is clicked. The option sharing the most
words with the question prompt wins (first one on ties); without any shared
word the pick is uniformly random. Plain radio groups with no recognizable
block structure get a random pick per group name. Answers may be wrong.
"""

from __future__ import annotations

import logging
import random
import re
from collections import OrderedDict
from typing import Any, List, Optional, Sequence, Set, Tuple

from src.portal import config
from src.portal.matching import normalize_text, read_text
from src.portal.navigation import click_element
from src.portal.utils import safe_attr, try_find_all

_WORD_RE = re.compile(r"\w+")

# Function words that would make every option look related
STOPWORDS = frozenset(
    {
        "a", "o", "as", "os", "um", "uma", "uns", "umas", "de", "do", "da", "dos", "das",
        "em", "no", "na", "nos", "nas", "por", "pelo", "pela", "para", "com", "sem", "que",
        "qual", "quais", "se", "ao", "aos", "e", "ou", "nao", "sim", "sao", "ser", "foi",
        "mais", "menos", "como", "sobre", "entre", "seu", "sua", "seus", "suas", "este",
        "esta", "isso", "isto", "esse", "essa", "ele", "ela", "eles", "elas", "the", "and",
        "of", "to", "is", "are", "alternativa", "correta", "incorreta", "afirmativa",
    }
)


def tokenize(text: Optional[str]) -> Set[str]:
    return {
        word
        for word in _WORD_RE.findall(normalize_text(text))
        if len(word) >= 3 and word not in STOPWORDS
    }


def score_option(question: str, option: str) -> int:
    return len(tokenize(question) & tokenize(option))


def choose_option(question: str, options: Sequence[str], rng: random.Random) -> int:
    """Index of the option to select; ``options`` must not be empty."""
    scores = [score_option(question, option) for option in options]
    best = max(scores)
    if best <= 0:
        return rng.randrange(len(options))
    return scores.index(best)


def _prompt_text(block_text: str, option_texts: Sequence[str]) -> str:
    prompt = block_text
    for option_text in option_texts:
        if option_text:
            prompt = prompt.replace(option_text, " ")
    return prompt


def answer_question_blocks(driver: Any, rng: random.Random) -> Tuple[int, int]:
    """Select one option per question block.

    Returns ``(blocks_found, blocks_answered)``.
    """
    blocks = try_find_all(driver, config.QUESTION_BLOCK_CSS)
    answered = 0
    for number, block in enumerate(blocks, start=1):
        options = try_find_all(block, config.QUESTION_OPTION_CSS)
        if not options:
            continue
        option_texts = [read_text(option) or "" for option in options]
        prompt = _prompt_text(read_text(block) or "", option_texts)
        pick = choose_option(prompt, option_texts, rng)
        if click_element(driver, options[pick]):
            answered += 1
        else:
            logging.debug("Could not select option %s in question %s.", pick + 1, number)
    return len(blocks), answered


def answer_radio_groups(driver: Any, rng: random.Random) -> int:
    """Random pick in every radio group keyed by its name attribute."""
    groups: "OrderedDict[str, List[Any]]" = OrderedDict()
    for radio in try_find_all(driver, config.RADIO_CSS):
        groups.setdefault(safe_attr(radio, "name"), []).append(radio)

    answered = 0
    for name, radios in groups.items():
        if click_element(driver, radios[rng.randrange(len(radios))]):
            answered += 1
        else:
            logging.debug("Could not select an option in radio group '%s'.", name)
    return answered


def answer_visible_questions(driver: Any, rng: random.Random) -> int:
    blocks_found, answered = answer_question_blocks(driver, rng)
    if blocks_found:
        logging.info("Answered %s of %s question blocks.", answered, blocks_found)
        return answered
    answered = answer_radio_groups(driver, rng)
    logging.info("Answered %s radio groups.", answered)
    return answered
