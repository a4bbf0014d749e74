"""
Quiz item generation and answer scoring.

Pure transforms from learning records to quiz questions. Randomness comes
from an injectable `random.Random` so sessions are reproducible in tests.
"""

import random
import re
from dataclasses import dataclass

from polyglot.domain.models import LearningStatus, PhraseEntity, QuizStatsEntry, QuizType

BLANK = "______"
LISTENING_PROMPT = "\U0001f3a7 Listen and type what you hear"

POINT_SYSTEM: dict[QuizType, int] = {
    QuizType.CLOZE: 1,
    QuizType.INTERPRETATION: 2,
    QuizType.LISTENING: 2,
    QuizType.SPEAKING: 2,
    QuizType.WRITING: 3,
}

LEVELS: dict[str, dict[QuizType, int]] = {
    "basic": {
        QuizType.CLOZE: 4,
        QuizType.LISTENING: 2,
        QuizType.SPEAKING: 2,
        QuizType.INTERPRETATION: 1,
        QuizType.WRITING: 1,
    },
    "advanced": {
        QuizType.CLOZE: 5,
        QuizType.LISTENING: 3,
        QuizType.SPEAKING: 3,
        QuizType.INTERPRETATION: 2,
        QuizType.WRITING: 2,
    },
    "legend": {
        QuizType.CLOZE: 4,
        QuizType.LISTENING: 4,
        QuizType.SPEAKING: 4,
        QuizType.INTERPRETATION: 4,
        QuizType.WRITING: 4,
    },
}

_PUNCTUATION = re.compile(r"[.,?!:;\"'(){}\[\]<>~`\-\u3000-\u303F]")
_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class QuizItem:
    phrase_id: str
    type: QuizType
    question_text: str
    answer_text: str
    hint: str | None = None

    @property
    def points(self) -> int:
        return POINT_SYSTEM[self.type]


def create_cloze(phrase: PhraseEntity, rng: random.Random | None = None) -> QuizItem:
    """
    Mask one or two words (space-separated scripts) or 2-4 characters
    (scripts without spaces) of the sentence.
    """
    rng = rng or random.Random()
    sentence = phrase.sentence.strip()

    if " " in sentence:
        words = sentence.split(" ")
        # Skip 1-char words unless that's all there is
        candidates = [i for i, w in enumerate(words) if len(w) > 1] or list(range(len(words)))
        start = rng.choice(candidates)
        count = 2 if rng.random() > 0.7 and start < len(words) - 1 else 1

        target = " ".join(words[start : start + count])
        masked_words = list(words)
        for i in range(count):
            masked_words[start + i] = BLANK
        masked = " ".join(masked_words)
    else:
        chars = list(sentence)
        length = len(chars)
        if length <= 4:
            mask_len = max(1, length // 2)
            start = rng.randrange(length - mask_len + 1)
        else:
            mask_len = rng.randint(2, 4)
            start = rng.randrange(length - mask_len)
        target = "".join(chars[start : start + mask_len])
        masked = "".join(chars[:start]) + BLANK + "".join(chars[start + mask_len :])

    return QuizItem(
        phrase_id=phrase.id,
        type=QuizType.CLOZE,
        question_text=phrase.meaning,
        answer_text=target,
        hint=masked,
    )


def create_quiz_item(
    phrase: PhraseEntity,
    quiz_type: QuizType | str,
    rng: random.Random | None = None,
) -> QuizItem:
    """Build one question; `quiz_type="random"` picks a type uniformly."""
    rng = rng or random.Random()
    if quiz_type == "random":
        quiz_type = rng.choice(list(QuizType))
    quiz_type = QuizType(quiz_type)

    if quiz_type == QuizType.CLOZE:
        return create_cloze(phrase, rng)
    if quiz_type == QuizType.INTERPRETATION:
        question, answer = phrase.sentence, phrase.meaning
    elif quiz_type == QuizType.SPEAKING:
        question, answer = phrase.sentence, phrase.sentence
    elif quiz_type == QuizType.LISTENING:
        question, answer = LISTENING_PROMPT, phrase.sentence
    else:
        question, answer = phrase.meaning, phrase.sentence

    return QuizItem(
        phrase_id=phrase.id, type=quiz_type, question_text=question, answer_text=answer
    )


def build_quiz_session(
    phrases: list[PhraseEntity],
    level: str = "basic",
    rng: random.Random | None = None,
) -> list[QuizItem]:
    """
    Draw a quiz session following the level's question-type distribution.

    Soft-deleted records are never quizzed. Each phrase is used at most once;
    a small pool yields a shorter session.
    """
    if level not in LEVELS:
        raise ValueError(f"Unknown quiz level: {level}")

    rng = rng or random.Random()
    pool = [p for p in phrases if not p.is_deleted]
    rng.shuffle(pool)

    items: list[QuizItem] = []
    for quiz_type, count in LEVELS[level].items():
        for _ in range(count):
            if not pool:
                return items
            items.append(create_quiz_item(pool.pop(), quiz_type, rng))
    return items


def normalize_answer(text: str) -> str:
    return _WHITESPACE.sub("", _PUNCTUATION.sub("", text.lower()))


def check_answer(given: str, expected: str) -> bool:
    """Case, punctuation and whitespace-insensitive comparison."""
    return normalize_answer(given) == normalize_answer(expected)


def record_quiz_result(status: LearningStatus, item: QuizItem, correct: bool) -> LearningStatus:
    """
    Fold one answer into the learning status.

    Correct answers mark the phrase completed, clear it from the incorrect
    list and award the question type's points. Wrong answers add it to the
    incorrect list.
    """
    completed = list(status.completed_ids)
    incorrect = list(status.incorrect_ids)
    if correct:
        if item.phrase_id not in completed:
            completed.append(item.phrase_id)
        incorrect = [i for i in incorrect if i != item.phrase_id]
    elif item.phrase_id not in incorrect:
        incorrect.append(item.phrase_id)

    quiz_stats = dict(status.quiz_stats or {})
    entry = quiz_stats.get(item.phrase_id) or QuizStatsEntry()
    if correct:
        entry = entry.model_copy(update={"correct": [*entry.correct, item.type]})
    else:
        entry = entry.model_copy(update={"incorrect": [*entry.incorrect, item.type]})
    quiz_stats[item.phrase_id] = entry

    return status.model_copy(
        update={
            "completed_ids": completed,
            "incorrect_ids": incorrect,
            "points": status.points + (item.points if correct else 0),
            "quiz_stats": quiz_stats,
        }
    )
