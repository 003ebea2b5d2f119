"""Keyword rule table used to answer symptom descriptions.

Rules are checked in order against the lower-cased utterance; the first rule
whose keywords match wins.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

EMERGENCY_ADVICE = (
    "Chest pain or difficulty breathing can be serious. "
    "Please call 999 or go to your nearest A&E now."
)
GENERIC_ILLNESS = (
    "Sorry you're unwell. A fever with a headache is often caused by a viral infection. "
    "Rest, drink plenty of fluids and take paracetamol if you need it. "
    "Contact your GP if you are not feeling better in a few days."
)
SORE_THROAT_QUESTION = "Sorry you're unwell. Do you also have chest pain or trouble breathing?"
GENERIC_CLARIFY = "Could you tell me a bit more about your symptoms and how long you've had them?"


@dataclass(frozen=True)
class ReplyRule:
    reply: str
    any_of: Tuple[str, ...] = ()
    all_of: Tuple[str, ...] = ()

    def matches(self, text: str) -> bool:
        if self.any_of and not any(keyword in text for keyword in self.any_of):
            return False
        if self.all_of and not all(keyword in text for keyword in self.all_of):
            return False
        return bool(self.any_of or self.all_of)


RULES: Tuple[ReplyRule, ...] = (
    ReplyRule(EMERGENCY_ADVICE, any_of=("chest", "breath")),
    ReplyRule(GENERIC_ILLNESS, all_of=("fever", "headache")),
    ReplyRule(SORE_THROAT_QUESTION, any_of=("sore throat",)),
)


def generate_reply(utterance: str, rules: Tuple[ReplyRule, ...] = RULES) -> str:
    text = utterance.lower()
    for rule in rules:
        if rule.matches(text):
            return rule.reply
    return GENERIC_CLARIFY
