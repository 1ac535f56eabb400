# app/services/interview.py
"""
Ownership interview asked to a presenter after a scan.

The question depends only on (is_new_fingerprint, unique observers before
this scan). A returning device is never asked again.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Tuple, Union

from app.models.enums import QuestionType


@dataclass(frozen=True)
class FirstScan:
    type: QuestionType = field(default=QuestionType.first_scan, init=False)
    message: str = (
        "Congratulations! You are the first to scan this tag. "
        "Are you the first (original) owner of this product?"
    )
    options: Tuple[str, ...] = (
        "Yes, I am the first owner",
        "No, I got it from someone else",
    )


@dataclass(frozen=True)
class SecondScan:
    type: QuestionType = field(default=QuestionType.second_scan, init=False)
    message: str = (
        "This tag has already been scanned by someone else. "
        "Did you get this product second-hand? Where did you get it from?"
    )
    options: Tuple[str, ...] = (
        "Yes, second-hand - from an online store",
        "Yes, second-hand - from a friend/family",
        "Yes, second-hand - from a physical store",
        "No, I am the first owner",
    )


@dataclass(frozen=True)
class ThirdScan:
    type: QuestionType = field(default=QuestionType.third_scan, init=False)
    message: str = "Where did you get this product from?"
    options: Tuple[str, ...] = (
        "Online store (marketplace)",
        "Physical / offline store",
        "Friend / family",
        "Gift",
        "Other",
    )


@dataclass(frozen=True)
class NoQuestion:
    type: QuestionType = field(default=QuestionType.no_question, init=False)
    message: str = ""
    options: Tuple[str, ...] = ()


Question = Union[FirstScan, SecondScan, ThirdScan, NoQuestion]


def choose_question(is_new_fingerprint: bool, unique_observers_before: int) -> Question:
    if not is_new_fingerprint:
        return NoQuestion()
    if unique_observers_before == 0:
        return FirstScan()
    if unique_observers_before == 1:
        return SecondScan()
    if unique_observers_before == 2:
        return ThirdScan()
    return NoQuestion()


def question_payload(question: Question) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"type": question.type.value, "message": question.message}
    if question.options:
        payload["options"] = list(question.options)
    return payload
