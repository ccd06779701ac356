"""
Deterministic per-attempt ordering of questions and options.

The permutation for an attempt depends only on (test_id, student_id,
attempt_number): the same attempt always reproduces the same order, while
different attempts of the same student get different orders.
"""
import hashlib
import random
from typing import Dict, List, Optional, Sequence

from app.schemas.questions import QuestionSnapshot


def attempt_seed(test_id: int, student_id: int, attempt_number: int, salt: str = "") -> int:
    """Stable integer seed derived from the attempt identity."""
    key = f"{test_id}:{student_id}:{attempt_number}"
    if salt:
        key = f"{key}:{salt}"
    digest = hashlib.sha256(key.encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big")


def seeded_permutation(items: Sequence, seed: int) -> List:
    """Fisher-Yates shuffle of a copy of `items` driven by `seed`."""
    shuffled = list(items)
    random.Random(seed).shuffle(shuffled)
    return shuffled


def build_question_order(
    question_ids: Sequence[int],
    test_id: int,
    student_id: int,
    attempt_number: int,
    randomize: bool,
    section_boundaries: Optional[Sequence[Sequence[int]]] = None,
) -> List[int]:
    """
    Frozen question order for a new attempt.

    When `section_boundaries` is given, questions are shuffled within each
    section and the sections keep their order, so section gating still maps
    onto contiguous runs of the attempt order.
    """
    if not randomize:
        return list(question_ids)

    if not section_boundaries:
        return seeded_permutation(
            question_ids, attempt_seed(test_id, student_id, attempt_number)
        )

    order: List[int] = []
    for index, section_ids in enumerate(section_boundaries):
        seed = attempt_seed(test_id, student_id, attempt_number, salt=f"section-{index}")
        order.extend(seeded_permutation(section_ids, seed))
    return order


def build_option_orders(
    snapshots: Sequence[QuestionSnapshot],
    test_id: int,
    student_id: int,
    attempt_number: int,
    randomize: bool,
) -> Dict[str, List[str]]:
    """
    Frozen option label order per multiple-choice question.

    Keys are question ids as strings (the map is stored as JSON).
    """
    orders: Dict[str, List[str]] = {}
    for snapshot in snapshots:
        if not snapshot.kind.has_options:
            continue
        labels = snapshot.content.labels
        if randomize:
            seed = attempt_seed(
                test_id, student_id, attempt_number, salt=f"options-{snapshot.id}"
            )
            labels = seeded_permutation(labels, seed)
        orders[str(snapshot.id)] = labels
    return orders
