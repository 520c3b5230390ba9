"""
Stall signature detection.

A signature is a deterministic fingerprint of the parts of canonical
state that show progress. If the same fingerprint keeps coming back
the assistants are talking in circles.
"""

import hashlib
import json
from typing import List, Tuple

from planroom.shared.contracts.session_state import CanonicalState


def signature_payload(state: CanonicalState) -> dict:
    """The "interesting" fields of a state, with list order removed."""
    return {
        "goal": state.goal.strip(),
        "leading_option": state.leading_option.strip(),
        "open_questions": sorted(q.text.strip() for q in state.unresolved_questions()),
        "next_steps": sorted(s.strip() for s in state.suggested_next_steps),
        "stage": state.stage,
    }


def compute_state_signature(state: CanonicalState) -> str:
    """
    Order-independent signature of a canonical state.

    Equal content yields an equal signature no matter the insertion order
    of questions or next steps. Fields outside the signature payload
    (status summary, constraints, audit stamps) never affect it.
    """
    encoded = json.dumps(signature_payload(state), sort_keys=True, ensure_ascii=False)
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


def count_and_record(signatures: List[str], signature: str) -> Tuple[int, List[str]]:
    """
    Count prior occurrences of ``signature`` and append it.

    Returns:
        (occurrences before this one, the extended history)
    """
    repeats = signatures.count(signature)
    return repeats, [*signatures, signature]


def is_stall(repeats: int, threshold: int) -> bool:
    """A stall is declared once the prior-occurrence count reaches the threshold."""
    return repeats >= threshold
