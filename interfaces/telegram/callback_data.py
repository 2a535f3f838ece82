from __future__ import annotations

OWNERSHIP_PREFIX = "own"


def encode_ownership_confirmation(
    owner_user_id: str,
    new_owner_user_id: str,
    accepted: bool,
) -> str:
    """
    Encode a confirm/cancel callback for an ownership transfer.

    Format:
      own:yes:{owner_id}:{new_owner_id}
      own:no:{owner_id}:{new_owner_id}
    """

    answer = "yes" if accepted else "no"
    return f"{OWNERSHIP_PREFIX}:{answer}:{owner_user_id}:{new_owner_user_id}"


def parse_ownership_confirmation(data: str) -> tuple[bool, str, str]:
    parts = data.split(":")
    if len(parts) != 4 or parts[0] != OWNERSHIP_PREFIX or parts[1] not in ("yes", "no"):
        raise ValueError(f"Invalid ownership confirmation callback data: {data}")
    if not parts[2] or not parts[3]:
        raise ValueError(f"Invalid ownership confirmation callback data: {data}")

    accepted = parts[1] == "yes"
    return accepted, parts[2], parts[3]
