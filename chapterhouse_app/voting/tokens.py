"""Voting link tokens.

A token is a Django-signed JSON payload binding one member to one election.
Authenticity is checked here without touching the database; whether the link
is still usable (used, revoked, expired) is the registry's job.
"""

import datetime
import hashlib
import json
import secrets
from dataclasses import dataclass

from django.conf import settings
from django.core import signing
from django.utils import timezone

from voting.exceptions import TokenInvalidError, TokenMalformedError, VotingError

VOTING_TOKEN_SALT = "chapterhouse.voting-link"
VOTING_TOKEN_PURPOSE = "vote"

_REQUIRED_KEYS = frozenset({"p", "m", "e", "iat", "n"})


@dataclass(frozen=True, slots=True)
class VotingTokenPayload:
    member_id: int
    election_id: int
    issued_at: datetime.datetime
    nonce: str


@dataclass(frozen=True, slots=True)
class GeneratedVotingToken:
    token: str
    token_hash: str
    payload: VotingTokenPayload


@dataclass(frozen=True, slots=True)
class TokenVerification:
    valid: bool
    payload: VotingTokenPayload | None = None
    reason: str = ""
    error: VotingError | None = None


def _signer() -> signing.Signer:
    return signing.Signer(key=settings.VOTING_LINK_SECRET, salt=VOTING_TOKEN_SALT)


def hash_token(token: str) -> str:
    """Lookup key for a token; the raw token is never used in queries."""
    return hashlib.sha256(str(token).encode("utf-8")).hexdigest()


def generate_voting_token(
    *,
    member_id: int,
    election_id: int,
    issued_at: datetime.datetime | None = None,
) -> GeneratedVotingToken:
    issued = issued_at or timezone.now()
    nonce = secrets.token_hex(16)
    token = _signer().sign_object(
        {
            "p": VOTING_TOKEN_PURPOSE,
            "m": int(member_id),
            "e": int(election_id),
            "iat": issued.isoformat(),
            # Two links for the same member and election must never collide.
            "n": nonce,
        }
    )
    return GeneratedVotingToken(
        token=token,
        token_hash=hash_token(token),
        payload=VotingTokenPayload(
            member_id=int(member_id),
            election_id=int(election_id),
            issued_at=issued,
            nonce=nonce,
        ),
    )


def _decode_unverified(token: str) -> dict[str, object]:
    value, sep, signature = token.rpartition(":")
    if not sep or not value or not signature:
        raise TokenMalformedError("Voting token is malformed: missing signature.")

    try:
        decoded = json.loads(signing.b64_decode(value.encode("ascii")))
    except ValueError as exc:
        raise TokenMalformedError("Voting token is malformed: payload is not valid.") from exc

    if not isinstance(decoded, dict):
        raise TokenMalformedError("Voting token is malformed: payload is not an object.")

    missing = sorted(_REQUIRED_KEYS - decoded.keys())
    if missing:
        raise TokenMalformedError(f"Voting token is malformed: missing {', '.join(missing)}.")

    return decoded


def _payload_from_dict(data: dict[str, object]) -> VotingTokenPayload:
    if data.get("p") != VOTING_TOKEN_PURPOSE:
        raise TokenInvalidError("Voting token has the wrong purpose.")

    member_id = data.get("m")
    election_id = data.get("e")
    if not isinstance(member_id, int) or not isinstance(election_id, int):
        raise TokenMalformedError("Voting token is malformed: ids must be integers.")

    try:
        issued_at = datetime.datetime.fromisoformat(str(data.get("iat")))
    except ValueError as exc:
        raise TokenMalformedError("Voting token is malformed: bad issue time.") from exc

    return VotingTokenPayload(
        member_id=member_id,
        election_id=election_id,
        issued_at=issued_at,
        nonce=str(data.get("n") or ""),
    )


def read_voting_token(token: str) -> VotingTokenPayload:
    """Return the payload of a valid token.

    Raises TokenMalformedError when the token cannot be parsed at all and
    TokenInvalidError when it parses but the signature does not match.
    """
    normalized = str(token or "").strip()
    if not normalized:
        raise TokenMalformedError("Voting token is empty.")

    # Structure first so garbage is reported as malformed rather than forged.
    _decode_unverified(normalized)

    try:
        data = _signer().unsign_object(normalized)
    except signing.BadSignature as exc:
        raise TokenInvalidError() from exc

    return _payload_from_dict(data)


def verify_voting_token(token: str) -> TokenVerification:
    try:
        payload = read_voting_token(token)
    except (TokenMalformedError, TokenInvalidError) as exc:
        return TokenVerification(valid=False, reason=exc.code, error=exc)
    return TokenVerification(valid=True, payload=payload)
