from typing import Optional

from itsdangerous import BadSignature, URLSafeSerializer

from config import get_settings


def _serializer() -> URLSafeSerializer:
    settings = get_settings()
    return URLSafeSerializer(settings.invite_secret, salt="budget-invitation")


def generate_invitation_token(invitation_id: int) -> str:
    return _serializer().dumps({"inv": invitation_id})


def read_invitation_token(token: str) -> Optional[int]:
    # Expiry lives on the invitation row so it can be flipped to EXPIRED.
    try:
        data = _serializer().loads(token)
    except BadSignature:
        return None
    invitation_id = data.get("inv") if isinstance(data, dict) else None
    if not isinstance(invitation_id, int):
        return None
    return invitation_id
