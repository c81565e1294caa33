"""
Provider descriptors and the per-request priority list.

A descriptor pairs a credential with a backend family. The list is rebuilt
for every request from the caller's credentials plus the operator-wide
fallback credential, which is injected by the service (never read from the
environment here).
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Optional, Tuple

from eduquest.services.ai.errors import NoCredentialsConfiguredError


class ProviderKind(Enum):
    """Backend families."""
    PRIMARY = "primary"  # Gemini
    SECONDARY = "secondary"  # OpenAI


PRIMARY_USER_LABEL = "User's Gemini Key"
SECONDARY_USER_LABEL = "User's OpenAI Key"
FALLBACK_LABEL = "System Fallback Key"

NO_CREDENTIALS_MESSAGE = (
    "API Key is not configured. Please add your own key in Settings to use AI features."
)


def _mask(credential: str) -> str:
    if len(credential) <= 4:
        return "****"
    return f"****{credential[-4:]}"


@dataclass(frozen=True)
class ProviderDescriptor:
    """One callable backend configuration. Never persisted."""

    kind: ProviderKind
    credential: str = field(repr=False)
    label: str

    def __repr__(self) -> str:
        return (
            f"ProviderDescriptor(kind={self.kind.value}, "
            f"credential={_mask(self.credential)}, label={self.label!r})"
        )


def _clean(credential: Optional[str]) -> Optional[str]:
    if credential is None:
        return None
    credential = credential.strip()
    return credential or None


def build_priority_list(
    primary_credential: Optional[str] = None,
    secondary_credential: Optional[str] = None,
    fallback_credential: Optional[str] = None,
    *,
    fallback_kind: ProviderKind = ProviderKind.PRIMARY,
    allowed_kinds: Optional[Iterable[ProviderKind]] = None,
) -> List[ProviderDescriptor]:
    """
    Build the ordered provider list for one request.

    Caller credentials come first (primary, then secondary), the fallback
    credential last. The fallback is dropped when it equals a caller
    credential of its own family, and no two entries share a
    (kind, credential) pair.

    Raises:
        NoCredentialsConfiguredError: if the resulting list is empty
    """
    candidates: List[Tuple[ProviderKind, Optional[str], str]] = [
        (ProviderKind.PRIMARY, _clean(primary_credential), PRIMARY_USER_LABEL),
        (ProviderKind.SECONDARY, _clean(secondary_credential), SECONDARY_USER_LABEL),
        (fallback_kind, _clean(fallback_credential), FALLBACK_LABEL),
    ]
    allowed = set(allowed_kinds) if allowed_kinds is not None else set(ProviderKind)

    providers: List[ProviderDescriptor] = []
    seen = set()
    for kind, credential, label in candidates:
        if credential is None or kind not in allowed:
            continue
        if (kind, credential) in seen:
            continue
        seen.add((kind, credential))
        providers.append(ProviderDescriptor(kind=kind, credential=credential, label=label))

    if not providers:
        raise NoCredentialsConfiguredError(NO_CREDENTIALS_MESSAGE)

    return providers
